"""
Console entry points.

    devlog-api                  serve the HTTP API with uvicorn
    devlog-trigger [--date D]   run the daily analysis once and wait
"""

from __future__ import annotations

import argparse
import json
import sys

from dotenv import load_dotenv

from devlog.errors import DevlogError
from devlog.observability.logging import get_logger

logger = get_logger(__name__)


def main_api() -> None:
    import uvicorn

    from devlog.api.app import create_app
    from devlog.config import API_HOST, API_PORT, LOG_LEVEL

    load_dotenv()
    uvicorn.run(create_app(), host=API_HOST, port=API_PORT, log_level=LOG_LEVEL.lower())


def main_trigger(argv: list[str] | None = None) -> int:
    from devlog.orchestrator import build_orchestrator
    from devlog.workflow.trigger import trigger_daily_workflow, validate_date

    parser = argparse.ArgumentParser(
        prog="devlog-trigger", description="Run the daily development analysis once."
    )
    parser.add_argument("--date", type=validate_date, help="YYYY-MM-DD (default: yesterday UTC)")
    args = parser.parse_args(argv)

    load_dotenv()
    orchestrator = build_orchestrator()
    try:
        result = trigger_daily_workflow(orchestrator.engine, args.date)
    except DevlogError as e:
        logger.error("Daily analysis failed: %s", e)
        return 1
    finally:
        orchestrator.close()

    print(json.dumps(result))
    return 0


if __name__ == "__main__":
    sys.exit(main_trigger())
