"""devlog - daily development analysis across many repositories"""

from __future__ import annotations

__version__ = "0.1.0"


# Lazy imports so lightweight modules do not pull in FastAPI or Vertex AI
def __getattr__(name: str):
    if name in ("Orchestrator", "build_orchestrator"):
        from devlog import orchestrator

        return getattr(orchestrator, name)

    if name == "WorkflowEngine":
        from devlog.workflow.engine import WorkflowEngine

        return WorkflowEngine

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)


__all__ = [
    "Orchestrator",
    "WorkflowEngine",
    "build_orchestrator",
]
