"""
Pattern Detector - cross-repository patterns from finished repository summaries.

Tool use is disabled: the detector only reads summaries that already exist.
Shape deviations are tolerated by defaulting (missing arrays -> [], missing
text -> ""); a response that is not a JSON object at all raises
PatternDetectionError. The workflow engine treats that as non-fatal.
"""

from __future__ import annotations

from collections.abc import Sequence

from devlog.contracts import InferenceService
from devlog.errors import PatternDetectionError
from devlog.llm.decoding import decode_model
from devlog.llm.prompts import build_patterns_prompt
from devlog.models import PatternSet, RepositoryAnalysis
from devlog.observability.logging import get_logger
from devlog.observability.telemetry import counter, log_event

logger = get_logger(__name__)


class PatternDetector:
    def __init__(self, inference: InferenceService, instructions: str):
        self.inference = inference
        self.instructions = instructions

    def detect(self, analyses: Sequence[RepositoryAnalysis], date: str) -> PatternSet:
        """
        Raises:
            PatternDetectionError: If the response cannot be read as an object
        """
        if not analyses:
            return PatternSet()

        result = self.inference.generate_object(
            build_patterns_prompt(analyses, date),
            instructions=self.instructions,
            schema_name="PatternSet",
            tools_enabled=False,
        )
        decoded = decode_model(PatternSet, result.data, fill_defaults=True)
        if not decoded.ok:
            counter("pattern_detector.unparseable")
            raise PatternDetectionError(f"unreadable pattern response: {decoded.error}")

        patterns = decoded.unwrap().model_copy(update={"session_id": result.session_id})
        counter("pattern_detector.success")
        log_event(
            "pattern_detector.done",
            date=date,
            patterns=len(patterns.patterns),
            themes=len(patterns.themes),
        )
        return patterns
