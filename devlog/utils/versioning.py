"""
Cache version tags for inference-backed computations.

A cached repository summary or synthesis is only reusable while the prompt
and the model that produced it are unchanged. Each computation carries an
explicit tag, and the effective cache version is the tag joined with the
configured model id:

    repoSummary-v3/gemini-2.0-flash-001

Switching GEMINI_MODEL therefore invalidates old entries on its own.
Prompt or schema changes do not; bump the tag below when you make one.
"""

from __future__ import annotations

REPO_SUMMARY_TAG = "repoSummary-v3"
GLOBAL_SYNTHESIS_TAG = "globalSynthesis-v3"

REPO_SUMMARY_ACTION = "repoSummary"
GLOBAL_SYNTHESIS_ACTION = "globalSynthesis"


def cache_version(tag: str, model_name: str) -> str:
    """
    Returns:
        Version string like "repoSummary-v3/gemini-2.0-flash-001"
    """
    return f"{tag}/{model_name}"


def get_version_metadata(model_name: str) -> dict[str, str]:
    """Version fields logged with each stored report."""
    return {
        "model_name": model_name,
        "repo_summary_version": cache_version(REPO_SUMMARY_TAG, model_name),
        "global_synthesis_version": cache_version(GLOBAL_SYNTHESIS_TAG, model_name),
    }
