"""
Group a day's commits by repository and split each group into bounded batches.

Both operations are pure and order-preserving: repositories keep first-seen
order, commits keep arrival order, and concatenating a repository's batches
reproduces its commit list exactly.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Protocol, TypeVar

from devlog.config import BATCH_SIZE
from devlog.models import CommitRecord


class _HasRepository(Protocol):
    repository: str


R = TypeVar("R", bound=_HasRepository)


def group_commits_by_repository(
    commits: Iterable[CommitRecord],
) -> dict[str, list[CommitRecord]]:
    """Map repository -> commits, in first-seen repository order."""
    groups: dict[str, list[CommitRecord]] = {}
    for commit in commits:
        groups.setdefault(commit.repository, []).append(commit)
    return groups


def order_by_commit_count(
    groups: dict[str, list[CommitRecord]],
) -> list[tuple[str, list[CommitRecord]]]:
    """Busiest repositories first; ties keep first-seen order (sorted() is stable)."""
    return sorted(groups.items(), key=lambda item: len(item[1]), reverse=True)


def split_into_batches(
    commits: Sequence[CommitRecord], batch_size: int = BATCH_SIZE
) -> list[list[CommitRecord]]:
    """
    Split commits into ceil(N / batch_size) consecutive batches.

    Every batch except possibly the last holds exactly batch_size commits.
    An empty input yields no batches.

    Raises:
        ValueError: If batch_size is less than 1
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    return [list(commits[i : i + batch_size]) for i in range(0, len(commits), batch_size)]


def filter_for_repository(items: Iterable[R], repository: str) -> list[R]:
    """Pull requests or issues belonging to one repository."""
    return [item for item in items if item.repository == repository]
