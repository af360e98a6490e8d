"""
GitHub activity source and the read-only tools exposed to the repository analyzer.

The activity source reads the authenticated user's event stream (up to three
pages of 100 events), keeps events from the requested UTC day, and builds
commits from PushEvents, pull requests from PullRequestEvents and issues from
IssuesEvents. A GitHub failure yields an empty day rather than failing the
run. A missing token is a configuration error.

The tools return compact metadata only (file names and change counts, never
patch text) so tool results stay small.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import requests

from devlog.config import (
    GITHUB_API_URL,
    GITHUB_EVENT_PAGES,
    GITHUB_EVENTS_PER_PAGE,
    GITHUB_PAT,
    GITHUB_TIMEOUT_SECONDS,
)
from devlog.errors import ConfigurationError
from devlog.models import CommitRecord, DailyActivity, IssueRecord, PullRequestRecord
from devlog.observability.logging import get_logger
from devlog.observability.telemetry import counter, log_event, time_block

logger = get_logger(__name__)


class GitHubClient:
    """Thin REST client over requests.Session."""

    def __init__(
        self,
        token: str | None = None,
        api_url: str = GITHUB_API_URL,
        timeout: float = GITHUB_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ):
        self.token = token if token is not None else GITHUB_PAT
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        response = self.session.get(
            f"{self.api_url}{path}", headers=headers, params=params, timeout=self.timeout
        )
        response.raise_for_status()
        return response.json()

    def get_authenticated_login(self) -> str:
        return self._get("/user")["login"]

    def list_user_events(self, username: str, page: int, per_page: int) -> list[dict[str, Any]]:
        return self._get(f"/users/{username}/events", {"per_page": per_page, "page": page})

    def get_commit(self, owner: str, repo: str, sha: str) -> dict[str, Any]:
        return self._get(f"/repos/{owner}/{repo}/commits/{sha}")

    def list_pull_request_files(self, owner: str, repo: str, number: int) -> list[dict[str, Any]]:
        return self._get(f"/repos/{owner}/{repo}/pulls/{number}/files", {"per_page": 100})


def _day_bounds(date: str) -> tuple[datetime, datetime]:
    start = datetime.strptime(date, "%Y-%m-%d").replace(tzinfo=UTC)
    return start, start + timedelta(days=1)


def _parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class GitHubActivitySource:
    """ActivitySource backed by the GitHub events API."""

    def __init__(self, client: GitHubClient | None = None):
        self.client = client or GitHubClient()

    def fetch_daily_activity(self, date: str) -> DailyActivity:
        """
        Collect one UTC day of commits, pull requests and issues.

        Raises:
            ConfigurationError: If no GitHub token is configured

        Side Effects:
            - Makes up to GITHUB_EVENT_PAGES + 1 GitHub API requests
        """
        if not self.client.token:
            raise ConfigurationError("GITHUB_PAT is not set", key="GITHUB_PAT")

        start, end = _day_bounds(date)
        try:
            with time_block("github.fetch_activity.latency"):
                username = self.client.get_authenticated_login()
                events: list[dict[str, Any]] = []
                for page in range(1, GITHUB_EVENT_PAGES + 1):
                    data = self.client.list_user_events(username, page, GITHUB_EVENTS_PER_PAGE)
                    if not data:
                        break
                    events.extend(data)
            day_events = [e for e in events if start <= _parse_timestamp(e["created_at"]) < end]
            activity = self._build_activity(day_events, username)
        except (requests.RequestException, KeyError, ValueError) as e:
            counter("github.fetch_activity.error")
            logger.error("fetch_daily_activity failed for %s: %s", date, e)
            return DailyActivity.empty()

        log_event(
            "github.activity_fetched",
            date=date,
            events=len(day_events),
            commits=activity.total_commits,
            repos=activity.total_repos,
        )
        return activity

    @staticmethod
    def _build_activity(events: list[dict[str, Any]], username: str) -> DailyActivity:
        commits: list[CommitRecord] = []
        pull_requests: list[PullRequestRecord] = []
        issues: list[IssueRecord] = []
        repositories: list[str] = []

        for event in events:
            repo_name = event["repo"]["name"]
            payload = event.get("payload") or {}

            if event["type"] == "PushEvent":
                if repo_name not in repositories:
                    repositories.append(repo_name)
                for c in payload.get("commits") or []:
                    commits.append(
                        CommitRecord(
                            sha=c["sha"],
                            message=c.get("message", ""),
                            repository=repo_name,
                            timestamp=event["created_at"],
                            author=(c.get("author") or {}).get("name") or username,
                            url=f"https://github.com/{repo_name}/commit/{c['sha']}",
                        )
                    )
            elif event["type"] == "PullRequestEvent":
                pr = payload.get("pull_request") or {}
                pull_requests.append(
                    PullRequestRecord(
                        number=pr.get("number") or 0,
                        title=pr.get("title") or "",
                        repository=repo_name,
                        state=payload.get("action") or "unknown",
                        url=pr.get("html_url") or "",
                    )
                )
            elif event["type"] == "IssuesEvent":
                issue = payload.get("issue") or {}
                issues.append(
                    IssueRecord(
                        number=issue.get("number") or 0,
                        title=issue.get("title") or "",
                        repository=repo_name,
                        state=payload.get("action") or "unknown",
                        url=issue.get("html_url") or "",
                    )
                )

        return DailyActivity(
            commits=commits,
            pull_requests=pull_requests,
            issues=issues,
            total_commits=len(commits),
            total_repos=len(repositories),
            repositories=repositories,
        )


# ============================================================================
# Tools
# ============================================================================


@dataclass(frozen=True)
class ToolSpec:
    """A function the model may call: JSON-schema declaration plus handler."""

    name: str
    description: str
    parameters: dict[str, Any]
    handler: Callable[..., Any]


def _compact_file(f: dict[str, Any]) -> dict[str, Any]:
    return {
        "filename": f.get("filename"),
        "status": f.get("status"),
        "additions": f.get("additions", 0),
        "deletions": f.get("deletions", 0),
        "changes": f.get("changes", 0),
    }


class GitHubTools:
    """Read-only GitHub lookups offered to the repository analyzer."""

    def __init__(self, client: GitHubClient):
        self.client = client

    def fetch_commit_details(self, owner: str, repo: str, sha: str) -> dict[str, Any]:
        commit = self.client.get_commit(owner, repo, sha)
        message = (commit.get("commit", {}).get("message") or "").split("\n")[0][:200]
        return {
            "message": message,
            "files": [_compact_file(f) for f in commit.get("files") or []],
            "stats": commit.get("stats") or {},
            "htmlUrl": commit.get("html_url"),
        }

    def get_pull_request_files(self, owner: str, repo: str, number: int) -> list[dict[str, Any]]:
        files = self.client.list_pull_request_files(owner, repo, int(number))
        return [_compact_file(f) for f in files]

    def specs(self) -> list[ToolSpec]:
        repo_args = {
            "owner": {"type": "string", "description": "Repository owner"},
            "repo": {"type": "string", "description": "Repository name"},
        }
        return [
            ToolSpec(
                name="fetchCommitDetails",
                description="Fetch files and change stats for a commit (no patch text)",
                parameters={
                    "type": "object",
                    "properties": {**repo_args, "sha": {"type": "string"}},
                    "required": ["owner", "repo", "sha"],
                },
                handler=self.fetch_commit_details,
            ),
            ToolSpec(
                name="getPullRequestFiles",
                description="List changed files for a pull request (no patch text)",
                parameters={
                    "type": "object",
                    "properties": {**repo_args, "number": {"type": "integer"}},
                    "required": ["owner", "repo", "number"],
                },
                handler=self.get_pull_request_files,
            ),
        ]
