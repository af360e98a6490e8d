"""
Prompt builders for the three analysis stages.

Prompts only carry data; behavioral instructions come from the settings
store (agents/repoAnalyzer, agents/activitySummarizer, agents/globalAnalysis)
and are passed to the model as the system instruction.
"""

from __future__ import annotations

from collections.abc import Sequence

from devlog.models import (
    ActivityStats,
    CommitRecord,
    IssueRecord,
    PatternSet,
    PullRequestRecord,
    RepositoryAnalysis,
)

BATCH_NARRATIVE_MAX_CHARS = 700


def _join(items: Sequence[str], empty: str = "none") -> str:
    return ", ".join(items) if items else empty


def build_batch_prompt(
    repository: str,
    batch: Sequence[CommitRecord],
    batch_index: int,
    batch_count: int,
    date: str,
    pull_requests: Sequence[PullRequestRecord],
    issues: Sequence[IssueRecord],
) -> str:
    owner, _, repo = repository.partition("/")
    lines = [
        f"You are analyzing repository {repository}. "
        f"This is batch {batch_index + 1}/{batch_count} for {date}.",
        "",
        "Tool discipline:",
        f'- For each commit, call fetchCommitDetails(owner="{owner}", repo="{repo}", sha) '
        "to see changed files and stats.",
        f'- If a pull request looks related, call getPullRequestFiles(owner="{owner}", '
        f'repo="{repo}", number). Do not guess.',
        "",
        "Synthesize this batch: major changes, architectural implications, risks, "
        "progress signals.",
        "",
        "Commits:",
        *(f"- {c.sha[:7]}: {c.message}" for c in batch),
    ]
    if pull_requests:
        lines += ["", "Related Pull Requests:"]
        lines += [f"- #{pr.number}: {pr.title} ({pr.state})" for pr in pull_requests]
    if issues:
        lines += ["", "Related Issues:"]
        lines += [f"- #{i.number}: {i.title} ({i.state})" for i in issues]
    lines += [
        "",
        "Output constraints:",
        f"- Keep the narrative under {BATCH_NARRATIVE_MAX_CHARS} characters.",
        "- Do not include code or diffs.",
        "- Focus on concrete, high-signal observations only.",
    ]
    return "\n".join(lines)


def build_summary_prompt(
    repository: str, date: str, commit_count: int, batch_narratives: Sequence[str]
) -> str:
    narratives = "\n\n---\n\n".join(batch_narratives) if batch_narratives else "(no narratives)"
    return f"""The analysis is complete. Do not call tools. Summarize the narratives below into JSON.

Repository: {repository}
Date: {date}
Commit Count: {commit_count}

Batch analyses:
{narratives}

Return a JSON object with:
- repository: "{repository}"
- commitCount: {commit_count}
- mainFocus: main focus of the work (1 sentence)
- progress: what was accomplished (1 sentence)
- technicalHighlights: 2-5 key technical achievements
- concerns: 0-3 potential issues or risks
- nextSteps: 0-3 suggested next actions

Return ONLY the JSON object."""


def _repo_block(analysis: RepositoryAnalysis) -> str:
    return (
        f"{analysis.repository}:\n"
        f"- Focus: {analysis.main_focus}\n"
        f"- Progress: {analysis.progress}\n"
        f"- Highlights: {_join(analysis.technical_highlights)}\n"
        f"- Concerns: {_join(analysis.concerns)}"
    )


def build_patterns_prompt(analyses: Sequence[RepositoryAnalysis], date: str) -> str:
    summaries = "\n\n".join(_repo_block(a) for a in analyses)
    return f"""Analyze activity patterns across {len(analyses)} repositories on {date}.

Repository summaries:
{summaries}

Identify cross-repository patterns and themes, technology stack trends,
development methodology patterns, and how work is distributed.

Return JSON:
{{
  "patterns": ["pattern descriptions"],
  "themes": ["technical themes"],
  "stackTrends": ["technology trends"],
  "methodologyInsights": ["process observations"],
  "balanceAssessment": "how work is distributed"
}}"""


def build_synthesis_prompt(
    date: str,
    analyses: Sequence[RepositoryAnalysis],
    patterns: PatternSet,
    stats: ActivityStats,
) -> str:
    repo_lines = []
    for a in analyses:
        block = (
            f"{a.repository} ({a.commit_count} commits):\n"
            f"- Focus: {a.main_focus}\n"
            f"- Progress: {a.progress}\n"
            f"- Highlights: {_join(a.technical_highlights)}"
        )
        if a.stats is not None:
            block += (
                f"\n- Stats: +{a.stats.total_additions}/-{a.stats.total_deletions}, "
                f"files: {a.stats.files_changed}"
            )
        repo_lines.append(block)

    return f"""All analysis is complete. Do not call tools.

Create a daily development log for {date}: a concise narrative (1-3 short paragraphs)
with rich structured metadata.

Statistics:
- Total commits: {stats.total_commits}
- Repositories: {_join(stats.repositories)}

Repository summaries:
{chr(10).join(repo_lines) or "none"}

Cross-Repository:
- Patterns: {_join(patterns.patterns)}
- Themes: {_join(patterns.themes)}
- Balance: {patterns.balance_assessment or "not assessed"}

Return ONLY a JSON object with these keys:
date, title, haiku (optional), narrative, highlights[], repoSummaries[
{{repository, commitCount, mainFocus, progress}}], crossRepoPatterns[], technicalThemes[],
suggestions[{{id, title, category, priority, estimatedEffort?, rationale?}}],
metrics{{totalCommits, totalRepos, primaryLanguages[],
codeQualityTrend ("improving"|"stable"|"declining"), productivityScore (1-10)}}."""
