"""Git inspection for the code review loop.

Functions never raise on git failures: a missing git binary or a failing
command reads as "not a repo" / "no changes" / an empty section.
"""

from __future__ import annotations

import logging
import subprocess

log = logging.getLogger(__name__)

MAX_DIFF_CHARS = 50_000
MAX_UNTRACKED_FILES = 50
TRUNCATION_MARKER = "\n\n... (diff truncated because it is too long)"


def _git(cwd: str, *args: str, timeout: float = 30) -> subprocess.CompletedProcess[str] | None:
    try:
        return subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        log.debug("git %s failed: %s", " ".join(args), exc)
        return None


def is_git_repo(cwd: str) -> bool:
    result = _git(cwd, "rev-parse", "--is-inside-work-tree", timeout=10)
    return result is not None and result.returncode == 0 and result.stdout.strip() == "true"


def has_changes(cwd: str) -> bool:
    """True when ``git status --porcelain`` reports anything, untracked files included."""
    result = _git(cwd, "status", "--porcelain", timeout=10)
    return result is not None and result.returncode == 0 and bool(result.stdout.strip())


def _untracked_section(cwd: str) -> str | None:
    listing = _git(cwd, "ls-files", "--others", "--exclude-standard")
    if listing is None or listing.returncode != 0:
        return None
    all_files = [f for f in listing.stdout.splitlines() if f]
    if not all_files:
        return None

    diffs = []
    for path in all_files[:MAX_UNTRACKED_FILES]:
        diff = _git(cwd, "diff", "--no-index", "--", "/dev/null", path, timeout=10)
        # --no-index exits 1 when the files differ, which they always do here.
        if diff is not None and diff.returncode in (0, 1) and diff.stdout.strip():
            diffs.append(diff.stdout)
    if not diffs:
        return None

    if len(all_files) > MAX_UNTRACKED_FILES:
        header = (
            f"## Untracked Files ({MAX_UNTRACKED_FILES}/{len(all_files)} files, "
            "remaining omitted)\n"
        )
    else:
        header = "## Untracked Files\n"
    return header + "\n".join(diffs)


def collect_diff(cwd: str, max_chars: int = MAX_DIFF_CHARS) -> str:
    """Staged, unstaged and untracked changes as one diff text.

    Output longer than *max_chars* is cut and marked as truncated.
    """
    parts = []
    staged = _git(cwd, "diff", "--cached")
    if staged is not None and staged.returncode == 0 and staged.stdout.strip():
        parts.append("## Staged Changes\n" + staged.stdout)
    unstaged = _git(cwd, "diff")
    if unstaged is not None and unstaged.returncode == 0 and unstaged.stdout.strip():
        parts.append("## Unstaged Changes\n" + unstaged.stdout)
    untracked = _untracked_section(cwd)
    if untracked:
        parts.append(untracked)

    combined = "\n\n".join(parts)
    if len(combined) > max_chars:
        log.info("Diff is %d chars; truncating to %d", len(combined), max_chars)
        combined = combined[:max_chars] + TRUNCATION_MARKER
    return combined
