"""
Git Collaborator
================

Thin wrappers around the ``git`` binary. Every call is bounded by a timeout
and any failure yields an empty value rather than an exception, so a missing
repository or binary never interrupts the hook.
"""

import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 10


@dataclass
class DiffStats:
    """Added/removed line counts and touched files since HEAD."""
    files: list[str] = field(default_factory=list)
    lines_added: int = 0
    lines_removed: int = 0


def _run_git(*args: str, cwd: Optional[Path] = None) -> Optional[str]:
    """Run a git command and return stdout, or None on failure."""
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("git %s failed: %s", " ".join(args), e)
        return None

    if result.returncode != 0:
        logger.debug("git %s exited %d: %s", " ".join(args), result.returncode, result.stderr.strip())
        return None
    return result.stdout


def current_branch(cwd: Optional[Path] = None) -> str:
    """Current branch name; empty outside a repository or when detached."""
    output = _run_git("branch", "--show-current", cwd=cwd)
    return output.strip() if output else ""


def parse_numstat(output: str) -> DiffStats:
    """
    Parse ``git diff --numstat`` output.

    Binary files report ``-`` counts, which are ignored. Paths are collected
    once each, in first-seen order.
    """
    stats = DiffStats()
    seen = set()
    for line in output.strip().splitlines():
        parts = line.split()
        if len(parts) < 3:
            continue
        if parts[0].isdigit():
            stats.lines_added += int(parts[0])
        if parts[1].isdigit():
            stats.lines_removed += int(parts[1])
        path = parts[2]
        if path not in seen:
            seen.add(path)
            stats.files.append(path)
    return stats


def modified_files(cwd: Optional[Path] = None) -> DiffStats:
    output = _run_git("diff", "--numstat", "HEAD", cwd=cwd)
    if output is None:
        return DiffStats()
    return parse_numstat(output)


def head_commit(cwd: Optional[Path] = None) -> str:
    output = _run_git("rev-parse", "HEAD", cwd=cwd)
    return output.strip() if output else ""


def staged_or_unstaged_diff(cwd: Optional[Path] = None) -> str:
    """Staged diff text, falling back to the unstaged diff when there is none."""
    output = _run_git("diff", "--cached", cwd=cwd)
    if not output:
        output = _run_git("diff", cwd=cwd)
    return output or ""


def session_diff(cwd: Optional[Path] = None) -> str:
    """Working tree diff against HEAD, falling back to the staged diff."""
    output = _run_git("diff", "HEAD", cwd=cwd)
    if not output:
        output = _run_git("diff", "--cached", cwd=cwd)
    return output or ""
