# git.py
# Small, focused wrapper around the Git CLI.
# Every Git interaction in ciflow goes through this module.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional, Sequence


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Args:
        args: List of git arguments (e.g. ["status", "--porcelain"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError: git exited non-zero
        FileNotFoundError: git is not installed
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def tree_sha(cwd: Optional[str | Path] = None) -> str:
    """
    SHA of the tree HEAD points to.

    Two commits with identical content share a tree id even when their
    messages, parents or authors differ, which makes it the natural content
    fingerprint of a run.
    """
    return _git(["rev-parse", "HEAD^{tree}"], cwd=cwd)


def is_dirty(cwd: Optional[str | Path] = None, exclude: Sequence[str] = ()) -> bool:
    """
    True when the working tree has modified, staged or untracked files.

    Paths in `exclude` (relative to cwd) are ignored.
    """
    pathspec = [".", *(f":(exclude){p}" for p in exclude)]
    return _git(["status", "--porcelain", "--", *pathspec], cwd=cwd) != ""


def current_branch(cwd: Optional[str | Path] = None) -> Optional[str]:
    """Current branch name, or None on a detached HEAD."""
    name = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    return None if name == "HEAD" else name
