# fingerprint.py
from __future__ import annotations

import hashlib
import json
import subprocess
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from .git_facts.git import is_dirty, tree_sha

# ---------------------------------------------------------------------
# Content fingerprint of a run, used for duplicate-run detection.
#
#   fingerprint = sha256(relpath + content hash of every declared input)
#
# or, when the workflow declares no inputs, the git tree id of a clean HEAD.
# A dirty tree without declared inputs has no fingerprint, so it can never
# be mistaken for a duplicate.
# ---------------------------------------------------------------------

# ciflow keeps its history and work dirs here; they never make a tree dirty
STATE_DIR = ".ciflow"

DEFAULT_EXCLUDES = [
    ".git/**",
    ".ciflow/**",
    "**/__pycache__/**",
    "**/*.pyc",
    "**/.DS_Store",
]


def _sha256_str(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _relpath(p: Path, root: Path) -> str:
    return str(p.resolve().relative_to(root.resolve())).replace("\\", "/")


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file():
            yield p


def _matches_any_glob(rel: str, globs: List[str]) -> bool:
    rel_path = Path(rel)
    return any(rel_path.match(g) for g in globs)


def _hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def _resolve_globs(repo_root: Path, patterns: List[str]) -> List[Path]:
    """
    Expand input patterns into concrete paths.
    Supports:
      - file path: "pyproject.toml"
      - dir path:  "src/"
      - glob:      "backend/**", "tests/**/*.py"
    """
    out: List[Path] = []
    for pat in patterns:
        pat = pat.strip()
        if not pat:
            continue
        p = repo_root / pat
        if p.exists():
            out.append(p)
            continue
        out.extend(sorted(repo_root.glob(pat)))

    # De-dupe while preserving order
    seen = set()
    uniq: List[Path] = []
    for p in out:
        rp = str(p.resolve())
        if rp not in seen:
            seen.add(rp)
            uniq.append(p)
    return uniq


def hash_inputs(
    repo_root: str | Path,
    inputs: List[str],
    *,
    excludes: Optional[List[str]] = None,
) -> Tuple[str, Dict]:
    """
    Hash the declared input set deterministically.
    Returns (digest, manifest) where the manifest lists every hashed file.
    """
    root = Path(repo_root).resolve()
    exclude_globs = list(DEFAULT_EXCLUDES) + list(excludes or [])

    file_fps: List[Tuple[str, str]] = []
    for p in _resolve_globs(root, inputs):
        files = [p] if p.is_file() else list(_iter_files_under(p)) if p.is_dir() else []
        for f in files:
            rel = _relpath(f, root)
            if _matches_any_glob(rel, exclude_globs):
                continue
            file_fps.append((rel, _hash_file_contents(f)))

    file_fps.sort(key=lambda t: t[0])  # stable ordering by relpath
    payload = {"v": 1, "files": file_fps}
    return _sha256_str(_json_dumps_stable(payload)), payload


def content_fingerprint(repo_root: str | Path = ".", inputs: Optional[List[str]] = None) -> Optional[str]:
    if inputs:
        digest, _manifest = hash_inputs(repo_root, inputs)
        return digest

    try:
        if is_dirty(cwd=repo_root, exclude=[STATE_DIR]):
            return None
        return tree_sha(cwd=repo_root)
    except (subprocess.CalledProcessError, FileNotFoundError):
        # not a git checkout (or no git): no fingerprint
        return None
