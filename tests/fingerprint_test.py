import os
import shutil
import subprocess

import pytest

from ciflow.fingerprint import content_fingerprint, hash_inputs


def _tree(root):
    (root / "src").mkdir()
    (root / "src" / "a.py").write_text("print('a')\n", encoding="utf-8")
    (root / "src" / "__pycache__").mkdir()
    (root / "src" / "__pycache__" / "a.cpython-312.pyc").write_bytes(b"junk")
    (root / "pyproject.toml").write_text("[project]\n", encoding="utf-8")


def test_inputs_hash_is_stable(tmp_path):
    _tree(tmp_path)
    first, manifest = hash_inputs(tmp_path, ["src/", "pyproject.toml"])
    second, _ = hash_inputs(tmp_path, ["pyproject.toml", "src/"])

    assert first == second
    assert [rel for rel, _ in manifest["files"]] == ["pyproject.toml", "src/a.py"]


def test_inputs_hash_follows_content(tmp_path):
    _tree(tmp_path)
    before = content_fingerprint(tmp_path, ["src/**/*.py"])
    (tmp_path / "src" / "a.py").write_text("print('b')\n", encoding="utf-8")
    after = content_fingerprint(tmp_path, ["src/**/*.py"])
    assert before != after


def test_excluded_files_do_not_count(tmp_path):
    _tree(tmp_path)
    before, _ = hash_inputs(tmp_path, ["src/"])
    (tmp_path / "src" / "__pycache__" / "a.cpython-312.pyc").write_bytes(b"other junk")
    after, _ = hash_inputs(tmp_path, ["src/"])
    assert before == after


def test_no_inputs_outside_git_has_no_fingerprint(tmp_path):
    assert content_fingerprint(tmp_path) is None


def _git(root, *args):
    subprocess.run(
        ["git", *args],
        cwd=root,
        check=True,
        capture_output=True,
        env={
            **os.environ,
            "GIT_AUTHOR_NAME": "ci",
            "GIT_AUTHOR_EMAIL": "ci@example.com",
            "GIT_COMMITTER_NAME": "ci",
            "GIT_COMMITTER_EMAIL": "ci@example.com",
        },
    )


@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
def test_clean_git_tree_is_the_fingerprint_and_dirty_tree_has_none(tmp_path):
    _tree(tmp_path)
    (tmp_path / ".gitignore").write_text("__pycache__/\n", encoding="utf-8")
    _git(tmp_path, "init", "-q")
    _git(tmp_path, "add", "-A")
    _git(tmp_path, "commit", "-q", "-m", "one")

    fp = content_fingerprint(tmp_path)
    assert fp is not None and len(fp) == 40

    # same content, new commit: same tree
    _git(tmp_path, "commit", "-q", "--allow-empty", "-m", "two")
    assert content_fingerprint(tmp_path) == fp

    (tmp_path / "src" / "a.py").write_text("changed\n", encoding="utf-8")
    assert content_fingerprint(tmp_path) is None


@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
def test_ciflow_state_dir_does_not_dirty_the_tree(tmp_path):
    (tmp_path / "main.nim").write_text("echo 1\n", encoding="utf-8")
    _git(tmp_path, "init", "-q")
    _git(tmp_path, "add", "-A")
    _git(tmp_path, "-c", "commit.gpgsign=false", "commit", "-q", "-m", "one")
    fp = content_fingerprint(tmp_path)

    (tmp_path / ".ciflow" / "work").mkdir(parents=True)
    (tmp_path / ".ciflow" / "history.db").write_bytes(b"sqlite")
    assert content_fingerprint(tmp_path) == fp

    (tmp_path / "notes.txt").write_text("untracked\n", encoding="utf-8")
    assert content_fingerprint(tmp_path) is None
