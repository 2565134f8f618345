"""Shared fixtures: isolated git environment and repository factories."""

from __future__ import annotations

import os
import subprocess
from collections.abc import Callable
from pathlib import Path

import pytest


def git(repo: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=repo,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout


@pytest.fixture(autouse=True)
def isolated_git(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep user/system git config and parent repositories out of the tests."""
    global_config = tmp_path / "gitconfig"
    global_config.write_text("")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(global_config))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path.resolve()))
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@example.com")


@pytest.fixture
def root(tmp_path: Path) -> Path:
    """Directory scanned by the tests, resolved like the CLI resolves it."""
    path = tmp_path / "workspace"
    path.mkdir()
    return path.resolve()


@pytest.fixture
def fake_repo(root: Path) -> Callable[[str], Path]:
    """Create a directory with an empty .git directory (enough for discovery)."""

    def make(relative: str) -> Path:
        path = root / relative
        (path / ".git").mkdir(parents=True)
        return path

    return make


@pytest.fixture
def make_repo(root: Path) -> Callable[..., Path]:
    """Create a real repository with one commit on `branch`."""

    def make(
        relative: str,
        branch: str = "main",
        dirty: bool = False,
        extra_branches: tuple[str, ...] = (),
    ) -> Path:
        path = root / relative
        path.mkdir(parents=True, exist_ok=True)
        git(path, "init", "-q")
        git(path, "symbolic-ref", "HEAD", f"refs/heads/{branch}")
        (path / "README.md").write_text(f"# {relative}\n")
        git(path, "add", "README.md")
        git(path, "commit", "-q", "-m", "Initial")
        for name in extra_branches:
            git(path, "branch", name)
        if dirty:
            (path / "README.md").write_text("changed\n")
        return path

    return make


@pytest.fixture
def latin1_repo(make_repo) -> Path:
    """Clean repository plus an untracked file whose name is not valid UTF-8."""
    path = make_repo("abc")
    git(path, "config", "core.quotepath", "false")
    (path / os.fsdecode(b"caf\xe9.txt")).write_text("x\n")
    return path
