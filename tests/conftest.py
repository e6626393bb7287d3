"""
Shared pytest fixtures for thoughts tests.

Provides an in-memory config store and a fake version control
collaborator so lifecycle tests touch only temporary directories.
"""

import copy
import shutil
from pathlib import Path
from typing import Optional

import pytest

from thoughts.api import Thoughts
from thoughts.config import Config
from thoughts.protocol import VcsResult, VcsState


class MemoryConfigStore:
    """ConfigStoreProtocol backed by a Config held in memory."""

    def __init__(self, config: Config):
        self._config = copy.deepcopy(config)
        self.saves = 0

    def load(self) -> Config:
        return copy.deepcopy(self._config)

    def save(self, config: Config) -> None:
        self._config = copy.deepcopy(config)
        self.saves += 1

    @property
    def config(self) -> Config:
        return self._config


class FakeVcs:
    """Records calls instead of running git."""

    def __init__(self, hooks_dir: Optional[Path] = None):
        self.repos: set[Path] = set()
        self.commits: list[tuple[Path, str]] = []
        self._hooks_dir = hooks_dir

    def is_repo(self, path: Path) -> bool:
        return Path(path) in self.repos

    def ensure_repository(self, path: Path) -> bool:
        if Path(path) in self.repos:
            return False
        self.repos.add(Path(path))
        return True

    def commit_and_push(self, path: Path, message: str) -> VcsResult:
        self.commits.append((Path(path), message))
        return VcsResult(committed=True, message=message)

    def describe(self, path: Path) -> VcsState:
        return VcsState(is_repo=Path(path) in self.repos, last_commit="abc1234 test")

    def hooks_dir(self, working_dir: Path) -> Optional[Path]:
        return self._hooks_dir


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


@pytest.fixture(autouse=True)
def git_identity(tmp_path_factory, monkeypatch):
    """Give git a committer identity and isolate it from the user's config."""
    gitconfig = tmp_path_factory.mktemp("gitconfig") / "config"
    gitconfig.write_text("[init]\n\tdefaultBranch = main\n")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(gitconfig))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for var in ("GIT_AUTHOR_NAME", "GIT_COMMITTER_NAME"):
        monkeypatch.setenv(var, "Test User")
    for var in ("GIT_AUTHOR_EMAIL", "GIT_COMMITTER_EMAIL"):
        monkeypatch.setenv(var, "test@example.com")
    monkeypatch.delenv("THOUGHTS_CONFIG", raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path_factory.mktemp("xdg")))


@pytest.fixture
def store_root(tmp_path) -> Path:
    """Central store location (not created; init creates it)."""
    return (tmp_path / "store").resolve()


@pytest.fixture
def make_workdir(tmp_path):
    """Factory for working directories: make_workdir("a/proj")."""
    def _make(rel: str = "home/alice/proj") -> Path:
        path = tmp_path / rel
        path.mkdir(parents=True, exist_ok=True)
        return path.resolve()
    return _make


@pytest.fixture
def workdir(make_workdir) -> Path:
    return make_workdir()


@pytest.fixture
def config_store(tmp_path, store_root) -> MemoryConfigStore:
    config = Config(
        path=tmp_path / "config" / "config.json",
        thoughts_repo=str(store_root),
        user="alice",
    )
    return MemoryConfigStore(config)


@pytest.fixture
def fake_vcs() -> FakeVcs:
    return FakeVcs()


@pytest.fixture
def th(config_store, fake_vcs) -> Thoughts:
    """Thoughts manager wired to the in-memory config and fake VCS."""
    return Thoughts(config_store, fake_vcs, install_hooks=False, ops_log=False)


def write(path: Path, text: str = "note") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path
