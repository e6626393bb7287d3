"""
Git integration for the central store.

Everything goes through the ``git`` executable with ``subprocess.run``;
the store is a plain git repository that may or may not have an
``origin`` remote. Errors carry git's stderr so the user can act on them.
"""

import logging
import subprocess
from pathlib import Path
from typing import Optional

from .errors import VcsError
from .protocol import VcsResult, VcsState

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 120  # seconds; push/pull may hit the network

STORE_GITIGNORE = """\
# OS files
.DS_Store
Thumbs.db

# Editor files
.vscode/
.idea/
*.swp
*.swo
*~

# Temporary files
*.tmp
*.bak
"""


def _run(args: list[str], cwd: Path, check: bool = True) -> subprocess.CompletedProcess:
    """Run a git command in ``cwd``. Raises VcsError on failure when ``check``."""
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT,
        )
    except FileNotFoundError as e:
        raise VcsError("git executable not found; install git to sync thoughts") from e
    except subprocess.TimeoutExpired as e:
        raise VcsError(f"git {' '.join(args)} timed out after {GIT_TIMEOUT}s in {cwd}") from e
    if check and result.returncode != 0:
        stderr = result.stderr.strip() or result.stdout.strip()
        raise VcsError(f"git {' '.join(args)} failed in {cwd}: {stderr}")
    return result


class GitRepo:
    """A git working tree rooted at ``path``."""

    def __init__(self, path: Path):
        self.path = Path(path)

    @staticmethod
    def is_repo(path: Path) -> bool:
        """True if ``path`` is the top of a git working tree."""
        return (Path(path) / ".git").exists()

    @classmethod
    def init(cls, path: Path) -> "GitRepo":
        Path(path).mkdir(parents=True, exist_ok=True)
        _run(["init"], cwd=path)
        return cls(path)

    def add_all(self) -> None:
        _run(["add", "-A"], cwd=self.path)

    def status_lines(self) -> list[str]:
        result = _run(["status", "--porcelain"], cwd=self.path)
        return [line for line in result.stdout.splitlines() if line.strip()]

    def has_changes(self) -> bool:
        return bool(self.status_lines())

    def commit(self, message: str) -> None:
        _run(["commit", "-m", message], cwd=self.path)
        logger.info("Committed %s: %s", self.path, message)

    def last_commit(self) -> Optional[str]:
        result = _run(["log", "-1", "--format=%h %s (%cr)"], cwd=self.path, check=False)
        if result.returncode != 0:
            return None  # no commits yet
        return result.stdout.strip() or None

    def remote_url(self, name: str = "origin") -> Optional[str]:
        result = _run(["remote", "get-url", name], cwd=self.path, check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def pull_rebase(self) -> None:
        result = _run(["pull", "--rebase"], cwd=self.path, check=False)
        if result.returncode != 0:
            stderr = result.stderr
            if "CONFLICT" in stderr or "Automatic merge failed" in stderr or "Patch failed" in stderr:
                raise VcsError(
                    f"Merge conflict detected. Please resolve conflicts manually in {self.path}"
                )
            raise VcsError(f"git pull --rebase failed: {stderr.strip()}")

    def upstream(self) -> Optional[str]:
        """Tracking branch of HEAD, or None before the first push."""
        result = _run(["rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{u}"],
                      cwd=self.path, check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def push(self, set_upstream: bool = False) -> None:
        if set_upstream:
            _run(["push", "-u", "origin", "HEAD"], cwd=self.path)
        else:
            _run(["push"], cwd=self.path)
        logger.info("Pushed %s", self.path)

    def hooks_dir(self) -> Optional[Path]:
        return find_hooks_dir(self.path)


def find_hooks_dir(working_dir: Path) -> Optional[Path]:
    """Hooks directory of the repository containing ``working_dir``, if any."""
    try:
        result = _run(["rev-parse", "--git-common-dir"], cwd=working_dir, check=False)
    except VcsError:
        return None
    if result.returncode != 0:
        return None
    common = Path(result.stdout.strip())
    if not common.is_absolute():
        common = Path(working_dir) / common
    return common / "hooks"


class GitVcs:
    """VcsProtocol implementation backed by the git executable."""

    def is_repo(self, path: Path) -> bool:
        return GitRepo.is_repo(path)

    def ensure_repository(self, path: Path) -> bool:
        """
        Make ``path`` a git repository with a starter .gitignore and commit.

        Returns True if a repository was created.
        """
        if GitRepo.is_repo(path):
            return False
        repo = GitRepo.init(path)
        gitignore = Path(path) / ".gitignore"
        if not gitignore.exists():
            gitignore.write_text(STORE_GITIGNORE, encoding="utf-8")
        repo.add_all()
        repo.commit("Initial thoughts repository setup")
        return True

    def commit_and_push(self, path: Path, message: str) -> VcsResult:
        """Stage everything, commit if anything changed, then pull and push."""
        if not GitRepo.is_repo(path):
            raise VcsError(f"{path} is not a git repository; run 'thoughts init' to set it up")
        repo = GitRepo(path)
        result = VcsResult(message=message)
        repo.add_all()
        if repo.has_changes():
            repo.commit(message)
            result.committed = True
        result.remote = repo.remote_url()
        if result.remote:
            if repo.upstream():
                repo.pull_rebase()
                result.pulled = True
                repo.push()
            else:
                # First push from this clone
                repo.push(set_upstream=True)
            result.pushed = True
        return result

    def describe(self, path: Path) -> VcsState:
        if not GitRepo.is_repo(path):
            return VcsState(is_repo=False)
        repo = GitRepo(path)
        return VcsState(
            is_repo=True,
            last_commit=repo.last_commit(),
            remote=repo.remote_url(),
            changes=repo.status_lines(),
        )

    def hooks_dir(self, working_dir: Path) -> Optional[Path]:
        return find_hooks_dir(working_dir)
