"""
Protocol definitions for the collaborators of the lifecycle operations.

Defines interface contracts at two seams:
- ConfigStoreProtocol: where configuration is loaded from and saved to
  (JSON file locally, in-memory in tests)
- VcsProtocol: how the central store is versioned (git locally)
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from .config import Config


@dataclass
class VcsResult:
    """Outcome of committing and pushing the store."""
    committed: bool = False
    pulled: bool = False
    pushed: bool = False
    remote: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "committed": self.committed,
            "pulled": self.pulled,
            "pushed": self.pushed,
            "remote": self.remote,
            "message": self.message,
        }


@dataclass
class VcsState:
    """Read-only summary of the store repository for status output."""
    is_repo: bool
    last_commit: Optional[str] = None
    remote: Optional[str] = None
    changes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "is_repo": self.is_repo,
            "last_commit": self.last_commit,
            "remote": self.remote,
            "changes": list(self.changes),
        }


@runtime_checkable
class ConfigStoreProtocol(Protocol):
    """
    Persistence for the thoughts configuration.

    Implemented by:
    - ConfigStore (JSON file, atomic save)
    - in-memory stores in tests
    """

    def load(self) -> Config: ...

    def save(self, config: Config) -> None: ...


@runtime_checkable
class VcsProtocol(Protocol):
    """
    Version control for the central store. Treated as opaque by the engine:
    failures are surfaced as VcsError and never retried.

    Implemented by:
    - GitVcs (git executable)
    """

    def is_repo(self, path: Path) -> bool: ...

    def ensure_repository(self, path: Path) -> bool: ...

    def commit_and_push(self, path: Path, message: str) -> VcsResult: ...

    def describe(self, path: Path) -> VcsState: ...

    def hooks_dir(self, working_dir: Path) -> Optional[Path]: ...
