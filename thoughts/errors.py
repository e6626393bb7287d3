"""
Error types and error logging for thoughts.

Every error message says what happened, which path is involved, and what
to do next. The CLI shows the message; full tracebacks of unexpected
failures go to a log file.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path


class ThoughtsError(Exception):
    """Base class for all thoughts errors."""


class ConfigCorrupt(ThoughtsError):
    """Config file exists but cannot be parsed."""

    def __init__(self, path: Path, reason: str):
        super().__init__(
            f"Config file {path} is corrupt: {reason}. "
            f"Fix it by hand (thoughts config --edit) or move it away to start over."
        )
        self.path = path
        self.reason = reason


class ConfigUnreadable(ThoughtsError):
    """Config path exists but cannot be opened."""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"Config file {path} cannot be read: {reason}")
        self.path = path
        self.reason = reason


class ProfileNotFound(ThoughtsError):
    """Named profile is not configured."""

    def __init__(self, name: str):
        super().__init__(
            f"Profile \"{name}\" does not exist. "
            f"Use 'thoughts profile list' to see profiles or 'thoughts profile create {name}'."
        )
        self.name = name


class ProfileExists(ThoughtsError):
    """Profile name is already taken."""

    def __init__(self, name: str):
        super().__init__(f"Profile \"{name}\" already exists")
        self.name = name


class ProfileInUse(ThoughtsError):
    """Profile is still referenced by a repository mapping."""

    def __init__(self, name: str, repo: str):
        super().__init__(
            f"Profile \"{name}\" is in use by repository: {repo}. "
            f"Use --force to delete anyway."
        )
        self.name = name
        self.repo = repo


class AmbiguousRepo(ThoughtsError):
    """No unique slug could be derived for a working directory."""

    def __init__(self, working_dir: Path, candidate: str, attempts: int):
        super().__init__(
            f"Could not find a unique thoughts directory name for {working_dir} "
            f"(tried '{candidate}' with {attempts} suffixes). "
            f"Pass an explicit name with --directory."
        )
        self.working_dir = working_dir
        self.candidate = candidate
        self.attempts = attempts


class AlreadyInitialized(ThoughtsError):
    """Working directory is already bound to a different slug or profile."""

    def __init__(self, working_dir: Path, slug: str, profile: str | None = None):
        bound = f"'{slug}'" + (f" (profile {profile})" if profile else "")
        super().__init__(
            f"{working_dir} is already initialized as {bound}. "
            f"Use --force to rebind it."
        )
        self.working_dir = working_dir
        self.slug = slug
        self.profile = profile


class NotInitialized(ThoughtsError):
    """Working directory has no thoughts overlay or mapping."""

    def __init__(self, working_dir: Path, detail: str = "no thoughts overlay found"):
        super().__init__(
            f"Thoughts not initialized for {working_dir}: {detail}. "
            f"Run 'thoughts init' first."
        )
        self.working_dir = working_dir


class OverlayConflict(ThoughtsError):
    """Overlay destination exists and is not what the plan expects."""

    def __init__(self, path: Path, reason: str):
        super().__init__(
            f"Overlay conflict at {path}: {reason}. "
            f"Resolve it manually or re-run with --force."
        )
        self.path = path
        self.reason = reason


class CrossDeviceLink(ThoughtsError):
    """Hard link impossible between source and destination; degrades to copy."""

    def __init__(self, source: Path, dest: Path, errno_: int | None = None):
        super().__init__(
            f"Cannot hard-link {source} to {dest} (errno {errno_}); copying instead"
        )
        self.source = source
        self.dest = dest
        self.errno = errno_


class StoreUnavailable(ThoughtsError):
    """Store root is missing or unreadable and cannot be created."""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"Thoughts store {path} is unavailable: {reason}")
        self.path = path
        self.reason = reason


class VcsError(ThoughtsError):
    """The version control collaborator failed."""


def _error_log_path() -> Path:
    """Resolve error log path next to the config file."""
    from .config import default_config_path
    return default_config_path().parent / "thoughts-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # best effort, never crash while reporting a crash
    return log_path
