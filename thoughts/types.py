"""
Data types for the thoughts overlay.

Plans, file identities and the reports produced by reconciling a working
directory against a plan. All of these are plain values; nothing here
touches the filesystem except ``FileIdentity.of``.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional


# Directory under a working directory that holds the overlay
THOUGHTS_DIRNAME = "thoughts"
SEARCHABLE_DIRNAME = "searchable"

# Overlay categories, in the order they are materialized
CATEGORIES = ("user", "shared", "global")

# The four top-level entries uninit is allowed to remove
OVERLAY_ENTRIES = CATEGORIES + (SEARCHABLE_DIRNAME,)


class LinkKind(str, Enum):
    SYMLINK = "symlink"
    HARDLINK = "hardlink"


class EntryState(str, Enum):
    """How an overlay symlink compares to its plan entry."""
    OK = "ok"
    MISSING = "missing"
    WRONG_TARGET = "wrong_target"
    NOT_A_LINK = "not_a_link"


@dataclass(frozen=True)
class LinkSpec:
    """One desired link: ``dest`` in the working tree pointing at ``source`` in the store."""
    kind: LinkKind
    category: str
    source: Path
    dest: Path


@dataclass
class OverlayPlan:
    """
    Everything that should exist under ``<working_dir>/thoughts``.

    Computed fresh on every run; never persisted.
    """
    working_dir: Path
    slug: str
    entries: list[LinkSpec] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def thoughts_dir(self) -> Path:
        return self.working_dir / THOUGHTS_DIRNAME

    @property
    def searchable_dir(self) -> Path:
        return self.thoughts_dir / SEARCHABLE_DIRNAME

    @property
    def symlinks(self) -> list[LinkSpec]:
        return [e for e in self.entries if e.kind is LinkKind.SYMLINK]

    @property
    def hardlinks(self) -> list[LinkSpec]:
        return [e for e in self.entries if e.kind is LinkKind.HARDLINK]

    def mirror_sources(self) -> dict[str, Path]:
        """Searchable-relative destination path → source file."""
        root = self.searchable_dir
        return {e.dest.relative_to(root).as_posix(): e.source for e in self.hardlinks}


@dataclass(frozen=True)
class FileIdentity:
    """Enough of a file's stat to tell whether a mirror entry is still current."""
    dev: int
    ino: int
    size: int
    mtime_ns: int

    @classmethod
    def of(cls, path: Path | str) -> "FileIdentity":
        st = os.lstat(path)
        return cls(st.st_dev, st.st_ino, st.st_size, st.st_mtime_ns)

    def is_current_for(self, source: "FileIdentity") -> bool:
        """
        True if a mirror entry with this identity reflects ``source``.

        Same device: must be the same inode (a hard link). Different device:
        the entry is a copy, current while size and mtime agree.
        """
        if self.dev == source.dev:
            return self.ino == source.ino
        return self.size == source.size and self.mtime_ns == source.mtime_ns


@dataclass
class MirrorDiff:
    """Set difference between desired and actual searchable entries (relative paths)."""
    create: list[str] = field(default_factory=list)
    remove: list[str] = field(default_factory=list)
    replace: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        return not (self.create or self.remove or self.replace)


@dataclass
class MirrorReport:
    """Outcome of rebuilding the searchable mirror."""
    created: int = 0
    removed: int = 0
    replaced: int = 0
    unchanged: int = 0
    copied: int = 0
    errors: list[tuple[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "removed": self.removed,
            "replaced": self.replaced,
            "unchanged": self.unchanged,
            "copied": self.copied,
            "errors": [{"path": p, "error": e} for p, e in self.errors],
        }


@dataclass
class LinkResult:
    """What happened to one top-level symlink."""
    category: str
    dest: Path
    source: Path
    action: str  # created | unchanged | replaced

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "dest": str(self.dest),
            "source": str(self.source),
            "action": self.action,
        }


@dataclass
class SyncReport:
    """Outcome of applying an overlay plan."""
    links: list[LinkResult] = field(default_factory=list)
    mirror: MirrorReport = field(default_factory=MirrorReport)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "links": [link.to_dict() for link in self.links],
            "mirror": self.mirror.to_dict(),
            "warnings": list(self.warnings),
        }


@dataclass
class EntryStatus:
    """Status of one overlay entry for ``thoughts status``."""
    category: str
    dest: Path
    expected: Optional[Path]
    state: EntryState
    actual: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "dest": str(self.dest),
            "expected": str(self.expected) if self.expected else None,
            "state": self.state.value,
            "actual": self.actual,
        }
