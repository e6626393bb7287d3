"""
Overlay planning: what should exist under ``<working_dir>/thoughts``.

The plan is computed from the effective config and the current contents
of the store. It is the single source of truth for reconciliation and is
never written to disk.
"""

import logging
import os
from pathlib import Path

from .config import EffectiveConfig
from .types import (
    SEARCHABLE_DIRNAME,
    THOUGHTS_DIRNAME,
    LinkKind,
    LinkSpec,
    OverlayPlan,
)

logger = logging.getLogger(__name__)

# File names never mirrored into searchable/
SKIPPED_NAMES = frozenset({"CLAUDE.md"})


def _skip(name: str) -> bool:
    return name.startswith(".") or name in SKIPPED_NAMES


def link_targets(slug: str, effective: EffectiveConfig) -> dict[str, Path]:
    """Store directory behind each overlay category."""
    repo_root = effective.repo_root(slug)
    return {
        "user": repo_root / effective.user,
        "shared": repo_root / "shared",
        "global": effective.global_root,
    }


def enumerate_files(root: Path, warnings: list[str]) -> list[str]:
    """
    Regular files under ``root`` as sorted POSIX paths relative to it.

    A missing root is empty. Symlinks inside the store are not followed;
    each one is skipped and recorded in ``warnings``. Hidden entries are
    ignored.
    """
    if not root.is_dir():
        return []
    found: list[str] = []

    def onerror(err: OSError) -> None:
        msg = f"cannot read {err.filename}: {err.strerror}"
        warnings.append(msg)
        logger.warning("Skipping unreadable store directory: %s", msg)

    for dirpath, dirnames, filenames in os.walk(root, onerror=onerror, followlinks=False):
        base = Path(dirpath)
        kept_dirs = []
        for d in sorted(dirnames):
            if _skip(d):
                continue
            if (base / d).is_symlink():
                msg = f"not following symlink in store: {base / d}"
                warnings.append(msg)
                logger.warning(msg)
                continue
            kept_dirs.append(d)
        dirnames[:] = kept_dirs
        for name in sorted(filenames):
            if _skip(name):
                continue
            path = base / name
            if path.is_symlink():
                msg = f"not following symlink in store: {path}"
                warnings.append(msg)
                logger.warning(msg)
                continue
            if not path.is_file():
                continue  # sockets, fifos
            found.append(path.relative_to(root).as_posix())
    found.sort()
    return found


def plan(slug: str, effective: EffectiveConfig, working_dir: Path) -> OverlayPlan:
    """
    Compute the overlay for ``working_dir``.

    Produces the ``user``/``shared``/``global`` symlinks followed by one
    hard link per store file, mirrored under ``searchable/<category>/``.
    """
    working_dir = Path(working_dir)
    thoughts_dir = working_dir / THOUGHTS_DIRNAME
    searchable = thoughts_dir / SEARCHABLE_DIRNAME
    result = OverlayPlan(working_dir=working_dir, slug=slug)

    targets = link_targets(slug, effective)
    for category, target in targets.items():
        result.entries.append(LinkSpec(
            kind=LinkKind.SYMLINK,
            category=category,
            source=target,
            dest=thoughts_dir / category,
        ))

    for category, target in targets.items():
        for rel in enumerate_files(target, result.warnings):
            result.entries.append(LinkSpec(
                kind=LinkKind.HARDLINK,
                category=category,
                source=target / rel,
                dest=searchable / category / rel,
            ))

    logger.debug("Planned %d symlinks and %d mirror entries for %s",
                 len(result.symlinks), len(result.hardlinks), working_dir)
    return result
