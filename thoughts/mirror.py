"""
Mirror synchronization: make the working directory match an overlay plan.

Two passes, in order:

1. The ``user``/``shared``/``global`` symlinks. Missing ones are created,
   correct ones left alone, and anything else is a conflict unless forced.
2. The ``searchable/`` mirror. Desired and actual entries are compared as
   sets of ``(relative path, FileIdentity)``; unwanted entries are removed,
   missing ones hard-linked, and entries whose inode no longer matches the
   source (file replaced by an editor, delete+recreate) are re-linked.

Each individual filesystem step is safe to interrupt and redo; there is no
attempt to make a whole run atomic. Per-file problems while rebuilding the
mirror are collected in the report instead of aborting the run.
"""

import contextlib
import errno
import logging
import os
import shutil
import sys
import tempfile
from pathlib import Path
from typing import Optional

from .errors import CrossDeviceLink, OverlayConflict
from .types import (
    EntryState,
    FileIdentity,
    LinkResult,
    LinkSpec,
    MirrorDiff,
    MirrorReport,
    OverlayPlan,
    SyncReport,
)

logger = logging.getLogger(__name__)

# errnos meaning "this filesystem/situation cannot hard-link", handled by copying
_NO_HARDLINK_ERRNOS = frozenset(
    e for e in (
        errno.EXDEV,
        errno.EPERM,
        errno.EMLINK,
        getattr(errno, "ENOTSUP", None),
        getattr(errno, "EOPNOTSUPP", None),
    ) if e is not None
)

_TMP_PREFIX = ".thoughts-tmp-"


def diff_mirror(
    desired: dict[str, FileIdentity],
    actual: dict[str, Optional[FileIdentity]],
) -> MirrorDiff:
    """
    Compare desired and actual mirror contents.

    Args:
        desired: relative path → identity of the source file
        actual: relative path → identity of the entry under searchable/
            (``None`` for entries that are not regular files)

    Returns:
        A MirrorDiff with sorted path lists
    """
    diff = MirrorDiff()
    for rel in sorted(actual.keys() - desired.keys()):
        diff.remove.append(rel)
    for rel in sorted(desired):
        have = actual.get(rel)
        if rel not in actual:
            diff.create.append(rel)
        elif have is None or not have.is_current_for(desired[rel]):
            diff.replace.append(rel)
        else:
            diff.unchanged.append(rel)
    return diff


def scan_mirror(root: Path) -> dict[str, Optional[FileIdentity]]:
    """Entries currently under ``root``, without following symlinks."""
    found: dict[str, Optional[FileIdentity]] = {}
    if not root.is_dir() or root.is_symlink():
        return found
    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        base = Path(dirpath)
        # Symlinked directories are listed in dirnames but not descended into
        for name in list(dirnames) + filenames:
            path = base / name
            is_link = path.is_symlink()
            if name in dirnames and not is_link:
                continue
            rel = path.relative_to(root).as_posix()
            try:
                found[rel] = None if is_link else FileIdentity.of(path)
            except FileNotFoundError:
                continue  # removed while scanning
            if found[rel] is not None and not path.is_file():
                found[rel] = None
    return found


def _points_to(link: Path, target: Path) -> bool:
    try:
        current = os.readlink(link)
    except OSError:
        return False
    if os.path.normpath(current) == os.path.normpath(str(target)):
        return True
    return os.path.realpath(link) == os.path.realpath(target)


def _unique_backup(path: Path) -> Path:
    candidate = path.with_name(path.name + ".bak")
    n = 1
    while os.path.lexists(candidate):
        candidate = path.with_name(f"{path.name}.bak.{n}")
        n += 1
    return candidate


def _remove_entry(path: Path) -> None:
    """Remove a mirror entry (file or symlink) or a whole mirror subtree."""
    if path.is_dir() and not path.is_symlink():
        remove_tree(path)
    else:
        path.unlink()


def remove_tree(path: Path) -> None:
    """
    rmtree that restores write permission on directories it cannot clear.

    Only directory modes are touched: files in the mirror share their inode
    with the store, so changing their mode would change the note itself.
    """
    def onerror(func, p, exc_info):
        exc = exc_info[1] if isinstance(exc_info, tuple) else exc_info
        if not isinstance(exc, PermissionError):
            raise exc
        parent = os.path.dirname(p)
        os.chmod(parent, 0o755)
        if os.path.isdir(p) and not os.path.islink(p):
            os.chmod(p, 0o755)
        func(p)

    if sys.version_info >= (3, 12):
        shutil.rmtree(path, onexc=onerror)
    else:
        shutil.rmtree(path, onerror=onerror)


def _prune_empty_dirs(root: Path) -> None:
    if not root.is_dir():
        return
    for dirpath, dirnames, filenames in os.walk(root, topdown=False):
        if Path(dirpath) == root:
            continue
        with contextlib.suppress(OSError):
            os.rmdir(dirpath)  # fails harmlessly when not empty


class MirrorSynchronizer:
    """Reconciles a working directory's ``thoughts/`` with an OverlayPlan."""

    # -- Symlinks --

    def inspect_symlink(self, spec: LinkSpec) -> EntryState:
        dest = spec.dest
        if not os.path.lexists(dest):
            return EntryState.MISSING
        if not dest.is_symlink():
            return EntryState.NOT_A_LINK
        if _points_to(dest, spec.source):
            return EntryState.OK
        return EntryState.WRONG_TARGET

    def _check_container(self, plan: OverlayPlan, force: bool) -> None:
        thoughts_dir = plan.thoughts_dir
        if os.path.lexists(thoughts_dir) and not (thoughts_dir.is_dir() and not thoughts_dir.is_symlink()):
            if not force:
                raise OverlayConflict(thoughts_dir, "exists and is not a directory")
        searchable = plan.searchable_dir
        if os.path.lexists(searchable) and (searchable.is_symlink() or not searchable.is_dir()):
            if not force:
                raise OverlayConflict(searchable, "exists and is not a plain directory")

    def preflight(self, plan: OverlayPlan, force: bool = False) -> None:
        """
        Fail before touching anything if the plan cannot be applied.

        Raises:
            OverlayConflict: For the first destination that exists and is
                not what the plan expects, unless ``force``
        """
        self._check_container(plan, force)
        if force:
            return
        for spec in plan.symlinks:
            state = self.inspect_symlink(spec)
            if state is EntryState.WRONG_TARGET:
                raise OverlayConflict(
                    spec.dest, f"symlink points to {os.readlink(spec.dest)}, expected {spec.source}"
                )
            if state is EntryState.NOT_A_LINK:
                raise OverlayConflict(spec.dest, "exists and is not a symlink")

    def _move_aside(self, path: Path) -> None:
        """Clear ``path`` for the overlay. Symlinks are dropped, anything else is kept as a backup."""
        if path.is_symlink():
            path.unlink()
            logger.info("Removed symlink %s", path)
            return
        backup = _unique_backup(path)
        os.rename(path, backup)
        logger.warning("Moved %s to %s to make room for the overlay", path, backup)

    def _ensure_container(self, plan: OverlayPlan, force: bool) -> None:
        thoughts_dir = plan.thoughts_dir
        self._check_container(plan, force)
        if os.path.lexists(thoughts_dir) and (thoughts_dir.is_symlink() or not thoughts_dir.is_dir()):
            self._move_aside(thoughts_dir)
        thoughts_dir.mkdir(parents=True, exist_ok=True)

    def _apply_symlink(self, spec: LinkSpec, force: bool) -> LinkResult:
        dest = spec.dest
        state = self.inspect_symlink(spec)
        action = "unchanged"
        if state is EntryState.OK:
            return LinkResult(spec.category, dest, spec.source, action)
        if state is not EntryState.MISSING:
            if not force:
                reason = ("exists and is not a symlink" if state is EntryState.NOT_A_LINK
                          else f"symlink points to {os.readlink(dest)}, expected {spec.source}")
                raise OverlayConflict(dest, reason)
            self._move_aside(dest)
            action = "replaced"
        else:
            action = "created"
        try:
            os.symlink(spec.source, dest, target_is_directory=True)
        except FileExistsError:
            # Another process got there first; fine if it made the same link
            if self.inspect_symlink(spec) is not EntryState.OK:
                raise OverlayConflict(dest, "was created concurrently with a different target")
            action = "unchanged"
        if action != "unchanged":
            logger.info("Symlink %s -> %s (%s)", dest, spec.source, action)
        return LinkResult(spec.category, dest, spec.source, action)

    # -- Searchable mirror --

    def desired_mirror(self, plan: OverlayPlan, report: Optional[MirrorReport] = None) -> dict[str, tuple[Path, FileIdentity]]:
        desired: dict[str, tuple[Path, FileIdentity]] = {}
        for rel, source in plan.mirror_sources().items():
            try:
                desired[rel] = (source, FileIdentity.of(source))
            except OSError as e:
                # Source vanished between planning and syncing
                if report is not None:
                    report.errors.append((rel, str(e)))
                logger.debug("Source %s unavailable: %s", source, e)
        return desired

    def inspect_mirror(self, plan: OverlayPlan) -> MirrorDiff:
        """Read-only comparison of the plan against searchable/."""
        desired = self.desired_mirror(plan)
        actual = scan_mirror(plan.searchable_dir)
        return diff_mirror({k: v[1] for k, v in desired.items()}, actual)

    def _copy_entry(self, source: Path, dest: Path) -> None:
        fd, tmp = tempfile.mkstemp(dir=dest.parent, prefix=_TMP_PREFIX)
        os.close(fd)
        try:
            shutil.copy2(source, tmp)
            os.replace(tmp, dest)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp)
            raise

    def _link_via_temp(self, source: Path, dest: Path) -> None:
        """Hard-link ``source`` to a temporary name and rename it over ``dest``."""
        tmp = dest.parent / f"{_TMP_PREFIX}{os.getpid()}-{dest.name}"
        with contextlib.suppress(FileNotFoundError):
            tmp.unlink()
        os.link(source, tmp)
        try:
            os.replace(tmp, dest)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                tmp.unlink()
            raise

    def _hardlink(self, source: Path, dest: Path, expected: FileIdentity, replace: bool) -> str:
        """
        Create or refresh one mirror entry. Returns "linked" or "unchanged".

        New entries use os.link, which fails if the name exists; an entry a
        racing process already linked to the right inode counts as success,
        a wrong one is retried once before giving up.

        Raises:
            CrossDeviceLink: If the filesystem cannot hard-link these paths
            OverlayConflict: If a racing writer keeps the wrong entry in place
        """
        dest.parent.mkdir(parents=True, exist_ok=True)
        try:
            if replace:
                self._link_via_temp(source, dest)
                return "linked"
            for attempt in range(2):
                try:
                    os.link(source, dest)
                    return "linked"
                except FileExistsError:
                    try:
                        if FileIdentity.of(dest).is_current_for(expected):
                            return "unchanged"
                    except FileNotFoundError:
                        continue
                    if attempt == 0:
                        with contextlib.suppress(FileNotFoundError):
                            _remove_entry(dest)
                        continue
            raise OverlayConflict(dest, "searchable entry keeps reappearing with a different inode")
        except OSError as e:
            if e.errno in _NO_HARDLINK_ERRNOS:
                raise CrossDeviceLink(source, dest, e.errno) from e
            raise

    def apply_mirror(self, plan: OverlayPlan, report: MirrorReport) -> None:
        root = plan.searchable_dir
        root.mkdir(parents=True, exist_ok=True)
        desired = self.desired_mirror(plan, report)
        actual = scan_mirror(root)
        diff = diff_mirror({k: v[1] for k, v in desired.items()}, actual)

        for rel in diff.remove:
            try:
                _remove_entry(root / rel)
                report.removed += 1
                logger.info("Removed stale mirror entry %s", rel)
            except FileNotFoundError:
                report.removed += 1
            except OSError as e:
                report.errors.append((rel, str(e)))
                logger.warning("Could not remove mirror entry %s: %s", rel, e)
        if diff.remove:
            _prune_empty_dirs(root)

        report.unchanged += len(diff.unchanged)
        work = [(rel, False) for rel in diff.create] + [(rel, True) for rel in diff.replace]
        for rel, replace in work:
            source, identity = desired[rel]
            dest = root / rel
            try:
                outcome = self._hardlink(source, dest, identity, replace)
            except CrossDeviceLink as e:
                logger.warning("%s", e)
                try:
                    self._copy_entry(source, dest)
                except OSError as copy_err:
                    report.errors.append((rel, str(copy_err)))
                    continue
                report.copied += 1
                outcome = "linked"
            except OverlayConflict as e:
                report.errors.append((rel, str(e)))
                logger.warning("%s", e)
                continue
            except OSError as e:
                report.errors.append((rel, str(e)))
                logger.warning("Could not mirror %s: %s", rel, e)
                continue
            if outcome == "unchanged":
                report.unchanged += 1
            elif replace:
                report.replaced += 1
                logger.info("Re-linked replaced source %s", rel)
            else:
                report.created += 1

    # -- Whole plan --

    def apply(self, plan: OverlayPlan, force: bool = False) -> SyncReport:
        """
        Reconcile the working directory with ``plan``.

        Symlinks are handled before the mirror so a conflict stops the run
        before searchable/ is touched.

        Raises:
            OverlayConflict: If a destination is occupied and ``force`` is False
        """
        report = SyncReport(warnings=list(plan.warnings))
        self.preflight(plan, force)
        self._ensure_container(plan, force)
        for spec in plan.symlinks:
            report.links.append(self._apply_symlink(spec, force))

        searchable = plan.searchable_dir
        if os.path.lexists(searchable) and (searchable.is_symlink() or not searchable.is_dir()):
            self._move_aside(searchable)
        self.apply_mirror(plan, report.mirror)

        m = report.mirror
        logger.debug("Mirror: %d created, %d replaced, %d removed, %d unchanged, %d copied, %d errors",
                     m.created, m.replaced, m.removed, m.unchanged, m.copied, len(m.errors))
        return report
