"""
Lifecycle operations for the thoughts overlay.

- init(): resolve slug → plan → create store layout → apply overlay
- uninit(): remove the overlay entries, never store content
- status(): read-only comparison of disk against the plan
- sync(): reconcile, then commit and push the store
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from . import planner
from .config import (
    ConfigStore,
    EffectiveConfig,
    canonical_path,
    sanitize_directory_name,
    validate_store_layout,
    validate_user,
)
from .errors import (
    AlreadyInitialized,
    NotInitialized,
    StoreUnavailable,
    VcsError,
)
from .hooks import setup_git_hooks
from .identity import RepoIdentityResolver
from .mirror import MirrorSynchronizer, remove_tree
from .protocol import ConfigStoreProtocol, VcsProtocol, VcsResult, VcsState
from .types import (
    CATEGORIES,
    OVERLAY_ENTRIES,
    SEARCHABLE_DIRNAME,
    THOUGHTS_DIRNAME,
    EntryState,
    EntryStatus,
    MirrorDiff,
    SyncReport,
)

logger = logging.getLogger(__name__)

SYNC_MESSAGE_FORMAT = "Sync thoughts - %Y-%m-%d %H:%M:%S"


def default_sync_message(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime(SYNC_MESSAGE_FORMAT)


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------

@dataclass
class InitResult:
    working_dir: Path
    slug: str
    effective: EffectiveConfig
    report: SyncReport
    repository_created: bool = False
    hooks: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def profile(self) -> Optional[str]:
        return self.effective.profile

    def to_dict(self) -> dict:
        return {
            "working_dir": str(self.working_dir),
            "slug": self.slug,
            "config": self.effective.to_dict(),
            "repository_created": self.repository_created,
            "hooks": list(self.hooks),
            "overlay": self.report.to_dict(),
            "warnings": self.warnings + self.report.warnings,
        }


@dataclass
class UninitResult:
    working_dir: Path
    slug: Optional[str]
    removed: list[str] = field(default_factory=list)
    # Entries that were real files/directories and so were left in place
    left: list[str] = field(default_factory=list)
    mapping_removed: bool = False

    def to_dict(self) -> dict:
        return {
            "working_dir": str(self.working_dir),
            "slug": self.slug,
            "removed": list(self.removed),
            "left": list(self.left),
            "mapping_removed": self.mapping_removed,
        }


@dataclass
class StatusReport:
    """Read-only view of one working directory and its store."""
    working_dir: Path
    slug: Optional[str]
    effective: EffectiveConfig
    mapped_repos: int
    entries: list[EntryStatus] = field(default_factory=list)
    searchable_present: bool = False
    mirror: MirrorDiff = field(default_factory=MirrorDiff)
    store_exists: bool = False
    vcs: VcsState = field(default_factory=lambda: VcsState(is_repo=False))
    warnings: list[str] = field(default_factory=list)

    @property
    def mapped(self) -> bool:
        return self.slug is not None

    @property
    def healthy(self) -> bool:
        """Every symlink correct and the mirror converged."""
        return (self.mapped and self.searchable_present and self.mirror.in_sync
                and all(e.state is EntryState.OK for e in self.entries))

    def to_dict(self) -> dict:
        return {
            "working_dir": str(self.working_dir),
            "slug": self.slug,
            "config": self.effective.to_dict(),
            "mapped_repos": self.mapped_repos,
            "entries": [e.to_dict() for e in self.entries],
            "searchable_present": self.searchable_present,
            "mirror": {
                "create": len(self.mirror.create),
                "remove": len(self.mirror.remove),
                "replace": len(self.mirror.replace),
                "unchanged": len(self.mirror.unchanged),
            },
            "store_exists": self.store_exists,
            "vcs": self.vcs.to_dict(),
            "warnings": list(self.warnings),
        }


@dataclass
class SyncResult:
    working_dir: Path
    slug: str
    report: SyncReport
    vcs: VcsResult

    def to_dict(self) -> dict:
        return {
            "working_dir": str(self.working_dir),
            "slug": self.slug,
            "overlay": self.report.to_dict(),
            "vcs": self.vcs.to_dict(),
        }


# -----------------------------------------------------------------------------
# Operations
# -----------------------------------------------------------------------------

class Thoughts:
    """
    Thoughts overlay manager for working directories.

    Example:
        th = Thoughts()
        th.init("~/src/proj")
        th.sync("~/src/proj", message="notes from review")
    """

    def __init__(
        self,
        config_store: Optional[ConfigStoreProtocol] = None,
        vcs: Optional[VcsProtocol] = None,
        *,
        install_hooks: bool = True,
        ops_log: bool = True,
    ) -> None:
        """
        Args:
            config_store: Where config is loaded and saved (default: JSON file)
            vcs: Store version control (default: git executable)
            install_hooks: Install git hooks into working repositories on init
            ops_log: Record mutations in thoughts-ops.log next to the config
        """
        self._store: ConfigStoreProtocol = config_store if config_store is not None else ConfigStore()
        if vcs is None:
            from .git_ops import GitVcs
            vcs = GitVcs()
        self._vcs: VcsProtocol = vcs
        self._install_hooks = install_hooks
        self._sync = MirrorSynchronizer()

        self._ops_log_handler = None
        config_path = getattr(self._store, "path", None)
        if ops_log and config_path is not None:
            from .logging_config import configure_ops_log
            try:
                self._ops_log_handler = configure_ops_log(Path(config_path).parent)
            except OSError as e:
                logger.debug("Operations log unavailable: %s", e)

    def close(self) -> None:
        if self._ops_log_handler is not None:
            logging.getLogger("thoughts").removeHandler(self._ops_log_handler)
            self._ops_log_handler.close()
            self._ops_log_handler = None

    def __enter__(self) -> "Thoughts":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def config_store(self) -> ConfigStoreProtocol:
        return self._store

    # -- helpers --

    @staticmethod
    def _validate(effective: EffectiveConfig) -> None:
        validate_user(effective.user)
        validate_store_layout(effective.repos_dir, effective.global_dir)

    @staticmethod
    def _ensure_store(effective: EffectiveConfig) -> None:
        root = effective.thoughts_repo
        if os.path.lexists(root) and not root.is_dir():
            raise StoreUnavailable(root, "path exists and is not a directory")
        try:
            root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailable(root, f"cannot create directory ({e.strerror})") from e
        if not os.access(root, os.R_OK | os.W_OK | os.X_OK):
            raise StoreUnavailable(root, "directory is not readable and writable")

    @staticmethod
    def _create_layout(slug: str, effective: EffectiveConfig) -> None:
        """Store directories behind the overlay. Existing ones are left as they are."""
        repo_root = effective.repo_root(slug)
        dirs = [
            repo_root / effective.user,
            repo_root / "shared",
            effective.global_root / effective.user,
            effective.global_root / "shared",
        ]
        try:
            for d in dirs:
                d.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailable(effective.thoughts_repo,
                                   f"cannot create {e.filename} ({e.strerror})") from e

    # -- init --

    def init(
        self,
        working_dir: str | Path,
        profile: Optional[str] = None,
        slug: Optional[str] = None,
        force: bool = False,
    ) -> InitResult:
        """
        Bind ``working_dir`` to the store and materialize its overlay.

        Running it again with the same arguments reconciles the overlay
        with the store and changes nothing else.

        Args:
            working_dir: Directory to initialize
            profile: Named profile to use (default: the existing mapping's, else none)
            slug: Store directory name (default: the directory's basename)
            force: Rebind an existing mapping and replace conflicting overlay entries

        Raises:
            AlreadyInitialized: If bound to a different slug/profile and not ``force``
            ProfileNotFound, AmbiguousRepo, OverlayConflict, StoreUnavailable
            ValueError: If the configured user or store subpaths are invalid
        """
        wd = canonical_path(working_dir)
        if not wd.is_dir():
            raise ValueError(f"Working directory does not exist: {wd}")

        config = self._store.load()
        existing = config.mapping_for(wd)
        existing_profile = None
        if existing is not None and existing.profile in config.profiles:
            existing_profile = existing.profile
        if profile is None:
            profile = existing_profile

        effective = config.resolve_profile(profile)
        self._validate(effective)

        if existing is not None and not force:
            requested = sanitize_directory_name(slug) if slug else existing.repo
            if requested != existing.repo or profile != existing_profile:
                raise AlreadyInitialized(wd, existing.repo, existing_profile)

        resolver = RepoIdentityResolver(config)
        resolved = resolver.resolve(wd, slug, force=force, profile=profile, effective=effective)

        overlay = planner.plan(resolved, effective, wd)
        self._sync.preflight(overlay, force)

        self._store.save(config)
        logger.info("Mapped %s to %s in %s", wd, resolved, effective.repos_root)

        self._ensure_store(effective)
        warnings: list[str] = []
        repository_created = False
        try:
            repository_created = self._vcs.ensure_repository(effective.thoughts_repo)
        except VcsError as e:
            warnings.append(f"store is not under version control: {e}")
            logger.warning("Store %s is not under version control: %s", effective.thoughts_repo, e)
        self._create_layout(resolved, effective)

        report = self._sync.apply(overlay, force)

        hooks: list[str] = []
        if self._install_hooks:
            hooks_dir = self._vcs.hooks_dir(wd)
            if hooks_dir is not None:
                try:
                    hooks = setup_git_hooks(wd, hooks_dir)
                except OSError as e:
                    warnings.append(f"could not install git hooks: {e}")
                    logger.warning("Could not install git hooks in %s: %s", hooks_dir, e)

        return InitResult(
            working_dir=wd,
            slug=resolved,
            effective=effective,
            report=report,
            repository_created=repository_created,
            hooks=hooks,
            warnings=warnings,
        )

    # -- uninit --

    def uninit(self, working_dir: str | Path, force: bool = False) -> UninitResult:
        """
        Remove the overlay from ``working_dir`` and forget its mapping.

        Only the ``user``/``shared``/``global`` symlinks and the
        ``searchable`` mirror are removed; a real directory sitting where
        a symlink belongs is left alone. Store content is never touched.

        Raises:
            NotInitialized: If there is no overlay (or no mapping) and not ``force``
        """
        wd = canonical_path(working_dir)
        config = self._store.load()
        key = str(wd)
        mapping = config.repo_mappings.get(key)
        thoughts_dir = wd / THOUGHTS_DIRNAME
        present = [name for name in OVERLAY_ENTRIES if os.path.lexists(thoughts_dir / name)]

        if not force:
            if not present:
                raise NotInitialized(wd)
            if mapping is None:
                raise NotInitialized(
                    wd, "directory is not in the thoughts configuration (use --force to remove the overlay anyway)"
                )

        result = UninitResult(working_dir=wd, slug=mapping.repo if mapping else None)

        for name in CATEGORIES:
            path = thoughts_dir / name
            if path.is_symlink():
                path.unlink()
                result.removed.append(name)
                logger.info("Removed symlink %s", path)
            elif os.path.lexists(path):
                result.left.append(name)
                logger.warning("Left %s in place: not a symlink", path)

        searchable = thoughts_dir / SEARCHABLE_DIRNAME
        if searchable.is_symlink() or searchable.is_file():
            searchable.unlink()
            result.removed.append(SEARCHABLE_DIRNAME)
        elif searchable.is_dir():
            remove_tree(searchable)
            result.removed.append(SEARCHABLE_DIRNAME)
            logger.info("Removed searchable mirror %s", searchable)

        if thoughts_dir.is_dir() and not thoughts_dir.is_symlink():
            try:
                thoughts_dir.rmdir()
            except OSError:
                logger.debug("Keeping non-empty %s", thoughts_dir)

        if mapping is not None:
            del config.repo_mappings[key]
            self._store.save(config)
            result.mapping_removed = True
            logger.info("Removed mapping for %s", wd)
        return result

    # -- status --

    def status(self, working_dir: str | Path) -> StatusReport:
        """Describe the overlay and store for ``working_dir`` without changing anything."""
        wd = canonical_path(working_dir)
        config = self._store.load()
        mapping = config.mapping_for(wd)
        effective = config.effective_for(wd)
        report = StatusReport(
            working_dir=wd,
            slug=mapping.repo if mapping else None,
            effective=effective,
            mapped_repos=len(config.repo_mappings),
        )

        if mapping is not None:
            overlay = planner.plan(mapping.repo, effective, wd)
            report.warnings.extend(overlay.warnings)
            for spec in overlay.symlinks:
                state = self._sync.inspect_symlink(spec)
                actual = os.readlink(spec.dest) if spec.dest.is_symlink() else None
                report.entries.append(EntryStatus(
                    category=spec.category,
                    dest=spec.dest,
                    expected=spec.source,
                    state=state,
                    actual=actual,
                ))
            searchable = overlay.searchable_dir
            report.searchable_present = searchable.is_dir() and not searchable.is_symlink()
            report.mirror = self._sync.inspect_mirror(overlay)

        report.store_exists = effective.thoughts_repo.is_dir()
        if report.store_exists:
            try:
                report.vcs = self._vcs.describe(effective.thoughts_repo)
            except VcsError as e:
                report.warnings.append(str(e))
        return report

    # -- sync --

    def sync(self, working_dir: str | Path, message: Optional[str] = None) -> SyncResult:
        """
        Reconcile the overlay, then commit and push the store.

        Raises:
            NotInitialized: If the directory is unmapped or has no overlay
            StoreUnavailable: If the store root is missing
            OverlayConflict: If an overlay entry was replaced by something else
            VcsError: If committing or pushing fails
        """
        wd = canonical_path(working_dir)
        config = self._store.load()
        mapping = config.mapping_for(wd)
        if mapping is None:
            raise NotInitialized(wd, "directory is not mapped to a thoughts store")
        thoughts_dir = wd / THOUGHTS_DIRNAME
        if not thoughts_dir.is_dir():
            raise NotInitialized(wd)

        effective = config.effective_for(wd)
        if not effective.thoughts_repo.is_dir():
            raise StoreUnavailable(effective.thoughts_repo, "directory does not exist")

        overlay = planner.plan(mapping.repo, effective, wd)
        report = self._sync.apply(overlay, force=False)

        message = message or default_sync_message()
        vcs_result = self._vcs.commit_and_push(effective.thoughts_repo, message)
        logger.info("Synced %s (committed=%s, pushed=%s)",
                    effective.thoughts_repo, vcs_result.committed, vcs_result.pushed)
        return SyncResult(working_dir=wd, slug=mapping.repo, report=report, vcs=vcs_result)

    # -- config maintenance --

    def prune_mappings(self) -> list[str]:
        """Drop mappings whose working directory no longer exists. Returns the removed paths."""
        config = self._store.load()
        orphaned = config.find_orphaned_mappings()
        if orphaned:
            config.remove_mappings(orphaned)
            self._store.save(config)
            for p in orphaned:
                logger.info("Pruned orphaned mapping %s", p)
        return orphaned

    def create_profile(
        self,
        name: str,
        thoughts_repo: Optional[str] = None,
        repos_dir: Optional[str] = None,
        global_dir: Optional[str] = None,
    ) -> str:
        config = self._store.load()
        created = config.create_profile(name, thoughts_repo, repos_dir, global_dir)
        self._store.save(config)
        logger.info("Created profile %s", created)
        return created

    def delete_profile(self, name: str, force: bool = False) -> None:
        config = self._store.load()
        config.delete_profile(name, force=force)
        self._store.save(config)
        logger.info("Deleted profile %s", name)
