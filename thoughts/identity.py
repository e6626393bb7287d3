"""
Repo identity: which store subtree a working directory maps to.

A slug is stable for a given directory (re-running returns the mapped
value) and never shared by two mapped directories that use the same store.
Collisions are broken with a suffix derived from the canonical path, so
two machines that check a project out at the same path pick the same slug.
"""

import hashlib
import logging
from pathlib import Path
from typing import Optional

from .config import (
    Config,
    EffectiveConfig,
    RepoMapping,
    canonical_path,
    sanitize_directory_name,
)
from .errors import AmbiguousRepo

logger = logging.getLogger(__name__)

# Suffix lengths tried in order: 6, 8, 10, ...
MAX_SLUG_ATTEMPTS = 8
_FIRST_SUFFIX_LEN = 6

UNNAMED_REPO = "unnamed_repo"


def default_slug(working_dir: Path) -> str:
    """Sanitized basename of the directory."""
    return sanitize_directory_name(Path(working_dir).name) or UNNAMED_REPO


def path_suffix(working_dir: Path, length: int) -> str:
    digest = hashlib.sha256(str(working_dir).encode("utf-8")).hexdigest()
    return digest[:length]


class RepoIdentityResolver:
    """
    Resolves and records working directory → slug mappings on a Config.

    The resolver only mutates the in-memory Config; persisting it is the
    caller's job (one save per command).
    """

    def __init__(self, config: Config):
        self._config = config

    def _store_for(self, mapping: RepoMapping) -> tuple[str, str]:
        profile = mapping.profile
        if profile is not None and profile not in self._config.profiles:
            profile = None
        return self._config.resolve_profile(profile).store_key()

    def _taken(
        self,
        slug: str,
        working_dir: Path,
        store: tuple[str, str],
        ignore: Optional[str] = None,
    ) -> bool:
        """
        True if another directory in the same store is mapped to ``slug``.

        Mappings whose directory is missing still count: the directory may
        be on an unmounted drive and come back.
        """
        for path, mapping in self._config.repo_mappings.items():
            if path in (str(working_dir), ignore) or mapping.repo != slug:
                continue
            if self._store_for(mapping) == store:
                return True
        return False

    def _find_renamed(self, slug: str, store: tuple[str, str]) -> Optional[str]:
        """An orphaned mapping with this slug, if exactly one exists."""
        matches = [
            path for path in self._config.find_orphaned_mappings()
            if self._config.repo_mappings[path].repo == slug
            and self._store_for(self._config.repo_mappings[path]) == store
        ]
        return matches[0] if len(matches) == 1 else None

    def _disambiguate(self, candidate: str, working_dir: Path, store: tuple[str, str]) -> str:
        if not self._taken(candidate, working_dir, store):
            return candidate
        for attempt in range(MAX_SLUG_ATTEMPTS):
            length = _FIRST_SUFFIX_LEN + 2 * attempt
            slug = f"{candidate}-{path_suffix(working_dir, length)}"
            if not self._taken(slug, working_dir, store):
                logger.info("Slug %r taken in store, using %r for %s", candidate, slug, working_dir)
                return slug
        raise AmbiguousRepo(working_dir, candidate, MAX_SLUG_ATTEMPTS)

    def lookup(self, working_dir: str | Path) -> Optional[RepoMapping]:
        """Existing mapping, without resolving or recording anything."""
        return self._config.mapping_for(working_dir)

    def resolve(
        self,
        working_dir: str | Path,
        explicit_slug: Optional[str] = None,
        *,
        force: bool = False,
        profile: Optional[str] = None,
        effective: Optional[EffectiveConfig] = None,
    ) -> str:
        """
        Return the slug for ``working_dir``, recording a new mapping if needed.

        Args:
            working_dir: Directory being initialized (canonicalized here)
            explicit_slug: Requested store directory name
            force: Rebind an existing mapping instead of returning it
            profile: Profile the mapping should record
            effective: Pre-resolved settings for ``profile`` (resolved if omitted)

        Raises:
            AmbiguousRepo: If no unique slug can be found
            ProfileNotFound: If ``profile`` is not configured
        """
        wd = canonical_path(working_dir)
        key = str(wd)
        mappings = self._config.repo_mappings
        existing = mappings.get(key)

        if existing is not None and not force:
            return existing.repo

        if effective is None:
            effective = self._config.resolve_profile(profile)
        store = effective.store_key()

        if existing is not None and explicit_slug is None:
            # Forced re-init without a new name keeps the slug
            mappings[key] = RepoMapping(repo=existing.repo, profile=profile)
            return existing.repo

        if explicit_slug is not None:
            candidate = sanitize_directory_name(explicit_slug) or UNNAMED_REPO
        else:
            candidate = default_slug(wd)
            renamed_from = self._find_renamed(candidate, store)
            if renamed_from is not None and not self._taken(candidate, wd, store, ignore=renamed_from):
                logger.info("Directory %s looks like %s moved; keeping slug %r",
                            key, renamed_from, candidate)
                del mappings[renamed_from]
                mappings[key] = RepoMapping(repo=candidate, profile=profile)
                return candidate

        slug = self._disambiguate(candidate, wd, store)
        mappings[key] = RepoMapping(repo=slug, profile=profile)
        logger.info("Mapped %s to slug %r", key, slug)
        return slug
