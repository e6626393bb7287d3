"""
Configuration management for the thoughts store.

The configuration is a single JSON file per user. It records where the
central store lives, how it is laid out, who the user is, which working
directories are mapped to which store subtree, and named profiles that
point a working directory at an alternate store.

Loading never fails on missing fields (defaults apply) and unknown fields
are carried through a save unchanged.
"""

import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .errors import (
    ConfigCorrupt,
    ConfigUnreadable,
    ProfileExists,
    ProfileInUse,
    ProfileNotFound,
)

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.json"
CONFIG_DIRNAME = "thoughts"

DEFAULT_THOUGHTS_REPO = "~/thoughts"
DEFAULT_REPOS_DIR = "repos"
DEFAULT_GLOBAL_DIR = "global"

# Names that sit next to the user directory in the store
RESERVED_USERS = frozenset({"global", "shared"})

_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9_-]")

# Keys owned by this module; anything else in the file is preserved as-is
_KNOWN_KEYS = ("thoughtsRepo", "reposDir", "globalDir", "user", "repoMappings", "profiles")


def default_config_path() -> Path:
    """
    Resolve the config file location.

    Priority: THOUGHTS_CONFIG > $XDG_CONFIG_HOME/thoughts > ~/.config/thoughts
    """
    override = os.environ.get("THOUGHTS_CONFIG")
    if override:
        return Path(override).expanduser().absolute()
    xdg = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg) if xdg else Path.home() / ".config"
    return base / CONFIG_DIRNAME / CONFIG_FILENAME


def default_user() -> str:
    return os.environ.get("USER") or os.environ.get("USERNAME") or "user"


def expand_path(path: str | Path) -> Path:
    """Expand ``~`` and make relative paths relative to the home directory."""
    p = Path(path).expanduser()
    if not p.is_absolute():
        p = Path.home() / p
    return p


def canonical_path(path: str | Path) -> Path:
    """Absolute, symlink-resolved form used as repo mapping key."""
    return Path(path).expanduser().resolve()


def sanitize_directory_name(name: str) -> str:
    """Replace anything that is not alphanumeric, ``_`` or ``-`` with ``_``."""
    return _UNSAFE_NAME_RE.sub("_", name)


def sanitize_profile_name(name: str) -> str:
    return _UNSAFE_NAME_RE.sub("_", name)


def validate_user(user: str) -> None:
    """Validate a user name is safe to use as a store directory name."""
    if not user or not user.strip():
        raise ValueError("User name must not be empty")
    if "/" in user or "\\" in user or os.sep in user:
        raise ValueError(f"User name must not contain path separators: {user!r}")
    if user in (".", ".."):
        raise ValueError(f"User name is not a valid directory name: {user!r}")
    if user.lower() in RESERVED_USERS:
        raise ValueError(
            f"User name {user!r} is reserved for "
            f"{'cross-project' if user.lower() == 'global' else 'team'} thoughts"
        )


def validate_subdir(value: str, what: str) -> None:
    """reposDir/globalDir must be relative paths inside the store."""
    if not value:
        raise ValueError(f"{what} must not be empty")
    p = Path(value)
    if p.is_absolute() or ".." in p.parts:
        raise ValueError(f"{what} must be a relative path inside the store: {value!r}")
    if not p.parts:
        raise ValueError(f"{what} must name a subdirectory, not the store root: {value!r}")


def validate_store_layout(repos_dir: str, global_dir: str) -> None:
    """reposDir and globalDir must be separate subtrees of the store."""
    validate_subdir(repos_dir, "reposDir")
    validate_subdir(global_dir, "globalDir")
    r, g = Path(repos_dir).parts, Path(global_dir).parts
    common = min(len(r), len(g))
    if r[:common] == g[:common]:
        raise ValueError(
            f"reposDir {repos_dir!r} and globalDir {global_dir!r} must not overlap"
        )


@dataclass
class ProfileConfig:
    """Store-location overrides for a named profile. ``None`` inherits the global value."""
    thoughts_repo: Optional[str] = None
    repos_dir: Optional[str] = None
    global_dir: Optional[str] = None

    def to_dict(self) -> dict[str, str]:
        d = {}
        if self.thoughts_repo:
            d["thoughtsRepo"] = self.thoughts_repo
        if self.repos_dir:
            d["reposDir"] = self.repos_dir
        if self.global_dir:
            d["globalDir"] = self.global_dir
        return d


@dataclass
class RepoMapping:
    """Binding of a working directory to a store slug, optionally via a profile."""
    repo: str
    profile: Optional[str] = None

    def to_json(self) -> Any:
        # Plain string when there is no profile, matching older files
        if self.profile is None:
            return self.repo
        return {"repo": self.repo, "profile": self.profile}


@dataclass
class EffectiveConfig:
    """Store settings after profile resolution."""
    thoughts_repo: Path
    repos_dir: str
    global_dir: str
    user: str
    profile: Optional[str] = None

    @property
    def repos_root(self) -> Path:
        return self.thoughts_repo / self.repos_dir

    @property
    def global_root(self) -> Path:
        return self.thoughts_repo / self.global_dir

    def repo_root(self, slug: str) -> Path:
        return self.repos_root / slug

    def store_key(self) -> tuple[str, str]:
        """Identifies the namespace slugs live in."""
        return (os.path.normpath(str(self.thoughts_repo)), os.path.normpath(self.repos_dir))

    def to_dict(self) -> dict[str, Any]:
        return {
            "thoughtsRepo": str(self.thoughts_repo),
            "reposDir": self.repos_dir,
            "globalDir": self.global_dir,
            "user": self.user,
            "profile": self.profile,
        }


@dataclass
class Config:
    """Complete thoughts configuration."""
    path: Path
    thoughts_repo: str = DEFAULT_THOUGHTS_REPO
    repos_dir: str = DEFAULT_REPOS_DIR
    global_dir: str = DEFAULT_GLOBAL_DIR
    user: str = field(default_factory=default_user)
    repo_mappings: dict[str, RepoMapping] = field(default_factory=dict)
    profiles: dict[str, ProfileConfig] = field(default_factory=dict)
    # Unknown top-level keys, written back untouched
    extra: dict[str, Any] = field(default_factory=dict)

    def resolve_profile(self, name: Optional[str] = None) -> EffectiveConfig:
        """
        Merge a profile's overrides onto the global settings, field by field.

        Raises:
            ProfileNotFound: If ``name`` is given but not configured
        """
        repo, repos_dir, global_dir = self.thoughts_repo, self.repos_dir, self.global_dir
        if name is not None:
            profile = self.profiles.get(name)
            if profile is None:
                raise ProfileNotFound(name)
            repo = profile.thoughts_repo or repo
            repos_dir = profile.repos_dir or repos_dir
            global_dir = profile.global_dir or global_dir
        return EffectiveConfig(
            thoughts_repo=expand_path(repo),
            repos_dir=repos_dir,
            global_dir=global_dir,
            user=self.user,
            profile=name,
        )

    def mapping_for(self, working_dir: str | Path) -> Optional[RepoMapping]:
        return self.repo_mappings.get(str(canonical_path(working_dir)))

    def effective_for(self, working_dir: str | Path) -> EffectiveConfig:
        """Effective settings for a working directory, honoring its mapped profile."""
        mapping = self.mapping_for(working_dir)
        profile = mapping.profile if mapping else None
        if profile is not None and profile not in self.profiles:
            logger.warning("Mapping for %s names missing profile %r; using defaults",
                           working_dir, profile)
            profile = None
        return self.resolve_profile(profile)

    def find_orphaned_mappings(self) -> list[str]:
        """Mapped paths that no longer exist on disk."""
        return [p for p in self.repo_mappings if not Path(p).is_dir()]

    def remove_mappings(self, paths: list[str]) -> None:
        for p in paths:
            self.repo_mappings.pop(p, None)

    def create_profile(
        self,
        name: str,
        thoughts_repo: Optional[str] = None,
        repos_dir: Optional[str] = None,
        global_dir: Optional[str] = None,
    ) -> str:
        """
        Add a profile. Returns the sanitized name actually used.

        Raises:
            ProfileExists: If the sanitized name is already configured
            ValueError: If the name is empty or a directory is invalid
        """
        sanitized = sanitize_profile_name(name.strip())
        if not sanitized:
            raise ValueError("Profile name must not be empty")
        if sanitized in self.profiles:
            raise ProfileExists(sanitized)
        validate_store_layout(repos_dir or self.repos_dir, global_dir or self.global_dir)
        self.profiles[sanitized] = ProfileConfig(
            thoughts_repo=thoughts_repo,
            repos_dir=repos_dir,
            global_dir=global_dir,
        )
        return sanitized

    def delete_profile(self, name: str, force: bool = False) -> None:
        """
        Remove a profile.

        Raises:
            ProfileNotFound: If it does not exist
            ProfileInUse: If a repo mapping references it and ``force`` is False
        """
        if name not in self.profiles:
            raise ProfileNotFound(name)
        if not force:
            for repo, mapping in self.repo_mappings.items():
                if mapping.profile == name:
                    raise ProfileInUse(name, repo)
        del self.profiles[name]

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        data.update({
            "thoughtsRepo": self.thoughts_repo,
            "reposDir": self.repos_dir,
            "globalDir": self.global_dir,
            "user": self.user,
            "repoMappings": {k: v.to_json() for k, v in sorted(self.repo_mappings.items())},
            "profiles": {k: v.to_dict() for k, v in sorted(self.profiles.items())},
        })
        return data


def _expect_str(data: dict, key: str, default: str, path: Path) -> str:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ConfigCorrupt(path, f"'{key}' must be a string, got {type(value).__name__}")
    return value


def _parse_mapping(value: Any, key: str, path: Path) -> RepoMapping:
    if isinstance(value, str):
        return RepoMapping(repo=value)
    if isinstance(value, dict) and isinstance(value.get("repo"), str):
        profile = value.get("profile")
        if profile is not None and not isinstance(profile, str):
            raise ConfigCorrupt(path, f"repoMappings[{key!r}].profile must be a string")
        return RepoMapping(repo=value["repo"], profile=profile)
    raise ConfigCorrupt(path, f"repoMappings[{key!r}] must be a string or {{repo, profile}}")


def _parse_profile(value: Any, name: str, path: Path) -> ProfileConfig:
    if not isinstance(value, dict):
        raise ConfigCorrupt(path, f"profiles[{name!r}] must be an object")
    fields = {}
    for src, dst in (("thoughtsRepo", "thoughts_repo"), ("reposDir", "repos_dir"),
                     ("globalDir", "global_dir")):
        v = value.get(src)
        if v is not None and not isinstance(v, str):
            raise ConfigCorrupt(path, f"profiles[{name!r}].{src} must be a string")
        fields[dst] = v or None
    return ProfileConfig(**fields)


def parse_config(data: Any, path: Path) -> Config:
    """Build a Config from decoded JSON, applying defaults for missing fields."""
    if not isinstance(data, dict):
        raise ConfigCorrupt(path, "top level must be a JSON object")
    # Older files nest everything under "thoughts"
    if "thoughts" in data and isinstance(data["thoughts"], dict) and "thoughtsRepo" not in data:
        outer = {k: v for k, v in data.items() if k != "thoughts"}
        data = {**outer, **data["thoughts"]}

    mappings_raw = data.get("repoMappings") or {}
    profiles_raw = data.get("profiles") or {}
    if not isinstance(mappings_raw, dict):
        raise ConfigCorrupt(path, "'repoMappings' must be an object")
    if not isinstance(profiles_raw, dict):
        raise ConfigCorrupt(path, "'profiles' must be an object")

    return Config(
        path=path,
        thoughts_repo=_expect_str(data, "thoughtsRepo", DEFAULT_THOUGHTS_REPO, path),
        repos_dir=_expect_str(data, "reposDir", DEFAULT_REPOS_DIR, path),
        global_dir=_expect_str(data, "globalDir", DEFAULT_GLOBAL_DIR, path),
        user=_expect_str(data, "user", default_user(), path),
        repo_mappings={k: _parse_mapping(v, k, path) for k, v in mappings_raw.items()},
        profiles={k: _parse_profile(v, k, path) for k, v in profiles_raw.items()},
        extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS},
    )


class ConfigStore:
    """
    Loads and saves the JSON config file.

    Saves are atomic: the document is written to a temporary file in the
    same directory and renamed over the target, so a crash never leaves a
    half-written config behind.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else default_config_path()

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> Config:
        """
        Load configuration, or defaults if the file does not exist.

        Raises:
            ConfigUnreadable: If the path exists but cannot be opened
            ConfigCorrupt: If the content is not a valid config document
        """
        try:
            if not self.path.exists():
                logger.debug("No config at %s, using defaults", self.path)
                return Config(path=self.path)
            text = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigUnreadable(self.path, str(e)) from e
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigCorrupt(self.path, str(e)) from e
        return parse_config(data, self.path)

    def save(self, config: Config) -> None:
        """Write the configuration atomically, creating the directory if needed."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(config.to_dict(), indent=2) + "\n"
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".config.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass
            raise
        logger.debug("Saved config to %s", self.path)
