"""
thoughts: a shared, git-synced notes store projected into working repositories.

Components:
    Thoughts        init / uninit / status / sync for a working directory
    ConfigStore     JSON config file (store location, user, mappings, profiles)
    GitVcs          git-backed version control for the store

Usage:
    from thoughts import Thoughts
    Thoughts().init("~/src/proj")
"""

from thoughts.api import Thoughts
from thoughts.config import Config, ConfigStore, EffectiveConfig
from thoughts.errors import ThoughtsError
from thoughts.git_ops import GitVcs

__all__ = [
    "Thoughts",
    "Config",
    "ConfigStore",
    "EffectiveConfig",
    "GitVcs",
    "ThoughtsError",
]
