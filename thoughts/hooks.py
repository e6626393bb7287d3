"""
Git hooks for working repositories that carry a thoughts overlay.

Two hooks are installed into the repository's common git dir:

- pre-commit refuses commits that stage anything under ``thoughts/``
- post-commit runs ``thoughts sync`` in the background

Hooks that were not written by us are renamed to ``<hook>.old`` and
called from ours, so existing tooling keeps working.
"""

import logging
import os
import stat
from pathlib import Path
from typing import Optional

from .git_ops import find_hooks_dir

logger = logging.getLogger(__name__)

# Marker text identifying hooks written by thoughts
HOOK_MARKER = "thoughts overlay hook"

# Bump this when hook contents change; older installed hooks are rewritten
HOOK_VERSION = 1

PRE_COMMIT = f"""\
#!/bin/sh
# {HOOK_MARKER}: prevent committing the thoughts directory
# Version: {HOOK_VERSION}

if git diff --cached --name-only | grep -q "^thoughts/"; then
    echo "Cannot commit thoughts/ to the code repository."
    echo "Notes belong in the thoughts store; run 'thoughts sync' instead."
    git reset -q HEAD -- thoughts/
    exit 1
fi

# Chain to the hook this one replaced
SCRIPT_PATH="$0"
if [ -x "$SCRIPT_PATH.old" ]; then
    exec "$SCRIPT_PATH.old" "$@"
fi
"""

POST_COMMIT = f"""\
#!/bin/sh
# {HOOK_MARKER}: sync thoughts after each commit
# Version: {HOOK_VERSION}

# Worktrees have a .git file; only sync from the main checkout
if [ ! -f .git ]; then
    COMMIT_MSG=$(git log -1 --pretty=%s)
    thoughts sync --message "Auto-sync with commit: $COMMIT_MSG" >/dev/null 2>&1 &
fi

# Chain to the hook this one replaced
SCRIPT_PATH="$0"
if [ -x "$SCRIPT_PATH.old" ]; then
    exec "$SCRIPT_PATH.old" "$@"
fi
"""

HOOKS = {
    "pre-commit": PRE_COMMIT,
    "post-commit": POST_COMMIT,
}


def installed_version(content: str) -> Optional[int]:
    """Version recorded in a hook we wrote, or None."""
    for line in content.splitlines():
        if line.startswith("# Version:"):
            try:
                return int(line.split(":", 1)[1].strip())
            except ValueError:
                return None
    return None


def hook_needs_update(hook_path: Path) -> bool:
    """
    True unless ``hook_path`` already holds the current version of our hook.

    A foreign hook needs an update too: it is moved aside and chained.
    """
    try:
        content = hook_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return True
    if HOOK_MARKER not in content:
        return True
    version = installed_version(content)
    return version is None or version < HOOK_VERSION


def install_hook(hooks_dir: Path, name: str, content: str) -> bool:
    """
    Write one hook. Returns True if the file was written.
    """
    hook_path = hooks_dir / name
    if not hook_needs_update(hook_path):
        return False

    if hook_path.exists():
        existing = hook_path.read_text(encoding="utf-8", errors="replace")
        if HOOK_MARKER not in existing:
            backup = hook_path.with_name(name + ".old")
            os.replace(hook_path, backup)
            logger.info("Moved existing %s hook to %s", name, backup)

    hook_path.write_text(content, encoding="utf-8")
    mode = hook_path.stat().st_mode
    hook_path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    logger.info("Installed %s hook in %s", name, hooks_dir)
    return True


def setup_git_hooks(repo_path: Path, hooks_dir: Optional[Path] = None) -> list[str]:
    """
    Install the thoughts hooks into the repository at ``repo_path``.

    Returns the names of hooks that were written (empty when up to date
    or when ``repo_path`` is not inside a git repository).
    """
    if hooks_dir is None:
        hooks_dir = find_hooks_dir(repo_path)
    if hooks_dir is None:
        logger.debug("%s is not in a git repository, skipping hooks", repo_path)
        return []
    hooks_dir.mkdir(parents=True, exist_ok=True)

    updated = []
    for name, content in HOOKS.items():
        if install_hook(hooks_dir, name, content):
            updated.append(name)
    return updated
