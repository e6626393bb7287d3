"""
Logging configuration for thoughts.

Quiet by default: only warnings (degraded links, skipped store entries)
reach stderr.
"""

import os
import sys
import warnings


def configure_quiet_mode(quiet: bool = True):
    """
    Configure logging for normal CLI use.

    Args:
        quiet: If True, suppress Python warnings and keep the thoughts
            logger at WARNING. If False, leave logging untouched.
    """
    if quiet:
        # Suppress Python warnings (including deprecation warnings)
        warnings.filterwarnings("ignore")

        import logging
        thoughts_logger = logging.getLogger("thoughts")
        if thoughts_logger.level == logging.NOTSET:
            thoughts_logger.setLevel(logging.WARNING)
        if not any(getattr(h, "_thoughts_stderr", False) for h in thoughts_logger.handlers):
            handler = logging.StreamHandler(sys.stderr)
            handler.setLevel(logging.WARNING)
            handler.setFormatter(logging.Formatter("Warning: %(message)s"))
            handler._thoughts_stderr = True
            thoughts_logger.addHandler(handler)
            thoughts_logger.propagate = False


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    import logging

    # Re-enable warnings
    warnings.filterwarnings("default")

    # The quiet-mode handler would duplicate everything the root handler prints
    thoughts_logger = logging.getLogger("thoughts")
    for h in list(thoughts_logger.handlers):
        if getattr(h, "_thoughts_stderr", False):
            thoughts_logger.removeHandler(h)
    thoughts_logger.propagate = True

    # Configure root logger for debug output
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Add stderr handler if not already present
    if not any(isinstance(h, logging.StreamHandler) and h.stream == sys.stderr
               for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        root_logger.addHandler(handler)

    thoughts_logger.setLevel(logging.DEBUG)


def is_verbose_env() -> bool:
    return os.environ.get("THOUGHTS_VERBOSE") == "1"


def configure_ops_log(config_dir):
    """Configure a persistent operations log next to the config file.

    Writes to {config_dir}/thoughts-ops.log using a rotating file handler
    (1MB max, 3 backups). Records every link, mapping and commit change.
    Returns the handler so callers can remove it again.
    """
    import logging
    from logging.handlers import RotatingFileHandler
    from pathlib import Path

    log_dir = Path(config_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / "thoughts-ops.log"
    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=1_000_000,
        backupCount=3,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    thoughts_logger = logging.getLogger("thoughts")
    thoughts_logger.addHandler(handler)
    # Ensure thoughts logger allows INFO through even in quiet mode
    if thoughts_logger.level == logging.NOTSET or thoughts_logger.level > logging.INFO:
        thoughts_logger.setLevel(logging.INFO)

    return handler
