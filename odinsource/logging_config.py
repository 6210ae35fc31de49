"""
Logging configuration for odinsource.

Library code logs through module loggers under "odinsource". The CLI turns
on debug output with --verbose, and every open store gets a persistent
operations log.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
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

    logging.getLogger("odinsource").setLevel(logging.DEBUG)


def configure_ops_log(store_path) -> logging.Handler:
    """Configure a persistent operations log for a store.

    Writes to {store_path}/odinsource-ops.log using a rotating file handler
    (1MB max, 3 backups). Always active regardless of --verbose.
    Returns the handler so it can be removed on close().
    """
    log_path = Path(store_path) / "odinsource-ops.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)
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

    odin_logger = logging.getLogger("odinsource")
    odin_logger.addHandler(handler)
    # Let INFO through to the ops log even when the root logger is quieter
    if odin_logger.level == logging.NOTSET or odin_logger.level > logging.INFO:
        odin_logger.setLevel(logging.INFO)

    return handler


def remove_ops_log(handler: logging.Handler) -> None:
    """Detach and close a handler returned by configure_ops_log()."""
    logging.getLogger("odinsource").removeHandler(handler)
    handler.close()
