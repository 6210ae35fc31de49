"""
Open documents in an external viewer.

The viewer process is started and forgotten: its output is discarded and
its exit status is never awaited. A viewer that cannot be started is
reported to the caller, not raised.
"""

import logging
import shlex
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)


def open_in_viewer(path: Path | str, command: str) -> bool:
    """
    Launch `command path` in the background.

    Args:
        path: File to open
        command: Viewer command line, e.g. "xdg-open" or "zathura --fork"

    Returns:
        True if the viewer process started, False otherwise
    """
    try:
        argv = shlex.split(command) + [str(path)]
        if len(argv) < 2:
            raise ValueError("empty viewer command")
        subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except (OSError, ValueError) as e:
        logger.warning("Failed to start viewer %r for %s: %s", command, path, e)
        return False
    logger.info("Opened %s with %s", path, argv[0])
    return True
