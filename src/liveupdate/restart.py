"""Relaunch the application once an update is installed."""

from __future__ import annotations

import logging
import os
import subprocess
import sys
from collections.abc import Sequence

from liveupdate.logging import get_logger

log = get_logger("liveupdate.restart")


def relaunch_command(configured: Sequence[str] | None = None) -> list[str]:
    """Return the command line that starts the host application again.

    ``configured`` wins when set; otherwise the running process is started
    again with its own arguments.
    """
    if configured:
        return list(configured)
    if getattr(sys, "frozen", False):
        return [sys.executable, *sys.argv[1:]]
    return [sys.executable, *sys.argv]


def standalone_relaunch_command(configured: Sequence[str] | None = None) -> list[str]:
    """Return what the ``liveupdate`` command starts after ``apply`` succeeds.

    The updater's own arguments are never replayed. Without a configured host
    command the deferred replacements are drained with ``pending``.
    """
    if configured:
        return list(configured)
    if getattr(sys, "frozen", False):
        return [sys.executable, "pending"]
    return [sys.executable, "-m", "liveupdate", "pending"]


def relaunch_process(command: Sequence[str] | None = None) -> None:
    """Start ``command`` (default: this application again) and exit this process."""
    command = list(command) if command else relaunch_command()
    log.info("restart_relaunching", command=command)
    try:
        subprocess.Popen(command, close_fds=True)
    except OSError as exc:
        raise RuntimeError(f"Failed to relaunch application: {exc}") from exc
    logging.shutdown()
    os._exit(0)
