"""Shared process-management utilities for the bridge."""

from __future__ import annotations

import subprocess


def popen_is_alive(proc: subprocess.Popen) -> bool:
    """Check if a :class:`subprocess.Popen` process is still running."""
    return proc.poll() is None


def kill_popen(proc: subprocess.Popen, reap_timeout_s: float = 5.0) -> bool:
    """SIGKILL *proc* and reap it, tolerating a process that already exited.

    Closes the stdout pipe so the file descriptor is released even when the
    process refuses to die.  Returns ``True`` once the process has been reaped.
    """
    if popen_is_alive(proc):
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    try:
        proc.wait(timeout=reap_timeout_s)
        reaped = True
    except subprocess.TimeoutExpired:
        reaped = False
    if proc.stdout is not None:
        try:
            proc.stdout.close()
        except OSError:
            pass
    return reaped
