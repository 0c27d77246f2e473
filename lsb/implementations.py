"""
Real implementations of interfaces for production use.

These classes wrap actual system resources (processes, files, the clock)
and implement the abstract interfaces.
"""

from typing import Optional, Sequence
from datetime import datetime, timezone
import logging
import os
import subprocess
import time

from .interfaces import (
    ProducerProcessInterface, ProducerLauncherInterface, FileSystemInterface,
    ClockInterface, LoggerInterface, LaunchError
)
from .process_utils import kill_popen, popen_is_alive

DEFAULT_COMMAND = ("log", "stream", "--style=json")


class SubprocessProducer(ProducerProcessInterface):
    """
    A producer running as a child process with its stdout piped to us.
    """

    def __init__(self, proc: subprocess.Popen):
        self._proc = proc

    @property
    def pid(self) -> int:
        return self._proc.pid

    def read(self, max_bytes: int) -> Optional[bytes]:
        # read1() blocks until at least one byte is ready and returns b'' on EOF.
        return self._proc.stdout.read1(max_bytes)

    def is_alive(self) -> bool:
        return popen_is_alive(self._proc)

    def kill(self) -> None:
        kill_popen(self._proc)


class SubprocessLauncher(ProducerLauncherInterface):
    """
    Launches the producer command with subprocess.Popen.
    """

    def __init__(self, command: Sequence[str] = DEFAULT_COMMAND):
        if not command:
            raise ValueError("producer command must not be empty")
        self._command = list(command)

    @property
    def command(self) -> list:
        return list(self._command)

    def launch(self) -> SubprocessProducer:
        try:
            proc = subprocess.Popen(
                self._command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
            )
        except (OSError, ValueError) as exc:
            raise LaunchError(f"failed to start {self._command[0]}: {exc}") from exc
        return SubprocessProducer(proc)


class RealFileSystem(FileSystemInterface):
    """
    Real file system implementation.
    """

    def write_file(self, path: str, content: str, append: bool = False) -> None:
        # Ensure parent directory exists
        parent = os.path.dirname(path)
        if parent and not os.path.exists(parent):
            os.makedirs(parent, exist_ok=True)

        mode = "a" if append else "w"
        with open(path, mode) as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())  # Ensure written to disk

    def ensure_dir(self, path: str) -> None:
        os.makedirs(path, exist_ok=True)

    def rename_file(self, old_path: str, new_path: str) -> None:
        os.replace(old_path, new_path)


class RealClock(ClockInterface):
    """
    Real clock implementation using system time (UTC).
    """

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


class StdlibLogger(LoggerInterface):
    """
    Forwards to a :mod:`logging` logger so handlers set up by the daemon apply.
    """

    def __init__(self, name: str = "lsb", prefix: str = ""):
        self._log = logging.getLogger(name)
        self._prefix = f"[{prefix}] " if prefix else ""

    def debug(self, msg: str) -> None:
        self._log.debug("%s%s", self._prefix, msg)

    def info(self, msg: str) -> None:
        self._log.info("%s%s", self._prefix, msg)

    def warning(self, msg: str) -> None:
        self._log.warning("%s%s", self._prefix, msg)

    def error(self, msg: str) -> None:
        self._log.error("%s%s", self._prefix, msg)
