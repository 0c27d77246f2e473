"""
Status Manager for the log stream bridge.

Writes supervisor state and counters to status.json so operators (and
scripts) can check the bridge without reading its log.  Writes go to a temp
file that is renamed over the target, so readers never see a partial file.
"""

from typing import Optional
from datetime import datetime
import json
import os

from .implementations import StdlibLogger
from .interfaces import (
    FileSystemInterface, ClockInterface, LoggerInterface, SupervisorState, SupervisorStats
)


class StatusManager:
    """
    Manages the status.json file.

    Hook :meth:`on_state_change` and :meth:`on_batch` into the supervisor's
    callbacks; batch updates are throttled to every ``batch_interval`` batches.
    """

    def __init__(
        self,
        filesystem: FileSystemInterface,
        clock: ClockInterface,
        status_path: str,
        ingester_uuid: Optional[str] = None,
        tag_name: str = "",
        batch_interval: int = 100,
        stats: Optional[SupervisorStats] = None,
        logger: Optional[LoggerInterface] = None,
    ):
        self._fs = filesystem
        self._clock = clock
        self._status_path = status_path
        self._ingester_uuid = ingester_uuid
        self._tag_name = tag_name
        self._batch_interval = max(1, batch_interval)

        self._started: Optional[datetime] = None
        self._state = SupervisorState.STARTING
        self._stats = stats if stats is not None else SupervisorStats()
        self._logger = logger or StdlibLogger("lsb.status")
        self._batches_since_write = 0

        status_dir = os.path.dirname(status_path)
        if status_dir:
            self._fs.ensure_dir(status_dir)

    def start(self) -> None:
        """Record the start time and write the initial status."""
        self._started = self._clock.now()
        self.update()

    def on_state_change(self, old: SupervisorState, new: SupervisorState) -> None:
        self._state = new
        self.update()

    def on_batch(self, stats: SupervisorStats) -> None:
        self._stats = stats
        self._batches_since_write += 1
        if self._batches_since_write >= self._batch_interval:
            self.update()

    def set_stats(self, stats: SupervisorStats) -> None:
        self._stats = stats

    def update(self) -> None:
        """Write current status to file using atomic write.

        A failed write is logged and dropped; the next update tries again.
        """
        now = self._clock.now()
        uptime = (now - self._started).total_seconds() if self._started else 0

        status = {
            "ingester": {
                "uuid": self._ingester_uuid,
                "tag": self._tag_name,
                "started": self._started.isoformat() if self._started else None,
                "uptime_seconds": int(uptime),
            },
            "supervisor": {
                "state": self._state.value,
            },
            "counters": self._stats.as_dict(),
            "last_updated": now.isoformat(),
        }

        try:
            self._atomic_write(json.dumps(status, indent=2))
        except OSError as e:
            self._logger.error(f"Failed to write status to {self._status_path}: {e}")
            return
        self._batches_since_write = 0

    def _atomic_write(self, content: str) -> None:
        temp_path = self._status_path + ".tmp"
        self._fs.write_file(temp_path, content)
        self._fs.rename_file(temp_path, self._status_path)
