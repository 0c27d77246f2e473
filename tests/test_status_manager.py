"""
Tests for status.json manager.

The status manager writes supervisor state and counters to a JSON file
that operators can read to check on the bridge.
"""

import json
from datetime import datetime, timezone

from lsb.interfaces import SupervisorState, SupervisorStats
from lsb.mocks import MockClock, MockFileSystem, MockLogger
from lsb.status_manager import StatusManager

STATUS_PATH = "/var/run/lsb/status.json"


class FullFileSystem(MockFileSystem):
    """Filesystem whose writes fail as if the disk were full."""

    def write_file(self, path, content, append=False):
        raise OSError(28, "No space left on device")


def make_manager(**kwargs):
    fs = MockFileSystem()
    clock = MockClock(datetime(2025, 12, 11, 1, 30, 0, tzinfo=timezone.utc))
    manager = StatusManager(
        filesystem=fs,
        clock=clock,
        status_path=STATUS_PATH,
        ingester_uuid="0b0e4a3c-52b5-4a6f-9d2e-1c1f0f8c2d11",
        tag_name="oslog",
        **kwargs,
    )
    return manager, fs, clock


def read_status(fs):
    return json.loads(fs.read_file(STATUS_PATH))


class TestStatusManager:
    """Tests for StatusManager class."""

    def test_creates_status_file(self):
        """Should create status.json file."""
        manager, fs, _ = make_manager()

        manager.start()

        assert fs.file_exists(STATUS_PATH)
        # Temp file is renamed away.
        assert list(fs.get_all_files()) == [STATUS_PATH]

    def test_status_json_structure(self):
        """Status JSON should have expected structure."""
        manager, fs, clock = make_manager()
        manager.start()
        clock.advance(90)
        manager.update()

        status = read_status(fs)

        assert status["ingester"]["uuid"] == "0b0e4a3c-52b5-4a6f-9d2e-1c1f0f8c2d11"
        assert status["ingester"]["tag"] == "oslog"
        assert status["ingester"]["uptime_seconds"] == 90
        assert status["supervisor"]["state"] == "starting"
        assert status["counters"]["records_sent"] == 0
        assert status["last_updated"] == "2025-12-11T01:31:30+00:00"

    def test_state_change_writes_immediately(self):
        manager, fs, _ = make_manager()
        manager.start()

        manager.on_state_change(SupervisorState.STARTING, SupervisorState.STREAMING)

        assert read_status(fs)["supervisor"]["state"] == "streaming"

    def test_batch_updates_are_throttled(self):
        manager, fs, _ = make_manager(batch_interval=3)
        manager.start()
        stats = SupervisorStats()

        for _ in range(2):
            stats.batches_sent += 1
            stats.records_sent += 10
            manager.on_batch(stats)
        assert read_status(fs)["counters"]["records_sent"] == 0

        stats.batches_sent += 1
        stats.records_sent += 10
        manager.on_batch(stats)
        assert read_status(fs)["counters"]["records_sent"] == 30
        assert read_status(fs)["counters"]["batches_sent"] == 3

    def test_state_change_reports_shared_counters(self):
        """Counters come from the stats object given at construction."""
        stats = SupervisorStats()
        manager, fs, _ = make_manager(stats=stats)
        manager.start()

        stats.launch_failures += 2
        stats.restarts += 1
        manager.on_state_change(SupervisorState.STARTING, SupervisorState.RESTARTING)

        counters = read_status(fs)["counters"]
        assert counters["launch_failures"] == 2
        assert counters["restarts"] == 1

    def test_failed_write_is_logged_not_raised(self):
        """A full disk must not propagate out of the supervisor hooks."""
        log = MockLogger()
        manager = StatusManager(
            filesystem=FullFileSystem(),
            clock=MockClock(),
            status_path=STATUS_PATH,
            logger=log,
            batch_interval=1,
        )

        manager.start()
        manager.on_state_change(SupervisorState.STARTING, SupervisorState.STREAMING)
        manager.on_batch(SupervisorStats())

        assert log.contains("Failed to write status", level="ERROR")
        assert len(log.get_messages("ERROR")) == 3
