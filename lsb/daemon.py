#!/usr/bin/env python3
"""
Log Stream Bridge - Daemon

Tails ``log stream --style=json`` and forwards every record to the sink.

Usage:
    lsb --config-file /opt/lsb/etc/lsb.yaml
    python -m lsb.daemon --config-file ./lsb.yaml --check-config
"""

import argparse
import logging
import signal
import sys
import threading
from typing import Optional, List

from . import __version__
from .config import (
    BridgeConfig, ConfigError, DEFAULT_CONFIG_PATH, load_config, ensure_ingester_uuid
)
from .enricher import RecordEnricher
from .implementations import SubprocessLauncher, RealClock, RealFileSystem, StdlibLogger
from .interfaces import (
    ProducerLauncherInterface, SinkInterface, ClockInterface, LoggerInterface,
    FileSystemInterface, BridgeError,
)
from .sink import CancelToken, JsonlFileSink
from .status_manager import StatusManager
from .stream_decoder import StreamDecoder
from .supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(log_file: Optional[str] = None, log_level: str = "INFO") -> logging.Logger:
    """Send ``lsb`` logs to stderr and, if configured, to *log_file*."""
    root = logging.getLogger("lsb")
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(formatter)
    root.addHandler(stderr_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root.propagate = False
    return root


class LogStreamBridge:
    """
    Ties the bridge components together and runs the supervisor on a thread.

    Components:
    - SubprocessLauncher: starts the producer
    - StreamDecoder / RecordEnricher: payloads and metadata
    - JsonlFileSink: downstream delivery
    - ProcessSupervisor: restart loop
    - StatusManager: optional status.json
    """

    def __init__(
        self,
        config: BridgeConfig,
        sink: Optional[SinkInterface] = None,
        launcher: Optional[ProducerLauncherInterface] = None,
        clock: Optional[ClockInterface] = None,
        log: Optional[LoggerInterface] = None,
        filesystem: Optional[FileSystemInterface] = None,
    ):
        self._config = config
        self._clock = clock or RealClock()
        self._logger = log or StdlibLogger("lsb.supervisor")
        self._sink = sink or JsonlFileSink(config.sink_path)
        self._launcher = launcher or SubprocessLauncher(config.command)
        self._cancel = CancelToken()
        self._thread: Optional[threading.Thread] = None

        tag = self._sink.resolve_tag(config.tag_name)
        self._enricher = RecordEnricher(
            clock=self._clock,
            tag=tag,
            source=config.source_address(),
        )

        self._status: Optional[StatusManager] = None
        if config.status_file:
            self._status = StatusManager(
                filesystem=filesystem or RealFileSystem(),
                clock=self._clock,
                status_path=config.status_file,
                ingester_uuid=config.ingester_uuid,
                tag_name=config.tag_name,
                logger=self._logger,
            )

        self._supervisor = ProcessSupervisor(
            launcher=self._launcher,
            decoder=StreamDecoder(clock=self._clock, read_period=config.read_period),
            enricher=self._enricher,
            sink=self._sink,
            cancel=self._cancel,
            clock=self._clock,
            logger=self._logger,
            restart_delay=config.restart_delay,
            max_launch_failures=config.max_launch_failures,
            on_state_change=self._status.on_state_change if self._status else None,
            on_batch=self._status.on_batch if self._status else None,
        )
        if self._status:
            self._status.set_stats(self._supervisor.stats)

    @property
    def supervisor(self) -> ProcessSupervisor:
        return self._supervisor

    @property
    def cancel_token(self) -> CancelToken:
        return self._cancel

    def start(self) -> None:
        """Start the supervisor thread."""
        if self._thread is not None:
            return
        if self._status:
            self._status.start()
        self._thread = threading.Thread(
            target=self._supervisor.run, name="lsb-supervisor", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Request shutdown; the supervisor notices at its next submit."""
        self._cancel.cancel()

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def wait(self, poll_interval: float = 0.5) -> None:
        """Block until stop() is called or the supervisor gives up."""
        while self.is_running() and not self._cancel.wait(poll_interval):
            pass

    def shutdown(self) -> None:
        """Cancel, wait briefly for the supervisor, then sync and close the sink."""
        timeout = self._config.shutdown_timeout
        self.stop()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Supervisor still busy after %.1fs, abandoning it", timeout)

        try:
            self._sink.sync(timeout)
        except Exception as e:
            logger.error("Failed to sync: %s", e)
        try:
            self._sink.close()
        except Exception as e:
            logger.error("Failed to close: %s", e)

        if self._status:
            self._status.update()

        logger.info("Bridge stopped: %s", self._supervisor.stats.as_dict())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lsb",
        description="Forward `log stream` JSON records to a JSONL sink",
    )
    parser.add_argument(
        "--config-file", default=DEFAULT_CONFIG_PATH,
        help=f"Location for configuration file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--version", action="store_true",
        help="Print the version information and exit",
    )
    parser.add_argument(
        "--check-config", action="store_true",
        help="Validate the configuration file and exit",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.version:
        print(f"lsb {__version__}")
        return 0

    try:
        config = load_config(args.config_file)
    except ConfigError as e:
        print(f"Failed to get configuration: {e}", file=sys.stderr)
        return 1

    try:
        configure_logging(config.log_file, config.log_level)
    except OSError as e:
        print(f"Failed to open log file {config.log_file}: {e}", file=sys.stderr)
        return 1

    if args.check_config:
        print(f"Configuration OK: {args.config_file}")
        print(f"  Tag: {config.tag_name}")
        print(f"  Command: {' '.join(config.command)}")
        print(f"  Sink: {config.sink_path}")
        print(f"  Source override: {config.source_override or '-'}")
        return 0

    try:
        ensure_ingester_uuid(config, args.config_file)
    except ConfigError as e:
        logger.error("Couldn't read ingester UUID: %s", e)
        return 1

    try:
        bridge = LogStreamBridge(config)
    except (BridgeError, OSError, ValueError) as e:
        logger.error("Failed to build bridge: %s", e)
        return 1

    # Handle signals
    def signal_handler(sig, frame):
        logger.info("Received signal %d, shutting down", sig)
        bridge.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info("Starting lsb %s (tag %s, ingester %s)", __version__, config.tag_name, config.ingester_uuid)
    bridge.start()
    bridge.wait()
    gave_up = not bridge.cancel_token.is_cancelled()
    bridge.shutdown()
    return 1 if gave_up else 0


if __name__ == "__main__":
    sys.exit(main())
