"""
Mock implementations for testing.

These classes implement the abstract interfaces with in-memory behavior
suitable for unit testing without a real producer process or sink.
"""

from typing import Optional, List, Dict, Iterable, Sequence, Union
from datetime import datetime, timedelta, timezone
from collections import deque
import itertools

from .interfaces import (
    ProducerProcessInterface, ProducerLauncherInterface, FileSystemInterface,
    ClockInterface, LoggerInterface, SinkInterface, CancelTokenLike,
    EnrichedRecord, LaunchError, SinkError
)

# A scripted read result: bytes, None ("no data yet") or an exception to raise.
ReadStep = Union[bytes, None, Exception]

_pids = itertools.count(1000)


class MockProducerProcess(ProducerProcessInterface):
    """
    Producer whose output is a scripted sequence of read results.

    Each read() pops the next step.  Bytes longer than max_bytes are split
    and the remainder stays queued.  Once the script is exhausted, read()
    returns b'' (end of stream).
    """

    def __init__(self, chunks: Iterable[ReadStep] = ()):
        self._pid = next(_pids)
        self._steps: deque = deque(chunks)
        self._alive = True
        self._kill_count = 0
        self._read_sizes: List[int] = []

    @property
    def pid(self) -> int:
        return self._pid

    def read(self, max_bytes: int) -> Optional[bytes]:
        self._read_sizes.append(max_bytes)
        if not self._steps:
            return b""
        step = self._steps.popleft()
        if isinstance(step, Exception):
            raise step
        if step is not None and len(step) > max_bytes:
            self._steps.appendleft(step[max_bytes:])
            step = step[:max_bytes]
        return step

    def is_alive(self) -> bool:
        return self._alive

    def kill(self) -> None:
        self._kill_count += 1
        self._alive = False

    # Test helper methods

    def feed(self, *steps: ReadStep) -> None:
        """Queue more read results."""
        self._steps.extend(steps)

    @property
    def kill_count(self) -> int:
        return self._kill_count

    @property
    def reads(self) -> int:
        return len(self._read_sizes)

    def remaining(self) -> int:
        return len(self._steps)


class MockLauncher(ProducerLauncherInterface):
    """
    Hands out pre-built producers in order.

    A ``None`` entry makes that launch fail with LaunchError.
    """

    def __init__(self, producers: Iterable[Optional[MockProducerProcess]] = ()):
        self._queue: deque = deque(producers)
        self._launched: List[MockProducerProcess] = []
        self._attempts = 0

    def launch(self) -> MockProducerProcess:
        self._attempts += 1
        if not self._queue:
            raise LaunchError("no more producers")
        producer = self._queue.popleft()
        if producer is None:
            raise LaunchError("simulated launch failure")
        self._launched.append(producer)
        return producer

    # Test helper methods

    def add(self, producer: Optional[MockProducerProcess]) -> None:
        self._queue.append(producer)

    @property
    def launched(self) -> List[MockProducerProcess]:
        return list(self._launched)

    @property
    def attempts(self) -> int:
        return self._attempts


class MockSink(SinkInterface):
    """
    Sink that records every submitted batch.

    Failures can be scripted with fail_next(); cancel_after() sets the
    supervisor's token once N batches have been accepted.
    """

    def __init__(self, tags: Optional[Dict[str, int]] = None):
        self._tags: Dict[str, int] = dict(tags or {"default": 0})
        self._batches: List[List[EnrichedRecord]] = []
        self._errors: deque = deque()
        self._cancel_after: Optional[int] = None
        self._submit_calls = 0
        self._synced: List[float] = []
        self._closed = False
        self.on_submit = None  # Optional[Callable[[MockSink], None]]

    def resolve_tag(self, name: str) -> int:
        if name not in self._tags:
            self._tags[name] = len(self._tags)
        return self._tags[name]

    def submit(self, cancel: CancelTokenLike, batch: Sequence[EnrichedRecord]) -> None:
        self._submit_calls += 1
        cancel.raise_if_cancelled()
        if self.on_submit:
            self.on_submit(self)
        if self._errors:
            raise self._errors.popleft()
        self._batches.append(list(batch))
        if self._cancel_after is not None and len(self._batches) >= self._cancel_after:
            cancel.cancel()

    def sync(self, timeout: float) -> None:
        self._synced.append(timeout)

    def close(self) -> None:
        self._closed = True

    # Test helper methods

    def fail_next(self, error: Optional[Exception] = None) -> None:
        """Make the next submit() raise (SinkError by default)."""
        self._errors.append(error or SinkError("simulated send failure"))

    def cancel_after(self, batches: int) -> None:
        self._cancel_after = batches

    @property
    def batches(self) -> List[List[EnrichedRecord]]:
        return [list(b) for b in self._batches]

    @property
    def records(self) -> List[EnrichedRecord]:
        return [r for b in self._batches for r in b]

    @property
    def submit_calls(self) -> int:
        return self._submit_calls

    @property
    def synced(self) -> List[float]:
        return list(self._synced)

    @property
    def closed(self) -> bool:
        return self._closed


class MockFileSystem(FileSystemInterface):
    """
    In-memory file system for testing.

    All file operations are performed in memory without touching disk.
    """

    def __init__(self):
        self._files: Dict[str, str] = {}
        self._dirs: set = set()

    def write_file(self, path: str, content: str, append: bool = False) -> None:
        if append and path in self._files:
            self._files[path] += content
        else:
            self._files[path] = content

    def ensure_dir(self, path: str) -> None:
        self._dirs.add(path)

    def rename_file(self, old_path: str, new_path: str) -> None:
        if old_path not in self._files:
            raise FileNotFoundError(f"No such file: {old_path}")
        self._files[new_path] = self._files.pop(old_path)

    # Test helper methods

    def read_file(self, path: str) -> str:
        if path not in self._files:
            raise FileNotFoundError(f"No such file: {path}")
        return self._files[path]

    def file_exists(self, path: str) -> bool:
        return path in self._files

    def get_all_files(self) -> Dict[str, str]:
        """Get dictionary of all files and contents."""
        return self._files.copy()


class MockClock(ClockInterface):
    """
    Controllable clock for testing.

    Time can be advanced manually for deterministic testing of
    time-dependent behavior.  sleep() records the call and advances time.
    """

    def __init__(self, start_time: Optional[datetime] = None):
        self._current_time = start_time or datetime(2025, 1, 1, 0, 0, 0, tzinfo=timezone.utc)
        self._sleep_calls: List[float] = []

    def now(self) -> datetime:
        return self._current_time

    def sleep(self, seconds: float) -> None:
        self._sleep_calls.append(seconds)
        self._current_time += timedelta(seconds=seconds)

    # Test helper methods

    def advance(self, seconds: float) -> None:
        """Advance time by specified seconds."""
        self._current_time += timedelta(seconds=seconds)

    def get_sleep_calls(self) -> List[float]:
        """Get list of all sleep() calls made."""
        return self._sleep_calls.copy()


class MockLogger(LoggerInterface):
    """
    Logger that captures all messages for testing.
    """

    def __init__(self):
        self._messages: List[tuple] = []

    def debug(self, msg: str) -> None:
        self._messages.append(("DEBUG", msg))

    def info(self, msg: str) -> None:
        self._messages.append(("INFO", msg))

    def warning(self, msg: str) -> None:
        self._messages.append(("WARNING", msg))

    def error(self, msg: str) -> None:
        self._messages.append(("ERROR", msg))

    # Test helper methods

    def get_messages(self, level: Optional[str] = None) -> List[tuple]:
        """Get logged messages, optionally filtered by level."""
        if level:
            return [(l, m) for l, m in self._messages if l == level]
        return self._messages.copy()

    def contains(self, substring: str, level: Optional[str] = None) -> bool:
        """Check if any message contains substring."""
        messages = self.get_messages(level)
        return any(substring in m for _, m in messages)
