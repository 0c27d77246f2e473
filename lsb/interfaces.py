"""
Interfaces for Log Stream Bridge

Abstract base classes that define contracts for all pluggable components.
This enables dependency injection and mock-based testing without a real
producer process or downstream sink.
"""

from abc import ABC, abstractmethod
from typing import Optional, Sequence, Union
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
import ipaddress


IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class BridgeError(Exception):
    """Base class for all bridge errors."""


class LaunchError(BridgeError):
    """The producer process could not be started."""


class Cancelled(BridgeError):
    """The operation was cancelled by the surrounding process."""


class SinkError(BridgeError):
    """A batch could not be delivered to the sink."""


class SupervisorState(Enum):
    """Process supervisor states."""
    STARTING = "starting"
    STREAMING = "streaming"
    RESTARTING = "restarting"
    STOPPED = "stopped"


@dataclass(frozen=True)
class EnrichedRecord:
    """A decoded record plus capture metadata, ready for the sink."""
    data: bytes
    ts: datetime
    src: Optional[IPAddress]
    tag: int


class ProducerProcessInterface(ABC):
    """
    A running producer process whose stdout feeds the decoder.

    Implementations:
    - SubprocessProducer: Wraps subprocess.Popen
    - MockProducerProcess: Scripted chunks for unit testing
    """

    @property
    @abstractmethod
    def pid(self) -> int:
        """Process id (or a fake id in tests)."""
        pass

    @abstractmethod
    def read(self, max_bytes: int) -> Optional[bytes]:
        """
        Read up to max_bytes from the process output.

        Returns b'' at end of stream and None when no data is available yet.
        Raises OSError on read failure.
        """
        pass

    @abstractmethod
    def is_alive(self) -> bool:
        """Check if the process is still running."""
        pass

    @abstractmethod
    def kill(self) -> None:
        """Forcibly terminate the process. Already-exited is not an error."""
        pass


class ProducerLauncherInterface(ABC):
    """Starts producer processes. Raises LaunchError on failure."""

    @abstractmethod
    def launch(self) -> ProducerProcessInterface:
        pass


class FileSystemInterface(ABC):
    """
    Abstract interface for file system operations.

    Implementations:
    - RealFileSystem: Actual file I/O
    - MockFileSystem: In-memory for testing
    """

    @abstractmethod
    def write_file(self, path: str, content: str, append: bool = False) -> None:
        """Write content to file. Creates parent dirs if needed."""
        pass

    @abstractmethod
    def ensure_dir(self, path: str) -> None:
        """Create directory and parents if they don't exist."""
        pass

    @abstractmethod
    def rename_file(self, old_path: str, new_path: str) -> None:
        """Rename a file, replacing the destination."""
        pass


class ClockInterface(ABC):
    """
    Abstract interface for time operations.

    Enables deterministic testing of restart delays and read polling.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get current datetime."""
        pass

    @abstractmethod
    def sleep(self, seconds: float) -> None:
        """Sleep for specified duration."""
        pass


class LoggerInterface(ABC):
    """
    Abstract interface for logging.

    Separates supervisor logic from log output formatting.
    """

    @abstractmethod
    def debug(self, msg: str) -> None:
        """Log debug message."""
        pass

    @abstractmethod
    def info(self, msg: str) -> None:
        """Log info message."""
        pass

    @abstractmethod
    def warning(self, msg: str) -> None:
        """Log warning message."""
        pass

    @abstractmethod
    def error(self, msg: str) -> None:
        """Log error message."""
        pass


class SinkInterface(ABC):
    """
    Downstream transport for enriched record batches.

    Implementations:
    - JsonlFileSink: Locked appends to a JSON-lines file
    - MockSink: Records batches for testing
    """

    @abstractmethod
    def resolve_tag(self, name: str) -> int:
        """Resolve a named route to its routing token."""
        pass

    @abstractmethod
    def submit(self, cancel: "CancelTokenLike", batch: Sequence[EnrichedRecord]) -> None:
        """
        Deliver a batch.

        Raises Cancelled if cancel is set, any other exception on failure.
        """
        pass

    @abstractmethod
    def sync(self, timeout: float) -> None:
        """Flush anything buffered, waiting at most timeout seconds."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release sink resources."""
        pass


class CancelTokenLike(ABC):
    """Cooperative cancellation signal shared between threads."""

    @abstractmethod
    def cancel(self) -> None:
        pass

    @abstractmethod
    def is_cancelled(self) -> bool:
        pass

    def raise_if_cancelled(self) -> None:
        if self.is_cancelled():
            raise Cancelled("operation cancelled")


@dataclass
class SupervisorStats:
    """Counters for one supervisor lifetime."""
    launches: int = 0
    launch_failures: int = 0
    restarts: int = 0
    decode_errors: int = 0
    batches_sent: int = 0
    records_sent: int = 0
    send_errors: int = 0

    def as_dict(self) -> dict:
        return {
            "launches": self.launches,
            "launch_failures": self.launch_failures,
            "restarts": self.restarts,
            "decode_errors": self.decode_errors,
            "batches_sent": self.batches_sent,
            "records_sent": self.records_sent,
            "send_errors": self.send_errors,
        }
