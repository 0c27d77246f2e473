"""
Log Stream Bridge

Tails the OS log stream, decodes its JSON records and forwards them to a sink.
"""

__version__ = "0.1.0"

from .interfaces import (
    SupervisorState,
    SupervisorStats,
    EnrichedRecord,
    BridgeError,
    LaunchError,
    Cancelled,
    SinkError,
    ProducerProcessInterface,
    ProducerLauncherInterface,
    SinkInterface,
    ClockInterface,
    LoggerInterface,
)

from .stream_decoder import (
    StreamDecoder,
    DecoderState,
    DecodeError,
    StreamClosed,
    StreamReadError,
    CompactionError,
)
from .enricher import RecordEnricher
from .sink import CancelToken, JsonlFileSink
from .supervisor import ProcessSupervisor

__all__ = [
    "__version__",
    "SupervisorState",
    "SupervisorStats",
    "EnrichedRecord",
    "BridgeError",
    "LaunchError",
    "Cancelled",
    "SinkError",
    "ProducerProcessInterface",
    "ProducerLauncherInterface",
    "SinkInterface",
    "ClockInterface",
    "LoggerInterface",
    "StreamDecoder",
    "DecoderState",
    "DecodeError",
    "StreamClosed",
    "StreamReadError",
    "CompactionError",
    "RecordEnricher",
    "CancelToken",
    "JsonlFileSink",
    "ProcessSupervisor",
]
