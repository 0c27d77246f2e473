"""
Incremental decoder for the ``log stream --style=json`` output.

The producer writes one giant JSON array that never closes while the stream
is alive::

    [{
    "a" : 1
    },{
    "b" : 2
    },{
    ...

Records are recovered without a JSON parser over the whole stream: the
3-byte preamble ``[{\\n`` is dropped once, the remaining bytes are split on
the literal separator ``\\n},{\\n``, and every complete fragment is re-wrapped
in braces and compacted.  The trailing ``}]`` of a closed stream is never
consumed.

Nested objects printed with the same separator bytes would be split
incorrectly.  That matches the producer framing this was written against and
is kept as-is.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Optional

from .interfaces import BridgeError, ClockInterface, ProducerProcessInterface

PREAMBLE_LEN = 3
SEPARATOR = b"\n},{\n"

READ_SIZE = 1024
READ_PERIOD = 1.0

# A JSON string literal, or a run of insignificant whitespace.
_COMPACT_RE = re.compile(rb'("(?:[^"\\]|\\.)*")|[ \t\n\r]+', re.DOTALL)


class DecodeError(BridgeError):
    """The stream can no longer be decoded; the producer must be restarted."""


class StreamClosed(DecodeError):
    """The producer closed its output."""


class StreamReadError(DecodeError):
    """Reading from the producer failed."""


class CompactionError(DecodeError):
    """A fragment was not a well-formed JSON object."""


@dataclass
class DecoderState:
    """Per-process decode state.  Create a new one for every producer run."""
    buffer: bytes = b""
    preamble_consumed: bool = False

    def reset(self) -> None:
        self.buffer = b""
        self.preamble_consumed = False


def _reject_constant(name: str) -> None:
    raise ValueError(f"non-standard JSON constant {name}")


def compact(fragment: bytes) -> bytes:
    """Validate ``fragment`` as a JSON object and strip insignificant whitespace.

    Key order, number spelling and string escapes are preserved byte for byte;
    only whitespace between tokens is removed.

    Raises:
        CompactionError: If ``fragment`` is not a single JSON object.
    """
    try:
        obj = json.loads(fragment, parse_constant=_reject_constant)
    except ValueError as exc:
        raise CompactionError(f"malformed record: {exc}") from exc
    if not isinstance(obj, dict):
        raise CompactionError(f"record is not an object: {type(obj).__name__}")
    return _COMPACT_RE.sub(lambda m: m.group(1) or b"", fragment)


class StreamDecoder:
    """Turns blocking reads from a producer into complete record payloads.

    The decoder itself is stateless; all progress lives in the
    :class:`DecoderState` passed to :meth:`decode`, so one decoder can serve
    any number of independent producer runs.
    """

    def __init__(
        self,
        clock: ClockInterface,
        read_size: int = READ_SIZE,
        read_period: float = READ_PERIOD,
    ):
        if read_size <= 0:
            raise ValueError("read_size must be positive")
        self._clock = clock
        self._read_size = read_size
        self._read_period = read_period

    def decode(self, state: DecoderState, reader: ProducerProcessInterface) -> list[bytes]:
        """Block until at least one complete record is available and return them.

        Never returns an empty list.  Any :class:`DecodeError` leaves ``state``
        cleared; the caller is expected to discard it along with the process.
        """
        try:
            if not state.preamble_consumed:
                self._consume_preamble(state, reader)
            return self._next_batch(state, reader)
        except DecodeError:
            state.reset()
            raise

    def _consume_preamble(self, state: DecoderState, reader: ProducerProcessInterface) -> None:
        while len(state.buffer) < PREAMBLE_LEN:
            self._fill(state, reader)
        state.buffer = state.buffer[PREAMBLE_LEN:]
        state.preamble_consumed = True

    def _next_batch(self, state: DecoderState, reader: ProducerProcessInterface) -> list[bytes]:
        while True:
            fragments = state.buffer.split(SEPARATOR)
            if len(fragments) > 1:
                break
            self._fill(state, reader)

        # All-or-nothing: state is only advanced once every fragment compacted.
        records = [compact(b"{" + frag + b"}") for frag in fragments[:-1]]
        state.buffer = fragments[-1]
        return records

    def _fill(self, state: DecoderState, reader: ProducerProcessInterface) -> None:
        """Append one read's worth of bytes, sleeping only when none were ready."""
        while True:
            chunk = self._read(reader)
            if chunk is None:
                self._clock.sleep(self._read_period)
                continue
            if not chunk:
                raise StreamClosed("producer output closed")
            state.buffer += chunk
            return

    def _read(self, reader: ProducerProcessInterface) -> Optional[bytes]:
        try:
            return reader.read(self._read_size)
        except OSError as exc:
            raise StreamReadError(f"read failed: {exc}") from exc
