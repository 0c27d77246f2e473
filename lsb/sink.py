"""
Sink adapters for enriched record batches.

The bridge core only needs "submit a batch under a cancellable context" and
"resolve a named route to a routing token".  :class:`JsonlFileSink` provides
both on top of an append-only JSON-lines file so other processes can tail
the output without sockets.
"""

from __future__ import annotations

import json
import os
import sys
import threading
from typing import Dict, Optional, Sequence

import portalocker

from .interfaces import (
    CancelTokenLike, EnrichedRecord, SinkError, SinkInterface,
)

STDOUT_PATH = "-"
DEFAULT_TAG = "default"


class CancelToken(CancelTokenLike):
    """Thread-safe cancellation flag set by the daemon on shutdown."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


def format_record(record: EnrichedRecord, tag_name: str) -> bytes:
    """Render one record as a JSON line.

    The payload is already compact JSON and is spliced in verbatim so the
    producer's bytes reach the file unchanged.
    """
    header = json.dumps({
        "ts": record.ts.isoformat(),
        "src": str(record.src) if record.src is not None else None,
        "tag": tag_name,
        "tag_id": record.tag,
    }, separators=(",", ":"))
    return header[:-1].encode("utf-8") + b',"data":' + record.data + b"}\n"


class JsonlFileSink(SinkInterface):
    """Append-only JSONL sink with an exclusive file lock per batch."""

    def __init__(self, path: str, lock_timeout: float = 5.0) -> None:
        if not path:
            raise ValueError("sink path must not be empty")
        self._path = path
        self._lock_timeout = lock_timeout
        self._tags: Dict[str, int] = {DEFAULT_TAG: 0}
        self._closed = False
        if path != STDOUT_PATH:
            parent = os.path.dirname(path)
            if parent:
                os.makedirs(parent, exist_ok=True)

    @property
    def path(self) -> str:
        return self._path

    def resolve_tag(self, name: str) -> int:
        if not name:
            raise SinkError("tag name must not be empty")
        if name not in self._tags:
            self._tags[name] = len(self._tags)
        return self._tags[name]

    def tag_name(self, tag: int) -> str:
        for name, value in self._tags.items():
            if value == tag:
                return name
        raise SinkError(f"unknown tag id {tag}")

    def submit(self, cancel: CancelTokenLike, batch: Sequence[EnrichedRecord]) -> None:
        cancel.raise_if_cancelled()
        if self._closed:
            raise SinkError("sink is closed")
        if not batch:
            return
        content = b"".join(format_record(r, self.tag_name(r.tag)) for r in batch)
        if self._path == STDOUT_PATH:
            self._write_stdout(content)
        else:
            self._append(content)

    def sync(self, timeout: float) -> None:
        if self._path == STDOUT_PATH:
            sys.stdout.flush()
            return
        if not os.path.exists(self._path):
            return
        try:
            with portalocker.Lock(self._path, mode="ab", timeout=timeout) as f:
                f.flush()
                os.fsync(f.fileno())
        except portalocker.LockException as exc:
            raise SinkError(f"sync timed out after {timeout}s: {exc}") from exc

    def close(self) -> None:
        self._closed = True

    def _append(self, content: bytes) -> None:
        try:
            with portalocker.Lock(self._path, mode="ab", timeout=self._lock_timeout) as f:
                f.write(content)
                f.flush()
        except portalocker.LockException as exc:
            raise SinkError(f"could not lock {self._path}: {exc}") from exc
        except OSError as exc:
            raise SinkError(f"write to {self._path} failed: {exc}") from exc

    @staticmethod
    def _write_stdout(content: bytes) -> None:
        out = sys.stdout.buffer
        try:
            out.write(content)
            out.flush()
        except OSError as exc:
            raise SinkError(f"write to stdout failed: {exc}") from exc
