"""Stamps decoded payloads with capture time, source and routing tag."""

from __future__ import annotations

from typing import Iterable, Optional

from .interfaces import ClockInterface, EnrichedRecord, IPAddress


class RecordEnricher:
    """Attaches ingest metadata to record payloads.

    The timestamp is taken when :meth:`enrich` runs, not when the producer
    emitted the record.  Payload bytes are passed through untouched.
    """

    def __init__(self, clock: ClockInterface, tag: int, source: Optional[IPAddress] = None):
        if not isinstance(tag, int) or isinstance(tag, bool) or tag < 0:
            raise ValueError(f"invalid routing tag: {tag!r}")
        self._clock = clock
        self._tag = tag
        self._source = source

    @property
    def tag(self) -> int:
        return self._tag

    @property
    def source(self) -> Optional[IPAddress]:
        return self._source

    def enrich(self, payloads: Iterable[bytes]) -> list[EnrichedRecord]:
        records = []
        for payload in payloads:
            if not payload:
                raise ValueError("empty record payload")
            records.append(EnrichedRecord(
                data=payload,
                ts=self._clock.now(),
                src=self._source,
                tag=self._tag,
            ))
        return records
