"""Rejection events and live ingestion counters."""
from __future__ import annotations

import logging
import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Callable

from idtp_core.errors import IngestError
from idtp_core.frame import FrameHeader
from idtp_core.protocol import DEFAULT_HISTORY_SIZE

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestEvent:
    code: str
    message: str
    detail: str
    raw: bytes = field(repr=False)
    received_at: float
    device_id: int | None = None
    sequence: int | None = None
    # False for conditions reported on a frame that was still dispatched.
    dropped: bool = True

    @classmethod
    def from_error(
        cls,
        err: IngestError,
        raw: bytes,
        received_at: float,
        header: FrameHeader | None = None,
        dropped: bool = True,
    ) -> IngestEvent:
        return cls(
            code=err.code,
            message=err.message,
            detail=err.detail,
            raw=bytes(raw),
            received_at=received_at,
            device_id=header.device_id if header is not None else None,
            sequence=header.sequence if header is not None else None,
            dropped=dropped,
        )

    def as_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "detail": self.detail,
            "raw": self.raw.hex(),
            "received_at": self.received_at,
            "device_id": self.device_id,
            "sequence": self.sequence,
            "dropped": self.dropped,
        }


Observer = Callable[[IngestEvent], None]


class Telemetry:
    """Counters, recent event history and observer fan-out.

    Written by the processing worker, read from any thread.
    """

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE) -> None:
        self._lock = threading.Lock()
        self._observers: list[Observer] = []
        self.total = 0
        self.accepted = 0
        self.rejected = 0
        self.gaps = 0
        self.by_code: Counter[str] = Counter()
        self.history: deque[IngestEvent] = deque(maxlen=history_size)
        self.pps = 0
        self._window_start: float | None = None
        self._window_count = 0

    def subscribe(self, observer: Observer) -> None:
        self._observers.append(observer)

    def unsubscribe(self, observer: Observer) -> None:
        self._observers.remove(observer)

    def _roll(self, now: float) -> None:
        if self._window_start is None:
            self._window_start = now
        elif now - self._window_start >= 1.0:
            self.pps = self._window_count
            self._window_count = 0
            self._window_start = now

    def tick(self, now: float | None = None) -> None:
        """Close the packets-per-second window even when no traffic arrives."""
        with self._lock:
            self._roll(time.monotonic() if now is None else now)

    def record_datagram(self, now: float | None = None) -> None:
        with self._lock:
            self._roll(time.monotonic() if now is None else now)
            self._window_count += 1
            self.total += 1

    def record_accept(self) -> None:
        with self._lock:
            self.accepted += 1

    def record_event(self, event: IngestEvent) -> None:
        with self._lock:
            self.by_code[event.code] += 1
            if event.dropped:
                self.rejected += 1
            if event.code == "E_GAP_DETECTED":
                self.gaps += 1
            self.history.append(event)
            observers = list(self._observers)

        for observer in observers:
            try:
                observer(event)
            except Exception:
                logger.exception("Telemetry observer %r failed", observer)

    def recent(self) -> list[IngestEvent]:
        with self._lock:
            return list(self.history)

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "total": self.total,
                "accepted": self.accepted,
                "rejected": self.rejected,
                "gaps": self.gaps,
                "pps": self.pps,
                "by_code": dict(self.by_code),
            }
