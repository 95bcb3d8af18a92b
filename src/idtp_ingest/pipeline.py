"""Ingestion Pipeline.

decode -> verify -> replay guard -> timing -> dispatch, one datagram at a
time. Every stage failure drops only the offending frame and is reported as
a classified IngestEvent; nothing aborts the ingestion loop.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from idtp_core.errors import GapDetected, IngestError, ReplayResync
from idtp_core.frame import Frame, Payload, decode
from idtp_verify.crypto import SecurityContext
from idtp_verify.logic import verify
from .config import PipelineConfig
from .guard import ReplayGuard
from .telemetry import IngestEvent, Telemetry
from .timing import TickClock, TimingExtractor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidatedSample:
    device_id: int
    sequence: int
    timestamp: int
    dt: float
    payload: Payload
    received_at: float
    gap: bool = False


Consumer = Callable[[ValidatedSample], None]


class IngestionPipeline:
    """Validates datagrams and hands samples to registered consumers.

    Owns one ReplayGuard per device id. Not thread-safe: a single worker
    must drive ``process``.
    """

    def __init__(
        self,
        ctx: SecurityContext,
        config: PipelineConfig | None = None,
        telemetry: Telemetry | None = None,
    ) -> None:
        self.ctx = ctx
        self.config = config or PipelineConfig()
        self.telemetry = telemetry or Telemetry(self.config.history_size)
        self.clock = TickClock.from_config(self.config.clock)
        self.extractor = TimingExtractor(self.clock, self.config.dt_ceiling, self.config.nominal_dt)
        self._guards: dict[int, ReplayGuard] = {}
        self._consumers: list[Consumer] = []
        self._reset_lock = threading.Lock()
        self._pending_resets: set[int | None] = set()

    def add_consumer(self, consumer: Consumer) -> None:
        self._consumers.append(consumer)

    def remove_consumer(self, consumer: Consumer) -> None:
        self._consumers.remove(consumer)

    def guard_for(self, device_id: int) -> ReplayGuard:
        guard = self._guards.get(device_id)
        if guard is None:
            guard = ReplayGuard(
                self.clock,
                sequence_window=self.config.sequence_window,
                timestamp_tolerance=self.config.timestamp_tolerance,
                resync_after=self.config.resync_after,
            )
            self._guards[device_id] = guard
        return guard

    def reset(self, device_id: int | None = None) -> None:
        """Forget tracked replay state, e.g. after a device reboot."""
        if device_id is None:
            self._guards.clear()
        else:
            self._guards.pop(device_id, None)
        logger.info("Replay state reset for %s", "all devices" if device_id is None else f"device {device_id}")

    def request_reset(self, device_id: int | None = None) -> None:
        """Thread-safe ``reset``: applied by the processing thread before its next datagram."""
        with self._reset_lock:
            self._pending_resets.add(device_id)

    def _apply_pending_resets(self) -> None:
        with self._reset_lock:
            pending, self._pending_resets = self._pending_resets, set()
        if None in pending:
            self.reset()
            return
        for device_id in pending:
            self.reset(device_id)

    def process(self, datagram: bytes, received_at: float | None = None) -> ValidatedSample | None:
        if received_at is None:
            received_at = time.time()
        if self._pending_resets:
            self._apply_pending_resets()
        self.telemetry.record_datagram()

        raw = datagram
        frame: Frame | None = None
        try:
            raw = self.ctx.open_envelope(datagram)
            frame = decode(raw)
            verify(frame, self.ctx)
            guard = self.guard_for(frame.header.device_id)
            admission = guard.admit(frame)
            prior_ts = None if admission.resync else admission.prior_timestamp
            delta = self.extractor.extract_dt(frame, prior_ts)
        except IngestError as e:
            self._report(e, raw, received_at, frame)
            return None

        guard.commit(admission)
        header = frame.header
        sample = ValidatedSample(
            device_id=header.device_id,
            sequence=header.sequence,
            timestamp=header.timestamp,
            dt=delta.seconds,
            payload=frame.payload,
            received_at=received_at,
            gap=delta.gap or admission.resync,
        )

        if admission.resync:
            resync = ReplayResync(
                f"sequence {admission.prior_sequence} -> {header.sequence} after {guard.resync_after} frames"
            )
            self._report(resync, raw, received_at, frame, dropped=False)
        if delta.gap:
            gap = GapDetected(f"dt {delta.raw_seconds:.6f}s clamped to {delta.seconds:.6f}s")
            self._report(gap, raw, received_at, frame, dropped=False)

        self.telemetry.record_accept()
        self._dispatch(sample)
        return sample

    def _report(
        self,
        err: IngestError,
        raw: bytes,
        received_at: float,
        frame: Frame | None,
        dropped: bool = True,
    ) -> None:
        header = frame.header if frame is not None else None
        logger.log(err.log_level, "%s frame: %s", "Dropped" if dropped else "Flagged", err)
        self.telemetry.record_event(IngestEvent.from_error(err, raw, received_at, header, dropped))

    def _dispatch(self, sample: ValidatedSample) -> None:
        for consumer in list(self._consumers):
            try:
                consumer(sample)
            except Exception:
                logger.exception("Consumer %r failed on sequence %d", consumer, sample.sequence)
