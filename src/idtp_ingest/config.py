"""Runtime configuration for the ingestion core.

Values arrive from the CLI (or an embedding application); file-based
configuration is handled outside this package.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from idtp_core.protocol import (
    DEFAULT_COUNTER_BITS,
    DEFAULT_DT_CEILING,
    DEFAULT_HISTORY_SIZE,
    DEFAULT_QUEUE_SIZE,
    DEFAULT_RESYNC_AFTER,
    DEFAULT_SAMPLE_RATE_HZ,
    DEFAULT_SEQUENCE_WINDOW,
    DEFAULT_TICK_HZ,
    DEFAULT_UDP_PORT,
    SEQUENCE_MODULUS,
)

DROP_POLICIES = ("oldest", "newest")


@dataclass(frozen=True)
class ClockConfig:
    tick_hz: int = DEFAULT_TICK_HZ
    counter_bits: int = DEFAULT_COUNTER_BITS
    # Minimum timestamp decrease (ticks) read as a counter rollover.
    # None means half the counter range.
    rollover_threshold: int | None = None


@dataclass(frozen=True)
class PipelineConfig:
    sample_rate_hz: float = DEFAULT_SAMPLE_RATE_HZ
    dt_ceiling: float = DEFAULT_DT_CEILING
    sequence_window: int = DEFAULT_SEQUENCE_WINDOW
    # Ticks of timestamp regression classified as jitter rather than replay.
    # The pipeline still drops such frames, as NonPositiveDelta.
    timestamp_tolerance: int = 0
    # Consecutive advancing frames beyond the window that re-baseline a
    # source; 0 disables.
    resync_after: int = DEFAULT_RESYNC_AFTER
    history_size: int = DEFAULT_HISTORY_SIZE
    clock: ClockConfig = field(default_factory=ClockConfig)

    def __post_init__(self) -> None:
        if self.sample_rate_hz <= 0:
            raise ValueError("sample_rate_hz must be positive")
        if self.dt_ceiling <= 0:
            raise ValueError("dt_ceiling must be positive")
        if not 0 < self.sequence_window < SEQUENCE_MODULUS // 2:
            raise ValueError(f"sequence_window must be in (0, {SEQUENCE_MODULUS // 2})")
        if self.timestamp_tolerance < 0:
            raise ValueError("timestamp_tolerance must be non-negative")
        if self.resync_after < 0:
            raise ValueError("resync_after must be non-negative")
        if self.history_size <= 0:
            raise ValueError("history_size must be positive")

    @property
    def nominal_dt(self) -> float:
        return 1.0 / self.sample_rate_hz


@dataclass(frozen=True)
class NetConfig:
    host: str = "0.0.0.0"
    port: int = DEFAULT_UDP_PORT
    recv_timeout: float = 0.2
    queue_size: int = DEFAULT_QUEUE_SIZE
    drop_policy: str = "oldest"

    def __post_init__(self) -> None:
        if not 0 <= self.port <= 0xFFFF:
            raise ValueError(f"Invalid UDP port {self.port}")
        if self.recv_timeout <= 0:
            raise ValueError("recv_timeout must be positive")
        if self.queue_size <= 0:
            raise ValueError("queue_size must be positive")
        if self.drop_policy not in DROP_POLICIES:
            raise ValueError(f"drop_policy must be one of {DROP_POLICIES}")
