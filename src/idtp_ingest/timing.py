"""Timing Extractor.

Turns two hardware timestamps into the dt handed to the attitude filter.
The result is a deterministic function of the timestamps, the tick
resolution and the rollover threshold.
"""
from __future__ import annotations

from dataclasses import dataclass

from idtp_core.errors import NonPositiveDelta
from idtp_core.frame import Frame
from idtp_core.protocol import (
    DEFAULT_COUNTER_BITS,
    DEFAULT_DT_CEILING,
    DEFAULT_SAMPLE_RATE_HZ,
    DEFAULT_TICK_HZ,
)
from .config import ClockConfig


class TickClock:
    """Fixed-width hardware tick counter, shared by the replay guard and the extractor."""

    def __init__(
        self,
        tick_hz: int = DEFAULT_TICK_HZ,
        counter_bits: int = DEFAULT_COUNTER_BITS,
        rollover_threshold: int | None = None,
    ) -> None:
        if tick_hz <= 0:
            raise ValueError("tick_hz must be positive")
        if not 1 <= counter_bits <= 64:
            raise ValueError("counter_bits must be in [1, 64]")
        self.tick_hz = tick_hz
        self.modulus = 1 << counter_bits
        if rollover_threshold is None:
            rollover_threshold = self.modulus // 2
        if not 0 < rollover_threshold < self.modulus:
            raise ValueError(f"rollover_threshold must be in (0, {self.modulus})")
        self.rollover_threshold = rollover_threshold

    @classmethod
    def from_config(cls, cfg: ClockConfig) -> TickClock:
        return cls(cfg.tick_hz, cfg.counter_bits, cfg.rollover_threshold)

    def is_rollover(self, prior: int, current: int) -> bool:
        # A wrap shows up as a large decrease (near-max to near-zero),
        # not merely any decrease.
        return prior > current and prior - current > self.rollover_threshold

    def elapsed_ticks(self, prior: int, current: int) -> int:
        if self.is_rollover(prior, current):
            return current + self.modulus - prior
        return current - prior

    def to_seconds(self, ticks: int) -> float:
        return ticks / self.tick_hz


@dataclass(frozen=True)
class Delta:
    seconds: float
    ticks: int
    raw_seconds: float
    gap: bool = False
    rollover: bool = False


class TimingExtractor:
    def __init__(
        self,
        clock: TickClock,
        dt_ceiling: float = DEFAULT_DT_CEILING,
        nominal_dt: float = 1.0 / DEFAULT_SAMPLE_RATE_HZ,
    ) -> None:
        if dt_ceiling <= 0 or nominal_dt <= 0:
            raise ValueError("dt_ceiling and nominal_dt must be positive")
        self.clock = clock
        self.dt_ceiling = dt_ceiling
        self.nominal_dt = nominal_dt

    def extract_dt(self, frame: Frame, prior_timestamp: int | None) -> Delta:
        """Return the elapsed time since ``prior_timestamp``.

        The first sample of a source has no prior timestamp and gets the
        nominal sample period. A dt above the ceiling is clamped and flagged
        as a gap; the caller reports it. Raises NonPositiveDelta when the
        unwrapped elapsed time is zero or negative.
        """
        if prior_timestamp is None:
            return Delta(seconds=self.nominal_dt, ticks=0, raw_seconds=self.nominal_dt)

        current = frame.header.timestamp
        rollover = self.clock.is_rollover(prior_timestamp, current)
        ticks = self.clock.elapsed_ticks(prior_timestamp, current)
        if ticks <= 0:
            raise NonPositiveDelta(f"timestamp {current} after {prior_timestamp} gives {ticks} ticks")

        raw = self.clock.to_seconds(ticks)
        if raw > self.dt_ceiling:
            return Delta(seconds=self.dt_ceiling, ticks=ticks, raw_seconds=raw, gap=True, rollover=rollover)
        return Delta(seconds=raw, ticks=ticks, raw_seconds=raw, rollover=rollover)
