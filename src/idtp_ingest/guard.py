"""Replay Guard.

Per-source tracker of the last admitted (sequence, timestamp). Admission is
split from commit so the pipeline only advances state for frames that make
it through every stage; a rejected frame never touches the state.

A source whose sequence jumps beyond the window (link outage, lost
receiver) is re-baselined once ``resync_after`` consecutive frames beyond
the window each advance in both sequence and timestamp. Backward jumps
(device reboot) are never re-baselined automatically; they need ``reset``.
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum

from idtp_core.errors import ReplayDetected
from idtp_core.frame import Frame
from idtp_core.protocol import DEFAULT_RESYNC_AFTER, DEFAULT_SEQUENCE_WINDOW, SEQUENCE_MODULUS
from .timing import TickClock


class GuardPhase(Enum):
    UNINITIALIZED = "uninitialized"
    TRACKING = "tracking"


@dataclass
class ReplayState:
    last_accepted_sequence: int | None = None
    last_accepted_timestamp: int | None = None

    @property
    def phase(self) -> GuardPhase:
        if self.last_accepted_sequence is None:
            return GuardPhase.UNINITIALIZED
        return GuardPhase.TRACKING


@dataclass(frozen=True)
class Admission:
    sequence: int
    timestamp: int
    prior_sequence: int | None
    prior_timestamp: int | None
    rollover: bool = False
    # The frame starts a new baseline; there is no usable prior timestamp.
    resync: bool = False


class ReplayGuard:
    """Rejects duplicate, stale and out-of-window frames for one source.

    Tracking rule: the sequence must advance by 1..sequence_window (mod 2**32),
    and the timestamp must not decrease unless the decrease is a recognized
    counter rollover or stays within timestamp_tolerance ticks.
    """

    def __init__(
        self,
        clock: TickClock,
        sequence_window: int = DEFAULT_SEQUENCE_WINDOW,
        timestamp_tolerance: int = 0,
        resync_after: int = DEFAULT_RESYNC_AFTER,
    ) -> None:
        if not 0 < sequence_window < SEQUENCE_MODULUS // 2:
            raise ValueError(f"sequence_window must be in (0, {SEQUENCE_MODULUS // 2})")
        if timestamp_tolerance < 0:
            raise ValueError("timestamp_tolerance must be non-negative")
        if resync_after < 0:
            raise ValueError("resync_after must be non-negative (0 disables resync)")
        self.clock = clock
        self.sequence_window = sequence_window
        self.timestamp_tolerance = timestamp_tolerance
        self.resync_after = resync_after
        self._state = ReplayState()
        # Last out-of-window frame and the length of the advancing run it ends.
        self._candidate: tuple[int, int] | None = None
        self._candidate_run = 0

    @property
    def state(self) -> ReplayState:
        return dataclasses.replace(self._state)

    @property
    def phase(self) -> GuardPhase:
        return self._state.phase

    @property
    def resync_progress(self) -> int:
        return self._candidate_run

    def admit(self, frame: Frame) -> Admission:
        """Decide on a frame without changing the tracked state.

        Out-of-window frames still update the resync candidate, so callers
        must only pass authenticated frames.
        """
        seq = frame.header.sequence
        ts = frame.header.timestamp
        last_seq = self._state.last_accepted_sequence
        last_ts = self._state.last_accepted_timestamp

        if last_seq is None or last_ts is None:
            return Admission(sequence=seq, timestamp=ts, prior_sequence=None, prior_timestamp=None)

        # Serial number arithmetic: sequence numbers wrap at 2**32.
        advance = (seq - last_seq) % SEQUENCE_MODULUS
        if advance == 0:
            raise ReplayDetected(f"duplicate sequence {seq}")
        if advance >= SEQUENCE_MODULUS // 2:
            raise ReplayDetected(f"stale sequence {seq}, last accepted {last_seq}")
        if advance > self.sequence_window:
            if self._track_candidate(seq, ts):
                return Admission(
                    sequence=seq,
                    timestamp=ts,
                    prior_sequence=last_seq,
                    prior_timestamp=last_ts,
                    resync=True,
                )
            raise ReplayDetected(
                f"sequence {seq} is {advance} past {last_seq}, window is {self.sequence_window}"
                f" (resync {self._candidate_run}/{self.resync_after})"
            )

        rollover = self.clock.is_rollover(last_ts, ts)
        if ts < last_ts and not rollover and last_ts - ts > self.timestamp_tolerance:
            raise ReplayDetected(f"timestamp {ts} regresses from {last_ts} without rollover")

        return Admission(
            sequence=seq,
            timestamp=ts,
            prior_sequence=last_seq,
            prior_timestamp=last_ts,
            rollover=rollover,
        )

    def _track_candidate(self, seq: int, ts: int) -> bool:
        if not self.resync_after:
            return False
        follows = False
        if self._candidate is not None:
            cand_seq, cand_ts = self._candidate
            step = (seq - cand_seq) % SEQUENCE_MODULUS
            follows = 0 < step <= self.sequence_window and self.clock.elapsed_ticks(cand_ts, ts) > 0
        self._candidate_run = self._candidate_run + 1 if follows else 1
        self._candidate = (seq, ts)
        return self._candidate_run >= self.resync_after

    def commit(self, admission: Admission) -> None:
        if (admission.prior_sequence, admission.prior_timestamp) != (
            self._state.last_accepted_sequence,
            self._state.last_accepted_timestamp,
        ):
            raise RuntimeError("Stale admission: guard state changed since admit()")

        ts = admission.timestamp
        prior_ts = admission.prior_timestamp
        # Keep the tracked timestamp non-decreasing for in-tolerance jitter.
        if not admission.resync and prior_ts is not None and ts < prior_ts and not admission.rollover:
            ts = prior_ts
        self._state = ReplayState(last_accepted_sequence=admission.sequence, last_accepted_timestamp=ts)
        self._candidate = None
        self._candidate_run = 0

    def check(self, frame: Frame) -> Admission:
        admission = self.admit(frame)
        self.commit(admission)
        return admission

    def reset(self) -> None:
        self._state = ReplayState()
        self._candidate = None
        self._candidate_run = 0
