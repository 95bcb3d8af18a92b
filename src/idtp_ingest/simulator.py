"""Synthetic IMU device.

Produces correctly sealed IDTP datagrams with advancing sequence numbers and
hardware timestamps, for exercising the receive path without hardware.
"""
from __future__ import annotations

import logging
import random
import socket
import time
from typing import Iterator

from idtp_core.frame import (
    FIXED_PAYLOADS,
    Frame,
    Imu3Acc,
    Imu3Gyr,
    Imu3Mag,
    Imu6,
    Imu9,
    Imu10,
    ImuQuat,
    Payload,
    encode,
    make_header,
)
from idtp_core.protocol import DEFAULT_SAMPLE_RATE_HZ, SEQUENCE_MODULUS, TYPE_IMU9
from idtp_verify.crypto import SecurityContext
from idtp_verify.logic import seal
from .timing import TickClock

logger = logging.getLogger(__name__)

# Sensor ranges
ACC_RANGE = 157.0  # +/-16 g
GYR_RANGE = 35.0  # +/-2000 deg/s
MAG_RANGE = 100.0
BARO_RANGE = (90_000.0, 110_000.0)


class ImuSimulator:
    def __init__(
        self,
        ctx: SecurityContext,
        payload_type: int = TYPE_IMU9,
        device_id: int = 0xABCD,
        sample_rate_hz: float = DEFAULT_SAMPLE_RATE_HZ,
        clock: TickClock | None = None,
        start_sequence: int = 0,
        start_timestamp: int = 0,
        seed: int | None = 1,
    ) -> None:
        if payload_type not in FIXED_PAYLOADS:
            raise ValueError(f"Cannot simulate payload type 0x{payload_type:02x}")
        if sample_rate_hz <= 0:
            raise ValueError("sample_rate_hz must be positive")
        self.ctx = ctx
        self.payload_type = payload_type
        self.device_id = device_id
        self.sample_rate_hz = sample_rate_hz
        self.clock = clock or TickClock()
        self.sequence = start_sequence % SEQUENCE_MODULUS
        self.timestamp = start_timestamp % self.clock.modulus
        self.ticks_per_sample = max(1, round(self.clock.tick_hz / sample_rate_hz))
        self.sent = 0
        self._rng = random.Random(seed)

    def _vec(self, limit: float) -> tuple[float, float, float]:
        return tuple(self._rng.uniform(-limit, limit) for _ in range(3))

    def payload(self) -> Payload:
        ptype = self.payload_type
        if ptype == Imu3Acc.TYPE_ID:
            return Imu3Acc(acc=self._vec(ACC_RANGE))
        if ptype == Imu3Gyr.TYPE_ID:
            return Imu3Gyr(gyr=self._vec(GYR_RANGE))
        if ptype == Imu3Mag.TYPE_ID:
            return Imu3Mag(mag=self._vec(MAG_RANGE))
        if ptype == Imu6.TYPE_ID:
            return Imu6(acc=self._vec(ACC_RANGE), gyr=self._vec(GYR_RANGE))
        if ptype == Imu9.TYPE_ID:
            return Imu9(acc=self._vec(ACC_RANGE), gyr=self._vec(GYR_RANGE), mag=self._vec(MAG_RANGE))
        if ptype == Imu10.TYPE_ID:
            return Imu10(
                acc=self._vec(ACC_RANGE),
                gyr=self._vec(GYR_RANGE),
                mag=self._vec(MAG_RANGE),
                baro=self._rng.uniform(*BARO_RANGE),
            )
        return ImuQuat(*(self._rng.uniform(-1.0, 1.0) for _ in range(4)))

    def next_frame(self, payload: Payload | None = None) -> Frame:
        """Seal the next frame and advance sequence and timestamp (both wrap)."""
        if payload is None:
            payload = self.payload()
        header = make_header(
            payload,
            device_id=self.device_id,
            sequence=self.sequence,
            timestamp=self.timestamp,
        )
        frame = seal(header, payload, self.ctx)

        self.sequence = (self.sequence + 1) % SEQUENCE_MODULUS
        self.timestamp = (self.timestamp + self.ticks_per_sample) % self.clock.modulus
        self.sent += 1
        return frame

    def next_datagram(self, payload: Payload | None = None) -> bytes:
        return self.ctx.seal_envelope(encode(self.next_frame(payload)))

    def datagrams(self, count: int) -> Iterator[bytes]:
        for _ in range(count):
            yield self.next_datagram()

    def send_udp(self, host: str, port: int, count: int | None = None, realtime: bool = True) -> int:
        """Send ``count`` datagrams (forever when None). Returns the number sent."""
        period = 1.0 / self.sample_rate_hz
        sent = 0
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            next_due = time.monotonic()
            while count is None or sent < count:
                sock.sendto(self.next_datagram(), (host, port))
                sent += 1
                if sent % 1000 == 0:
                    logger.info("Sent %d frames to %s:%d (seq=%d)", sent, host, port, self.sequence)
                if realtime:
                    next_due += period
                    delay = next_due - time.monotonic()
                    if delay > 0:
                        time.sleep(delay)
        finally:
            sock.close()
        return sent
