"""IDTP Frame Codec.

Layout (protocol version 1, little-endian):

    [header(18)][payload(length)][checksum(4)][auth_tag(32)]

Decoding is pure and stateless. A datagram must hold exactly one complete
frame; there is no reassembly.
"""
from __future__ import annotations

import dataclasses
import struct
from dataclasses import dataclass, field
from typing import ClassVar, Union

from .errors import Malformed, UnsupportedVersion
from .protocol import (
    AUTH_TAG_LEN,
    CHECKSUM_FMT,
    CHECKSUM_LEN,
    HEADER_FMT,
    HEADER_LEN,
    MIN_FRAME_LEN,
    SUPPORTED_VERSIONS,
    TRAILER_LEN,
    TYPE_DIAGNOSTIC,
    TYPE_IMU10,
    TYPE_IMU3_ACC,
    TYPE_IMU3_GYR,
    TYPE_IMU3_MAG,
    TYPE_IMU6,
    TYPE_IMU9,
    TYPE_IMU_QUAT,
    VERSION,
)

Vec3 = tuple[float, float, float]

# Diagnostic prefix: [Status(1) | Temperature(4) | MessageLen(1)]
DIAGNOSTIC_FMT = "<BfB"
DIAGNOSTIC_PREFIX_LEN = 6


def _f32(value: float) -> float:
    return struct.unpack("<f", struct.pack("<f", float(value)))[0]


def _vec(values, size: int, name: str) -> tuple[float, ...]:
    vals = tuple(values)
    if len(vals) != size:
        raise ValueError(f"{name} must have {size} components")
    return tuple(_f32(v) for v in vals)


@dataclass(frozen=True)
class Imu3Acc:
    """Accelerometer only (m/s^2)."""

    TYPE_ID: ClassVar[int] = TYPE_IMU3_ACC
    FORMAT: ClassVar[str] = "<3f"

    acc: Vec3

    def __post_init__(self) -> None:
        object.__setattr__(self, "acc", _vec(self.acc, 3, "acc"))

    def values(self) -> tuple[float, ...]:
        return self.acc

    @classmethod
    def from_values(cls, v: tuple[float, ...]) -> Imu3Acc:
        return cls(acc=v[0:3])


@dataclass(frozen=True)
class Imu3Gyr:
    """Gyroscope only (rad/s)."""

    TYPE_ID: ClassVar[int] = TYPE_IMU3_GYR
    FORMAT: ClassVar[str] = "<3f"

    gyr: Vec3

    def __post_init__(self) -> None:
        object.__setattr__(self, "gyr", _vec(self.gyr, 3, "gyr"))

    def values(self) -> tuple[float, ...]:
        return self.gyr

    @classmethod
    def from_values(cls, v: tuple[float, ...]) -> Imu3Gyr:
        return cls(gyr=v[0:3])


@dataclass(frozen=True)
class Imu3Mag:
    """Magnetometer only."""

    TYPE_ID: ClassVar[int] = TYPE_IMU3_MAG
    FORMAT: ClassVar[str] = "<3f"

    mag: Vec3

    def __post_init__(self) -> None:
        object.__setattr__(self, "mag", _vec(self.mag, 3, "mag"))

    def values(self) -> tuple[float, ...]:
        return self.mag

    @classmethod
    def from_values(cls, v: tuple[float, ...]) -> Imu3Mag:
        return cls(mag=v[0:3])


@dataclass(frozen=True)
class Imu6:
    TYPE_ID: ClassVar[int] = TYPE_IMU6
    FORMAT: ClassVar[str] = "<6f"

    acc: Vec3
    gyr: Vec3

    def __post_init__(self) -> None:
        object.__setattr__(self, "acc", _vec(self.acc, 3, "acc"))
        object.__setattr__(self, "gyr", _vec(self.gyr, 3, "gyr"))

    def values(self) -> tuple[float, ...]:
        return self.acc + self.gyr

    @classmethod
    def from_values(cls, v: tuple[float, ...]) -> Imu6:
        return cls(acc=v[0:3], gyr=v[3:6])


@dataclass(frozen=True)
class Imu9:
    TYPE_ID: ClassVar[int] = TYPE_IMU9
    FORMAT: ClassVar[str] = "<9f"

    acc: Vec3
    gyr: Vec3
    mag: Vec3

    def __post_init__(self) -> None:
        object.__setattr__(self, "acc", _vec(self.acc, 3, "acc"))
        object.__setattr__(self, "gyr", _vec(self.gyr, 3, "gyr"))
        object.__setattr__(self, "mag", _vec(self.mag, 3, "mag"))

    def values(self) -> tuple[float, ...]:
        return self.acc + self.gyr + self.mag

    @classmethod
    def from_values(cls, v: tuple[float, ...]) -> Imu9:
        return cls(acc=v[0:3], gyr=v[3:6], mag=v[6:9])


@dataclass(frozen=True)
class Imu10:
    """Accelerometer, gyroscope, magnetometer and barometer (Pa)."""

    TYPE_ID: ClassVar[int] = TYPE_IMU10
    FORMAT: ClassVar[str] = "<10f"

    acc: Vec3
    gyr: Vec3
    mag: Vec3
    baro: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "acc", _vec(self.acc, 3, "acc"))
        object.__setattr__(self, "gyr", _vec(self.gyr, 3, "gyr"))
        object.__setattr__(self, "mag", _vec(self.mag, 3, "mag"))
        object.__setattr__(self, "baro", _f32(self.baro))

    def values(self) -> tuple[float, ...]:
        return self.acc + self.gyr + self.mag + (self.baro,)

    @classmethod
    def from_values(cls, v: tuple[float, ...]) -> Imu10:
        return cls(acc=v[0:3], gyr=v[3:6], mag=v[6:9], baro=v[9])


@dataclass(frozen=True)
class ImuQuat:
    """Attitude as a Hamiltonian quaternion (w, x, y, z)."""

    TYPE_ID: ClassVar[int] = TYPE_IMU_QUAT
    FORMAT: ClassVar[str] = "<4f"

    w: float
    x: float
    y: float
    z: float

    def __post_init__(self) -> None:
        for name in ("w", "x", "y", "z"):
            object.__setattr__(self, name, _f32(getattr(self, name)))

    def values(self) -> tuple[float, ...]:
        return (self.w, self.x, self.y, self.z)

    @classmethod
    def from_values(cls, v: tuple[float, ...]) -> ImuQuat:
        return cls(w=v[0], x=v[1], y=v[2], z=v[3])


@dataclass(frozen=True)
class Diagnostic:
    """Device health record with a length-prefixed UTF-8 message."""

    TYPE_ID: ClassVar[int] = TYPE_DIAGNOSTIC

    status: int
    temperature: float
    message: str = ""

    def __post_init__(self) -> None:
        if not 0 <= int(self.status) <= 0xFF:
            raise ValueError(f"status must fit in one byte, got {self.status}")
        if len(self.message.encode("utf-8")) > 0xFF:
            raise ValueError("message exceeds 255 encoded bytes")
        object.__setattr__(self, "status", int(self.status))
        object.__setattr__(self, "temperature", _f32(self.temperature))


Payload = Union[Imu3Acc, Imu3Gyr, Imu3Mag, Imu6, Imu9, Imu10, ImuQuat, Diagnostic]

FIXED_PAYLOADS: dict[int, type] = {
    cls.TYPE_ID: cls for cls in (Imu3Acc, Imu3Gyr, Imu3Mag, Imu6, Imu9, Imu10, ImuQuat)
}

PAYLOAD_NAMES: dict[int, str] = {
    type_id: cls.__name__ for type_id, cls in FIXED_PAYLOADS.items()
}
PAYLOAD_NAMES[TYPE_DIAGNOSTIC] = Diagnostic.__name__


@dataclass(frozen=True)
class FrameHeader:
    version: int
    payload_type: int
    device_id: int
    sequence: int
    timestamp: int
    length: int

    def to_bytes(self) -> bytes:
        try:
            return struct.pack(
                HEADER_FMT,
                self.version,
                self.payload_type,
                self.device_id,
                self.sequence,
                self.timestamp,
                self.length,
            )
        except struct.error as e:
            raise ValueError(f"Header field out of range: {e}") from e


@dataclass(frozen=True)
class Frame:
    header: FrameHeader
    payload: Payload
    checksum: int
    auth_tag: bytes
    # Header+payload bytes exactly as received; empty for locally built frames.
    body: bytes = field(default=b"", compare=False, repr=False)

    @property
    def signed_bytes(self) -> bytes:
        return self.body if self.body else encode_body(self.header, self.payload)

    def as_dict(self) -> dict:
        h = self.header
        return {
            "version": h.version,
            "payload_type": PAYLOAD_NAMES.get(h.payload_type, f"0x{h.payload_type:02x}"),
            "device_id": h.device_id,
            "sequence": h.sequence,
            "timestamp": h.timestamp,
            "length": h.length,
            "payload": dataclasses.asdict(self.payload),
            "checksum": f"{self.checksum:08x}",
            "auth_tag": self.auth_tag.hex(),
        }


def encode_payload(payload: Payload) -> bytes:
    if isinstance(payload, Diagnostic):
        msg = payload.message.encode("utf-8")
        return struct.pack(DIAGNOSTIC_FMT, payload.status, payload.temperature, len(msg)) + msg
    return struct.pack(payload.FORMAT, *payload.values())


def _decode_diagnostic(data: bytes) -> Diagnostic:
    if len(data) < DIAGNOSTIC_PREFIX_LEN:
        raise Malformed(f"diagnostic payload too short ({len(data)} bytes)")
    status, temperature, msg_len = struct.unpack_from(DIAGNOSTIC_FMT, data)
    if DIAGNOSTIC_PREFIX_LEN + msg_len != len(data):
        raise Malformed(
            f"diagnostic message length {msg_len} does not match {len(data) - DIAGNOSTIC_PREFIX_LEN} bytes"
        )
    try:
        message = data[DIAGNOSTIC_PREFIX_LEN:].decode("utf-8")
    except UnicodeDecodeError as e:
        raise Malformed(f"diagnostic message is not UTF-8: {e}") from e
    return Diagnostic(status=status, temperature=temperature, message=message)


def decode_payload(type_id: int, data: bytes) -> Payload:
    if type_id == TYPE_DIAGNOSTIC:
        return _decode_diagnostic(data)

    cls = FIXED_PAYLOADS.get(type_id)
    if cls is None:
        raise Malformed(f"unknown payload type 0x{type_id:02x}")

    size = struct.calcsize(cls.FORMAT)
    if len(data) != size:
        raise Malformed(f"{cls.__name__} payload must be {size} bytes, got {len(data)}")
    return cls.from_values(struct.unpack(cls.FORMAT, data))


def make_header(
    payload: Payload,
    *,
    device_id: int,
    sequence: int,
    timestamp: int,
    version: int = VERSION,
) -> FrameHeader:
    return FrameHeader(
        version=version,
        payload_type=payload.TYPE_ID,
        device_id=device_id,
        sequence=sequence,
        timestamp=timestamp,
        length=len(encode_payload(payload)),
    )


def encode_body(header: FrameHeader, payload: Payload) -> bytes:
    data = encode_payload(payload)
    if header.payload_type != payload.TYPE_ID:
        raise ValueError(
            f"Header type 0x{header.payload_type:02x} does not match {type(payload).__name__}"
        )
    if header.length != len(data):
        raise ValueError(f"Header length {header.length} != payload size {len(data)}")
    return header.to_bytes() + data


def encode(frame: Frame) -> bytes:
    """Serialize a frame. Used by simulation and test paths only."""
    if len(frame.auth_tag) != AUTH_TAG_LEN:
        raise ValueError(f"auth_tag must be {AUTH_TAG_LEN} bytes")
    try:
        checksum = struct.pack(CHECKSUM_FMT, frame.checksum)
    except struct.error as e:
        raise ValueError(f"Checksum out of range: {e}") from e
    return encode_body(frame.header, frame.payload) + checksum + bytes(frame.auth_tag)


def decode(data: bytes) -> Frame:
    data = bytes(data)
    if not data:
        raise Malformed("empty datagram")

    # Header size depends on version, so check it first.
    if data[0] not in SUPPORTED_VERSIONS:
        raise UnsupportedVersion(f"version {data[0]}")

    if len(data) < MIN_FRAME_LEN:
        raise Malformed(f"{len(data)} bytes, minimum frame is {MIN_FRAME_LEN}")

    version, ptype, device_id, sequence, timestamp, length = struct.unpack_from(HEADER_FMT, data)

    received = len(data) - HEADER_LEN - TRAILER_LEN
    if length != received:
        raise Malformed(f"declared payload length {length} != {received} bytes received")

    body_end = HEADER_LEN + length
    payload = decode_payload(ptype, data[HEADER_LEN:body_end])
    (checksum,) = struct.unpack_from(CHECKSUM_FMT, data, body_end)
    auth_tag = data[body_end + CHECKSUM_LEN:]

    header = FrameHeader(
        version=version,
        payload_type=ptype,
        device_id=device_id,
        sequence=sequence,
        timestamp=timestamp,
        length=length,
    )
    return Frame(header=header, payload=payload, checksum=checksum, auth_tag=auth_tag, body=data[:body_end])
