"""IDTP Core - Wire format, payloads and error taxonomy."""
from .frame import (
    Diagnostic,
    Frame,
    FrameHeader,
    Imu10,
    Imu3Acc,
    Imu3Gyr,
    Imu3Mag,
    Imu6,
    Imu9,
    ImuQuat,
    decode,
    encode,
    make_header,
)

__all__ = [
    "Diagnostic",
    "Frame",
    "FrameHeader",
    "Imu10",
    "Imu3Acc",
    "Imu3Gyr",
    "Imu3Mag",
    "Imu6",
    "Imu9",
    "ImuQuat",
    "decode",
    "encode",
    "make_header",
]
