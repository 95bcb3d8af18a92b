import struct

import pytest

from idtp_core.errors import Malformed, UnsupportedVersion
from idtp_core.frame import (
    Diagnostic,
    Frame,
    Imu3Acc,
    Imu9,
    Imu10,
    ImuQuat,
    decode,
    encode,
    make_header,
)
from idtp_core.protocol import HEADER_LEN, MIN_FRAME_LEN, TRAILER_LEN

from conftest import make_frame


def _frame(payload, sequence=1, timestamp=1000):
    header = make_header(payload, device_id=0x1234, sequence=sequence, timestamp=timestamp)
    return Frame(header=header, payload=payload, checksum=0xDEADBEEF, auth_tag=bytes(range(32)))


@pytest.mark.parametrize(
    "payload",
    [
        Imu3Acc(acc=(0.1, 0.2, 9.81)),
        Imu9(acc=(1, 2, 3), gyr=(0.1, 0.2, 0.3), mag=(40, -12, 5)),
        Imu10(acc=(1, 2, 3), gyr=(0, 0, 0), mag=(1, 1, 1), baro=101325.0),
        ImuQuat(1.0, 0.0, 0.0, 0.0),
        Diagnostic(status=3, temperature=41.5, message="gyro saturated"),
    ],
)
def test_decode_inverts_encode(payload):
    frame = _frame(payload)
    assert decode(encode(frame)) == frame


def test_header_layout_is_little_endian():
    payload = Imu3Acc(acc=(0.0, 0.0, 0.0))
    data = encode(_frame(payload, sequence=0x01020304, timestamp=0x0A0B))

    assert data[0] == 1
    assert data[1] == 0x00
    assert data[2:4] == b"\x34\x12"
    assert data[4:8] == b"\x04\x03\x02\x01"
    assert struct.unpack_from("<Q", data, 8)[0] == 0x0A0B
    assert struct.unpack_from("<H", data, 16)[0] == 12
    assert len(data) == HEADER_LEN + 12 + TRAILER_LEN


def test_payload_floats_are_single_precision():
    p = Imu3Acc(acc=(0.1, 0.2, 0.3))
    assert p.acc[0] == struct.unpack("<f", struct.pack("<f", 0.1))[0]


def test_empty_datagram_is_malformed():
    with pytest.raises(Malformed):
        decode(b"")


def test_unknown_version_rejected_before_length():
    with pytest.raises(UnsupportedVersion):
        decode(b"\x02" + b"\x00" * 4)


def test_short_datagram_is_malformed():
    with pytest.raises(Malformed):
        decode(b"\x01" + b"\x00" * (MIN_FRAME_LEN - 2))


def test_declared_length_longer_than_received(ctx):
    data = bytearray(encode(make_frame(ctx, 1, 1000)))
    struct.pack_into("<H", data, 16, 200)
    with pytest.raises(Malformed, match="declared payload length"):
        decode(bytes(data))


def test_declared_length_shorter_than_received(ctx):
    data = encode(make_frame(ctx, 1, 1000)) + b"\x00"
    with pytest.raises(Malformed):
        decode(data)


def test_unknown_payload_type_is_malformed(ctx):
    data = bytearray(encode(make_frame(ctx, 1, 1000)))
    data[1] = 0x7F
    with pytest.raises(Malformed, match="unknown payload type"):
        decode(bytes(data))


def test_payload_size_must_match_type(ctx):
    # Imu6 body relabelled as Imu9: length field is self-consistent, size is not.
    data = bytearray(encode(make_frame(ctx, 1, 1000)))
    data[1] = Imu9.TYPE_ID
    with pytest.raises(Malformed, match="Imu9 payload must be 36 bytes"):
        decode(bytes(data))


def test_diagnostic_message_length_checked():
    frame = _frame(Diagnostic(status=1, temperature=20.0, message="ok"))
    data = bytearray(encode(frame))
    data[HEADER_LEN + 5] = 9
    with pytest.raises(Malformed, match="diagnostic message length"):
        decode(bytes(data))


def test_diagnostic_rejects_oversized_message():
    with pytest.raises(ValueError):
        Diagnostic(status=0, temperature=0.0, message="x" * 256)


def test_decode_keeps_received_body(ctx):
    frame = make_frame(ctx, 5, 5000)
    decoded = decode(encode(frame))
    assert decoded.body == encode(frame)[: HEADER_LEN + frame.header.length]
    assert decoded.signed_bytes == decoded.body


def test_header_out_of_range_rejected_on_encode():
    with pytest.raises(ValueError):
        make_header(Imu3Acc(acc=(0, 0, 0)), device_id=0x10000, sequence=0, timestamp=0).to_bytes()


def test_as_dict_names_payload_type(ctx):
    d = make_frame(ctx, 3, 300).as_dict()
    assert d["payload_type"] == "Imu6"
    assert d["sequence"] == 3
    assert len(d["auth_tag"]) == 64
