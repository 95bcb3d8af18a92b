import pytest

from idtp_core.frame import Imu6, encode, make_header
from idtp_verify.crypto import SecurityContext
from idtp_verify.logic import seal

TEST_KEY = bytes(range(32))
ENVELOPE_KEY = bytes(range(32, 64))


@pytest.fixture
def ctx():
    return SecurityContext(hmac_key=TEST_KEY)


@pytest.fixture
def envelope_ctx():
    return SecurityContext(hmac_key=TEST_KEY, envelope_key=ENVELOPE_KEY)


def imu6(i=0):
    return Imu6(acc=(0.5 * i, -9.81, 1.25), gyr=(0.01, 0.02 * i, -0.03))


def make_frame(ctx, sequence, timestamp, device_id=7, payload=None):
    payload = payload or imu6(sequence)
    header = make_header(payload, device_id=device_id, sequence=sequence, timestamp=timestamp)
    return seal(header, payload, ctx)


def make_datagram(ctx, sequence, timestamp, device_id=7, payload=None):
    return ctx.seal_envelope(encode(make_frame(ctx, sequence, timestamp, device_id, payload)))
