"""IDTP wire protocol constants.

Single source of truth for frame layout, payload type ids and clock defaults.
Any field reordering or width change is a breaking version bump.
"""

VERSION = 1
SUPPORTED_VERSIONS = frozenset({VERSION})

# Header: [Ver(1) | Type(1) | Device(2) | Seq(4) | Timestamp(8) | Length(2)] = 18 bytes
HEADER_FMT = "<BBHIQH"
HEADER_LEN = 18

# Trailer: [CRC-32(4) | HMAC-SHA256(32)] = 36 bytes
CHECKSUM_FMT = "<I"
CHECKSUM_LEN = 4
AUTH_TAG_LEN = 32
TRAILER_LEN = CHECKSUM_LEN + AUTH_TAG_LEN

MIN_FRAME_LEN = HEADER_LEN + TRAILER_LEN
MAX_PAYLOAD_LEN = 0xFFFF
MAX_DATAGRAM_SIZE = 2048

# Standard payload type ids
TYPE_IMU3_ACC = 0x00
TYPE_IMU3_GYR = 0x01
TYPE_IMU3_MAG = 0x02
TYPE_IMU6 = 0x03
TYPE_IMU9 = 0x04
TYPE_IMU10 = 0x05
TYPE_IMU_QUAT = 0x06
TYPE_DIAGNOSTIC = 0x10

SEQUENCE_MODULUS = 1 << 32

# Hardware clock: microsecond ticks from a 32-bit counter
DEFAULT_TICK_HZ = 1_000_000
DEFAULT_COUNTER_BITS = 32

DEFAULT_SAMPLE_RATE_HZ = 200.0
DEFAULT_DT_CEILING = 0.1
DEFAULT_SEQUENCE_WINDOW = 1 << 16
# Consecutive advancing frames beyond the window needed to re-baseline a source
DEFAULT_RESYNC_AFTER = 3
DEFAULT_HISTORY_SIZE = 32
DEFAULT_QUEUE_SIZE = 128
DEFAULT_UDP_PORT = 5555

HMAC_KEY_MIN_LEN = 16
