from __future__ import annotations

import hashlib
import hmac
import zlib
from dataclasses import dataclass
from pathlib import Path

from nacl.exceptions import CryptoError
from nacl.secret import SecretBox

from idtp_core.errors import EnvelopeInvalid, SecurityContextError
from idtp_core.protocol import HMAC_KEY_MIN_LEN

SUPPORTED_CHECKSUMS = frozenset({"crc32"})


def crc32(data: bytes) -> int:
    return zlib.crc32(data) & 0xFFFFFFFF


def hmac_sha256(key: bytes, message: bytes) -> bytes:
    return hmac.new(key, message, hashlib.sha256).digest()


def tags_equal(expected: bytes, received: bytes) -> bool:
    # Must not short-circuit on the first differing byte.
    return hmac.compare_digest(expected, received)


@dataclass(frozen=True, repr=False)
class SecurityContext:
    """Shared secret material. Read-only after construction, safe to share across threads."""

    hmac_key: bytes
    checksum: str = "crc32"
    envelope_key: bytes | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.hmac_key, (bytes, bytearray)) or not self.hmac_key:
            raise SecurityContextError("HMAC key is missing")
        if len(self.hmac_key) < HMAC_KEY_MIN_LEN:
            raise SecurityContextError(
                f"HMAC key must be at least {HMAC_KEY_MIN_LEN} bytes, got {len(self.hmac_key)}"
            )
        if self.checksum not in SUPPORTED_CHECKSUMS:
            raise SecurityContextError(f"Unsupported checksum algorithm {self.checksum!r}")
        object.__setattr__(self, "hmac_key", bytes(self.hmac_key))

        box = None
        if self.envelope_key is not None:
            if len(self.envelope_key) != SecretBox.KEY_SIZE:
                raise SecurityContextError(
                    f"Envelope key must be {SecretBox.KEY_SIZE} bytes, got {len(self.envelope_key)}"
                )
            object.__setattr__(self, "envelope_key", bytes(self.envelope_key))
            box = SecretBox(self.envelope_key)
        object.__setattr__(self, "_box", box)

    def __repr__(self) -> str:
        return f"SecurityContext(checksum={self.checksum!r}, envelope={self.has_envelope})"

    @property
    def has_envelope(self) -> bool:
        return self._box is not None

    def compute_checksum(self, data: bytes) -> int:
        return crc32(data)

    def compute_tag(self, data: bytes) -> bytes:
        return hmac_sha256(self.hmac_key, data)

    def seal_envelope(self, frame_bytes: bytes) -> bytes:
        """Encrypt a frame into a datagram: [nonce(24)][ciphertext]."""
        if self._box is None:
            return frame_bytes
        return bytes(self._box.encrypt(frame_bytes))

    def open_envelope(self, datagram: bytes) -> bytes:
        if self._box is None:
            return datagram
        try:
            return self._box.decrypt(datagram)
        except CryptoError as e:
            raise EnvelopeInvalid(str(e) or type(e).__name__) from e


def _key_bytes(path: Path | None, hex_value: str | None) -> bytes | None:
    if path is not None:
        try:
            return Path(path).read_bytes()
        except OSError as e:
            raise SecurityContextError(f"Unable to read key material: {e}") from e
    if hex_value:
        try:
            return bytes.fromhex(hex_value.strip())
        except ValueError as e:
            raise SecurityContextError(f"Key is not valid hex: {e}") from e
    return None


def load_context(
    hmac_key_file: Path | None = None,
    hmac_key: str | None = None,
    envelope_key_file: Path | None = None,
    envelope_key: str | None = None,
) -> SecurityContext:
    """Build a context from provisioned key material.

    Key files hold raw bytes as written by external key tooling; the
    ``*_key`` arguments take hex strings. Files win over hex values.
    """
    return SecurityContext(
        hmac_key=_key_bytes(hmac_key_file, hmac_key) or b"",
        envelope_key=_key_bytes(envelope_key_file, envelope_key),
    )
