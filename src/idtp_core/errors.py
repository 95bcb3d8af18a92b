"""IDTP ingestion error taxonomy.

Every frame-level error carries a stable code from ``const.ERRORS``. All of
them are local to one frame; only ``SecurityContextError`` is fatal.
"""
from __future__ import annotations

import logging

from .const import ERRORS


class IngestError(Exception):
    code = "E_INGEST"
    log_level = logging.INFO

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(f"{self.message}: {detail}" if detail else self.message)

    @property
    def message(self) -> str:
        return ERRORS.get(self.code, "Frame rejected")

    def as_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "detail": self.detail}


class DecodeError(IngestError):
    pass


class Malformed(DecodeError):
    code = "E_MALFORMED"


class UnsupportedVersion(DecodeError):
    code = "E_UNSUPPORTED_VERSION"


class IntegrityError(IngestError):
    pass


class ChecksumMismatch(IntegrityError):
    code = "E_CHECKSUM_MISMATCH"


class AuthMismatch(IntegrityError):
    code = "E_AUTH_MISMATCH"
    log_level = logging.WARNING


class EnvelopeInvalid(IntegrityError):
    code = "E_ENVELOPE_INVALID"
    log_level = logging.WARNING


class ReplayError(IngestError):
    pass


class ReplayDetected(ReplayError):
    code = "E_REPLAY_DETECTED"
    log_level = logging.WARNING


class ReplayResync(ReplayError):
    """Reported, not raised: the frame was accepted as a new baseline."""

    code = "E_REPLAY_RESYNC"
    log_level = logging.WARNING


class TimingError(IngestError):
    pass


class NonPositiveDelta(TimingError):
    code = "E_NON_POSITIVE_DELTA"


class GapDetected(TimingError):
    code = "E_GAP_DETECTED"
    log_level = logging.WARNING


class SecurityContextError(ValueError):
    """Missing or invalid key material. Ingestion must not start."""
