from __future__ import annotations

from idtp_core.errors import AuthMismatch, ChecksumMismatch, IngestError
from idtp_core.frame import Frame, FrameHeader, Payload, decode, encode_body
from .crypto import SecurityContext, tags_equal


def verify(frame: Frame, ctx: SecurityContext) -> None:
    """Check checksum, then authentication tag. Raises on the first failure."""
    body = frame.signed_bytes

    # Cheap check first: catches transmission noise before paying for the HMAC.
    computed = ctx.compute_checksum(body)
    if computed != frame.checksum:
        raise ChecksumMismatch(f"expected {frame.checksum:08x}, computed {computed:08x}")

    if not tags_equal(ctx.compute_tag(body), frame.auth_tag):
        raise AuthMismatch(f"sequence {frame.header.sequence} from device {frame.header.device_id}")


def seal(header: FrameHeader, payload: Payload, ctx: SecurityContext) -> Frame:
    body = encode_body(header, payload)
    return Frame(
        header=header,
        payload=payload,
        checksum=ctx.compute_checksum(body),
        auth_tag=ctx.compute_tag(body),
        body=body,
    )


def check_datagram(data: bytes, ctx: SecurityContext) -> dict:
    """Decode and verify a single datagram for inspection."""
    frame = None
    try:
        frame = decode(ctx.open_envelope(data))
        verify(frame, ctx)
    except IngestError as e:
        result = {"status": "FAIL", "error_count": 1, "errors": [e.as_dict()]}
        if frame is not None:
            result["frame"] = frame.as_dict()
        return result

    return {"status": "PASS", "error_count": 0, "errors": [], "frame": frame.as_dict()}
