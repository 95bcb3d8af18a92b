"""IDTP Verify - Frame integrity and authentication."""
from .crypto import SecurityContext, load_context
from .logic import check_datagram, seal, verify

__all__ = ["SecurityContext", "load_context", "check_datagram", "seal", "verify"]
