ERRORS = {
  "E_MALFORMED": "Frame is malformed",
  "E_UNSUPPORTED_VERSION": "Frame protocol version is not supported",
  "E_CHECKSUM_MISMATCH": "Frame checksum does not match contents",
  "E_AUTH_MISMATCH": "Frame authentication tag invalid",
  "E_ENVELOPE_INVALID": "Datagram envelope could not be opened",
  "E_REPLAY_DETECTED": "Frame rejected as duplicate or out of order",
  "E_REPLAY_RESYNC": "Replay state re-baselined after a sequence jump",
  "E_NON_POSITIVE_DELTA": "Computed time delta is not positive",
  "E_GAP_DETECTED": "Time delta exceeds ceiling and was clamped",
}
