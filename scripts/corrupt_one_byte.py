import sys
from pathlib import Path

# Default target: low byte of the sequence field (header offset 4).
DEFAULT_OFFSET = 4


def main():
    if len(sys.argv) not in (2, 3):
        print("Usage: corrupt_one_byte.py <frame-file> [offset]")
        raise SystemExit(2)

    p = Path(sys.argv[1])
    idx = int(sys.argv[2]) if len(sys.argv) == 3 else DEFAULT_OFFSET
    b = bytearray(p.read_bytes())
    if not 0 <= idx < len(b):
        print(f"Offset {idx} outside {len(b)}-byte file.")
        raise SystemExit(2)

    b[idx] ^= 0x01
    p.write_bytes(bytes(b))
    print(f"Corrupted 1 byte at offset {idx} in {p}")


if __name__ == "__main__":
    main()
