"""
Order-preserving key codec for kvtables.

Logical keys are tuples such as ``(table, row_id, column)``. The store
only knows byte strings ordered by ``memcmp``, so every tuple is packed
into bytes whose byte order matches tuple order:

- elements compare by type first (None < bytes < str < int < bool)
- strings and bytes compare lexicographically; an embedded NUL is
  escaped as ``00 FF`` and each element is terminated by ``00``
- integers have arbitrary precision; a length byte precedes the
  big-endian magnitude so shorter magnitudes sort first

Because every element is self-delimiting, ``pack((t,))`` is a byte
prefix of ``pack((t, i, c))`` for any ``i`` and ``c``, which is what the
row id generator relies on when it lists a table prefix in reverse.

Invariants:
    - pack(a) < pack(b) iff a < b for tuples of supported, same-typed elements
    - unpack(pack(t)) == t
    - Reserved keys start with None and sort before every table key
"""

from __future__ import annotations

from typing import Any, Optional, Tuple

KeyPart = Any
Key = Tuple[KeyPart, ...]

_NULL = 0x00
_BYTES = 0x01
_STRING = 0x02
_INT_NEG = 0x10
_INT_ZERO = 0x11
_INT_POS = 0x12
_FALSE = 0x26
_TRUE = 0x27

# Largest magnitude length expressible in the single length byte
_MAX_INT_BYTES = 0xFF

# Largest integer magnitude a key part can hold
MAX_INT_PART = (1 << (8 * _MAX_INT_BYTES)) - 1

# First element of every reserved (non-table) key
RESERVED = None


def _pack_one(value: KeyPart) -> bytes:
    if value is None:
        return bytes([_NULL])
    # bool before int, since bool is an int subclass
    if isinstance(value, bool):
        return bytes([_TRUE if value else _FALSE])
    if isinstance(value, bytes):
        return bytes([_BYTES]) + value.replace(b"\x00", b"\x00\xff") + b"\x00"
    if isinstance(value, str):
        return (
            bytes([_STRING])
            + value.encode("utf-8").replace(b"\x00", b"\x00\xff")
            + b"\x00"
        )
    if isinstance(value, int):
        if value == 0:
            return bytes([_INT_ZERO])
        magnitude = abs(value)
        length = (magnitude.bit_length() + 7) // 8
        if length > _MAX_INT_BYTES:
            raise ValueError(f"Integer key part too large: {length} bytes")
        raw = magnitude.to_bytes(length, "big")
        if value > 0:
            return bytes([_INT_POS, length]) + raw
        return bytes([_INT_NEG, 0xFF - length]) + bytes(b ^ 0xFF for b in raw)
    raise ValueError(f"Unsupported type for key part: {type(value).__name__}")


def _read_escaped(data: bytes, pos: int) -> Tuple[bytes, int]:
    """Read a NUL-terminated, NUL-escaped run starting at pos."""
    out = bytearray()
    while pos < len(data):
        byte = data[pos]
        if byte == 0x00:
            if pos + 1 < len(data) and data[pos + 1] == 0xFF:
                out.append(0x00)
                pos += 2
                continue
            return bytes(out), pos + 1
        out.append(byte)
        pos += 1
    raise ValueError("Unterminated string or bytes key part")


def _unpack_one(data: bytes, pos: int) -> Tuple[KeyPart, int]:
    code = data[pos]
    pos += 1
    if code == _NULL:
        return None, pos
    if code == _BYTES:
        return _read_escaped(data, pos)
    if code == _STRING:
        raw, pos = _read_escaped(data, pos)
        return raw.decode("utf-8"), pos
    if code == _INT_ZERO:
        return 0, pos
    if code == _INT_POS:
        if pos >= len(data):
            raise ValueError("Truncated integer key part")
        length = data[pos]
        end = pos + 1 + length
        if end > len(data):
            raise ValueError("Truncated integer key part")
        return int.from_bytes(data[pos + 1 : end], "big"), end
    if code == _INT_NEG:
        if pos >= len(data):
            raise ValueError("Truncated integer key part")
        length = 0xFF - data[pos]
        end = pos + 1 + length
        if end > len(data):
            raise ValueError("Truncated integer key part")
        raw = bytes(b ^ 0xFF for b in data[pos + 1 : end])
        return -int.from_bytes(raw, "big"), end
    if code == _FALSE:
        return False, pos
    if code == _TRUE:
        return True, pos
    raise ValueError(f"Unknown key type code: {code:#04x}")


def pack(parts: Key) -> bytes:
    """Encode a key tuple to order-preserving bytes."""
    return b"".join(_pack_one(part) for part in parts)


def unpack(data: bytes) -> Key:
    """Decode bytes produced by pack() back into a tuple.

    Raises:
        ValueError: If data is not a valid packed key
    """
    parts = []
    pos = 0
    while pos < len(data):
        part, pos = _unpack_one(data, pos)
        parts.append(part)
    return tuple(parts)


def strinc(prefix: bytes) -> Optional[bytes]:
    """Smallest byte string greater than every string starting with prefix.

    Returns None when no such string exists (prefix is all 0xFF).
    """
    stripped = prefix.rstrip(b"\xff")
    if not stripped:
        return None
    return stripped[:-1] + bytes([stripped[-1] + 1])


# Row layout helpers


def row_key(table: str, row_id: int, column: str) -> bytes:
    """Key of one physical column entry."""
    return pack((table, row_id, column))


def row_prefix(table: str, row_id: int) -> bytes:
    """Prefix shared by all column entries of a row."""
    return pack((table, row_id))


def table_prefix(table: str) -> bytes:
    """Prefix shared by all entries of a table."""
    return pack((table,))


def sequence_key(table: str) -> bytes:
    """Key holding the highest id ever allocated for a table."""
    return pack((RESERVED, "seq", table))


def decode_row_key(data: bytes) -> Key:
    """Decode a row key into ``(table, row_id, column)`` parts.

    The result is returned as found; callers check the id type.
    """
    return unpack(data)
