import struct
from typing import Tuple

from .errors import DeserializationMalformed

"""
framing.py — tiny binary field codec shared by events, datagrams and tickets.

Layout rules (simple on purpose):
- Variable-size fields = 4-byte little-endian unsigned length (N) + N bytes.
- Fixed-size fields (nonces, keys, signatures) are written raw, no prefix.
- Strings are UTF-8 inside a variable-size field.

Hard caps keep a hostile peer from making us allocate silly amounts of memory:
a single field can never be larger than MAX_FIELD_SIZE, and anything that has
to fit a UDP datagram must stay under MAX_DATAGRAM_SIZE.
"""

MAX_FIELD_SIZE = 1024 * 1024  # 1 MiB per field
MAX_DATAGRAM_SIZE = 1500      # one Ethernet MTU, no fragmentation
LENGTH_STRUCT = struct.Struct("<I")  # little-endian unsigned 32-bit length
TAG_STRUCT = struct.Struct("<B")


def pack_bytes(data: bytes) -> bytes:
    """Length-prefix a byte string."""
    if len(data) > MAX_FIELD_SIZE:
        raise ValueError(f"Field too large: {len(data)} > {MAX_FIELD_SIZE}")
    return LENGTH_STRUCT.pack(len(data)) + data


def pack_str(text: str) -> bytes:
    return pack_bytes(text.encode("utf-8"))


def pack_tag(tag: int) -> bytes:
    return TAG_STRUCT.pack(tag)


class ByteReader:
    """
    Cursor over an immutable buffer.

    Every read either returns exactly what was asked for or raises
    DeserializationMalformed; callers never see struct errors or short reads.
    """

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def read_fixed(self, n: int) -> bytes:
        if n > self.remaining:
            raise DeserializationMalformed(f"truncated input: wanted {n} bytes, have {self.remaining}")
        chunk = self._data[self._pos:self._pos + n]
        self._pos += n
        return chunk

    def read_tag(self) -> int:
        (tag,) = TAG_STRUCT.unpack(self.read_fixed(TAG_STRUCT.size))
        return tag

    def read_bytes(self) -> bytes:
        (length,) = LENGTH_STRUCT.unpack(self.read_fixed(LENGTH_STRUCT.size))
        # Sanity check before slicing; the prefix is attacker-controlled.
        if length > MAX_FIELD_SIZE:
            raise DeserializationMalformed(f"field too large: {length} > {MAX_FIELD_SIZE}")
        return self.read_fixed(length)

    def read_str(self) -> str:
        raw = self.read_bytes()
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DeserializationMalformed(f"invalid UTF-8 string: {exc}") from exc

    def finish(self) -> None:
        """Frames are self-delimiting: leftover bytes mean the input is not ours."""
        if self.remaining:
            raise DeserializationMalformed(f"{self.remaining} trailing bytes")


def split_host_port(text: str) -> Tuple[str, int]:
    """Parse 'host:port' (or '[v6]:port') into a tuple."""
    host, sep, port = text.rpartition(":")
    if not sep or not host:
        raise ValueError(f"expected HOST:PORT, got {text!r}")
    if host.startswith("["):
        if not host.endswith("]") or len(host) < 3:
            raise ValueError(f"bad bracketed host in {text!r}")
        host = host[1:-1]
    elif ":" in host or "]" in host:
        # IPv6 literals need brackets, otherwise the port is ambiguous.
        raise ValueError(f"IPv6 hosts must be bracketed, got {text!r}")
    port_num = int(port)
    if not 0 <= port_num <= 0xFFFF:
        raise ValueError(f"port out of range: {port_num}")
    return host, port_num
