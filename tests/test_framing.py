import pytest

from topicchat.errors import DeserializationMalformed
from topicchat.framing import LENGTH_STRUCT, MAX_FIELD_SIZE, ByteReader, pack_bytes, pack_str, split_host_port


def test_reader_walks_fields():
    reader = ByteReader(pack_str("hi") + b"\x07" + pack_bytes(b""))

    assert reader.read_str() == "hi"
    assert reader.read_tag() == 7
    assert reader.read_bytes() == b""
    reader.finish()


def test_reader_rejects_oversized_prefix():
    reader = ByteReader(LENGTH_STRUCT.pack(MAX_FIELD_SIZE + 1))
    with pytest.raises(DeserializationMalformed):
        reader.read_bytes()


def test_reader_rejects_short_and_trailing_input():
    with pytest.raises(DeserializationMalformed):
        ByteReader(b"\x01\x00").read_bytes()
    reader = ByteReader(b"\x01\x02")
    reader.read_tag()
    with pytest.raises(DeserializationMalformed):
        reader.finish()


def test_pack_refuses_huge_fields():
    with pytest.raises(ValueError):
        pack_bytes(b"\x00" * (MAX_FIELD_SIZE + 1))


def test_split_host_port():
    assert split_host_port("127.0.0.1:7777") == ("127.0.0.1", 7777)
    assert split_host_port("[::1]:9") == ("::1", 9)
    for bad in ("nohost", ":80", "host:99999", "host:x"):
        with pytest.raises(ValueError):
            split_host_port(bad)


def test_split_host_port_requires_brackets_for_ipv6():
    assert split_host_port("[fe80::1]:4000") == ("fe80::1", 4000)
    for bad in ("::1", "fe80::1:4000", "[::1:9", "[]:9", "host]:9"):
        with pytest.raises(ValueError):
            split_host_port(bad)
