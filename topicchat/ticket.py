import base64
import binascii
from dataclasses import dataclass, field
from typing import List

from . import crypto
from .errors import DeserializationMalformed
from .discovery import topic_id_for
from .framing import LENGTH_STRUCT, ByteReader, pack_str

"""
ticket.py — a copy-pasteable invite: topic id plus a few bootstrap nodes.

Text form is KIND + lowercase base32 (no padding) of the binary encoding:
  topic[32] ‖ u32 node count ‖ per node: id[32] ‖ u32 addr count ‖ addrs
"""

KIND = "chat"
TOPIC_SIZE = 32
MAX_NODES = 64


@dataclass(frozen=True)
class NodeAddr:
    node_id: bytes
    addrs: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ChatTicket:
    topic: bytes
    nodes: List[NodeAddr] = field(default_factory=list)

    def to_bytes(self) -> bytes:
        out = [self.topic, LENGTH_STRUCT.pack(len(self.nodes))]
        for node in self.nodes:
            out.append(node.node_id)
            out.append(LENGTH_STRUCT.pack(len(node.addrs)))
            out.extend(pack_str(a) for a in node.addrs)
        return b"".join(out)

    @classmethod
    def from_bytes(cls, data: bytes) -> "ChatTicket":
        reader = ByteReader(data)
        topic = reader.read_fixed(TOPIC_SIZE)
        nodes = []
        for _ in range(_read_count(reader)):
            node_id = reader.read_fixed(crypto.PUBLIC_KEY_SIZE)
            addrs = [reader.read_str() for _ in range(_read_count(reader))]
            nodes.append(NodeAddr(node_id=node_id, addrs=addrs))
        reader.finish()
        return cls(topic=topic, nodes=nodes)

    def __str__(self) -> str:
        encoded = base64.b32encode(self.to_bytes()).decode("ascii").rstrip("=").lower()
        return KIND + encoded

    @classmethod
    def parse(cls, text: str) -> "ChatTicket":
        text = text.strip()
        if not text.startswith(KIND):
            raise DeserializationMalformed(f"not a {KIND} ticket")
        body = text[len(KIND):].upper()
        body += "=" * ((-len(body)) % 8)
        try:
            raw = base64.b32decode(body)
        except (binascii.Error, ValueError) as exc:
            raise DeserializationMalformed(f"bad ticket encoding: {exc}") from exc
        return cls.from_bytes(raw)


def _read_count(reader: ByteReader) -> int:
    (count,) = LENGTH_STRUCT.unpack(reader.read_fixed(LENGTH_STRUCT.size))
    if count > MAX_NODES:
        raise DeserializationMalformed(f"too many entries: {count}")
    return count


def ticket_for(topic: str, nodes: List[NodeAddr]) -> ChatTicket:
    return ChatTicket(topic=topic_id_for(topic), nodes=list(nodes))
