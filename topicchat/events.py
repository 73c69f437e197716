import colorsys
import os
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Union

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from . import crypto
from .errors import BuilderStateError, DeserializationMalformed
from .framing import ByteReader, pack_bytes, pack_str, pack_tag

"""
events.py — chat event bodies, the staged builder, and signed envelopes.

What this module does:
- Defines the *untrusted* body shapes that travel on the wire (no actor field:
  anyone can type any name, so the body never claims who sent it).
- Defines the *trusted* ChatEvent shapes, whose `actor` is filled in only from
  a public key that just passed strict verification.
- Walks callers through "pick one payload, then sign" with stage objects
  that refuse to be used twice.
- Serializes SignedEvent as length-prefixed body + nonce + key + sig.

Signature input is body_bytes ‖ nonce. The nonce is 16 fresh random bytes per
signing call so two identical messages never share a signature input.
"""

NONCE_SIZE = 16

# Body tags on the wire.
TAG_NEW_MESSAGE = 0
TAG_SET_NAME = 1
TAG_NODE_JOINED = 2
TAG_NODE_LEFT = 3


# -----------------------
# Untrusted payload shapes
# -----------------------

@dataclass(frozen=True)
class NewMessageBody:
    name: str
    message: str


@dataclass(frozen=True)
class SetNameBody:
    name: str


@dataclass(frozen=True)
class NodeJoinedBody:
    pass


@dataclass(frozen=True)
class NodeLeftBody:
    pass


ChatEventBody = Union[NewMessageBody, SetNameBody, NodeJoinedBody, NodeLeftBody]


def encode_body(body: ChatEventBody) -> bytes:
    """Tag byte, then the variant's string fields (length-prefixed UTF-8)."""
    if isinstance(body, NewMessageBody):
        return pack_tag(TAG_NEW_MESSAGE) + pack_str(body.name) + pack_str(body.message)
    if isinstance(body, SetNameBody):
        return pack_tag(TAG_SET_NAME) + pack_str(body.name)
    if isinstance(body, NodeJoinedBody):
        return pack_tag(TAG_NODE_JOINED)
    if isinstance(body, NodeLeftBody):
        return pack_tag(TAG_NODE_LEFT)
    raise TypeError(f"not a chat event body: {body!r}")


def decode_body(data: bytes) -> ChatEventBody:
    """Inverse of encode_body(). Raises DeserializationMalformed."""
    reader = ByteReader(data)
    tag = reader.read_tag()
    if tag == TAG_NEW_MESSAGE:
        body: ChatEventBody = NewMessageBody(name=reader.read_str(), message=reader.read_str())
    elif tag == TAG_SET_NAME:
        body = SetNameBody(name=reader.read_str())
    elif tag == TAG_NODE_JOINED:
        body = NodeJoinedBody()
    elif tag == TAG_NODE_LEFT:
        body = NodeLeftBody()
    else:
        raise DeserializationMalformed(f"unknown event tag {tag}")
    reader.finish()
    return body


# -----------------------
# Trusted, verified events
# -----------------------

@dataclass(frozen=True)
class NewMessage:
    actor: bytes
    name: str
    message: str


@dataclass(frozen=True)
class SetName:
    actor: bytes
    name: str


@dataclass(frozen=True)
class NodeJoined:
    actor: bytes


@dataclass(frozen=True)
class NodeLeft:
    actor: bytes


ChatEvent = Union[NewMessage, SetName, NodeJoined, NodeLeft]


def attach_actor(body: ChatEventBody, actor: bytes) -> ChatEvent:
    """Pair a decoded body with a *verified* key. Never call with unverified data."""
    if isinstance(body, NewMessageBody):
        return NewMessage(actor=actor, name=body.name, message=body.message)
    if isinstance(body, SetNameBody):
        return SetName(actor=actor, name=body.name)
    if isinstance(body, NodeJoinedBody):
        return NodeJoined(actor=actor)
    return NodeLeft(actor=actor)


# -----------------------
# Signed wire artifact
# -----------------------

@dataclass(frozen=True)
class SignedEvent:
    body_bytes: bytes
    nonce: bytes
    key: bytes
    sig: bytes

    def to_bytes(self) -> bytes:
        """u32 length + body, then the three fixed-width fields."""
        return pack_bytes(self.body_bytes) + self.nonce + self.key + self.sig

    @classmethod
    def from_bytes(cls, data: bytes) -> "SignedEvent":
        """Parse wire bytes. Nothing is trusted yet; call verify_into() next."""
        reader = ByteReader(data)
        event = cls(
            body_bytes=reader.read_bytes(),
            nonce=reader.read_fixed(NONCE_SIZE),
            key=reader.read_fixed(crypto.PUBLIC_KEY_SIZE),
            sig=reader.read_fixed(crypto.SIGNATURE_SIZE),
        )
        reader.finish()
        return event

    def verify_into(self) -> ChatEvent:
        """
        Check the signature strictly, then decode the body and stamp the actor.

        Raises:
            SignatureInvalid: signature / key check failed (checked first, so
                tampered bodies never reach the decoder).
            DeserializationMalformed: signed, but the body is not a chat event.
        """
        crypto.verify_strict(self.key, self.body_bytes + self.nonce, self.sig)
        body = decode_body(self.body_bytes)
        return attach_actor(body, self.key)


def sign_body(body: ChatEventBody, secret: Ed25519PrivateKey) -> SignedEvent:
    """Encode, append a fresh nonce, sign, keep only the four output fields."""
    body_bytes = encode_body(body)
    nonce = os.urandom(NONCE_SIZE)
    sig = crypto.sign(secret, body_bytes + nonce)
    return SignedEvent(
        body_bytes=body_bytes,
        nonce=nonce,
        key=crypto.public_key_bytes(secret),
        sig=sig,
    )


# -----------------------
# Staged builder
# -----------------------

class ReadyToSign:
    """A chosen payload waiting for a signer. `sign` works exactly once."""

    def __init__(self, body: ChatEventBody) -> None:
        self._body: Optional[ChatEventBody] = body

    def sign(self, secret: Ed25519PrivateKey) -> SignedEvent:
        if self._body is None:
            raise BuilderStateError("event already signed")
        body, self._body = self._body, None
        return sign_body(body, secret)


class EventBuilder:
    """
    Initial stage: pick exactly one payload.

        signed = EventBuilder().begin_new_message("alice", "hi").sign(secret)

    Each begin_* call consumes the builder and hands back a ReadyToSign.
    """

    def __init__(self) -> None:
        self._used = False

    def _choose(self, body: ChatEventBody) -> ReadyToSign:
        if self._used:
            raise BuilderStateError("payload already chosen")
        self._used = True
        return ReadyToSign(body)

    def begin_new_message(self, name: str, message: str) -> ReadyToSign:
        return self._choose(NewMessageBody(name=name, message=message))

    def begin_set_name(self, name: str) -> ReadyToSign:
        return self._choose(SetNameBody(name=name))

    def begin_node_joined(self) -> ReadyToSign:
        return self._choose(NodeJoinedBody())

    def begin_node_left(self) -> ReadyToSign:
        return self._choose(NodeLeftBody())


def builder() -> EventBuilder:
    return EventBuilder()


# -----------------------
# Display helpers
# -----------------------

def actor_rgb(actor: bytes) -> Tuple[int, int, int]:
    """Stable per-actor colour: hue from the first two key bytes."""
    hue = int.from_bytes(actor[:2], "big") % 360
    r, g, b = colorsys.hls_to_rgb(hue / 360.0, 0.55, 0.65)
    return round(r * 255), round(g * 255), round(b * 255)


def _paint(text: str, rgb: Tuple[int, int, int], color: bool) -> str:
    if not color:
        return text
    r, g, b = rgb
    return f"\x1b[38;2;{r};{g};{b}m{text}\x1b[39m"


def format_event(event: ChatEvent, names: Optional[Dict[bytes, str]] = None, color: bool = True) -> str:
    """One terminal line per event. `names` maps actors to their last SetName."""
    names = names or {}
    rgb = actor_rgb(event.actor)
    who = _paint(crypto.short_id(event.actor), rgb, color)

    if isinstance(event, NewMessage):
        name = event.name.strip()
        if not name:
            return f"{who} {event.message}"
        return f"{who} {_paint(name, rgb, color)} {event.message}"

    known = names.get(event.actor)
    label = f'{who} "{known}"' if known else who
    if isinstance(event, SetName):
        return f'{label} is now known as "{event.name}"'
    if isinstance(event, NodeJoined):
        return f"{label} joined"
    return f"{label} left"
