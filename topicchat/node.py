import logging
from collections import OrderedDict
from typing import Any, AsyncIterable, Callable, Dict, Optional, Protocol, Tuple

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from . import crypto
from .errors import DeserializationMalformed, SignatureInvalid, UnknownCommand
from .events import ChatEvent, EventBuilder, SetName, SignedEvent

"""
node.py — one participant's chat session on top of a gossip channel.

What lives here:
- Turning a typed line ("/name bob", "hello") into a signed event and handing
  its bytes to the gossip layer.
- The receive side: parse, verify, drop anything bad, and surface trusted
  ChatEvents to whoever renders them.

Notes:
- Bad messages are logged and dropped, never raised; one hostile peer must
  not stop the loop.
- The gossip layer may hand us the same signed event twice. A bounded
  (key, nonce) cache drops exact repeats; older replays beyond the window
  still verify, which is accepted.
"""

logger = logging.getLogger(__name__)

REPLAY_CACHE_SIZE = 16384


class GossipChannel(Protocol):
    async def broadcast(self, data: bytes) -> None:
        ...


class ReplayCache:
    """FIFO set of recently seen (key, nonce) pairs."""

    def __init__(self, capacity: int = REPLAY_CACHE_SIZE) -> None:
        self.capacity = capacity
        self._seen: "OrderedDict[Tuple[bytes, bytes], None]" = OrderedDict()

    def check_and_add(self, key: bytes, nonce: bytes) -> bool:
        """True if this pair is new (and now remembered)."""
        entry = (key, nonce)
        if entry in self._seen:
            return False
        self._seen[entry] = None
        if len(self._seen) > self.capacity:
            self._seen.popitem(last=False)  # drop the oldest entry
        return True

    def __len__(self) -> int:
        return len(self._seen)


class ChatSession:
    """
    Local identity + display name + outbound gossip handle.

    The session never owns the network; it only formats bytes for `channel`
    and consumes whatever inbound stream the caller wires up.
    """

    def __init__(self, secret: Ed25519PrivateKey, name: str, channel: Optional[GossipChannel] = None,
                 replay_cache_size: int = REPLAY_CACHE_SIZE) -> None:
        self.secret = secret
        self.node_id = crypto.public_key_bytes(secret)
        self.name = name
        self.channel = channel
        self.names: Dict[bytes, str] = {}
        self.replays = ReplayCache(replay_cache_size)

    # -------------------------
    # Outbound
    # -------------------------

    def handle_line(self, line: str) -> Optional[SignedEvent]:
        """Map one input line to a signed event (None for blank lines)."""
        line = line.strip()
        if not line:
            return None

        if not line.startswith("/"):
            return EventBuilder().begin_new_message(self.name, line).sign(self.secret)

        parts = line.split(None, 1)
        action = parts[0]
        rest = parts[1].strip() if len(parts) > 1 else ""

        if action == "/send":
            if not rest:
                return None
            return EventBuilder().begin_new_message(self.name, rest).sign(self.secret)
        if action == "/name":
            if not rest:
                return None
            self.name = rest
            return EventBuilder().begin_set_name(rest).sign(self.secret)
        if action == "/join":
            return EventBuilder().begin_node_joined().sign(self.secret)
        if action == "/leave":
            return EventBuilder().begin_node_left().sign(self.secret)
        raise UnknownCommand(f"unknown action {action}")

    async def send_line(self, line: str) -> Optional[SignedEvent]:
        """handle_line() + broadcast. Returns what was sent, if anything."""
        signed = self.handle_line(line)
        if signed is None:
            return None
        if self.channel is None:
            raise RuntimeError("session has no gossip channel")
        await self.channel.broadcast(signed.to_bytes())
        return signed

    # -------------------------
    # Inbound
    # -------------------------

    def receive(self, data: bytes, sender: Any = None) -> Optional[ChatEvent]:
        """
        Bytes from gossip → trusted event, or None if the message is dropped.

        Does not touch the name table; pass the event to remember() once it
        has been rendered (subscribe_loop does both).
        """
        try:
            signed = SignedEvent.from_bytes(data)
            event = signed.verify_into()
        except SignatureInvalid as exc:
            logger.info("Dropping event with invalid signature from %s: %s", sender, exc)
            return None
        except DeserializationMalformed as exc:
            logger.info("Dropping malformed event from %s: %s", sender, exc)
            return None

        if not self.replays.check_and_add(signed.key, signed.nonce):
            logger.debug("Dropping repeated event from %s", crypto.short_id(signed.key))
            return None
        return event

    def remember(self, event: ChatEvent) -> None:
        """Track display names; call after rendering so SetName shows the old name."""
        if isinstance(event, SetName):
            self.names[event.actor] = event.name

    async def subscribe_loop(self, inbound: AsyncIterable[Tuple[Any, bytes]],
                             on_event: Callable[[ChatEvent], None]) -> None:
        """Drain `inbound` until it ends, handing accepted events to `on_event`."""
        async for sender, data in inbound:
            event = self.receive(data, sender)
            if event is None:
                continue
            on_event(event)
            self.remember(event)
