import asyncio
import logging
from typing import AsyncIterator, Dict, Iterable, List, Optional, Protocol, Tuple

from .crypto import blake3_digest

"""
discovery.py — finding peers for a topic through a DHT.

Nothing here talks to the DHT's routing directly; callers hand in any client
that can announce an (info hash, port) pair and stream peer addresses back.
Both helpers are bounded: the announce loop never dies on its own (the owner
cancels it), and peer collection always returns by its deadline.
"""

logger = logging.getLogger(__name__)

INFO_HASH_SIZE = 20  # Mainline DHT ids are 160 bits

Address = Tuple[str, int]


class DhtClient(Protocol):
    async def announce_peer(self, info_hash: bytes, port: int) -> None:
        ...

    def get_peers(self, info_hash: bytes) -> AsyncIterator[Iterable[Address]]:
        ...


def topic_id_for(topic: str) -> bytes:
    """Full 32-byte BLAKE3 of the topic; used as the gossip topic id."""
    return blake3_digest(topic.encode("utf-8"))


def info_hash_for(topic: str) -> bytes:
    """
    DHT lookup key for a human-chosen topic string.

    Anyone who agrees on the topic text lands on the same key without further
    coordination; it is just the topic hash cut down to the DHT id width.
    """
    return topic_id_for(topic)[:INFO_HASH_SIZE]


async def dht_reannounce_loop(dht: DhtClient, info_hash: bytes, port: int, period: float) -> None:
    """Announce ourselves every `period` seconds until cancelled."""
    while True:
        try:
            await dht.announce_peer(info_hash, port)
            logger.debug("Announced port %d under %s", port, info_hash.hex())
        except Exception as exc:
            logger.warning("DHT announce error: %r", exc)
        await asyncio.sleep(period)


async def dht_collect_peers(dht: DhtClient, info_hash: bytes, target: int, timeout: float) -> List[Address]:
    """
    Collect up to roughly `target` unique peer addresses within `timeout` seconds.

    Never raises for DHT trouble; whatever was found by the deadline comes
    back (possibly an empty list). Order is discovery order. Entries may be
    any socket-style tuple; only (host, port) is kept.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    found: Dict[Address, None] = {}

    try:
        stream = dht.get_peers(info_hash).__aiter__()
    except Exception as exc:
        logger.warning("DHT lookup error: %r", exc)
        return []

    try:
        while len(found) < target:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                batch = await asyncio.wait_for(stream.__anext__(), remaining)
            except (asyncio.TimeoutError, StopAsyncIteration):
                break
            except Exception as exc:
                logger.warning("DHT lookup error: %r", exc)
                break
            try:
                entries = list(batch)
            except TypeError:
                logger.debug("Skipping non-iterable DHT batch %r", batch)
                continue
            for entry in entries:
                addr = _normalize(entry)
                if addr is not None:
                    found[addr] = None
    finally:
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            try:
                await aclose()
            except Exception as exc:
                logger.debug("Closing DHT peer stream failed: %r", exc)

    logger.debug("Collected %d peers for %s", len(found), info_hash.hex())
    return list(found)


def _normalize(entry) -> Optional[Address]:
    """(host, port[, flowinfo, scope_id]) -> (host, port); None if unusable."""
    try:
        host, port = str(entry[0]), int(entry[1])
    except (TypeError, ValueError, IndexError) as exc:
        logger.debug("Skipping odd DHT peer entry %r: %s", entry, exc)
        return None
    if not host or not 0 < port <= 0xFFFF:
        logger.debug("Skipping odd DHT peer entry %r", entry)
        return None
    return host, port
