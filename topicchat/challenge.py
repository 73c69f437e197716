import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Optional, Tuple

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from . import crypto
from .errors import DeserializationMalformed, NonceMismatch, SignatureInvalid, Timeout, TransportFailure
from .framing import MAX_DATAGRAM_SIZE, ByteReader, pack_tag

"""
challenge.py — "who am I talking to?" over plain UDP.

Flow (one datagram each way, no session state):
  prober    -> WHOAMI      {nonce, prober key, sig(nonce)}
  responder -> WHOAMI_RESP {same nonce, responder key, sig(nonce)}

The prober only trusts the answer if the nonce is the one it just sent and
the responder's signature over that nonce verifies strictly. The responder
never answers anything it can't decode or verify, so it is useless as a
reflection oracle.
"""

logger = logging.getLogger(__name__)

NONCE_SIZE = 16
TAG_WHOAMI = 1
TAG_WHOAMI_RESP = 2

Address = Tuple[str, int]


@dataclass(frozen=True)
class _Frame:
    """Shared wire shape: tag ‖ nonce ‖ key ‖ sig, exactly 113 bytes."""
    nonce: bytes
    key: bytes
    sig: bytes

    TAG = 0

    def to_bytes(self) -> bytes:
        return pack_tag(self.TAG) + self.nonce + self.key + self.sig

    @classmethod
    def from_bytes(cls, data: bytes):
        if len(data) > MAX_DATAGRAM_SIZE:
            raise DeserializationMalformed("datagram too large")
        reader = ByteReader(data)
        tag = reader.read_tag()
        if tag != cls.TAG:
            raise DeserializationMalformed(f"unexpected frame tag {tag}")
        frame = cls(
            nonce=reader.read_fixed(NONCE_SIZE),
            key=reader.read_fixed(crypto.PUBLIC_KEY_SIZE),
            sig=reader.read_fixed(crypto.SIGNATURE_SIZE),
        )
        reader.finish()
        return frame

    def verify(self) -> None:
        """Strict signature check of `sig` over `nonce` under `key`."""
        crypto.verify_strict(self.key, self.nonce, self.sig)


class WhoAmI(_Frame):
    TAG = TAG_WHOAMI

    @classmethod
    def create(cls, secret: Ed25519PrivateKey, nonce: Optional[bytes] = None) -> "WhoAmI":
        nonce = nonce if nonce is not None else os.urandom(NONCE_SIZE)
        return cls(
            nonce=nonce,
            key=crypto.public_key_bytes(secret),
            sig=crypto.prove_possession(secret, nonce),
        )

    def into_resp(self, secret: Ed25519PrivateKey) -> "WhoAmIResp":
        """Verify the request, then sign its nonce with our own key."""
        self.verify()
        return WhoAmIResp(
            nonce=self.nonce,
            key=crypto.public_key_bytes(secret),
            sig=crypto.prove_possession(secret, self.nonce),
        )


class WhoAmIResp(_Frame):
    TAG = TAG_WHOAMI_RESP

    def check(self, expected_nonce: bytes) -> bytes:
        """Nonce binding first, then the signature. Returns the verified key."""
        if self.nonce != expected_nonce:
            raise NonceMismatch("response nonce does not match request")
        self.verify()
        return self.key


# -------------------------
# Responder
# -------------------------

class WhoAmIResponder(asyncio.DatagramProtocol):
    """Answers valid WHOAMI datagrams; stays silent on everything else."""

    def __init__(self, secret: Ed25519PrivateKey) -> None:
        self.secret = secret
        self.transport: Optional[asyncio.DatagramTransport] = None

    def connection_made(self, transport) -> None:
        self.transport = transport

    def datagram_received(self, data: bytes, addr) -> None:
        try:
            resp = WhoAmI.from_bytes(data).into_resp(self.secret)
        except DeserializationMalformed as exc:
            logger.debug("Dropping undecodable WHOAMI from %s: %s", addr, exc)
            return
        except SignatureInvalid:
            logger.debug("Dropping WHOAMI with bad signature from %s", addr)
            return
        self.transport.sendto(resp.to_bytes(), addr)

    def error_received(self, exc: Exception) -> None:
        # ICMP port-unreachable and friends; the socket is still usable.
        logger.warning("WHOAMI responder socket error: %s", exc)


async def start_responder(secret: Ed25519PrivateKey, port: int, host: str = "0.0.0.0") -> asyncio.DatagramTransport:
    """Bind the responder and return its transport. Bind failures are fatal."""
    loop = asyncio.get_running_loop()
    try:
        transport, _protocol = await loop.create_datagram_endpoint(
            lambda: WhoAmIResponder(secret), local_addr=(host, port)
        )
    except OSError as exc:
        raise TransportFailure(f"cannot bind WHOAMI responder on {host}:{port}: {exc}") from exc
    logger.info("WHOAMI responder listening on %s", transport.get_extra_info("sockname"))
    return transport


async def run_responder(secret: Ed25519PrivateKey, port: int, host: str = "0.0.0.0") -> None:
    """Serve until the owning task is cancelled."""
    transport = await start_responder(secret, port, host)
    try:
        await asyncio.Event().wait()
    finally:
        transport.close()


# -------------------------
# Prober
# -------------------------

class _FirstDatagram(asyncio.DatagramProtocol):
    """Resolves a future with the first datagram (or socket error) we see."""

    def __init__(self, waiter: asyncio.Future) -> None:
        self.waiter = waiter

    def datagram_received(self, data: bytes, addr) -> None:
        if not self.waiter.done():
            self.waiter.set_result(data)

    def error_received(self, exc: Exception) -> None:
        if not self.waiter.done():
            self.waiter.set_exception(exc)


async def probe_peer(addr: Address, timeout: float, secret: Ed25519PrivateKey) -> bytes:
    """
    Ask whoever listens at `addr` to prove their key.

    Returns the remote node id (raw public key) once verified.

    Raises:
        Timeout: nothing came back within `timeout` seconds.
        DeserializationMalformed: the reply is not a WHOAMI_RESP frame.
        NonceMismatch: the reply answers some other request.
        SignatureInvalid: the reply's signature does not verify.
        TransportFailure: socket error while sending or receiving.
    """
    loop = asyncio.get_running_loop()
    waiter = loop.create_future()
    request = WhoAmI.create(secret)

    try:
        transport, _protocol = await loop.create_datagram_endpoint(
            lambda: _FirstDatagram(waiter), local_addr=("::" if ":" in addr[0] else "0.0.0.0", 0)
        )
    except OSError as exc:
        raise TransportFailure(f"cannot open probe socket: {exc}") from exc

    try:
        transport.sendto(request.to_bytes(), addr)
        try:
            data = await asyncio.wait_for(waiter, timeout)
        except asyncio.TimeoutError as exc:
            raise Timeout(f"no WHOAMI reply from {addr[0]}:{addr[1]} within {timeout}s") from exc
        except OSError as exc:
            raise TransportFailure(f"probe to {addr[0]}:{addr[1]} failed: {exc}") from exc
    finally:
        transport.close()

    node_id = WhoAmIResp.from_bytes(data).check(request.nonce)
    logger.debug("Verified %s at %s:%s", crypto.short_id(node_id), addr[0], addr[1])
    return node_id
