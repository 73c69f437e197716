"""
crypto.py — tiny Ed25519 + BLAKE3 helpers.

Why this exists:
- Keep all signature bits in one place so the rest of the code can call
  `sign/verify_strict` without worrying about encodings.
- Use URL-safe Base64 without '=' padding so keys drop cleanly into text files.
- Keys travel as raw 32-byte encodings and signatures as raw 64 bytes, so
  every wire field has a fixed width.

Notes:
- `verify_strict` is stricter than a plain Ed25519 verify: it refuses
  non-canonical scalars and small-order points, so a valid signature has
  exactly one accepted encoding.
"""

import base64
import hashlib
from typing import Tuple

from blake3 import blake3
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from .errors import SignatureInvalid

PUBLIC_KEY_SIZE = 32
SIGNATURE_SIZE = 64
SEED_SIZE = 32

# Order of the Ed25519 base point; a canonical S is strictly below it.
GROUP_ORDER = 2 ** 252 + 27742317777372353535851937790883648493

# Encodings (sign bit cleared) of the points of order 1, 2, 4 and 8,
# including the non-canonical y >= p spellings of 0 and 1.
_SMALL_ORDER_POINTS = frozenset(bytes.fromhex(h) for h in (
    "0100000000000000000000000000000000000000000000000000000000000000",
    "0000000000000000000000000000000000000000000000000000000000000000",
    "ecffffffffffffffffffffffffffffffffffffffffffffffffffffffffffff7f",
    "edffffffffffffffffffffffffffffffffffffffffffffffffffffffffffff7f",
    "eeffffffffffffffffffffffffffffffffffffffffffffffffffffffffffff7f",
    "26e8958fc2b227b045c3f489f2ef98f0d5dfac05d3c63339b13802886d53fc05",
    "c7176a703d4dd84fba3c0b760d10670f2a2053fa2c39ccc64ec7fd7792ac037a",
))

# -----------------------------
# Base64 URL helpers (no padding)
# -----------------------------

def b64url_encode(data: bytes) -> str:
    """URL-safe Base64 without '=' padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(data: str) -> bytes:
    """Decode our URL-safe, no-padding Base64 back to bytes."""
    # Add the minimal padding back so Python's decoder is happy.
    pad_len = (-len(data)) % 4
    return base64.urlsafe_b64decode(data + "=" * pad_len)


# -----------------
# Ed25519 key utils
# -----------------

def generate_keypair() -> Tuple[Ed25519PrivateKey, bytes]:
    """Fresh Ed25519 keypair; the public half comes back as raw bytes."""
    priv = Ed25519PrivateKey.generate()
    return priv, public_key_bytes(priv)


def secret_from_seed(seed: bytes) -> Ed25519PrivateKey:
    """Deterministic keypair from a 32-byte seed (see config.derive_secret_key)."""
    if len(seed) != SEED_SIZE:
        raise ValueError(f"seed must be {SEED_SIZE} bytes, got {len(seed)}")
    return Ed25519PrivateKey.from_private_bytes(seed)


def public_key_bytes(priv: Ed25519PrivateKey) -> bytes:
    """Raw 32-byte public key; this is the node id / actor everywhere."""
    return priv.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def export_node_id(node_id: bytes) -> str:
    return b64url_encode(node_id)


def import_node_id(text: str) -> bytes:
    """Inverse of export_node_id(); rejects anything that is not a 32-byte key."""
    try:
        raw = b64url_decode(text.strip())
    except (ValueError, TypeError) as exc:
        raise ValueError(f"not a base64url node id: {text!r}") from exc
    if len(raw) != PUBLIC_KEY_SIZE:
        raise ValueError(f"node id must be {PUBLIC_KEY_SIZE} bytes, got {len(raw)}")
    return raw


def short_id(node_id: bytes) -> str:
    """First five bytes in hex; enough to tell chat participants apart."""
    return node_id[:5].hex()


# -------------------------
# Signing & Verification API
# -------------------------

def sign(priv: Ed25519PrivateKey, data: bytes) -> bytes:
    """Ed25519 signature over raw bytes. Deterministic for a given key+data."""
    return priv.sign(data)


def _is_small_order(point: bytes) -> bool:
    return point[:31] + bytes([point[31] & 0x7F]) in _SMALL_ORDER_POINTS


def verify_strict(node_id: bytes, data: bytes, sig: bytes) -> None:
    """
    Verify `sig` over `data` under the raw public key `node_id`.

    Raises SignatureInvalid on any failure: wrong sizes, weak keys, malleable
    signature encodings, or a plain mismatch. Returns None on success.
    """
    if len(node_id) != PUBLIC_KEY_SIZE or len(sig) != SIGNATURE_SIZE:
        raise SignatureInvalid("bad key or signature length")

    if _is_small_order(node_id):
        raise SignatureInvalid("weak public key")

    r_bytes, s_bytes = sig[:32], sig[32:]
    if int.from_bytes(s_bytes, "little") >= GROUP_ORDER:
        raise SignatureInvalid("non-canonical signature scalar")
    if _is_small_order(r_bytes):
        raise SignatureInvalid("small-order signature point")

    try:
        Ed25519PublicKey.from_public_bytes(node_id).verify(sig, data)
    except (InvalidSignature, ValueError) as exc:
        raise SignatureInvalid("signature does not verify") from exc


# ---------------------------------------
# Simple proof-of-possession (challenge)
# ---------------------------------------

def prove_possession(priv: Ed25519PrivateKey, nonce: bytes) -> bytes:
    """
    Sign a random nonce to prove you hold the private key.
    The other side checks it with verify_strict against your node id.
    """
    return sign(priv, nonce)


# -----------------------------
# Hashing
# -----------------------------

def blake3_digest(*parts: bytes) -> bytes:
    """32-byte BLAKE3 over the concatenation of `parts`."""
    hasher = blake3()
    for part in parts:
        hasher.update(part)
    return hasher.digest()


def fingerprint(node_id: bytes) -> str:
    """SHA-256 fingerprint for humans comparing keys out of band."""
    return hashlib.sha256(node_id).hexdigest()
