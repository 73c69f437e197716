"""
config.py — where identity material and the friend list live on disk.

Layout under the home directory (default ~/.topicchat, override with the
TOPICCHAT_HOME environment variable or an explicit path):
- key      32 random salt bytes, base64url, one line
- friends  one base64url node id per line; '#' comments and blanks ignored

Identities are derived, not stored: the secret key for a display name is
BLAKE3(name ‖ salt). Same name + same salt file = same node id on every run.
"""

import logging
import os
from pathlib import Path
from typing import Iterable, List, Optional, Set

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from . import crypto
from .errors import ConfigError

logger = logging.getLogger(__name__)

HOME_ENV = "TOPICCHAT_HOME"
SALT_SIZE = 32


def home_dir(home: Optional[Path] = None) -> Path:
    """Resolve and create the config directory."""
    if home is None:
        env = os.environ.get(HOME_ENV)
        home = Path(env) if env else Path.home() / ".topicchat"
    home = Path(home)
    home.mkdir(parents=True, exist_ok=True)
    return home


def key_path(home: Optional[Path] = None) -> Path:
    return home_dir(home) / "key"


def friends_path(home: Optional[Path] = None) -> Path:
    return home_dir(home) / "friends"


def load_salt(home: Optional[Path] = None) -> bytes:
    """Read the salt, creating it on first use."""
    path = key_path(home)
    if not path.exists():
        salt = os.urandom(SALT_SIZE)
        path.write_text(crypto.b64url_encode(salt) + "\n")
        logger.info("Generated new salt at %s", path)
        return salt

    try:
        salt = crypto.b64url_decode(path.read_text().strip())
    except (OSError, ValueError) as exc:
        raise ConfigError(f"unreadable salt file {path}: {exc}") from exc
    if len(salt) != SALT_SIZE:
        raise ConfigError(f"salt in {path} must be {SALT_SIZE} bytes, got {len(salt)}")
    return salt


def derive_secret_key(name: str, home: Optional[Path] = None) -> Ed25519PrivateKey:
    salt = load_salt(home)
    return crypto.secret_from_seed(crypto.blake3_digest(name.encode("utf-8"), salt))


def _parse_node_id(line: str, source: str) -> bytes:
    try:
        return crypto.import_node_id(line)
    except ValueError as exc:
        raise ConfigError(f"bad node id in {source}: {exc}") from exc


def load_friends(home: Optional[Path] = None) -> Set[bytes]:
    path = friends_path(home)
    friends: Set[bytes] = set()
    if not path.exists():
        return friends

    try:
        text = path.read_text()
    except OSError as exc:
        raise ConfigError(f"unreadable friends file {path}: {exc}") from exc

    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        friends.add(_parse_node_id(line, str(path)))
    return friends


def load_friends_without_me(me: bytes, home: Optional[Path] = None) -> List[bytes]:
    friends = load_friends(home)
    friends.discard(me)
    return sorted(friends)


def add_friends(new_friends: Iterable[str], home: Optional[Path] = None) -> Set[bytes]:
    """Merge base64url node ids into the friends file; returns the full set."""
    friends = load_friends(home)
    for raw in new_friends:
        raw = raw.strip()
        if raw:
            friends.add(_parse_node_id(raw, "arguments"))

    path = friends_path(home)
    path.write_text("".join(crypto.export_node_id(f) + "\n" for f in sorted(friends)))
    return friends
