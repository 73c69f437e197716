"""
errors.py — every exception topicchat raises on purpose.

Network-received failures (SignatureInvalid, DeserializationMalformed,
NonceMismatch, Timeout) are per-message problems: callers drop the message or
report the probe result and keep going. TransportFailure is the socket layer
giving up; at bind time it is fatal for the service being started.
"""


class TopicChatError(Exception):
    """Base class so callers can catch everything from this package at once."""


class SignatureInvalid(TopicChatError):
    """Untrusted input failed strict Ed25519 verification."""


class DeserializationMalformed(TopicChatError):
    """Corrupt, truncated, oversized or unknown-tag payload."""


class NonceMismatch(TopicChatError):
    """A challenge response that is not bound to the outstanding request."""


class Timeout(TopicChatError, TimeoutError):
    """No response within the caller's bound."""


class TransportFailure(TopicChatError, OSError):
    """Underlying socket / I/O error."""


class ConfigError(TopicChatError):
    """Unreadable or malformed salt / friends file."""


class BuilderStateError(TopicChatError, RuntimeError):
    """An event builder stage was used twice."""


class UnknownCommand(TopicChatError, ValueError):
    """A '/command' line the chat session does not understand."""
