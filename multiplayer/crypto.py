"""AES-256-GCM payload encryption and X25519 session-key wrapping.

Every room has one 256-bit session key. Broadcast payloads are JSON
encrypted under that key with a fresh 96-bit IV; the send timestamp is
bound in as associated data so it cannot be rewritten to dodge the
freshness check.

Clients obtain the session key through a handshake: they send an X25519
public key, the host answers with the session key encrypted under an
HKDF-derived key from an ephemeral X25519 exchange.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import os
import time
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from pydantic import BaseModel

from gamecore.error_types import PayloadRejected

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
IV_LENGTH = 12
TAG_LENGTH = 16
_WRAP_INFO = b"market-years session key wrap"


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _unb64(text: str) -> bytes:
    return base64.b64decode(text.encode("ascii"), validate=True)


def _now_ms() -> int:
    return int(time.time() * 1000)


class EncryptedPayload(BaseModel):
    iv: str
    data: str
    tag: str
    ts: int


def generate_session_key() -> bytes:
    return AESGCM.generate_key(bit_length=256)


def encrypt_payload(key: bytes, obj: Any, ts: int | None = None) -> EncryptedPayload:
    ts = _now_ms() if ts is None else ts
    iv = os.urandom(IV_LENGTH)
    plaintext = json.dumps(obj, sort_keys=True, separators=(",", ":")).encode("utf-8")
    sealed = AESGCM(key).encrypt(iv, plaintext, str(ts).encode("ascii"))
    return EncryptedPayload(
        iv=_b64(iv),
        data=_b64(sealed[:-TAG_LENGTH]),
        tag=_b64(sealed[-TAG_LENGTH:]),
        ts=ts,
    )


def decrypt_payload(
    key: bytes,
    payload: EncryptedPayload,
    max_age_seconds: float | None = None,
    now_ms: int | None = None,
) -> Any:
    """Authenticate and decrypt. Raises PayloadRejected on tamper, bad key or staleness."""
    if max_age_seconds is not None:
        age = ((_now_ms() if now_ms is None else now_ms) - payload.ts) / 1000.0
        if age > max_age_seconds:
            raise PayloadRejected(f"payload is {age:.1f}s old (max {max_age_seconds}s)")
    try:
        iv = _unb64(payload.iv)
        sealed = _unb64(payload.data) + _unb64(payload.tag)
        plaintext = AESGCM(key).decrypt(iv, sealed, str(payload.ts).encode("ascii"))
    except (InvalidTag, ValueError) as e:
        raise PayloadRejected("payload failed authentication") from e
    return json.loads(plaintext.decode("utf-8"))


# ---------------------------------------------------------------------------
# Key exchange
# ---------------------------------------------------------------------------

class WrappedKey(BaseModel):
    ephemeral_public: str
    iv: str
    data: str


class KeyPair:
    """Client-side X25519 key pair used for one handshake."""

    def __init__(self) -> None:
        self._private = X25519PrivateKey.generate()

    @property
    def public_b64(self) -> str:
        raw = self._private.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return _b64(raw)

    def unwrap(self, wrapped: WrappedKey) -> bytes:
        """Recover the session key the host wrapped for this key pair."""
        try:
            peer = X25519PublicKey.from_public_bytes(_unb64(wrapped.ephemeral_public))
            kek = _derive(self._private.exchange(peer))
            key = AESGCM(kek).decrypt(_unb64(wrapped.iv), _unb64(wrapped.data), _WRAP_INFO)
        except (InvalidTag, ValueError) as e:
            raise PayloadRejected("session key unwrap failed") from e
        if len(key) != KEY_LENGTH:
            raise PayloadRejected("unwrapped session key has wrong length")
        return key


def _derive(shared: bytes) -> bytes:
    return HKDF(algorithm=hashes.SHA256(), length=KEY_LENGTH, salt=None, info=_WRAP_INFO).derive(shared)


def wrap_session_key(session_key: bytes, client_public_b64: str) -> WrappedKey:
    """Host side: encrypt ``session_key`` so only the holder of the client key can read it."""
    try:
        client_public = X25519PublicKey.from_public_bytes(_unb64(client_public_b64))
    except ValueError as e:
        raise PayloadRejected("invalid client public key") from e
    ephemeral = X25519PrivateKey.generate()
    kek = _derive(ephemeral.exchange(client_public))
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(kek).encrypt(iv, session_key, _WRAP_INFO)
    ephemeral_public = ephemeral.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return WrappedKey(ephemeral_public=_b64(ephemeral_public), iv=_b64(iv), data=_b64(sealed))


def hash_for_logging(value: str | bytes) -> str:
    """Short, non-reversible tag for keys and ids in log lines."""
    raw = value.encode("utf-8") if isinstance(value, str) else value
    return hashlib.sha256(raw).hexdigest()[:12]
