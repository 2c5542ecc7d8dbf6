"""Room-scoped envelope encryption.

A room key is derived with PBKDF2-HMAC-SHA256 from the shared passphrase,
salted with the room id, and used for AES-256-GCM. Anyone holding both the
passphrase and the room id derives the same key; nothing is exchanged.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from room_relay.application.exceptions import DecryptionError, KeyDerivationError

logger = logging.getLogger(__name__)

KDF_ITERATIONS = 200_000
MIN_KDF_ITERATIONS = 100_000
KEY_LENGTH = 32
NONCE_LENGTH = 12
DEFAULT_SALT = "default-room"
FINGERPRINT_LENGTH = 12

_FINGERPRINT_DOMAIN = b"room-relay/fingerprint/v1"


class RoomKey:
    """AES-GCM key bound to a room. Raw key bytes are not exposed."""

    __slots__ = ("_aead", "room_id")

    def __init__(self, key: bytes, room_id: str) -> None:
        if len(key) != KEY_LENGTH:
            raise KeyDerivationError(f"expected a {KEY_LENGTH}-byte key, got {len(key)}")
        self._aead = AESGCM(key)
        self.room_id = room_id

    def __repr__(self) -> str:
        return f"RoomKey(room_id={self.room_id!r})"


def _salt_for(room_id: str) -> bytes:
    room = (room_id or "").strip()
    if not room:
        logger.warning(
            "Deriving key with the default salt %r; rooms without an id share key space",
            DEFAULT_SALT,
        )
        room = DEFAULT_SALT
    return room.encode("utf-8")


def derive_key(passphrase: str, room_id: str, *, iterations: int = KDF_ITERATIONS) -> RoomKey:
    """Derive the room key. Same (passphrase, room_id) always gives the same key."""
    secret = (passphrase or "").strip()
    if not secret:
        raise KeyDerivationError("passphrase must not be empty")
    if iterations < MIN_KDF_ITERATIONS:
        raise KeyDerivationError(f"iterations must be at least {MIN_KDF_ITERATIONS}")

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=_salt_for(room_id),
        iterations=iterations,
    )
    return RoomKey(kdf.derive(secret.encode("utf-8")), (room_id or "").strip())


async def derive_key_async(
    passphrase: str, room_id: str, *, iterations: int = KDF_ITERATIONS,
) -> RoomKey:
    """Run the KDF in a worker thread so the event loop keeps handling messages."""
    return await asyncio.to_thread(derive_key, passphrase, room_id, iterations=iterations)


def encrypt(key: RoomKey, plaintext: str) -> tuple[bytes, bytes]:
    """Return ``(iv, ciphertext)``; the GCM tag is appended to the ciphertext."""
    iv = os.urandom(NONCE_LENGTH)
    ciphertext = key._aead.encrypt(iv, plaintext.encode("utf-8"), None)
    return iv, ciphertext


def decrypt(key: RoomKey, iv: bytes, ciphertext: bytes) -> str:
    if len(iv) != NONCE_LENGTH:
        raise DecryptionError(f"nonce must be {NONCE_LENGTH} bytes, got {len(iv)}")
    try:
        data = key._aead.decrypt(iv, ciphertext, None)
    except InvalidTag as exc:
        raise DecryptionError("authentication failed") from exc
    except ValueError as exc:
        raise DecryptionError(str(exc)) from exc
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecryptionError("plaintext is not valid UTF-8") from exc


def fingerprint(passphrase: str, room_id: str) -> str:
    """Short hex digest two participants can compare to confirm a shared secret.

    Hashed under its own domain prefix so it reveals nothing about the key.
    """
    digest = hashlib.sha256()
    digest.update(_FINGERPRINT_DOMAIN)
    digest.update(b"\x00")
    digest.update((passphrase or "").strip().encode("utf-8"))
    digest.update(b"\x00")
    digest.update(_salt_for(room_id))
    return digest.hexdigest()[:FINGERPRINT_LENGTH]
