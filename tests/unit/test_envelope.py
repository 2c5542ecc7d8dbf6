from __future__ import annotations

import pytest

from room_relay.application.exceptions import DecryptionError, KeyDerivationError
from room_relay.infrastructure.crypto import envelope


@pytest.fixture(scope="module")
def key() -> envelope.RoomKey:
    return envelope.derive_key("correct horse", "room-42")


def test_round_trip(key):
    iv, ciphertext = envelope.encrypt(key, "hello")
    assert envelope.decrypt(key, iv, ciphertext) == "hello"


def test_round_trip_unicode(key):
    text = "zdravo, мир 👋"
    iv, ciphertext = envelope.encrypt(key, text)
    assert envelope.decrypt(key, iv, ciphertext) == text


def test_same_inputs_derive_interchangeable_keys(key):
    other = envelope.derive_key("correct horse", "room-42")
    iv, ciphertext = envelope.encrypt(key, "hello")
    assert envelope.decrypt(other, iv, ciphertext) == "hello"


def test_different_room_gives_different_key(key):
    other = envelope.derive_key("correct horse", "room-43")
    iv, ciphertext = envelope.encrypt(key, "hello")
    with pytest.raises(DecryptionError):
        envelope.decrypt(other, iv, ciphertext)


def test_wrong_passphrase_fails_authentication(key):
    wrong = envelope.derive_key("wrong", "room-42")
    iv, ciphertext = envelope.encrypt(key, "hello")
    with pytest.raises(DecryptionError):
        envelope.decrypt(wrong, iv, ciphertext)


def test_nonce_is_fresh_and_96_bits(key):
    iv1, ct1 = envelope.encrypt(key, "same")
    iv2, ct2 = envelope.encrypt(key, "same")
    assert len(iv1) == envelope.NONCE_LENGTH == 12
    assert iv1 != iv2
    assert ct1 != ct2


def test_tampered_ciphertext_is_rejected(key):
    iv, ciphertext = envelope.encrypt(key, "hello")
    tampered = bytes([ciphertext[0] ^ 0x01]) + ciphertext[1:]
    with pytest.raises(DecryptionError):
        envelope.decrypt(key, iv, tampered)


def test_bad_nonce_length_is_a_decryption_error(key):
    iv, ciphertext = envelope.encrypt(key, "hello")
    with pytest.raises(DecryptionError):
        envelope.decrypt(key, iv[:8], ciphertext)


def test_truncated_envelope_is_a_decryption_error(key):
    iv, _ = envelope.encrypt(key, "hello")
    with pytest.raises(DecryptionError):
        envelope.decrypt(key, iv, b"\x00" * 4)


def test_empty_passphrase_rejected():
    with pytest.raises(KeyDerivationError):
        envelope.derive_key("   ", "room-42")


def test_low_iteration_count_rejected():
    with pytest.raises(KeyDerivationError):
        envelope.derive_key("pass", "room-42", iterations=1000)


def test_empty_room_falls_back_to_default_salt(caplog):
    with caplog.at_level("WARNING"):
        blank = envelope.derive_key("pass", "")
    default = envelope.derive_key("pass", envelope.DEFAULT_SALT)
    iv, ciphertext = envelope.encrypt(blank, "x")
    assert envelope.decrypt(default, iv, ciphertext) == "x"
    assert "default salt" in caplog.text


def test_key_repr_hides_material(key):
    assert "room-42" in repr(key)
    assert not hasattr(key, "__dict__")


def test_fingerprint_is_stable_and_short():
    fp = envelope.fingerprint("correct horse", "room-42")
    assert fp == envelope.fingerprint("correct horse", "room-42")
    assert len(fp) == envelope.FINGERPRINT_LENGTH
    assert fp != envelope.fingerprint("correct horse", "room-43")
    assert fp != envelope.fingerprint("wrong", "room-42")


@pytest.mark.asyncio
async def test_derive_key_async_matches_sync(key):
    derived = await envelope.derive_key_async("correct horse", "room-42")
    iv, ciphertext = envelope.encrypt(derived, "hi")
    assert envelope.decrypt(key, iv, ciphertext) == "hi"
