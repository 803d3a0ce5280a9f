from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Union

from Cryptodome.Cipher import AES, ChaCha20_Poly1305

from .constants import (
    KEY_SIZE,
    TAG_SIZE,
    NONCE_SIZES,
    CIPHER_AES_GCM,
    CIPHER_XCHACHA,
    DEFAULT_CIPHER,
)
from .errors import AuthenticationFailedError, CipherInitError, PayloadTooShortError
from .kdf import Key


KeyLike = Union[Key, bytes, bytearray]


@dataclass(frozen=True)
class Envelope:
    """Sealed form of one plaintext buffer.

    ``ciphertext`` carries the tag appended. Nothing here says which key
    sealed it.
    """

    nonce: bytes
    ciphertext: bytes

    def to_bytes(self) -> bytes:
        return self.nonce + self.ciphertext

    @classmethod
    def from_bytes(cls, payload: bytes, cipher: str = DEFAULT_CIPHER) -> "Envelope":
        nonce_size = nonce_size_for(cipher)
        if len(payload) < nonce_size:
            raise PayloadTooShortError(
                f"Encrypted payload too short: {len(payload)} bytes (nonce alone is {nonce_size})"
            )
        return cls(nonce=bytes(payload[:nonce_size]), ciphertext=bytes(payload[nonce_size:]))


def nonce_size_for(cipher: str) -> int:
    try:
        return NONCE_SIZES[cipher]
    except KeyError:
        raise CipherInitError(f"Unsupported cipher: {cipher}") from None


def _new_cipher(cipher: str, key: KeyLike, nonce: bytes):
    raw = bytes(key)
    if len(raw) != KEY_SIZE:
        raise CipherInitError(f"{cipher} requires a {KEY_SIZE}-byte key, got {len(raw)}")
    try:
        if cipher == CIPHER_AES_GCM:
            return AES.new(raw, AES.MODE_GCM, nonce=nonce, mac_len=TAG_SIZE)
        if cipher == CIPHER_XCHACHA:
            # 24-byte nonce selects the XChaCha20 variant
            return ChaCha20_Poly1305.new(key=raw, nonce=nonce)
    except ValueError as exc:
        raise CipherInitError(f"Cannot initialise {cipher}: {exc}") from exc
    raise CipherInitError(f"Unsupported cipher: {cipher}")


def seal(plaintext: bytes, key: KeyLike, cipher: str = DEFAULT_CIPHER) -> Envelope:
    """Encrypt and authenticate ``plaintext`` under a fresh random nonce.

    Two calls with the same plaintext and key never produce the same output.

    Raises:
        CipherInitError: If the key length or cipher name is wrong.
    """
    nonce = os.urandom(nonce_size_for(cipher))
    aead = _new_cipher(cipher, key, nonce)
    ciphertext, tag = aead.encrypt_and_digest(plaintext)
    return Envelope(nonce=nonce, ciphertext=ciphertext + tag)


def open_envelope(envelope: Envelope, key: KeyLike, cipher: str = DEFAULT_CIPHER) -> bytes:
    """Verify and decrypt ``envelope``; returns the exact original bytes.

    Raises:
        AuthenticationFailedError: If the tag does not verify (tampering or
            wrong key; the two are not distinguished).
    """
    aead = _new_cipher(cipher, key, envelope.nonce)
    if len(envelope.ciphertext) < TAG_SIZE:
        raise AuthenticationFailedError("Authentication failed: payload has no complete tag")
    body = envelope.ciphertext[:-TAG_SIZE]
    tag = envelope.ciphertext[-TAG_SIZE:]
    try:
        return aead.decrypt_and_verify(body, tag)
    except ValueError:
        raise AuthenticationFailedError("Authentication failed: payload corrupted or wrong key") from None


def encrypt(plaintext: bytes, key: KeyLike, cipher: str = DEFAULT_CIPHER) -> bytes:
    """Return the stored payload layout ``nonce || ciphertext || tag``."""
    return seal(plaintext, key, cipher).to_bytes()


def decrypt(payload: bytes, key: KeyLike, cipher: str = DEFAULT_CIPHER) -> bytes:
    """Inverse of :func:`encrypt`.

    Raises:
        PayloadTooShortError: If ``payload`` is shorter than one nonce.
        AuthenticationFailedError: If the tag does not verify.
    """
    return open_envelope(Envelope.from_bytes(payload, cipher), key, cipher)


def overhead(cipher: str = DEFAULT_CIPHER) -> int:
    return nonce_size_for(cipher) + TAG_SIZE


__all__ = [
    "Envelope",
    "seal",
    "open_envelope",
    "encrypt",
    "decrypt",
    "overhead",
    "nonce_size_for",
]
