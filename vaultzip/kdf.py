from __future__ import annotations

"""Passphrase to key derivation.

Derivation is deterministic: the same passphrase and parameters always give
the same key, so a container sealed in one session opens in another without
the key ever being stored. The iteration/memory cost is the only defence
against offline guessing.
"""

import hmac
from dataclasses import dataclass
from typing import Optional

from argon2.low_level import Type as _ArgonType, hash_secret_raw as _argon_hash
from Cryptodome.Hash import SHA256
from Cryptodome.Protocol.KDF import PBKDF2

from .constants import (
    KEY_SIZE,
    KDF_PBKDF2_SHA256,
    KDF_ARGON2ID,
    DEFAULT_KDF,
    DEFAULT_SALT,
    DEFAULT_PBKDF2_ITERATIONS,
    ARGON_TIME_COST,
    ARGON_MEMORY_COST_KIB,
    ARGON_PARALLELISM,
)
from .errors import KeyDerivationError


@dataclass
class KdfParams:
    algorithm: str = DEFAULT_KDF
    salt: bytes = DEFAULT_SALT
    iterations: int = DEFAULT_PBKDF2_ITERATIONS
    time_cost: int = ARGON_TIME_COST
    memory_cost_kib: int = ARGON_MEMORY_COST_KIB
    parallelism: int = ARGON_PARALLELISM

    def validate(self) -> None:
        if self.algorithm not in (KDF_PBKDF2_SHA256, KDF_ARGON2ID):
            raise KeyDerivationError(f"Unsupported key derivation function: {self.algorithm}")
        if not self.salt:
            raise KeyDerivationError("Salt must not be empty")
        if self.algorithm == KDF_PBKDF2_SHA256:
            if self.iterations < 1:
                raise KeyDerivationError("PBKDF2 iteration count must be positive")
        else:
            if self.time_cost < 1 or self.parallelism < 1:
                raise KeyDerivationError("Argon2 time cost and parallelism must be positive")
            # Argon2 requires at least 8 KiB per lane
            if self.memory_cost_kib < 8 * self.parallelism:
                raise KeyDerivationError("Argon2 memory cost too small for the requested parallelism")


class Key:
    """A derived symmetric key held in a wipeable buffer.

    Python cannot guarantee no other copy of the secret exists in memory;
    ``wipe`` clears the buffer this object owns and nothing more.
    """

    __slots__ = ("_buf",)

    def __init__(self, material: bytes):
        self._buf = bytearray(material)

    def __bytes__(self) -> bytes:
        return bytes(self._buf)

    def __len__(self) -> int:
        return len(self._buf)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Key):
            return NotImplemented
        return hmac.compare_digest(self._buf, other._buf)

    def __hash__(self):
        raise TypeError("Key objects are not hashable")

    def __repr__(self) -> str:
        return f"<Key {len(self._buf)} bytes>"

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.wipe()

    @property
    def wiped(self) -> bool:
        return not any(self._buf)

    def wipe(self) -> None:
        for i in range(len(self._buf)):
            self._buf[i] = 0


def derive_key(passphrase: str, params: Optional[KdfParams] = None) -> Key:
    """Turn ``passphrase`` into a 32-byte key.

    Args:
        passphrase: Any string, including the empty string.
        params: Derivation parameters; defaults to PBKDF2-HMAC-SHA256 with
            the compiled-in salt and 500 000 iterations.

    Raises:
        KeyDerivationError: If ``params`` are malformed.
    """
    params = params or KdfParams()
    params.validate()
    secret = passphrase.encode("utf-8")
    if params.algorithm == KDF_ARGON2ID:
        material = _argon_hash(
            secret,
            params.salt,
            time_cost=params.time_cost,
            memory_cost=params.memory_cost_kib,
            parallelism=params.parallelism,
            hash_len=KEY_SIZE,
            type=_ArgonType.ID,
        )
    else:
        material = PBKDF2(
            secret,
            params.salt,
            dkLen=KEY_SIZE,
            count=params.iterations,
            hmac_hash_module=SHA256,
        )
    if len(material) != KEY_SIZE:
        raise KeyDerivationError(f"Derived key has unexpected length {len(material)}")
    return Key(material)


__all__ = [
    "KdfParams",
    "Key",
    "derive_key",
]
