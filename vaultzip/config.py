from __future__ import annotations

"""Runtime settings for the vaultzip CLI.

Values come from the environment and are overridden by command-line flags:

    VAULTZIP_KDF         pbkdf2-sha256 (default) | argon2id
    VAULTZIP_SALT        salt as UTF-8 text (default: compiled-in salt)
    VAULTZIP_ITERATIONS  PBKDF2 iteration count (default 500000)
    VAULTZIP_CIPHER      aes-256-gcm (default) | xchacha20-poly1305
    VAULTZIP_JOBS        encryption worker threads (default 1)
    VAULTZIP_PASSWORD    passphrase (otherwise prompted for)

The salt is shared by every container sealed with the same settings; anyone
holding the passphrase and salt can rebuild the key.
"""

import getpass
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from .constants import (
    DEFAULT_CIPHER,
    DEFAULT_KDF,
    DEFAULT_PBKDF2_ITERATIONS,
    DEFAULT_SALT,
    KDF_ARGON2ID,
    KDF_PBKDF2_SHA256,
    NONCE_SIZES,
)
from .kdf import KdfParams


PASSWORD_ENV = "VAULTZIP_PASSWORD"


def _env_int(env: Mapping[str, str], name: str, default: int, minimum: int = 1) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_choice(env: Mapping[str, str], name: str, default: str, choices) -> str:
    value = (env.get(name) or default).lower()
    if value not in choices:
        raise ValueError(f"{name} must be one of {', '.join(sorted(choices))}, got {value!r}")
    return value


@dataclass
class VaultConfig:
    kdf: KdfParams = field(default_factory=KdfParams)
    # None: AES-256-GCM when sealing, the recorded cipher when opening
    cipher: Optional[str] = None
    jobs: int = 1

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "VaultConfig":
        """Build a config from ``env`` (defaults to ``os.environ``).

        Raises:
            ValueError: If a variable holds an invalid value; the message
                names the variable.
        """
        env = os.environ if env is None else env
        algorithm = _env_choice(env, "VAULTZIP_KDF", DEFAULT_KDF, {KDF_PBKDF2_SHA256, KDF_ARGON2ID})
        salt_text = env.get("VAULTZIP_SALT")
        if salt_text == "":
            raise ValueError("VAULTZIP_SALT must not be empty")
        salt = salt_text.encode("utf-8") if salt_text is not None else DEFAULT_SALT
        iterations = _env_int(env, "VAULTZIP_ITERATIONS", DEFAULT_PBKDF2_ITERATIONS)
        cipher = None
        if env.get("VAULTZIP_CIPHER"):
            cipher = _env_choice(env, "VAULTZIP_CIPHER", DEFAULT_CIPHER, set(NONCE_SIZES))
        jobs = _env_int(env, "VAULTZIP_JOBS", 1)
        return cls(
            kdf=KdfParams(algorithm=algorithm, salt=salt, iterations=iterations),
            cipher=cipher,
            jobs=jobs,
        )

    def override(
        self,
        *,
        kdf: Optional[str] = None,
        salt: Optional[str] = None,
        iterations: Optional[int] = None,
        cipher: Optional[str] = None,
        jobs: Optional[int] = None,
    ) -> "VaultConfig":
        """Apply command-line values on top of this config (None means keep)."""
        if kdf is not None:
            self.kdf.algorithm = kdf
        if salt is not None:
            self.kdf.salt = salt.encode("utf-8")
        if iterations is not None:
            self.kdf.iterations = iterations
        if cipher is not None:
            self.cipher = cipher
        if jobs is not None:
            self.jobs = max(1, jobs)
        return self


def resolve_password(password: Optional[str], env: Optional[Mapping[str, str]] = None, *, confirm: bool = False) -> str:
    """Pick the passphrase: explicit value, then VAULTZIP_PASSWORD, then a prompt."""
    if password is not None:
        return password
    env = os.environ if env is None else env
    from_env = env.get(PASSWORD_ENV)
    if from_env is not None:
        return from_env
    pw = getpass.getpass("Passphrase: ")
    if confirm and getpass.getpass("Repeat passphrase: ") != pw:
        raise ValueError("Passphrases do not match")
    return pw
