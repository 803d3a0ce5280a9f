"""
vaultzip: ZIP containers with individually encrypted entries.

Features:

- Every file entry is sealed with an AEAD cipher (AES-256-GCM by default,
  XChaCha20-Poly1305 optionally) under a key derived from a passphrase
  (PBKDF2-HMAC-SHA256 by default, Argon2id optionally).
- Directory structure, names and permission bits stay in the ordinary ZIP
  central directory; a generic unzip tool lists the tree but only yields
  ciphertext.
- Stored payload layout per file entry: nonce || ciphertext || tag.

Entry names and metadata are NOT protected. Extraction is not atomic: a
failure part way leaves the entries written so far on disk.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "kdf",
    "envelope",
    "container",
    "archiver",
    "extractor",
    "config",
]

# Programmatic API: vaultzip.kdf.derive_key, vaultzip.archiver.archive and
# vaultzip.extractor.extract; the CLI functions in vaultzip.cli (cmd_zip,
# cmd_unzip, ...) take normal parameters.
