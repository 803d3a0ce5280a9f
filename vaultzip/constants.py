# Key derivation
KEY_SIZE = 32
KDF_PBKDF2_SHA256 = "pbkdf2-sha256"
KDF_ARGON2ID = "argon2id"
DEFAULT_KDF = KDF_PBKDF2_SHA256

# Compiled-in salt shared by every container built with the defaults. Kept so
# containers from earlier builds stay readable; override with --salt.
DEFAULT_SALT = b"ow3yz5P{Z_N%04m$$Oim"
DEFAULT_PBKDF2_ITERATIONS = 500_000

ARGON_TIME_COST = 3
ARGON_MEMORY_COST_KIB = 64 * 1024  # 64 MiB
ARGON_PARALLELISM = 4

# AEAD ciphers
CIPHER_AES_GCM = "aes-256-gcm"
CIPHER_XCHACHA = "xchacha20-poly1305"
DEFAULT_CIPHER = CIPHER_AES_GCM

TAG_SIZE = 16
NONCE_SIZES = {
    CIPHER_AES_GCM: 12,
    CIPHER_XCHACHA: 24,
}

# Container marker stored in the ZIP comment
CONTAINER_FORMAT = "vaultzip"
CONTAINER_VERSION = 1

# Modes used when a ZIP member carries no Unix permission bits
DEFAULT_FILE_MODE = 0o644
DEFAULT_DIR_MODE = 0o755

ARCHIVE_SUFFIX = ".zip"
