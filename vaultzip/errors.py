class VaultZipError(Exception):
    """Base class for vaultzip-specific errors."""


# Key material / cipher setup
class KeyDerivationError(VaultZipError):
    pass


class CipherInitError(VaultZipError):
    pass


# Decryption layer
class PayloadTooShortError(VaultZipError):
    pass


class AuthenticationFailedError(VaultZipError):
    """Tag did not verify: the payload was altered or the key is wrong.

    The two cases cannot be told apart.
    """


# Filesystem layer
class SourceNotFoundError(VaultZipError):
    pass


class SourceUnreadableError(VaultZipError):
    pass


class PathCreationError(VaultZipError):
    pass


# Container layer
class ContainerOpenError(VaultZipError):
    pass


class UnsafePathError(ContainerOpenError):
    """Entry name would escape the extraction root."""


class EntryCorruptError(ContainerOpenError):
    """One member failed its ZIP integrity check (CRC, truncated data).

    The rest of the container may still be readable.
    """
