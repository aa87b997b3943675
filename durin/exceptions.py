"""
Vault Exceptions — Error taxonomy for the secret store.

Security Note:
    Messages may name files and record names, never key material,
    passwords, plaintext, or ciphertext.
"""


class VaultError(Exception):
    """Base class for all secret store errors."""


class LockHeldError(VaultError):
    """The store directory is locked by another opener."""


class StoreIOError(VaultError, OSError):
    """A filesystem read or write failed for a reason other than not-found."""


class AuthenticationError(VaultError):
    """Decryption failed: wrong password or corrupted data.

    The two causes are deliberately reported the same way.
    """


class FormatError(VaultError, ValueError):
    """A persisted structure or record payload is malformed."""


class NotFoundError(VaultError, KeyError):
    """No record is stored under the requested name."""

    def __str__(self) -> str:
        # KeyError repr-quotes its argument
        return str(self.args[0]) if self.args else ""


class KeyDerivationError(VaultError):
    """The password could not be obtained to derive the key-encryption key."""
