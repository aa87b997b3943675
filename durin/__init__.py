"""Durin — Local, password-protected credential store.

Security Note (Threat Model):
    The unlock password derives a key-encryption key (scrypt) that wraps a
    random master key; the master key encrypts every record with the
    record name as associated data. While a store is open the master key
    lives in process memory, so a memory dump of the process can expose
    it. This is an accepted limitation.
"""

from .store import SecretStore
from .record import Record
from .config import StoreConfig
from .exceptions import (
    VaultError,
    LockHeldError,
    StoreIOError,
    AuthenticationError,
    FormatError,
    NotFoundError,
    KeyDerivationError,
)
from .version import __version__

__all__ = [
    "SecretStore",
    "Record",
    "StoreConfig",
    "VaultError",
    "LockHeldError",
    "StoreIOError",
    "AuthenticationError",
    "FormatError",
    "NotFoundError",
    "KeyDerivationError",
    "__version__",
]
