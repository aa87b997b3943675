"""
Vault Keys — Salt and master keyset lifecycle.

The salt is stored in plaintext so the key-encryption key can be
re-derived from the password; the master key only ever touches disk
wrapped under that key-encryption key.

Security Note:
    Never log key material. Only log file paths and key ids.
"""
import os
import logging
from pathlib import Path

from .crypto import MasterKey, generate_master_key, unwrap_keyset, wrap_keyset
from .exceptions import AuthenticationError, FormatError
from .storage import read_file, write_file

logger = logging.getLogger("durin.vault")

SALT_FILENAME = "salt"
MASTER_FILENAME = "master"
DEFAULT_SALT_LENGTH = 16


def load_or_create_salt(store_dir: Path, length: int = DEFAULT_SALT_LENGTH) -> bytes:
    """Return the store's salt, generating and persisting it on first use.

    Args:
        store_dir: Store directory.
        length: Size of a newly generated salt.

    Returns:
        Salt bytes.

    Raises:
        StoreIOError: If the salt cannot be read or written.
        FormatError: If the salt file exists but is empty.
    """
    path = store_dir / SALT_FILENAME
    salt = read_file(path)
    if salt is None:
        salt = os.urandom(length)
        write_file(path, salt)
        logger.info("Created new %d-byte salt at %s", length, path)
    elif not salt:
        raise FormatError(f"salt file {str(path)!r} is empty")
    return salt


def load_or_create_master_key(
    store_dir: Path,
    kek: bytes,
    cipher: str = "chacha20",
) -> MasterKey:
    """Unwrap the persisted master keyset, or create it on first use.

    Args:
        store_dir: Store directory.
        kek: Key-encryption key derived from the password.
        cipher: AEAD backend for a newly created master key.

    Returns:
        The unwrapped master key.

    Raises:
        AuthenticationError: Wrong password or damaged ``master`` file.
        StoreIOError: If the keyset cannot be read or written.
    """
    path = store_dir / MASTER_FILENAME
    wrapped = read_file(path)
    if wrapped is None:
        master = generate_master_key(cipher)
        write_file(path, wrap_keyset(master, kek))
        logger.info(
            "Created master keyset id=%d cipher=%s at %s",
            master.key_id, master.cipher, path,
        )
        return master
    try:
        master = unwrap_keyset(wrapped, kek)
    except AuthenticationError:
        logger.warning("Unable to unlock master keyset at %s", path)
        raise
    logger.debug("Unlocked master keyset id=%d", master.key_id)
    return master
