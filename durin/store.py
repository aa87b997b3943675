"""
SecretStore — Password-protected credential store in a local directory.

Provides the public API of the store:
- ``SecretStore.open()`` — lock the directory, unlock the master key, load records
- ``list()`` — sorted record names
- ``get(name)`` — decrypt and return a record
- ``put(name, record)`` — encrypt, store and commit a record
- ``delete(name)`` — remove a record and commit
- ``close()`` — release the directory lock

Security Note:
    Never log plaintext or ciphertext values. Only log record names and
    counts. The master key stays in process memory while the store is open;
    there is no secure wipe beyond normal memory reclamation.
"""
import logging
from pathlib import Path
from typing import Callable, Optional

from .config import StoreConfig
from .crypto import MasterKey, derive_kek
from .exceptions import KeyDerivationError, NotFoundError, VaultError
from .keys import load_or_create_master_key, load_or_create_salt
from .password import read_password
from .record import Record, decode_record, encode_record
from .storage import StoreLock, commit_records, ensure_store_dir, load_records

logger = logging.getLogger("durin.vault")


class SecretStore:
    """An open, unlocked store.

    Holds the directory lock, the unwrapped master key and the in-memory
    index of name → ciphertext. Every ``put``/``delete`` rewrites ``pw.db``
    before returning. Instances are built with :meth:`open`.
    """

    def __init__(
        self,
        config: StoreConfig,
        lock: StoreLock,
        master: MasterKey,
        records: dict[str, bytes],
    ):
        self._config = config
        self._lock = lock
        self._master: Optional[MasterKey] = master
        self._records = records

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"<SecretStore {self._config.store_dir} [{state}] records={len(self._records)}>"

    @property
    def store_dir(self) -> Path:
        return self._config.store_dir

    @property
    def is_open(self) -> bool:
        return self._master is not None

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _require_open(self) -> MasterKey:
        if self._master is None:
            raise VaultError("store is closed")
        return self._master

    def _validate_name(self, name: str) -> None:
        """Validate a record name.

        Raises:
            ValueError: If name is not a non-empty string.
        """
        if not isinstance(name, str) or not name:
            raise ValueError("Record name must be a non-empty string")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def list(self) -> list[str]:
        """Return record names in lexicographic order."""
        self._require_open()
        return sorted(self._records)

    def get(self, name: str) -> Record:
        """Decrypt and return the record stored under ``name``.

        Raises:
            NotFoundError: If no record has that name.
            AuthenticationError: If the ciphertext does not authenticate.
            FormatError: If the decrypted payload is not a record.
        """
        master = self._require_open()
        ciphertext = self._records.get(name)
        if ciphertext is None:
            raise NotFoundError(f"password {name!r} not found")
        plaintext = master.decrypt(ciphertext, name.encode("utf-8"))
        return decode_record(plaintext)

    def put(self, name: str, record: Record) -> None:
        """Encrypt ``record`` under ``name`` (overwriting) and commit.

        Raises:
            ValueError: If name is invalid.
            StoreIOError: If the commit fails; the in-memory index keeps
                the new value for this process only.
        """
        master = self._require_open()
        self._validate_name(name)
        ciphertext = master.encrypt(encode_record(record), name.encode("utf-8"))
        self._records[name] = ciphertext
        self._commit()
        logger.debug("Stored record %r", name)

    def delete(self, name: str) -> None:
        """Remove the record stored under ``name`` and commit.

        Raises:
            NotFoundError: If no record has that name.
        """
        self._require_open()
        if name not in self._records:
            raise NotFoundError(f"password {name!r} not found")
        del self._records[name]
        self._commit()
        logger.debug("Deleted record %r", name)

    def __contains__(self, name: object) -> bool:
        return name in self._records

    def __len__(self) -> int:
        return len(self._records)

    def _commit(self) -> None:
        commit_records(self._config.store_dir, self._records)

    def close(self) -> None:
        """Drop key material and release the directory lock."""
        self._master = None
        self._records = {}
        self._lock.release()

    def __enter__(self) -> "SecretStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @classmethod
    def open(
        cls,
        password: Optional[str | bytes] = None,
        *,
        config: Optional[StoreConfig] = None,
        password_source: Callable[[], str | bytes] = read_password,
    ) -> "SecretStore":
        """Lock the store directory, unlock the master key and load records.

        Creates the directory, salt, master keyset and an empty ``pw.db``
        on first use. Any failure releases the lock before propagating.

        Args:
            password: Unlock password; read from ``password_source`` if None.
            config: Store configuration; defaults to ``StoreConfig.from_env()``.
            password_source: Callable returning the password.

        Returns:
            Open SecretStore instance.

        Raises:
            LockHeldError: If another opener holds the store.
            KeyDerivationError: If the password cannot be read.
            AuthenticationError: Wrong password or damaged master keyset.
            FormatError: If a persisted file is malformed.
            StoreIOError: On filesystem failures.
        """
        if config is None:
            config = StoreConfig.from_env()
        ensure_store_dir(config.store_dir)
        lock = StoreLock(config.store_dir).acquire()
        try:
            salt = load_or_create_salt(config.store_dir, config.salt_length)
            if password is None:
                password = password_source()
                if password is None:
                    raise KeyDerivationError("no password available")
            kek = derive_kek(
                password, salt,
                n=config.scrypt_n, r=config.scrypt_r, p=config.scrypt_p,
            )
            master = load_or_create_master_key(
                config.store_dir, kek, config.cipher_backend,
            )
            records = load_records(config.store_dir)
        except BaseException:
            lock.release()
            raise
        logger.info(
            "Opened store %s: %d record(s)", config.store_dir, len(records),
        )
        return cls(config, lock, master, records)
