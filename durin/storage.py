"""
Vault Storage — On-disk record set, owner-only file writes and the store lock.

Every persisted artifact is written with mode 0600 inside a 0700 directory.
``pw.db`` holds the full record set and is replaced as a whole on each
commit (temporary file + rename, so readers never see a partial write).

Security Note:
    Only names and base64 ciphertext are stored here. Never log ciphertext.
"""
import os
import fcntl
import base64
import binascii
import logging
import tempfile
from pathlib import Path
from typing import Optional

import orjson
from pydantic import BaseModel, ValidationError

from .exceptions import FormatError, LockHeldError, StoreIOError

logger = logging.getLogger("durin.vault")

FILE_MODE = 0o600
DIR_MODE = 0o700
RECORDS_FILENAME = "pw.db"
LOCK_FILENAME = "lock"
RECORDSET_VERSION = 1


# ---------------------------------------------------------------------------
# File primitives
# ---------------------------------------------------------------------------

def ensure_store_dir(store_dir: Path) -> Path:
    """Create the store directory if missing and make it 0700.

    Raises:
        StoreIOError: If the directory cannot be created or restricted.
    """
    try:
        store_dir.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
        # mkdir leaves an existing directory's mode alone
        os.chmod(store_dir, DIR_MODE)
    except OSError as err:
        raise StoreIOError(
            f"failed to create store directory {str(store_dir)!r}: {err}"
        ) from err
    return store_dir


def read_file(path: Path) -> Optional[bytes]:
    """Read a store file.

    Returns:
        File contents, or None if the file does not exist.

    Raises:
        StoreIOError: On any read error other than not-found.
    """
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as err:
        raise StoreIOError(f"failed to read {str(path)!r}: {err}") from err


def fsync_dir(directory: Path) -> None:
    """Flush a directory entry so a rename inside it survives a crash."""
    fd = os.open(directory, os.O_RDONLY | os.O_DIRECTORY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def write_file(path: Path, data: bytes) -> None:
    """Atomically replace ``path`` with ``data``, owner read/write only.

    Raises:
        StoreIOError: If the file cannot be written.
    """
    tmp = None
    try:
        # mkstemp creates the file 0600
        fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        with os.fdopen(fd, "wb") as fp:
            fp.write(data)
            fp.flush()
            os.fsync(fp.fileno())
        os.chmod(tmp, FILE_MODE)
        os.replace(tmp, path)
        tmp = None
        fsync_dir(path.parent)
    except OSError as err:
        if tmp is not None and os.path.exists(tmp):
            os.unlink(tmp)
        raise StoreIOError(f"failed to write {str(path)!r}: {err}") from err


# ---------------------------------------------------------------------------
# Store lock
# ---------------------------------------------------------------------------

class StoreLock:
    """Exclusive, non-blocking advisory lock on ``<store_dir>/lock``.

    Held for as long as the owning store is open; released on ``release()``,
    on context-manager exit, or by the OS when the process exits.
    """

    def __init__(self, store_dir: Path):
        self.path = store_dir / LOCK_FILENAME
        self._fd: Optional[int] = None

    @property
    def locked(self) -> bool:
        return self._fd is not None

    def acquire(self) -> "StoreLock":
        """Take the lock or fail immediately.

        Raises:
            LockHeldError: If another opener holds the lock.
            StoreIOError: If the lock file cannot be opened.
        """
        if self._fd is not None:
            return self
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_WRONLY, FILE_MODE)
        except OSError as err:
            raise StoreIOError(
                f"failed to open lock file {str(self.path)!r}: {err}"
            ) from err
        try:
            # an existing lock file keeps its old mode otherwise
            os.fchmod(fd, FILE_MODE)
        except OSError as err:
            os.close(fd)
            raise StoreIOError(
                f"failed to open lock file {str(self.path)!r}: {err}"
            ) from err
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            raise LockHeldError(
                f"store {str(self.path.parent)!r} is locked by another process"
            ) from None
        except OSError as err:
            os.close(fd)
            raise StoreIOError(
                f"failed to lock {str(self.path)!r}: {err}"
            ) from err
        self._fd = fd
        logger.debug("Acquired store lock %s", self.path)
        return self

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
        logger.debug("Released store lock %s", self.path)

    def __enter__(self) -> "StoreLock":
        return self.acquire()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


# ---------------------------------------------------------------------------
# Record set
# ---------------------------------------------------------------------------

class Envelope(BaseModel):
    """One named ciphertext; ``data`` is base64."""

    name: str
    data: str

    model_config = {"extra": "forbid"}


class RecordSet(BaseModel):
    """The full on-disk contents of ``pw.db``."""

    version: int = RECORDSET_VERSION
    records: list[Envelope] = []

    model_config = {"extra": "forbid"}


def encode_record_set(records: dict[str, bytes]) -> bytes:
    """Serialize a name → ciphertext mapping to record-set bytes."""
    rs = RecordSet(
        records=[
            Envelope(name=name, data=base64.b64encode(ct).decode("ascii"))
            for name, ct in records.items()
        ]
    )
    return orjson.dumps(rs.model_dump(), option=orjson.OPT_INDENT_2)


def decode_record_set(data: bytes) -> dict[str, bytes]:
    """Parse record-set bytes back into a name → ciphertext mapping.

    Raises:
        FormatError: On invalid JSON, unknown version, duplicate names or
            invalid base64.
    """
    try:
        rs = RecordSet.model_validate(orjson.loads(data))
    except orjson.JSONDecodeError as err:
        raise FormatError(f"malformed record set: {err}") from err
    except ValidationError as err:
        fields = sorted({
            ".".join(str(part) for part in e["loc"]) or "<root>"
            for e in err.errors()
        })
        raise FormatError(
            f"malformed record set: bad field(s) {', '.join(fields)}"
        ) from None
    if rs.version != RECORDSET_VERSION:
        raise FormatError(f"unsupported record set version: {rs.version}")
    records: dict[str, bytes] = {}
    for env in rs.records:
        if env.name in records:
            raise FormatError(f"duplicate record name {env.name!r}")
        try:
            records[env.name] = base64.b64decode(env.data, validate=True)
        except binascii.Error as err:
            raise FormatError(
                f"record {env.name!r} has invalid ciphertext encoding"
            ) from err
    return records


def commit_records(store_dir: Path, records: dict[str, bytes]) -> None:
    """Write the full mapping to ``pw.db``, replacing the previous contents."""
    write_file(store_dir / RECORDS_FILENAME, encode_record_set(records))
    logger.debug("Committed %d record(s) to %s", len(records), store_dir)


def load_records(store_dir: Path) -> dict[str, bytes]:
    """Load ``pw.db``; a missing file starts (and commits) an empty store.

    Raises:
        FormatError: If the file exists but cannot be parsed.
        StoreIOError: On read/write failures.
    """
    path = store_dir / RECORDS_FILENAME
    data = read_file(path)
    if data is None:
        logger.info("No record set at %s, creating an empty one", path)
        commit_records(store_dir, {})
        return {}
    try:
        records = decode_record_set(data)
    except FormatError as err:
        raise FormatError(f"{path}: {err}") from err
    logger.debug("Loaded %d record(s) from %s", len(records), path)
    return records
