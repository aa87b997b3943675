"""
Comprehensive tests for SecretStore.

Tests cover:
- Opening a fresh store and the files it creates
- list/get/put/delete behavior
- Tamper and cross-name substitution detection
- Wrong password, reload and concurrent open
- Lock release on failed open and close
"""
import os
import stat
import base64

import orjson
import pytest

from durin.config import StoreConfig
from durin.exceptions import (
    AuthenticationError,
    FormatError,
    KeyDerivationError,
    LockHeldError,
    NotFoundError,
    VaultError,
)
from durin.password import read_password
from durin.record import Record
from durin.storage import RECORDS_FILENAME
from durin.store import SecretStore

PASSWORD = "correct horse battery staple"


def reopen(config, password=PASSWORD) -> SecretStore:
    return SecretStore.open(password, config=config)


def db_path(config):
    return config.store_dir / RECORDS_FILENAME


def rewrite_db(config, mutate) -> None:
    """Apply ``mutate`` to the decoded pw.db JSON and write it back."""
    path = db_path(config)
    data = orjson.loads(path.read_bytes())
    mutate(data)
    path.write_bytes(orjson.dumps(data))


def envelope(data, name):
    return next(e for e in data["records"] if e["name"] == name)


class TestOpen:
    """Opening a store."""

    def test_fresh_store(self, store, config):
        """A fresh directory opens empty and gets its files."""
        assert store.list() == []
        assert store.is_open
        for name in ("salt", "master", "pw.db", "lock"):
            assert (config.store_dir / name).exists()

    def test_file_modes(self, store, config):
        """Every artifact is owner-only; the directory is 0700."""
        assert stat.S_IMODE(os.stat(config.store_dir).st_mode) == 0o700
        for name in ("salt", "master", "pw.db", "lock"):
            path = config.store_dir / name
            assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_nested_dir_created(self, tmp_path, config):
        """Missing parent directories are created."""
        cfg = config.model_copy(update={"store_dir": tmp_path / "a" / "b"})
        with SecretStore.open(PASSWORD, config=cfg) as s:
            assert s.list() == []

    def test_password_source(self, config):
        """Without a password the source callable is used."""
        with SecretStore.open(config=config, password_source=lambda: PASSWORD) as s:
            s.put("x", Record(username="u", password="p"))
        with reopen(config) as s:
            assert s.list() == ["x"]

    def test_password_source_unavailable(self, config, monkeypatch):
        """A password read failure aborts open and releases the lock."""
        def no_input(prompt):
            raise EOFError()
        monkeypatch.setattr("getpass.getpass", no_input)
        with pytest.raises(KeyDerivationError):
            SecretStore.open(config=config)
        with reopen(config) as s:
            assert s.list() == []

    def test_existing_loose_dir(self, config):
        """Opening restricts an existing 0755 store directory to 0700."""
        config.store_dir.mkdir()
        os.chmod(config.store_dir, 0o755)
        with reopen(config) as s:
            assert s.store_dir == config.store_dir
            assert stat.S_IMODE(os.stat(config.store_dir).st_mode) == 0o700

    def test_default_scrypt_cost(self, tmp_path, record):
        """The shipped scrypt parameters create and reopen a store."""
        cfg = StoreConfig(store_dir=tmp_path / "default")
        assert cfg.scrypt_n == 2 ** 15
        with SecretStore.open(PASSWORD, config=cfg) as s:
            s.put("github", record)
        with SecretStore.open(PASSWORD, config=cfg) as s:
            assert s.get("github") == record
        with pytest.raises(AuthenticationError):
            SecretStore.open("wrong password", config=cfg)

    def test_bytes_password(self, config):
        """bytes and str passwords unlock the same store."""
        with reopen(config, PASSWORD.encode("utf-8")) as s:
            s.put("x", Record(username="u", password="p"))
        with reopen(config) as s:
            assert s.list() == ["x"]


class TestScenario:
    """The basic end-to-end flow."""

    def test_put_list_get(self, store, record):
        """Names list sorted; records round-trip; missing names fail."""
        store.put("github", record)
        assert store.list() == ["github"]
        assert store.get("github") == record

        store.put("aws", Record(username="bob", password="p2", notes="root"))
        assert store.list() == ["aws", "github"]

        with pytest.raises(NotFoundError):
            store.get("missing")

    def test_not_found_is_key_error(self, store):
        """NotFoundError is also a KeyError."""
        with pytest.raises(KeyError) as exc:
            store.get("missing")
        assert "missing" in str(exc.value)


class TestPutGet:
    """put/get/list semantics."""

    def test_overwrite(self, store, record):
        """Put on an existing name replaces the record."""
        store.put("github", record)
        new = Record(username="alice", password="p2", notes="rotated")
        store.put("github", new)
        assert store.get("github") == new
        assert store.list() == ["github"]

    def test_list_sorted_regardless_of_order(self, store, record):
        """list() is sorted whatever the insertion order."""
        for name in ("zeta", "alpha", "Mid", "beta"):
            store.put(name, record)
        assert store.list() == ["Mid", "alpha", "beta", "zeta"]

    def test_list_is_a_copy(self, store, record):
        """Mutating the returned list does not touch the store."""
        store.put("a", record)
        names = store.list()
        names.append("b")
        assert store.list() == ["a"]

    def test_put_commits(self, store, config, record):
        """Each put is on disk before it returns."""
        store.put("github", record)
        data = orjson.loads(db_path(config).read_bytes())
        assert [e["name"] for e in data["records"]] == ["github"]

    def test_plaintext_not_on_disk(self, store, config):
        """Record contents never appear in pw.db."""
        store.put("github", Record(username="alice", password="VerySecret!"))
        raw = db_path(config).read_bytes()
        assert b"VerySecret!" not in raw
        assert b"alice" not in raw

    def test_empty_name(self, store, record):
        """Empty names are refused."""
        with pytest.raises(ValueError):
            store.put("", record)

    def test_unicode_name(self, store, record):
        """Names are bound as UTF-8 associated data."""
        store.put("café", record)
        assert store.get("café") == record

    def test_contains_len(self, store, record):
        """Membership and size reflect the index."""
        assert len(store) == 0
        store.put("a", record)
        assert "a" in store
        assert "b" not in store
        assert len(store) == 1


class TestDelete:
    """delete()."""

    def test_delete(self, store, config, record):
        """Deleted names are gone, also after reopening."""
        store.put("a", record)
        store.put("b", record)
        store.delete("a")
        assert store.list() == ["b"]
        store.close()
        with reopen(config) as s:
            assert s.list() == ["b"]

    def test_delete_missing(self, store):
        """Deleting an absent name raises NotFoundError."""
        with pytest.raises(NotFoundError):
            store.delete("nope")


class TestTamper:
    """Ciphertext tampering and substitution."""

    def test_bit_flip_on_disk(self, store, config, record):
        """A flipped ciphertext bit fails with AuthenticationError."""
        store.put("github", record)
        store.close()

        def flip(data):
            env = envelope(data, "github")
            ct = bytearray(base64.b64decode(env["data"]))
            ct[-1] ^= 0x01
            env["data"] = base64.b64encode(bytes(ct)).decode("ascii")
        rewrite_db(config, flip)

        with reopen(config) as s:
            with pytest.raises(AuthenticationError):
                s.get("github")

    def test_cross_name_substitution(self, store, config, record):
        """Ciphertext copied from A to B does not decrypt as B."""
        store.put("a", record)
        store.put("b", Record(username="bob", password="other"))
        store.close()

        def copy(data):
            envelope(data, "b")["data"] = envelope(data, "a")["data"]
        rewrite_db(config, copy)

        with reopen(config) as s:
            assert s.get("a") == record
            with pytest.raises(AuthenticationError):
                s.get("b")

    def test_swap_in_memory(self, store, record):
        """Swapping two ciphertexts in the index fails both lookups."""
        store.put("a", record)
        store.put("b", Record(username="bob", password="other"))
        idx = store._records
        idx["a"], idx["b"] = idx["b"], idx["a"]
        for name in ("a", "b"):
            with pytest.raises(AuthenticationError):
                store.get(name)

    def test_corrupt_db(self, store, config):
        """A malformed pw.db makes open fail and releases the lock."""
        store.close()
        db_path(config).write_bytes(b"{broken")
        with pytest.raises(FormatError):
            reopen(config)
        db_path(config).unlink()
        with reopen(config) as s:
            assert s.list() == []


class TestPassword:
    """Wrong password handling."""

    def test_wrong_password(self, store, config, record):
        """Another password fails before any record is readable."""
        store.put("github", record)
        store.close()
        with pytest.raises(AuthenticationError):
            reopen(config, "wrong password")

    def test_wrong_password_releases_lock(self, store, config, record):
        """After a failed unlock the right password still works."""
        store.put("github", record)
        store.close()
        with pytest.raises(AuthenticationError):
            reopen(config, "wrong password")
        with reopen(config) as s:
            assert s.get("github") == record

    def test_wrong_password_keeps_files(self, store, config, record):
        """A failed unlock does not rewrite any store file."""
        store.put("github", record)
        store.close()
        before = {
            n: (config.store_dir / n).read_bytes()
            for n in ("salt", "master", "pw.db")
        }
        with pytest.raises(AuthenticationError):
            reopen(config, "wrong password")
        for name, content in before.items():
            assert (config.store_dir / name).read_bytes() == content


class TestReload:
    """Closing and reopening."""

    def test_reload_identical(self, store, config):
        """Reopening yields the same names and records."""
        records = {
            "github": Record(username="alice", password="p1"),
            "aws": Record(username="bob", password="p2", notes="prod"),
            "mail": Record(username="carol", password="p3", notes="x" * 500),
        }
        for name, r in records.items():
            store.put(name, r)
        names = store.list()
        store.close()

        with reopen(config) as s:
            assert s.list() == names
            for name, r in records.items():
                assert s.get(name) == r

    def test_reload_without_writes_keeps_db(self, store, config):
        """Opening an existing store does not rewrite pw.db."""
        store.put("a", Record(username="u", password="p"))
        store.close()
        before = db_path(config).read_bytes()
        with reopen(config):
            pass
        assert db_path(config).read_bytes() == before


class TestConcurrency:
    """Exclusive access to the store directory."""

    def test_second_open_fails(self, store, config, record):
        """A second open fails fast and leaves the first usable."""
        store.put("a", record)
        with pytest.raises(LockHeldError):
            reopen(config)
        store.put("b", record)
        assert store.list() == ["a", "b"]
        assert store.get("a") == record

    def test_open_after_close(self, store, config):
        """Closing releases the lock."""
        store.close()
        with reopen(config) as s:
            assert s.is_open


class TestClosed:
    """Operations on a closed store."""

    def test_operations_fail(self, store, record):
        """Every operation requires an open store."""
        store.close()
        assert not store.is_open
        with pytest.raises(VaultError):
            store.list()
        with pytest.raises(VaultError):
            store.get("a")
        with pytest.raises(VaultError):
            store.put("a", record)
        with pytest.raises(VaultError):
            store.delete("a")

    def test_close_twice(self, store):
        """close() is idempotent."""
        store.close()
        store.close()


class TestReadPassword:
    """The default password source."""

    def test_reads(self, monkeypatch):
        """getpass input is returned."""
        monkeypatch.setattr("getpass.getpass", lambda prompt: "typed")
        assert read_password() == "typed"

    def test_eof(self, monkeypatch):
        """EOF becomes KeyDerivationError."""
        def eof(prompt):
            raise EOFError()
        monkeypatch.setattr("getpass.getpass", eof)
        with pytest.raises(KeyDerivationError):
            read_password()
