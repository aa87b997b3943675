"""Shared fixtures for the secret store tests."""
import pytest

from durin.config import StoreConfig
from durin.record import Record
from durin.store import SecretStore

PASSWORD = "correct horse battery staple"


@pytest.fixture
def config(tmp_path):
    """Store config in a temp dir with a cheap scrypt cost."""
    return StoreConfig(store_dir=tmp_path / "store", scrypt_n=2 ** 4)


@pytest.fixture
def store(config):
    """An open store; closed at teardown."""
    s = SecretStore.open(PASSWORD, config=config)
    yield s
    s.close()


@pytest.fixture
def record():
    return Record(username="alice", password="p1", notes="")
