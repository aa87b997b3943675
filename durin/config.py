"""
Store Configuration — Store location and key-derivation settings.

Reads overrides from environment variables:
    DURIN_HOME = <path to the store directory>       (default ~/.durin)
    DURIN_CIPHER_BACKEND = chacha20 | aesgcm         (new master keys only)
    DURIN_SCRYPT_N = <power of two>                  (scrypt cost factor)

Security Note:
    Changing the scrypt parameters of an existing store makes its password
    derive a different key-encryption key, so the store will not unlock.
"""
import os
import logging
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger("durin.vault")

DEFAULT_STORE_DIRNAME = ".durin"
SUPPORTED_CIPHERS = ("chacha20", "aesgcm")


def default_store_dir() -> Path:
    """Resolve the store directory from DURIN_HOME or the user's home.

    Returns:
        Absolute path of the store directory (not created here).

    Raises:
        RuntimeError: If the home directory cannot be determined.
    """
    override = os.environ.get("DURIN_HOME")
    if override:
        return Path(override).expanduser()
    home = Path.home()
    return home / DEFAULT_STORE_DIRNAME


class StoreConfig(BaseModel):
    """Validated store configuration."""

    store_dir: Path = Field(default_factory=default_store_dir)
    cipher_backend: str = Field(default="chacha20")
    salt_length: int = Field(default=16, ge=16, le=64)
    scrypt_n: int = Field(default=2 ** 15, ge=2)
    scrypt_r: int = Field(default=8, ge=1)
    scrypt_p: int = Field(default=1, ge=1)

    @field_validator("cipher_backend")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Validate cipher backend is supported."""
        v = v.lower()
        if v not in SUPPORTED_CIPHERS:
            raise ValueError(f"Unsupported cipher backend: {v}")
        return v

    @field_validator("scrypt_n")
    @classmethod
    def validate_scrypt_n(cls, v: int) -> int:
        """scrypt requires a power of two cost factor."""
        if v & (v - 1):
            raise ValueError(f"scrypt_n must be a power of two, got {v}")
        return v

    @classmethod
    def from_env(cls) -> "StoreConfig":
        """Create StoreConfig by loading values from environment.

        Returns:
            Populated StoreConfig instance.
        """
        values: dict = {"store_dir": default_store_dir()}
        backend = os.environ.get("DURIN_CIPHER_BACKEND")
        if backend:
            values["cipher_backend"] = backend
        cost = os.environ.get("DURIN_SCRYPT_N")
        if cost:
            values["scrypt_n"] = int(cost)
        config = cls(**values)
        logger.debug(
            "Store config: dir=%s cipher=%s scrypt_n=%d",
            config.store_dir, config.cipher_backend, config.scrypt_n,
        )
        return config
