"""
Vault Crypto Core — Key derivation, master key handling, keyset wrapping.

Implements the envelope layers of the secret store:
- KEK layer: scrypt(password, salt) → ChaCha20-Poly1305 → wrapped keyset
- Record layer: HKDF(master_key, "durin-record-v{id}") → AEAD(aad=name)
  → [key_id 4B][nonce 12B][payload + tag 16B]

Security Note:
    Never log key material, plaintext or ciphertext values.
    Nonces are random 96-bit; collision probability negligible under normal usage.
"""
import os
import struct
import base64
import logging
import secrets

import orjson
from pydantic import BaseModel, Field
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from .exceptions import AuthenticationError

logger = logging.getLogger("durin.vault")

NONCE_SIZE = 12  # 96-bit nonce
KEY_ID_SIZE = 4  # uint32 big-endian
KEY_LENGTH = 32  # 256-bit keys
TAG_SIZE = 16

KEYSET_AAD = b"durin-keyset"

_CIPHERS = {
    "chacha20": ChaCha20Poly1305,
    "aesgcm": AESGCM,
}


def _get_cipher_cls(name: str) -> type:
    """Return the AEAD cipher class for a backend name."""
    try:
        return _CIPHERS[name]
    except KeyError:
        raise ValueError(f"Unsupported cipher backend: {name}") from None


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_kek(
    password: str | bytes,
    salt: bytes,
    n: int = 2 ** 15,
    r: int = 8,
    p: int = 1,
) -> bytes:
    """Derive the 32-byte key-encryption key from a password with scrypt.

    The same password, salt and cost parameters always give the same key.

    Args:
        password: Unlock password; str values are UTF-8 encoded.
        salt: Per-store random salt.
        n: scrypt CPU/memory cost (power of two).
        r: scrypt block size.
        p: scrypt parallelization.

    Returns:
        32-byte key-encryption key.
    """
    if not salt:
        raise ValueError("salt cannot be empty")
    if isinstance(password, str):
        password = password.encode("utf-8")
    kdf = Scrypt(salt=salt, length=KEY_LENGTH, n=n, r=r, p=p)
    return kdf.derive(password)


def derive_key(seed: bytes, context: str) -> bytes:
    """Derive a 32-byte encryption key using HKDF-SHA256.

    Args:
        seed: Input key material (master key bytes).
        context: Context string for domain separation.

    Returns:
        32-byte derived key.
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=None,
        info=context.encode("utf-8"),
    )
    return hkdf.derive(seed)


# ---------------------------------------------------------------------------
# Master key
# ---------------------------------------------------------------------------

class MasterKey:
    """The store's record-encryption key.

    Record ciphertext format: [key_id 4B uint32 BE][nonce 12B][payload + tag].
    The record name is bound as associated data, so a ciphertext only
    decrypts under the name it was written for.
    """

    def __init__(self, key_id: int, key: bytes, cipher: str = "chacha20"):
        if len(key) != KEY_LENGTH:
            raise ValueError(
                f"master key must be {KEY_LENGTH} bytes, got {len(key)}"
            )
        self.key_id = key_id
        self.cipher = cipher
        self._key = key
        self._aead = _get_cipher_cls(cipher)(
            derive_key(key, f"durin-record-v{key_id}")
        )

    def __repr__(self) -> str:
        return f"<MasterKey id={self.key_id} cipher={self.cipher}>"

    @property
    def raw(self) -> bytes:
        return self._key

    def encrypt(self, plaintext: bytes, aad: bytes) -> bytes:
        """Encrypt plaintext bound to aad, with a fresh random nonce."""
        nonce = os.urandom(NONCE_SIZE)
        ct = self._aead.encrypt(nonce, plaintext, aad)
        return struct.pack("!I", self.key_id) + nonce + ct

    def decrypt(self, ciphertext: bytes, aad: bytes) -> bytes:
        """Decrypt ciphertext produced by :meth:`encrypt` with the same aad.

        Raises:
            AuthenticationError: On any failure (short input, foreign key id,
                bad tag, mismatched aad).
        """
        _min = KEY_ID_SIZE + NONCE_SIZE + TAG_SIZE
        if len(ciphertext) < _min:
            raise AuthenticationError("failed to decrypt record")
        key_id = struct.unpack("!I", ciphertext[:KEY_ID_SIZE])[0]
        if key_id != self.key_id:
            raise AuthenticationError("failed to decrypt record")
        nonce = ciphertext[KEY_ID_SIZE:KEY_ID_SIZE + NONCE_SIZE]
        try:
            return self._aead.decrypt(nonce, ciphertext[KEY_ID_SIZE + NONCE_SIZE:], aad)
        except InvalidTag:
            raise AuthenticationError("failed to decrypt record") from None


def generate_master_key(cipher: str = "chacha20") -> MasterKey:
    """Generate a new random master key with a random non-zero key id."""
    key_id = 0
    while key_id == 0:
        key_id = secrets.randbits(32)
    return MasterKey(key_id, secrets.token_bytes(KEY_LENGTH), cipher)


# ---------------------------------------------------------------------------
# Keyset serialization and wrapping
# ---------------------------------------------------------------------------

class KeysetKey(BaseModel):
    key_id: int = Field(ge=1, lt=2 ** 32)
    cipher: str
    key: str  # base64

    model_config = {"extra": "forbid"}


class Keyset(BaseModel):
    """Serialized form of the master key, only ever persisted wrapped."""

    primary_key_id: int = Field(ge=1, lt=2 ** 32)
    keys: list[KeysetKey]

    model_config = {"extra": "forbid"}


def serialize_keyset(master: MasterKey) -> bytes:
    """Serialize a master key into keyset bytes.

    Args:
        master: Master key to serialize.

    Returns:
        orjson-encoded keyset bytes (plaintext key material).
    """
    keyset = Keyset(
        primary_key_id=master.key_id,
        keys=[
            KeysetKey(
                key_id=master.key_id,
                cipher=master.cipher,
                key=base64.b64encode(master.raw).decode("ascii"),
            )
        ],
    )
    return orjson.dumps(keyset.model_dump())


def parse_keyset(data: bytes) -> MasterKey:
    """Rebuild the primary master key from keyset bytes.

    Raises:
        ValueError: If the keyset is malformed or has no usable primary key.
    """
    keyset = Keyset.model_validate(orjson.loads(data))
    for entry in keyset.keys:
        if entry.key_id == keyset.primary_key_id:
            raw = base64.b64decode(entry.key, validate=True)
            return MasterKey(entry.key_id, raw, entry.cipher)
    raise ValueError("keyset has no primary key")


def wrap_keyset(master: MasterKey, kek: bytes) -> bytes:
    """Encrypt the serialized master keyset under the key-encryption key.

    Format: [nonce 12B][encrypted keyset + tag 16B]
    """
    nonce = os.urandom(NONCE_SIZE)
    ct = ChaCha20Poly1305(kek).encrypt(nonce, serialize_keyset(master), KEYSET_AAD)
    return nonce + ct


def unwrap_keyset(wrapped: bytes, kek: bytes) -> MasterKey:
    """Decrypt and parse a wrapped keyset.

    Every failure is reported as the same AuthenticationError so callers
    cannot tell a wrong password from a damaged file.

    Raises:
        AuthenticationError: If the keyset cannot be decrypted or parsed.
    """
    if len(wrapped) < NONCE_SIZE + TAG_SIZE:
        raise AuthenticationError("failed to decrypt master keyset")
    nonce, ct = wrapped[:NONCE_SIZE], wrapped[NONCE_SIZE:]
    try:
        plaintext = ChaCha20Poly1305(kek).decrypt(nonce, ct, KEYSET_AAD)
        return parse_keyset(plaintext)
    except (InvalidTag, ValueError):
        # ValueError covers JSON, pydantic and base64 failures
        raise AuthenticationError("failed to decrypt master keyset") from None
