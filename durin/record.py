"""
Record Codec — Plaintext serialization of a single credential.

Records are JSON objects with exactly the fields ``username``, ``password``
and ``notes``; field order is irrelevant. No cryptography happens here.
"""
import orjson
from pydantic import BaseModel, ValidationError

from .exceptions import FormatError


class Record(BaseModel):
    """A credential entry."""

    username: str
    password: str
    notes: str = ""

    model_config = {"extra": "forbid", "strict": True}

    def __repr__(self) -> str:
        # never echo the password
        return f"Record(username={self.username!r}, password='***', notes=...)"

    __str__ = __repr__


def encode_record(record: Record) -> bytes:
    """Serialize a record to plaintext bytes."""
    return orjson.dumps(record.model_dump())


def decode_record(data: bytes) -> Record:
    """Deserialize plaintext bytes into a record.

    Raises:
        FormatError: On invalid JSON or a payload that is not a record.
    """
    try:
        parsed = orjson.loads(data)
    except orjson.JSONDecodeError:
        raise FormatError("malformed record payload: invalid JSON") from None
    try:
        return Record.model_validate(parsed)
    except ValidationError as err:
        # error details would echo the field values
        fields = sorted({
            ".".join(str(part) for part in e["loc"]) or "<root>"
            for e in err.errors()
        })
        raise FormatError(
            f"malformed record payload: bad field(s) {', '.join(fields)}"
        ) from None
