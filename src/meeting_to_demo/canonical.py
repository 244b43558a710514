from __future__ import annotations

import hashlib
from typing import Any

import rfc8785
from pydantic_core import PydanticSerializationError, to_jsonable_python


def to_canonical_json(value: Any) -> str:
    """RFC 8785 (JCS) serialization: sorted keys, no whitespace, stable numbers.

    Pydantic models, enums and datetimes are reduced to JSON primitives first.

    Raises:
        TypeError: ``value`` holds something with no JSON form.
    """
    try:
        primitive = to_jsonable_python(value)
    except PydanticSerializationError as exc:
        raise TypeError(f"cannot canonicalize {type(value).__name__}: {exc}") from exc
    return rfc8785.dumps(primitive).decode("utf-8")


def fingerprint(value: Any) -> str:
    """SHA-256 of the canonical JSON form; strings are hashed as-is."""
    payload = value if isinstance(value, str) else to_canonical_json(value)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
