"""Cache key validation. Single place for the allowed key format.

Keys are opaque strings restricted to ``[A-Za-z0-9_.-]`` so that every backend
can use them verbatim, for example as file names or primary-key values.
"""

import re
from collections.abc import Iterable
from typing import Any

from ..errors import InvalidKeyError

KEY_PATTERN = re.compile(r"[A-Za-z0-9_.\-]+")


def validate_key(key: Any, max_length: int | None = None) -> str:
    """Return ``key`` unchanged if it is a valid cache key.

    Args:
        key: Caller-supplied cache key.
        max_length: Storage-imposed upper bound on key length, if any.

    Raises:
        InvalidKeyError: If key is not a non-empty string of allowed
            characters, or is longer than max_length.
    """
    if not isinstance(key, str):
        raise InvalidKeyError(key, f"expected str, got {type(key).__name__}")
    if not key:
        raise InvalidKeyError(key, "key must not be empty")
    if KEY_PATTERN.fullmatch(key) is None:
        raise InvalidKeyError(key, "only characters A-Z, a-z, 0-9, '_', '.' and '-' are allowed")
    if max_length is not None and len(key) > max_length:
        raise InvalidKeyError(
            key,
            f"key exceeds maximum length of {max_length}",
            details={"max_length": max_length, "length": len(key)},
        )
    return key


def validate_keys(keys: Iterable[Any], max_length: int | None = None) -> list[str]:
    """Validate a batch of keys; raise on the first invalid one.

    Bulk operations call this before any I/O so a bad key never leaves a
    batch half-applied.
    """
    return [validate_key(key, max_length) for key in keys]
