"""
Stowcache — Memoization

Wraps a computation behind a cache backend so repeated calls with equal
arguments reuse the stored result until it expires.

Usage:
    memo = with_cache(cache, ttl=300)

    @memo
    async def load_profile(user_id: int) -> dict: ...

    @memo(ttl=60, name="reports.daily")
    def build_report(day: str) -> list: ...

    await load_profile(42)            # computed and stored
    await load_profile(42)            # served from cache
    await load_profile.invalidate(42)

    posts = with_cached_query(cache, ttl=600, kind="post")(run_post_query)
    await posts({"category": "news", "limit": 10})

Keys are derived from the computation's identity and a canonical JSON
rendering of its arguments, hashed with SHA-256. A computation's identity is
its ``module.qualname`` unless an explicit ``name`` is given.
"""

from __future__ import annotations

import base64
import binascii
import dataclasses
import functools
import hashlib
import inspect
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from pathlib import PurePath
from typing import Any, TypeVar
from uuid import UUID

from pydantic import BaseModel

from ..errors import ConfigurationError, SerializationError
from .interface import CacheInterface
from .keys import validate_key
from .serialization import PickleSerializer, Serializer
from .ttl import TTLSpec, resolve_expiry

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Distinguishes "no entry" from a cached None/0/""/[]
_MISSING = object()

# Marks "use the Memoizer's TTL"
_DEFAULT_TTL: Any = object()


def _type_name(value: Any) -> str:
    cls = type(value)
    return f"{cls.__module__}.{cls.__qualname__}"


def _canonical(value: Any) -> Any:
    """
    Reduce a value to a JSON-compatible form that records its type.

    Every non-JSON type is tagged, and dicts are always wrapped, so values
    of different types never render to the same text (Decimal("1.5") and
    "1.5", a tuple and a list, {1: x} and {"1": x}).
    """
    # Enum before primitives: IntEnum and StrEnum members are ints and strs
    if isinstance(value, Enum):
        return {"__enum__": _type_name(value), "value": _canonical(value.value)}
    if value is None or isinstance(value, bool | int | float | str):
        return value
    if isinstance(value, list):
        return [_canonical(item) for item in value]
    if isinstance(value, tuple):
        return {"__tuple__": [_canonical(item) for item in value]}
    if isinstance(value, Mapping):
        # Keys keep their type; pairs are ordered by the key's rendering
        pairs = [[canonical_json(k), _canonical(v)] for k, v in value.items()]
        return {"__dict__": sorted(pairs, key=lambda pair: pair[0])}
    if isinstance(value, frozenset):
        return {"__frozenset__": sorted(canonical_json(member) for member in value)}
    if isinstance(value, set):
        return {"__set__": sorted(canonical_json(member) for member in value)}
    if isinstance(value, BaseModel):
        return {"__model__": _type_name(value), "fields": _canonical(value.model_dump())}
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {"__dataclass__": _type_name(value), "fields": _canonical(dataclasses.asdict(value))}
    # datetime is a date subclass
    if isinstance(value, datetime):
        return {"__datetime__": value.isoformat()}
    if isinstance(value, date):
        return {"__date__": value.isoformat()}
    if isinstance(value, time):
        return {"__time__": value.isoformat()}
    if isinstance(value, timedelta):
        return {"__timedelta__": [value.days, value.seconds, value.microseconds]}
    if isinstance(value, Decimal):
        return {"__decimal__": str(value)}
    if isinstance(value, UUID):
        return {"__uuid__": str(value)}
    if isinstance(value, PurePath):
        return {"__path__": value.as_posix()}
    if isinstance(value, bytes | bytearray):
        return {"__bytes__": bytes(value).hex()}
    raise TypeError(f"Cannot derive a stable cache key from argument of type {type(value).__name__}")


def canonical_json(value: Any) -> str:
    """
    Render a value as canonical, type-preserving JSON.

    Equal values always produce identical text across processes: mapping
    entries and unordered collections are sorted. Values of different types
    produce different text even when they look alike.

    Raises:
        TypeError: If value contains a type with no stable rendering
    """
    return json.dumps(
        _canonical(value),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
        allow_nan=True,
    )


def computation_identity(func: Callable[..., Any], name: str | None = None) -> str:
    """
    Stable identity of a computation.

    Args:
        func: The wrapped callable
        name: Explicit identity, overrides introspection

    Raises:
        ConfigurationError: If func is a lambda and no name is given
    """
    if name:
        return name

    target = inspect.unwrap(func)
    qualname = getattr(target, "__qualname__", None) or getattr(type(target), "__qualname__", None)
    module = getattr(target, "__module__", None) or type(target).__module__

    if not qualname or "<lambda>" in qualname:
        raise ConfigurationError(
            "Memoized lambdas and anonymous callables need an explicit name",
            details={"callable": repr(func)},
        )
    return f"{module}.{qualname}"


def derive_key(
    identity: str,
    args: tuple[Any, ...] = (),
    kwargs: Mapping[str, Any] | None = None,
    prefix: str = "memo",
) -> str:
    """Memoization key: ``<prefix>.<sha256 of canonical (identity, args, kwargs)>``."""
    material = canonical_json([identity, list(args), dict(kwargs or {})])
    digest = hashlib.sha256(material.encode("utf-8")).hexdigest()
    return f"{prefix}.{digest}"


class Memoizer:
    """
    Higher-order wrapper that memoizes computations in a cache backend.

    The Memoizer owns no storage. Every wrapped call:
    1. resolves the TTL to an absolute expiry,
    2. derives a key from the computation identity and arguments,
    3. returns the decoded cached value on hit (including falsy values),
    4. otherwise runs the computation, stores its encoded result and
       returns that result decoded, exactly as a later hit would.

    Results are encoded with the memoizer's own serializer (pickle by
    default) and stored as an ASCII string, so any backend holds them and
    tuples, sets and non-string dict keys survive the trip.
    """

    def __init__(
        self,
        cache: CacheInterface,
        ttl: TTLSpec = 300,
        prefix: str = "memo",
        serializer: Serializer | None = None,
    ):
        """
        Args:
            cache: Backend holding memoized results
            ttl: Default TTL for wrapped computations (None = the backend default_ttl)
            prefix: Key prefix for entries written by this memoizer
            serializer: Result encoding (PickleSerializer by default)
        """
        self.cache = cache
        self.ttl = ttl
        self.prefix = validate_key(prefix)
        self.serializer = serializer or PickleSerializer()

    def encode(self, result: Any) -> str:
        """Encode a computation result into the string stored in the cache."""
        return base64.b64encode(self.serializer.dumps(result)).decode("ascii")

    def decode(self, stored: Any) -> Any:
        """
        Decode a stored entry back into the computation result.

        Raises:
            SerializationError: If the entry was not written by a memoizer
                using the same serializer
        """
        if not isinstance(stored, str):
            raise SerializationError(
                f"Memoized entry must be a string, got {type(stored).__name__}",
                details={"serializer": self.serializer.name, "value_type": type(stored).__name__},
            )
        try:
            payload = base64.b64decode(stored.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as e:
            raise SerializationError(
                f"Memoized entry is not valid base64: {e}",
                details={"serializer": self.serializer.name},
            ) from e
        return self.serializer.loads(payload)

    def __call__(
        self,
        func: Callable[..., Any] | None = None,
        *,
        ttl: TTLSpec = _DEFAULT_TTL,
        name: str | None = None,
    ) -> Any:
        """Use as ``memo(func)``, ``@memo`` or ``@memo(ttl=60, name="x")``."""
        if func is None:
            return functools.partial(self.wrap, ttl=ttl, name=name)
        return self.wrap(func, ttl=ttl, name=name)

    def _ttl(self, ttl: TTLSpec) -> TTLSpec:
        return self.ttl if ttl is _DEFAULT_TTL else ttl

    async def _cached_call(
        self,
        key: str,
        identity: str,
        ttl: TTLSpec,
        compute: Callable[[], Any],
    ) -> Any:
        # Resolved once per call so absolute and relative TTLs behave the same
        expiry = resolve_expiry(ttl)

        cached = await self.cache.get(key, _MISSING)
        if cached is not _MISSING:
            try:
                value = self.decode(cached)
            except SerializationError as e:
                logger.warning(
                    f"Discarding unreadable memoized entry for '{identity}': {e}",
                    extra={"identity": identity, "cache_key": key, "error": str(e)},
                )
            else:
                logger.debug(f"Memoization hit for '{identity}'", extra={"identity": identity, "cache_key": key})
                return value

        logger.debug(f"Memoization miss for '{identity}'", extra={"identity": identity, "cache_key": key})
        result = compute()
        if inspect.isawaitable(result):
            result = await result

        try:
            stored = self.encode(result)
            # Hand back what a hit would return
            decoded = self.decode(stored)
        except SerializationError as e:
            logger.warning(
                f"Memoized result for '{identity}' cannot be encoded, not caching it: {e}",
                extra={"identity": identity, "cache_key": key, "error": str(e)},
            )
            return result

        if not await self.cache.set(key, stored, expiry):
            logger.warning(
                f"Failed to store memoized result for '{identity}'",
                extra={"identity": identity, "cache_key": key, "backend": self.cache.backend_name},
            )
        return decoded

    def wrap(
        self,
        func: Callable[..., T | Awaitable[T]],
        ttl: TTLSpec = _DEFAULT_TTL,
        name: str | None = None,
    ) -> Callable[..., Awaitable[T]]:
        """
        Wrap a sync or async callable; the wrapper is always a coroutine function.

        The wrapper exposes ``cache_key(*args, **kwargs)``,
        ``invalidate(*args, **kwargs)`` and ``identity``.
        """
        identity = computation_identity(func, name)
        effective_ttl = self._ttl(ttl)

        def cache_key(*args: Any, **kwargs: Any) -> str:
            return derive_key(identity, args, kwargs, self.prefix)

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            key = cache_key(*args, **kwargs)
            return await self._cached_call(key, identity, effective_ttl, lambda: func(*args, **kwargs))

        async def invalidate(*args: Any, **kwargs: Any) -> bool:
            return await self.cache.delete(cache_key(*args, **kwargs))

        wrapper.cache_key = cache_key  # type: ignore[attr-defined]
        wrapper.invalidate = invalidate  # type: ignore[attr-defined]
        wrapper.identity = identity  # type: ignore[attr-defined]
        return wrapper

    def query(
        self,
        kind: str,
        runner: Callable[[Mapping[str, Any]], Any],
        ttl: TTLSpec = _DEFAULT_TTL,
    ) -> Callable[[Mapping[str, Any]], Awaitable[Any]]:
        """
        Memoize a described query.

        ``runner`` executes a query of the given kind from a mapping of query
        arguments. The key depends only on ``kind`` and the arguments, so
        different runners for the same kind share entries.
        """
        identity = f"query:{kind}"
        effective_ttl = self._ttl(ttl)

        def cache_key(query_args: Mapping[str, Any]) -> str:
            return derive_key(identity, (dict(query_args),), None, self.prefix)

        async def run_query(query_args: Mapping[str, Any]) -> Any:
            return await self._cached_call(
                cache_key(query_args), identity, effective_ttl, lambda: runner(query_args)
            )

        async def invalidate(query_args: Mapping[str, Any]) -> bool:
            return await self.cache.delete(cache_key(query_args))

        run_query.cache_key = cache_key  # type: ignore[attr-defined]
        run_query.invalidate = invalidate  # type: ignore[attr-defined]
        run_query.identity = identity  # type: ignore[attr-defined]
        return run_query


def with_cache(cache: CacheInterface, ttl: TTLSpec = 300, serializer: Serializer | None = None) -> Memoizer:
    """Build a memoizing wrapper factory over ``cache`` with a default TTL."""
    return Memoizer(cache, ttl=ttl, serializer=serializer)


def with_cached_query(
    cache: CacheInterface,
    ttl: TTLSpec = 300,
    kind: str = "post",
    serializer: Serializer | None = None,
) -> Callable[[Callable[[Mapping[str, Any]], Any]], Callable[[Mapping[str, Any]], Awaitable[Any]]]:
    """Return a decorator that memoizes query runners of one kind."""
    memoizer = Memoizer(cache, ttl=ttl, serializer=serializer)

    def decorator(runner: Callable[[Mapping[str, Any]], Any]) -> Callable[[Mapping[str, Any]], Awaitable[Any]]:
        return memoizer.query(kind, runner)

    return decorator
