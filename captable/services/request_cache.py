"""Request de-duplication for expensive client-wide fetches."""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import Any, TypeVar

from captable.obs.metrics import REQUEST_DEDUP_COUNTER

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RequestKey:
    scope: str
    params: tuple[Hashable, ...] = ()

    @classmethod
    def of(cls, scope: str, *params: Hashable) -> "RequestKey":
        return cls(scope=scope, params=tuple(params))


@dataclass(slots=True)
class RequestContext:
    """Liveness flag for whoever asked for a fetch.

    Nothing is cancelled when a caller goes away; results that land after
    ``close`` are dropped instead of being delivered.
    """

    name: str = "request"
    active: bool = True

    def close(self) -> None:
        self.active = False


@dataclass(slots=True)
class _Entry:
    generation: int = 0
    in_flight: bool = False
    satisfied: bool = False
    value: Any = None


class RequestDeduplicationCache:
    """Serve each ``RequestKey`` at most once until it is invalidated.

    ``fetch`` returns the cached value for a satisfied key, returns ``None``
    without calling the loader while the key is already in flight, and otherwise
    runs the loader. A result is discarded when the key was invalidated while
    the loader ran or when the requesting context is no longer active.
    """

    def __init__(self) -> None:
        self._entries: dict[RequestKey, _Entry] = {}

    def _entry(self, key: RequestKey) -> _Entry:
        entry = self._entries.get(key)
        if entry is None:
            entry = _Entry()
            self._entries[key] = entry
        return entry

    def peek(self, key: RequestKey) -> Any | None:
        entry = self._entries.get(key)
        if entry is None or not entry.satisfied:
            return None
        return entry.value

    def is_in_flight(self, key: RequestKey) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.in_flight

    async def fetch(
        self,
        key: RequestKey,
        loader: Callable[[], Awaitable[T]],
        *,
        context: RequestContext | None = None,
    ) -> T | None:
        entry = self._entry(key)
        if entry.satisfied:
            REQUEST_DEDUP_COUNTER.labels(scope=key.scope, outcome="hit").inc()
            return entry.value
        if entry.in_flight:
            REQUEST_DEDUP_COUNTER.labels(scope=key.scope, outcome="suppressed").inc()
            logger.debug("fetch already in flight", extra={"scope": key.scope, "params": key.params})
            return None

        generation = entry.generation
        entry.in_flight = True
        REQUEST_DEDUP_COUNTER.labels(scope=key.scope, outcome="miss").inc()
        try:
            value = await loader()
        except Exception:
            current = self._entries.get(key)
            if current is entry and entry.generation == generation:
                entry.in_flight = False
            REQUEST_DEDUP_COUNTER.labels(scope=key.scope, outcome="error").inc()
            raise

        current = self._entries.get(key)
        if current is not entry or entry.generation != generation:
            REQUEST_DEDUP_COUNTER.labels(scope=key.scope, outcome="discarded").inc()
            logger.info("discarding result of invalidated fetch", extra={"scope": key.scope, "params": key.params})
            return None
        entry.in_flight = False
        entry.satisfied = True
        entry.value = value
        if context is not None and not context.active:
            REQUEST_DEDUP_COUNTER.labels(scope=key.scope, outcome="discarded").inc()
            logger.info(
                "discarding result for inactive request",
                extra={"scope": key.scope, "params": key.params, "context": context.name},
            )
            return None
        return value

    def invalidate(self, key: RequestKey) -> None:
        entry = self._entries.pop(key, None)
        if entry is not None:
            entry.generation += 1
            logger.debug("request key invalidated", extra={"scope": key.scope, "params": key.params})

    def invalidate_scope(self, scope: str) -> None:
        for key in [key for key in self._entries if key.scope == scope]:
            self.invalidate(key)

    def invalidate_params(self, *params: Hashable) -> None:
        """Invalidate every key whose parameters start with ``params``."""

        size = len(params)
        for key in [key for key in self._entries if key.params[:size] == params]:
            self.invalidate(key)

    def clear(self) -> None:
        for key in list(self._entries):
            self.invalidate(key)


__all__ = ["RequestContext", "RequestDeduplicationCache", "RequestKey"]
