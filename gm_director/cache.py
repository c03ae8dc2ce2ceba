"""In-process TTL cache with tag invalidation and request coalescing.

Entries expire lazily: an entry older than its ttl is evicted on the next
get() of its key. There is no background sweeper. The cache holds at most
max_entries entries; a put() past that bound first drops expired entries and
then the least recently used tenth.

get_or_compute() coalesces concurrent identical requests. The first caller
starts the computation as a task; later callers with the same key await the
same task. Each waiter awaits through asyncio.shield(), so a cancelled
waiter never cancels the shared computation. A computation whose key is
invalidated while it runs still answers its waiters but is not stored.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from pydantic import BaseModel, ConfigDict

from gm_director.models import GameContext

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300.0
DEFAULT_MAX_ENTRIES = 1000

Clock = Callable[[], float]
KeyPredicate = Callable[[str, frozenset[str]], bool]


class CacheEntry(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    key: str
    payload: Any
    created_at: float
    ttl: float
    tags: frozenset[str] = frozenset()

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl


def cache_key(kind: str, context: GameContext, **params: Any) -> str:
    """Derive a stable key from a request kind, its parameters and a context."""
    material = json.dumps(
        {"kind": kind, "params": params, "context": context.canonical_json()},
        sort_keys=True,
        default=str,
    )
    return hashlib.sha256(material.encode()).hexdigest()


class ResultCache:
    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL,
        clock: Clock = time.monotonic,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._default_ttl = default_ttl
        self._clock = clock
        self._max_entries = max_entries
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._inflight: dict[str, tuple[asyncio.Future, frozenset[str]]] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._coalesced = 0

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is not None and entry.is_expired(self._clock()):
            del self._entries[key]
            self._evictions += 1
            entry = None
        if entry is None:
            self._misses += 1
            return None
        self._entries.move_to_end(key)
        self._hits += 1
        return entry.payload

    def put(
        self,
        key: str,
        payload: Any,
        ttl: float | None = None,
        tags: Iterable[str] = (),
    ) -> None:
        self._entries[key] = CacheEntry(
            key=key,
            payload=payload,
            created_at=self._clock(),
            ttl=self._default_ttl if ttl is None else ttl,
            tags=frozenset(tags),
        )
        self._entries.move_to_end(key)
        if len(self._entries) > self._max_entries:
            self._shrink()

    def _shrink(self) -> None:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in expired:
            del self._entries[key]
        excess = len(self._entries) - self._max_entries
        evicted = 0
        if excess > 0:
            evicted = max(excess, self._max_entries // 10)
            for _ in range(evicted):
                self._entries.popitem(last=False)
        self._evictions += len(expired) + evicted
        logger.debug("cache shrunk expired=%d evicted=%d", len(expired), evicted)

    def invalidate(self, predicate: KeyPredicate) -> int:
        """Drop stored and in-flight entries for which predicate(key, tags) holds."""
        stale = [k for k, e in self._entries.items() if predicate(k, e.tags)]
        for key in stale:
            del self._entries[key]
        pending = [k for k, (_, tags) in self._inflight.items() if predicate(k, tags)]
        for key in pending:
            del self._inflight[key]
        if stale or pending:
            logger.debug("cache invalidated entries=%d inflight=%d", len(stale), len(pending))
        return len(stale) + len(pending)

    def invalidate_tag(self, tag: str) -> int:
        return self.invalidate(lambda _key, tags: tag in tags)

    def clear(self) -> None:
        self._entries.clear()
        self._inflight.clear()

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[Any]],
        ttl: float | None = None,
        tags: Iterable[str] = (),
    ) -> Any:
        cached = self.get(key)
        if cached is not None:
            return cached

        pending = self._inflight.get(key)
        if pending is not None:
            self._coalesced += 1
            task = pending[0]
        else:
            task = asyncio.ensure_future(compute())
            tagset = frozenset(tags)
            self._inflight[key] = (task, tagset)
            task.add_done_callback(lambda t: self._settle(key, t, ttl, tagset))
        return await asyncio.shield(task)

    def _settle(self, key: str, task: asyncio.Future, ttl: float | None, tags: frozenset[str]) -> None:
        current = self._inflight.get(key)
        if current is None or current[0] is not task:
            return
        del self._inflight[key]
        if task.cancelled() or task.exception() is not None:
            return
        self.put(key, task.result(), ttl=ttl, tags=tags)

    def stats(self) -> dict[str, Any]:
        lookups = self._hits + self._misses
        return {
            "entries": len(self._entries),
            "inflight": len(self._inflight),
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "coalesced": self._coalesced,
            "hitRate": round(self._hits / lookups, 4) if lookups else 0.0,
            "defaultTtl": self._default_ttl,
            "maxEntries": self._max_entries,
        }
