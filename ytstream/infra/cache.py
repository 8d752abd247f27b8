import asyncio
import functools
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional


@dataclass
class _Entry:
    future: "asyncio.Future[Any]"
    # Unset while the computation is in flight
    expires_at: Optional[float] = None


class AsyncTTLCache:
    """
    Short-lived memoization for coroutine results.

    At most one computation runs per key: callers arriving while it is in
    flight await the same future. Failed computations are evicted right away
    so the next caller retries. Successful results expire ``ttl`` seconds
    after they complete.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[Hashable, _Entry] = {}

    def __len__(self) -> int:
        self._evict_expired()
        return len(self._entries)

    async def get_or_compute(self, key: Hashable, producer: Callable[[], Awaitable[Any]]) -> Any:
        self._evict_expired()

        entry = self._entries.get(key)
        if entry is None:
            entry = _Entry(asyncio.ensure_future(producer()))
            self._entries[key] = entry
            entry.future.add_done_callback(functools.partial(self._on_done, key, entry))

        # A cancelled caller must not cancel the shared computation
        return await asyncio.shield(entry.future)

    def get(self, key: Hashable) -> Any:
        entry = self._live_entry(key)
        if entry is None or not entry.future.done():
            return None
        if entry.future.cancelled() or entry.future.exception() is not None:
            return None
        return entry.future.result()

    def set(self, key: Hashable, value: Any) -> None:
        future = asyncio.get_running_loop().create_future()
        future.set_result(value)
        self._entries[key] = _Entry(future, self._clock() + self.ttl)

    def has(self, key: Hashable) -> bool:
        return self._live_entry(key) is not None

    def delete(self, key: Hashable) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def _on_done(self, key: Hashable, entry: _Entry, future: "asyncio.Future[Any]") -> None:
        if self._entries.get(key) is not entry:
            return
        if future.cancelled() or future.exception() is not None:
            del self._entries[key]
            return
        entry.expires_at = self._clock() + self.ttl

    def _live_entry(self, key: Hashable) -> Optional[_Entry]:
        entry = self._entries.get(key)
        if entry is not None and self._is_expired(entry):
            del self._entries[key]
            return None
        return entry

    def _is_expired(self, entry: _Entry) -> bool:
        return entry.expires_at is not None and self._clock() >= entry.expires_at

    def _evict_expired(self) -> None:
        for key in [k for k, e in self._entries.items() if self._is_expired(e)]:
            del self._entries[key]
