"""Fetch/cache client — one in-memory cache of Remote Store data per application.

Entries are keyed by QueryKey tuples (see bizcoin.cache.keys) and carry the
data plus the metadata that decides when to go back to the network:
last-fetched time, invalidation flag, in-flight fetch task, observer count.

Responsibilities:
- read(): serve fresh data from memory, otherwise fetch — concurrent reads
  of one key share a single in-flight request
- write(): synchronous updater-function writes for optimistic patches
- invalidate(): prefix-sweep staleness marking with background refetch for
  observed entries
- subscribe(): active consumers, refetch-on-mount, interval polling,
  eviction of unobserved entries once their gc_time runs out
- network-mode gating: nothing is attempted while offline; reconnect
  refetches observed entries only
- bounded retry with exponential backoff for fetches, one flat retry for
  mutations

Concurrency: single-threaded asyncio. Reads and writes of the entry table
are synchronous and never interleave with another task; only network awaits
and backoff sleeps yield. There is no lock — a host that shares a client
across threads must put its own lock or actor in front of it.

Tier 2 service: imports from bizcoin.cache.keys, bizcoin.cache.policy and
bizcoin.errors (Tier 1).

Usage:
    client = QueryClient(remote.query_fn())
    record = await client.read(keys.student("s1"))
    client.write(keys.student("s1"), lambda old: {**old, "tokens": 0})
    client.invalidate(keys.classroom("c1"))  # sweeps every classroom sub-key
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from bizcoin.cache.keys import QueryKey, key_to_url, matches
from bizcoin.cache.policy import (
    DEFAULT_QUERY_CONFIG,
    MUTATION_RETRY,
    MUTATION_RETRY_DELAY,
    QueryConfig,
    fetch_retry_delay,
    is_retryable,
)
from bizcoin.errors import OfflineError

logger = logging.getLogger("bizcoin.cache")

QueryFn = Callable[[QueryKey], Awaitable[Any]]
Updater = Callable[[Any], Any]
Listener = Callable[[Any], None]


# ---------------------------------------------------------------------------
# Cache entry
# ---------------------------------------------------------------------------


@dataclass
class CacheEntry:
    """One cached value and the metadata that governs it.

    has_data distinguishes "never fetched" from a fetched None (a 401 read
    with on_unauthorized="return_null" legitimately caches None).
    generation increments on every invalidation; a fetch that started
    before an invalidation leaves the entry invalidated when it lands.
    """

    key: QueryKey
    config: QueryConfig
    data: Any = None
    has_data: bool = False
    data_updated_at: float | None = None
    is_invalidated: bool = False
    generation: int = 0
    error: BaseException | None = None
    fetch_count: int = 0
    fetch_task: asyncio.Task | None = None
    refetch_pending: bool = False
    observers: list[QueryObserver] = field(default_factory=list)
    unobserved_since: float | None = None
    poll_task: asyncio.Task | None = None
    gc_handle: asyncio.TimerHandle | None = None

    def is_stale(self, now: float) -> bool:
        """True when a read should go to the network."""
        if not self.has_data or self.is_invalidated:
            return True
        return now - self.data_updated_at >= self.config.stale_time

    @property
    def is_fetching(self) -> bool:
        return self.fetch_task is not None and not self.fetch_task.done()


# ---------------------------------------------------------------------------
# Observer
# ---------------------------------------------------------------------------


class QueryObserver:
    """An active consumer of one cache key.

    While at least one observer is attached, invalidation and reconnect
    refetch the entry in the background and the entry is never evicted.
    Use as an async context manager or call close() when done.
    """

    def __init__(
        self,
        client: QueryClient,
        key: QueryKey,
        listener: Listener | None = None,
    ) -> None:
        self._client = client
        self.key = key
        self._listener = listener
        self._previous_data: Any = None
        self._has_previous = False
        self.closed = False

    @property
    def data(self) -> Any:
        """Current data for the key, or the previous key's data as a placeholder."""
        entry = self._client.get_entry(self.key)
        if entry is not None and entry.has_data:
            return entry.data
        if self._has_previous:
            return self._previous_data
        return None

    @property
    def is_placeholder(self) -> bool:
        """True while data comes from the previous key (keep_previous_data)."""
        entry = self._client.get_entry(self.key)
        return self._has_previous and (entry is None or not entry.has_data)

    def switch_key(self, key: QueryKey, config: QueryConfig | None = None) -> None:
        """Moves this observer to a new key, e.g. the next page of a list.

        With keep_previous_data, data keeps returning the old key's value
        until the new key has data of its own.
        """
        old_entry = self._client.get_entry(self.key)
        self._client._detach(self)
        if (
            old_entry is not None
            and old_entry.has_data
            and (config or old_entry.config).keep_previous_data
        ):
            self._previous_data = old_entry.data
            self._has_previous = True
        else:
            self._previous_data = None
            self._has_previous = False
        self.key = key
        self._client._attach(self, config)

    def _notify(self, data: Any) -> None:
        self._previous_data = None
        self._has_previous = False
        if self._listener is not None:
            self._listener(data)

    def close(self) -> None:
        """Detaches from the client. Idempotent."""
        if self.closed:
            return
        self.closed = True
        self._client._detach(self)

    async def __aenter__(self) -> QueryObserver:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


# ---------------------------------------------------------------------------
# Query client
# ---------------------------------------------------------------------------


class QueryClient:
    """Process-wide cache of Remote Store data, constructed once and injected.

    Args:
        query_fn: Fetches the data for a key (usually RemoteStoreClient.query_fn()).
        default_config: QueryConfig for keys read or observed without one.
        clock: Monotonic seconds source; injectable for deterministic tests.
        sleep: Awaitable used for retry backoff; injectable for fast tests.
    """

    def __init__(
        self,
        query_fn: QueryFn,
        *,
        default_config: QueryConfig = DEFAULT_QUERY_CONFIG,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._query_fn = query_fn
        self._default_config = default_config
        self._clock = clock
        self._sleep = sleep
        self._entries: dict[QueryKey, CacheEntry] = {}
        self._online = True

    # -- Inspection ---------------------------------------------------------

    @property
    def is_online(self) -> bool:
        return self._online

    def get_entry(self, key: QueryKey) -> CacheEntry | None:
        return self._entries.get(key)

    def keys(self) -> list[QueryKey]:
        return list(self._entries)

    def peek(self, key: QueryKey) -> Any:
        """Returns cached data without fetching, or None when absent."""
        entry = self._entries.get(key)
        return entry.data if entry is not None else None

    def is_stale(self, key: QueryKey) -> bool:
        """True if the next read of key would go to the network."""
        entry = self._entries.get(key)
        return entry is None or entry.is_stale(self._clock())

    # -- Reads --------------------------------------------------------------

    async def read(self, key: QueryKey, config: QueryConfig | None = None) -> Any:
        """Returns data for key, fetching when absent, invalidated or stale.

        Concurrent reads that miss the cache share one in-flight fetch.

        Args:
            key: The cache key.
            config: QueryConfig for this key; replaces the entry's current one.

        Returns:
            The cached or freshly fetched data.

        Raises:
            OfflineError: If offline and nothing is cached for key.
            RemoteStoreError: If the fetch fails after retries.
        """
        entry = self._ensure_entry(key, config)
        if not self._online:
            if entry.has_data:
                return entry.data
            raise OfflineError(f"Cannot fetch {key_to_url(key)}: client is offline.")
        if not entry.is_stale(self._clock()):
            return entry.data
        return await asyncio.shield(self._start_fetch(entry))

    async def refetch(self, key: QueryKey, config: QueryConfig | None = None) -> Any:
        """Fetches key regardless of staleness (sharing any in-flight fetch)."""
        entry = self._ensure_entry(key, config)
        if not self._online:
            raise OfflineError(f"Cannot fetch {key_to_url(key)}: client is offline.")
        return await asyncio.shield(self._start_fetch(entry))

    # -- Writes -------------------------------------------------------------

    def write(self, key: QueryKey, updater: Updater) -> Any:
        """Applies updater(old) -> new to the entry at key. No network.

        The written value counts as fresh. An updater returning None leaves
        the cache untouched, which is how patches skip absent entries.

        Returns:
            The new value, or None if nothing was written.
        """
        entry = self._entries.get(key)
        old = entry.data if entry is not None else None
        new = updater(old)
        if new is None:
            return None
        entry = self._ensure_entry(key, None)
        entry.is_invalidated = False
        self._set_data(entry, new)
        logger.debug("Cache write %s", key_to_url(key))
        return new

    def invalidate(
        self,
        prefix: QueryKey,
        *,
        exact: bool = False,
        refetch: bool = True,
    ) -> list[QueryKey]:
        """Marks every entry under prefix stale.

        Observed entries refetch in the background (needs a running event
        loop); unobserved ones wait for their next read.

        Returns:
            The keys that were invalidated.
        """
        matched = [key for key in self._entries if matches(prefix, key, exact=exact)]
        for key in matched:
            entry = self._entries[key]
            entry.is_invalidated = True
            entry.generation += 1
            if refetch and entry.observers and self._online:
                self._schedule_refetch(entry)
        logger.debug("Invalidated %d entries under %s", len(matched), key_to_url(prefix))
        return matched

    # -- Observers ----------------------------------------------------------

    def subscribe(
        self,
        key: QueryKey,
        config: QueryConfig | None = None,
        listener: Listener | None = None,
    ) -> QueryObserver:
        """Registers an active consumer of key.

        Fetches in the background when the entry has no data, or when it is
        stale and the config refetches on mount. Starts interval polling for
        configs with refetch_interval.

        Args:
            key: The cache key to observe.
            config: QueryConfig for this key.
            listener: Called with the new data after every write or fetch.

        Returns:
            The observer; close it (or exit its context) to unsubscribe.
        """
        observer = QueryObserver(self, key, listener)
        self._attach(observer, config)
        return observer

    def _attach(self, observer: QueryObserver, config: QueryConfig | None) -> None:
        entry = self._ensure_entry(observer.key, config)
        entry.observers.append(observer)
        entry.unobserved_since = None
        if entry.gc_handle is not None:
            entry.gc_handle.cancel()
            entry.gc_handle = None

        if self._online and (
            not entry.has_data
            or (entry.config.refetch_on_mount and entry.is_stale(self._clock()))
        ):
            self._schedule_refetch(entry)

        if entry.config.refetch_interval and entry.poll_task is None:
            loop = _running_loop()
            if loop is not None:
                entry.poll_task = loop.create_task(
                    self._poll(entry, entry.config.refetch_interval)
                )

    def _detach(self, observer: QueryObserver) -> None:
        entry = self._entries.get(observer.key)
        if entry is None or observer not in entry.observers:
            return
        entry.observers.remove(observer)
        if entry.observers:
            return

        entry.unobserved_since = self._clock()
        if entry.poll_task is not None:
            entry.poll_task.cancel()
            entry.poll_task = None
        self._schedule_gc(entry)

    async def _poll(self, entry: CacheEntry, interval: float) -> None:
        """Refetches an observed entry every interval seconds (wall clock)."""
        while True:
            await asyncio.sleep(interval)
            if not self._online or entry.is_fetching:
                continue
            try:
                await asyncio.shield(self._start_fetch(entry))
            except Exception:
                # _run_fetch already logged it and stored it on the entry.
                continue

    # -- Triggers -----------------------------------------------------------

    def on_window_focus(self) -> list[QueryKey]:
        """Refetches observed, stale entries whose config refetches on focus."""
        if not self._online:
            return []
        now = self._clock()
        refreshed = []
        for entry in list(self._entries.values()):
            if (
                entry.observers
                and entry.config.refetch_on_window_focus
                and entry.is_stale(now)
            ):
                self._schedule_refetch(entry)
                refreshed.append(entry.key)
        return refreshed

    def set_online(self, online: bool) -> list[QueryKey]:
        """Switches network mode.

        Going online re-runs observed entries that are stale or invalidated
        and whose config refetches on reconnect. Nothing else is flushed.

        Returns:
            The keys refetched on reconnect (empty otherwise).
        """
        was_online = self._online
        self._online = online
        if online == was_online:
            return []
        if not online:
            logger.info("Query client offline; fetches and mutations paused.")
            return []

        now = self._clock()
        refreshed = []
        for entry in list(self._entries.values()):
            if (
                entry.observers
                and entry.config.refetch_on_reconnect
                and entry.is_stale(now)
            ):
                self._schedule_refetch(entry)
                refreshed.append(entry.key)
        logger.info("Query client online; refetching %d observed entries.", len(refreshed))
        return refreshed

    # -- Mutations ----------------------------------------------------------

    async def mutate(
        self,
        fn: Callable[[], Awaitable[Any]],
        *,
        retry: int = MUTATION_RETRY,
        retry_delay: float = MUTATION_RETRY_DELAY,
    ) -> Any:
        """Runs a mutation under the online gate with the mutation retry policy.

        Args:
            fn: Zero-argument coroutine factory; called once per attempt.
            retry: Retries after the first failed attempt.
            retry_delay: Flat delay between attempts, in seconds.

        Returns:
            Whatever fn's coroutine returns.

        Raises:
            OfflineError: If offline before the first attempt.
            Exception: The mutation's own error once retries are exhausted.
        """
        if not self._online:
            raise OfflineError("Mutation not attempted: client is offline.")
        attempt = 0
        while True:
            try:
                return await fn()
            except Exception as exc:
                if attempt >= retry or not is_retryable(exc) or not self._online:
                    raise
                attempt += 1
                logger.warning(
                    "Mutation retry %d/%d after %.1fs: %s",
                    attempt,
                    retry,
                    retry_delay,
                    exc,
                )
                await self._sleep(retry_delay)

    # -- Lifecycle ----------------------------------------------------------

    def collect_garbage(self) -> list[QueryKey]:
        """Evicts unobserved entries whose gc_time has elapsed.

        Returns:
            The evicted keys.
        """
        now = self._clock()
        evicted = [
            entry.key
            for entry in list(self._entries.values())
            if self._is_collectable(entry, now)
        ]
        for key in evicted:
            self._evict(key)
        return evicted

    async def settle(self) -> None:
        """Waits until no fetch is in flight (including follow-up refetches)."""
        while True:
            await asyncio.sleep(0)
            pending = [
                entry.fetch_task
                for entry in self._entries.values()
                if entry.is_fetching
            ]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def clear(self) -> None:
        """Cancels background work and drops every entry."""
        for key in list(self._entries):
            self._evict(key)

    # -- Internals ----------------------------------------------------------

    def _ensure_entry(self, key: QueryKey, config: QueryConfig | None) -> CacheEntry:
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(
                key=key,
                config=config or self._default_config,
                unobserved_since=self._clock(),
            )
            self._entries[key] = entry
            self._schedule_gc(entry)
        elif config is not None:
            entry.config = config
        return entry

    def _set_data(self, entry: CacheEntry, data: Any) -> None:
        entry.data = data
        entry.has_data = True
        entry.data_updated_at = self._clock()
        entry.error = None
        for observer in list(entry.observers):
            observer._notify(data)

    def _start_fetch(self, entry: CacheEntry) -> asyncio.Task:
        """Returns the entry's in-flight fetch task, starting one if needed."""
        if entry.is_fetching:
            return entry.fetch_task
        task = asyncio.get_running_loop().create_task(self._run_fetch(entry))
        task.add_done_callback(lambda done: self._on_fetch_done(entry, done))
        entry.fetch_task = task
        return task

    def _schedule_refetch(self, entry: CacheEntry) -> None:
        """Background refetch; queues a follow-up if a fetch is already in flight."""
        if entry.is_fetching:
            entry.refetch_pending = True
            return
        if _running_loop() is None:
            # No running loop; the next read refetches instead.
            return
        self._start_fetch(entry)

    async def _run_fetch(self, entry: CacheEntry) -> Any:
        """Fetches once, then again for each refetch queued while in flight.

        Follow-ups run inside the same task, so the entry reads as fetching
        (and settle() keeps waiting) until the last one lands.
        """
        while True:
            entry.refetch_pending = False
            try:
                data = await self._fetch_once(entry)
            except Exception:
                if not self._follow_up_due(entry):
                    raise
                continue
            if not self._follow_up_due(entry):
                return data

    def _follow_up_due(self, entry: CacheEntry) -> bool:
        return (
            entry.refetch_pending
            and bool(entry.observers)
            and self._online
            and self._entries.get(entry.key) is entry
        )

    async def _fetch_once(self, entry: CacheEntry) -> Any:
        url = key_to_url(entry.key)
        generation = entry.generation
        attempt = 0
        while True:
            started = time.monotonic()
            try:
                data = await self._query_fn(entry.key)
            except Exception as exc:
                if attempt < entry.config.retry and is_retryable(exc) and self._online:
                    backoff = fetch_retry_delay(attempt)
                    attempt += 1
                    logger.warning(
                        "Fetch %s retry %d/%d after %.1fs backoff: %s",
                        url,
                        attempt,
                        entry.config.retry,
                        backoff,
                        exc,
                    )
                    await self._sleep(backoff)
                    continue
                entry.error = exc
                logger.warning(
                    "Fetch %s failed after %d attempt(s): %s", url, attempt + 1, exc
                )
                raise
            break

        entry.fetch_count += 1
        self._set_data(entry, data)
        entry.is_invalidated = entry.generation != generation
        logger.debug(
            "Fetched %s in %.1fms",
            url,
            (time.monotonic() - started) * 1000,
            extra={"cache_key": url, "attempts": attempt + 1},
        )
        return data

    def _on_fetch_done(self, entry: CacheEntry, task: asyncio.Task) -> None:
        if not task.cancelled():
            # Marks the error retrieved; readers that awaited it already saw it.
            task.exception()
        if entry.fetch_task is task:
            entry.fetch_task = None
            entry.refetch_pending = False

    def _is_collectable(self, entry: CacheEntry, now: float) -> bool:
        return (
            not entry.observers
            and not entry.is_fetching
            and entry.unobserved_since is not None
            and now - entry.unobserved_since >= entry.config.gc_time
        )

    def _schedule_gc(self, entry: CacheEntry) -> None:
        """Arms the eviction timer for an unobserved entry (needs a running loop)."""
        if entry.gc_handle is not None:
            entry.gc_handle.cancel()
            entry.gc_handle = None
        loop = _running_loop()
        if loop is not None:
            entry.gc_handle = loop.call_later(
                entry.config.gc_time, self._maybe_evict, entry.key
            )

    def _maybe_evict(self, key: QueryKey) -> None:
        entry = self._entries.get(key)
        if entry is None:
            return
        entry.gc_handle = None
        if entry.observers:
            return
        if self._is_collectable(entry, self._clock()):
            self._evict(key)
        else:
            # Still fetching, or the window restarted; try again later.
            self._schedule_gc(entry)

    def _evict(self, key: QueryKey) -> None:
        entry = self._entries.pop(key)
        if entry.fetch_task is not None and not entry.fetch_task.done():
            entry.fetch_task.cancel()
        if entry.poll_task is not None:
            entry.poll_task.cancel()
        if entry.gc_handle is not None:
            entry.gc_handle.cancel()
        logger.debug("Evicted %s", key_to_url(key))


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None
