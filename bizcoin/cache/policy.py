"""Query configuration policy — staleness, eviction and retry per data category.

Every cached read resolves its timing through this module. Call sites
pick a profile name; nothing else in the package hardcodes a stale time.

Two layers:
  Layer 1: Named profiles in PROFILE_MAP ("realTime", "stable", ...)
  Layer 2: QueryConfig — the concrete tuple a profile resolves to

Profiles are chosen by how often the server value changes and how costly a
stale read is. A live clock-in counter must not lag more than ~30s; classroom
settings can sit for half an hour.

Tier 1 leaf — imports stdlib, httpx (transport error classes only) and
bizcoin.errors (also Tier 1).
"""

from dataclasses import dataclass, replace

import httpx

from bizcoin.errors import ApiRequestError, NetworkError

MINUTE = 60.0

# ---------------------------------------------------------------------------
# QueryConfig: everything the cache client needs to know about one key
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QueryConfig:
    """Timing and refetch behaviour for a cached query. Seconds throughout.

    stale_time: age after which a read refetches even though data is cached.
    gc_time: how long an entry with no observers survives before eviction.
    retry: retries after the first failed fetch attempt.
    refetch_interval: background polling period for observed entries (None = off).
    keep_previous_data: observers keep showing the last value while a new
        key for the same view is loading (paginated lists).
    """

    stale_time: float = 5 * MINUTE
    gc_time: float = 30 * MINUTE
    retry: int = 3
    refetch_on_window_focus: bool = True
    refetch_on_mount: bool = True
    refetch_on_reconnect: bool = True
    refetch_interval: float | None = None
    keep_previous_data: bool = False


DEFAULT_QUERY_CONFIG = QueryConfig()


# ---------------------------------------------------------------------------
# Layer 1: Named profiles
# ---------------------------------------------------------------------------

PROFILE_MAP: dict[str, QueryConfig] = {
    # Live counters: active time entries, clock status.
    "realTime": replace(
        DEFAULT_QUERY_CONFIG,
        stale_time=30.0,
        refetch_interval=30.0,
    ),
    # Assignments, submissions, announcements.
    "dynamic": replace(
        DEFAULT_QUERY_CONFIG,
        stale_time=2 * MINUTE,
        refetch_on_window_focus=True,
    ),
    # Classroom and store metadata.
    "stable": replace(
        DEFAULT_QUERY_CONFIG,
        stale_time=10 * MINUTE,
        gc_time=60 * MINUTE,
    ),
    # Profile and settings data.
    "static": replace(
        DEFAULT_QUERY_CONFIG,
        stale_time=30 * MINUTE,
        gc_time=120 * MINUTE,
        refetch_on_window_focus=False,
        refetch_on_mount=False,
    ),
    # Paginated lists.
    "list": replace(
        DEFAULT_QUERY_CONFIG,
        stale_time=5 * MINUTE,
        keep_previous_data=True,
    ),
    # Category profiles, one per kind of screen data.
    "balances": replace(
        DEFAULT_QUERY_CONFIG,
        stale_time=15.0,
        gc_time=10 * MINUTE,
        refetch_interval=30.0,
        refetch_on_window_focus=True,
    ),
    "store": replace(
        DEFAULT_QUERY_CONFIG,
        stale_time=5 * MINUTE,
        gc_time=30 * MINUTE,
        refetch_on_window_focus=False,
    ),
    "profile": replace(
        DEFAULT_QUERY_CONFIG,
        stale_time=15 * MINUTE,
        gc_time=60 * MINUTE,
        refetch_on_window_focus=False,
    ),
    "classroom": replace(
        DEFAULT_QUERY_CONFIG,
        stale_time=10 * MINUTE,
        gc_time=45 * MINUTE,
        refetch_on_window_focus=False,
    ),
}


def resolve_profile(name: str) -> QueryConfig:
    """Resolves a profile name to its QueryConfig.

    Args:
        name: Profile name ("realTime", "dynamic", "stable", ...).

    Returns:
        The QueryConfig for the given profile.

    Raises:
        KeyError: If the name is not found in PROFILE_MAP.
    """
    return PROFILE_MAP[name]


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------

_BACKOFF_BASE = 1.0  # seconds, doubles each retry
_BACKOFF_CAP = 30.0

MUTATION_RETRY = 1
MUTATION_RETRY_DELAY = 1.0  # flat


def fetch_retry_delay(attempt: int) -> float:
    """Backoff before retry number attempt (zero-based): 1s, 2s, 4s ... capped at 30s."""
    return min(_BACKOFF_BASE * (2**attempt), _BACKOFF_CAP)


def is_retryable(exc: BaseException) -> bool:
    """Checks whether a failed fetch or mutation is worth retrying.

    Retries on:
    - NetworkError / httpx.TransportError (the request never completed)
    - ApiRequestError with code 429 (rate limit)
    - Any ApiRequestError with a 5xx code

    All other errors (400 bad request, 401/403 auth, 404, etc.) propagate
    immediately — repeating them only burns the retry budget.
    """
    if isinstance(exc, (NetworkError, httpx.TransportError)):
        return True
    if isinstance(exc, ApiRequestError):
        return exc.status_code == 429 or exc.status_code >= 500
    return False
