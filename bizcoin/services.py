"""Service container — builds the cache layer once and hands it out by reference.

There is no module-level cache. An application calls create_services() at
startup and passes the returned BizCoinServices to everything that reads or
writes BizCoin data. Tests build as many isolated containers as they like.

TEAM: To wire a real credential store or a different transport, pass it to
create_services(). Everything downstream picks it up unchanged.

Tier 3 orchestration module: imports from config (Tier 2), remote (Tier 2),
cache/* (Tier 2), operations (Tier 3), hooks/* (Tier 2).

Usage:
    services = create_services(classroom_id="c1")
    leaderboard = await services.client.read(keys.leaderboard("c1"))
    await services.tokens.award_tokens("s1", 10)
    await services.aclose()
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx

from bizcoin.cache.client import QueryClient
from bizcoin.cache.invalidation import InvalidateQueries, RollbackUpdates
from bizcoin.cache.optimistic import OptimisticUpdates
from bizcoin.cache.policy import DEFAULT_QUERY_CONFIG, resolve_profile
from bizcoin.config import Settings, get_settings
from bizcoin.hooks.interfaces import TokenStorage
from bizcoin.hooks.token_storage import FileTokenStorage, InMemoryTokenStorage
from bizcoin.operations import AssignmentOperations, TimeTracking, TokenOperations
from bizcoin.remote import RemoteStoreClient

logger = logging.getLogger("bizcoin")


@dataclass
class BizCoinServices:
    """Everything a BizCoin consumer needs, sharing one QueryClient.

    tokens, time_tracking and assignments are None unless the container
    was created for a classroom.
    """

    remote: RemoteStoreClient
    client: QueryClient
    optimistic: OptimisticUpdates
    rollback: RollbackUpdates
    invalidate: InvalidateQueries
    tokens: TokenOperations | None = None
    time_tracking: TimeTracking | None = None
    assignments: AssignmentOperations | None = None

    async def aclose(self) -> None:
        """Waits for in-flight fetches, drops the cache, closes HTTP."""
        await self.client.settle()
        self.client.clear()
        await self.remote.aclose()


def _default_token_storage(settings: Settings) -> TokenStorage:
    if settings.token_path:
        return FileTokenStorage(settings.token_path)
    return InMemoryTokenStorage()


def create_services(
    settings: Settings | None = None,
    *,
    token_storage: TokenStorage | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    classroom_id: str | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> BizCoinServices:
    """Builds a BizCoinServices container.

    Args:
        settings: Defaults to get_settings().
        token_storage: Defaults to a FileTokenStorage when BIZCOIN_TOKEN_PATH
            is set, otherwise in-memory.
        transport: Optional httpx transport for the Remote Store client.
        classroom_id: Binds the operations to this classroom.
        clock: Passed to the QueryClient (staleness and eviction time).
        sleep: Passed to the QueryClient (retry backoff).

    Returns:
        A ready-to-use BizCoinServices.
    """
    settings = settings or get_settings()
    remote = RemoteStoreClient(
        settings.api_base_url,
        token_storage=token_storage or _default_token_storage(settings),
        timeout=settings.request_timeout,
        transport=transport,
    )

    default_config = (
        resolve_profile(settings.cache_profile)
        if settings.cache_profile
        else DEFAULT_QUERY_CONFIG
    )
    query_client = QueryClient(
        remote.query_fn(),
        default_config=default_config,
        clock=clock,
        sleep=sleep,
    )

    optimistic = OptimisticUpdates(query_client)
    services = BizCoinServices(
        remote=remote,
        client=query_client,
        optimistic=optimistic,
        rollback=RollbackUpdates(query_client),
        invalidate=InvalidateQueries(query_client),
    )

    if classroom_id is not None:
        services.tokens = TokenOperations(query_client, remote, optimistic, classroom_id)
        services.time_tracking = TimeTracking(query_client, remote, optimistic, classroom_id)
        services.assignments = AssignmentOperations(query_client, remote, optimistic, classroom_id)

    logger.debug(
        "BizCoin services created: base_url=%s classroom=%s",
        settings.api_base_url,
        classroom_id,
    )
    return services
