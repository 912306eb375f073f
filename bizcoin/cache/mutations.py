"""Paired mutations — optimistic patch, network call and rollback as one unit.

perform_mutation is the only way bizcoin.operations writes to the Remote
Store. Because the rollback keys travel with the action, a failed mutation
always ends with the patched projections invalidated. There's no separate
error handler for a caller to forget.

Lifecycle:
    offline?  → OfflineError, nothing patched
    patch     → optimistic_patch() runs synchronously
    action    → client.mutate(action) with the mutation retry policy
    failure   → invalidate rollback_keys, re-raise (a patch that raises
                counts as a failure; the action is not sent)
    success   → invalidate rollback_keys (resync_on_success), return result

Tier 2 service: imports from bizcoin.cache.client (Tier 2).
"""

import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from bizcoin.cache.client import QueryClient
from bizcoin.cache.keys import QueryKey, key_to_url
from bizcoin.errors import OfflineError

logger = logging.getLogger("bizcoin.cache")


async def perform_mutation(
    client: QueryClient,
    action: Callable[[], Awaitable[Any]],
    optimistic_patch: Callable[[], Any] | None,
    rollback_keys: Iterable[QueryKey],
    *,
    resync_on_success: bool = True,
    name: str = "mutation",
) -> Any:
    """Runs a mutation with its optimistic patch and rollback bundle.

    Args:
        client: The application's QueryClient.
        action: Zero-argument coroutine factory issuing the network call.
            Called again on retry.
        optimistic_patch: Synchronous cache patch, or None for no prediction.
        rollback_keys: Keys to invalidate on failure (and on success when
            resync_on_success is set).
        resync_on_success: Also invalidate after success, so the cache
            converges on the server's answer.
        name: Label for log lines.

    Returns:
        The action's result.

    Raises:
        OfflineError: If the client is offline. The cache is not patched.
        Exception: Whatever the patch or the action raised, after the
            rollback ran.
    """
    if not client.is_online:
        raise OfflineError(f"{name} not attempted: client is offline.")

    rollback = list(rollback_keys)
    try:
        if optimistic_patch is not None:
            optimistic_patch()
        result = await client.mutate(action)
    except Exception as exc:
        logger.warning(
            "%s failed, rolling back %s: %s",
            name,
            ", ".join(key_to_url(key) for key in rollback),
            exc,
        )
        for key in rollback:
            client.invalidate(key)
        raise

    if resync_on_success:
        for key in rollback:
            client.invalidate(key)
    return result
