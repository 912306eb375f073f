"""User actions — Remote Store mutation plus optimistic patch plus rollback.

Each method is one button in the BizCoin UI: award tokens, buy an item,
clock in, create or delete an assignment, submit a link. All of them go
through perform_mutation, so the cache is patched before the request
leaves and invalidated again whether the request succeeds or fails.

Operations are bound to the classroom the user is working in.

Tier 3 orchestration module: imports from bizcoin.cache.* (Tier 2),
bizcoin.remote (Tier 2), bizcoin.schemas (Tier 1).

Usage:
    tokens = TokenOperations(client, remote, optimistic, classroom_id="c1")
    await tokens.award_tokens("s1", 15, reason="Great presentation")
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from bizcoin.cache import keys
from bizcoin.cache.client import QueryClient
from bizcoin.cache.invalidation import (
    assignment_keys,
    clock_keys,
    purchase_keys,
    submission_keys,
    token_award_keys,
)
from bizcoin.cache.mutations import perform_mutation
from bizcoin.cache.optimistic import OptimisticUpdates
from bizcoin.remote import RemoteStoreClient
from bizcoin.schemas import StoreItem

logger = logging.getLogger("bizcoin")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class _ClassroomOperations:
    """Shared wiring: cache, HTTP, optimistic layer, current classroom."""

    def __init__(
        self,
        client: QueryClient,
        remote: RemoteStoreClient,
        optimistic: OptimisticUpdates,
        classroom_id: str,
        *,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._client = client
        self._remote = remote
        self._optimistic = optimistic
        self._classroom_id = classroom_id
        self._now = now

    @property
    def classroom_id(self) -> str:
        return self._classroom_id


# ---------------------------------------------------------------------------
# Tokens and store
# ---------------------------------------------------------------------------


class TokenOperations(_ClassroomOperations):
    """Token awards and store purchases."""

    async def award_tokens(self, student_id: str, amount: int, reason: str = "") -> Any:
        """Awards tokens to a student (teacher action)."""
        body = {
            "studentId": student_id,
            "amount": amount,
            "reason": reason,
            "classroomId": self._classroom_id,
        }
        return await perform_mutation(
            self._client,
            lambda: self._remote.request("POST", "/api/tokens/award", body),
            lambda: self._optimistic.award_tokens(student_id, amount, self._classroom_id),
            token_award_keys(student_id, self._classroom_id),
            name="award_tokens",
        )

    def cached_store_item(self, item_id: str) -> StoreItem | None:
        """Looks up an item in the cached classroom store (no fetch)."""
        items = self._client.peek(keys.classroom_store(self._classroom_id)) or []
        for item in items:
            if item.get("id") == item_id:
                return StoreItem.model_validate(item)
        return None

    async def purchase_item(self, student_id: str, item_id: str) -> Any:
        """Buys a store item for a student.

        The balance is only predicted when the item's cost is already
        cached; otherwise the purchase goes through without a patch and the
        resync brings the new balance.
        """
        item = self.cached_store_item(item_id)
        patch = None
        if item is not None:
            def patch() -> Any:
                return self._optimistic.purchase_item(student_id, item.cost, self._classroom_id)
        else:
            logger.debug("Store item %s not cached; purchasing without prediction", item_id)

        body = {
            "itemId": item_id,
            "studentId": student_id,
            "classroomId": self._classroom_id,
        }
        return await perform_mutation(
            self._client,
            lambda: self._remote.request("POST", "/api/store/purchase", body),
            patch,
            purchase_keys(student_id, self._classroom_id),
            name="purchase_item",
        )


# ---------------------------------------------------------------------------
# Time tracking
# ---------------------------------------------------------------------------


class TimeTracking(_ClassroomOperations):
    """Clock in and out of a classroom session."""

    async def clock_in(self, student_id: str) -> Any:
        return await self._clock(student_id, is_clocking_in=True)

    async def clock_out(self, student_id: str) -> Any:
        return await self._clock(student_id, is_clocking_in=False)

    async def _clock(self, student_id: str, *, is_clocking_in: bool) -> Any:
        action = "clock_in" if is_clocking_in else "clock_out"
        body = {
            "action": action,
            "classroomId": self._classroom_id,
            "studentId": student_id,
        }
        return await perform_mutation(
            self._client,
            lambda: self._remote.request("POST", "/api/time-tracking/clock", body),
            lambda: self._optimistic.clock_in_out(student_id, is_clocking_in, self._classroom_id),
            clock_keys(student_id, self._classroom_id),
            name=action,
        )


# ---------------------------------------------------------------------------
# Assignments and submissions
# ---------------------------------------------------------------------------


class AssignmentOperations(_ClassroomOperations):
    """Assignment creation and deletion (teacher), link submission (student)."""

    async def create(self, data: dict[str, Any], teacher_id: str | None = None) -> Any:
        """Creates an assignment; the cache shows it under a temp-<ms> id until resync."""
        now = self._now()
        body = {**data, "teacherId": teacher_id, "classroomId": self._classroom_id}
        placeholder = {
            **body,
            "id": f"temp-{int(now.timestamp() * 1000)}",
            "createdAt": now.isoformat(),
        }
        return await perform_mutation(
            self._client,
            lambda: self._remote.request("POST", "/api/assignments", body),
            lambda: self._optimistic.create_assignment(placeholder, self._classroom_id),
            assignment_keys(self._classroom_id),
            name="create_assignment",
        )

    async def delete(self, assignment_id: str) -> Any:
        return await perform_mutation(
            self._client,
            lambda: self._remote.request("DELETE", f"/api/assignments/{assignment_id}"),
            lambda: self._optimistic.delete_assignment(assignment_id, self._classroom_id),
            assignment_keys(self._classroom_id),
            name="delete_assignment",
        )

    async def submit(self, assignment_id: str, student_id: str, data: dict[str, Any]) -> Any:
        """Submits a link for an assignment."""
        body = {**data, "assignmentId": assignment_id}
        predicted = {
            **body,
            "studentId": student_id,
            "submittedAt": self._now().isoformat(),
        }
        return await perform_mutation(
            self._client,
            lambda: self._remote.request("POST", "/api/submissions", body),
            lambda: self._optimistic.submit_assignment(assignment_id, student_id, predicted),
            submission_keys(assignment_id, student_id),
            name="submit_assignment",
        )
