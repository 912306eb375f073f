"""Optimistic mutation layer — predicted results written into the cache early.

One method per user action. Each patches every cache projection that
denormalizes the affected entity, synchronously and before the network call
resolves, so no reader ever sees the student record updated but the
leaderboard not.

Every updater derives the new value from the value currently in the cache,
never from a snapshot captured earlier. Two award_tokens calls for the same
student therefore add up, whether or not the first one has been confirmed.

No network calls originate here. The caller issues the mutation and owns
the rollback — bizcoin.cache.mutations.perform_mutation pairs the two.

Tier 2 service: imports from bizcoin.cache.client (Tier 2),
bizcoin.cache.keys and bizcoin.schemas (Tier 1).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from bizcoin.cache import keys
from bizcoin.cache.client import QueryClient, Updater
from bizcoin.cache.keys import QueryKey
from bizcoin.schemas import (
    ActiveStudent,
    Assignment,
    Projection,
    StudentAssignment,
    StudentListEntry,
    StudentRecord,
    Submission,
    TimeStatus,
)

logger = logging.getLogger("bizcoin.cache")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Updater builders
# ---------------------------------------------------------------------------


Changes = Callable[[Any], dict[str, Any]]


def _patch(model: type[Projection], wire: dict[str, Any], changes: Changes) -> dict[str, Any]:
    parsed = model.model_validate(wire)
    return parsed.patch_wire(wire, **changes(parsed))


def _update_record(model: type[Projection], changes: Changes) -> Updater:
    """Updater for a single-object projection. Absent entries stay absent."""

    def updater(old: Any) -> Any:
        if old is None:
            return None
        return _patch(model, old, changes)

    return updater


def _update_list_item(model: type[Projection], item_id: str, changes: Changes) -> Updater:
    """Updater that transforms the list element whose id matches item_id."""

    def updater(old: Any) -> Any:
        if old is None:
            return None
        return [
            _patch(model, item, changes)
            if item.get("id") == item_id
            else item
            for item in old
        ]

    return updater


def _prepend(item: dict[str, Any]) -> Updater:
    """Updater that puts item first; an absent list becomes [item]."""

    def updater(old: Any) -> Any:
        if old is None:
            return [item]
        return [item, *old]

    return updater


def _as_wire(value: Projection | dict[str, Any]) -> dict[str, Any]:
    if isinstance(value, Projection):
        return value.model_dump(by_alias=True, mode="json", exclude_none=True)
    return dict(value)


def _remove_id(item_id: str) -> Updater:
    def updater(old: Any) -> Any:
        if old is None:
            return None
        return [item for item in old if item.get("id") != item_id]

    return updater


# ---------------------------------------------------------------------------
# Optimistic updates
# ---------------------------------------------------------------------------


class OptimisticUpdates:
    """Optimistic cache patches, one per user action.

    Every method returns the keys it actually wrote (entries absent from
    the cache are skipped, except where an action creates the entry).

    Args:
        client: The application's QueryClient.
        now: UTC timestamp source for clock actions; injectable for tests.
    """

    def __init__(
        self,
        client: QueryClient,
        *,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._client = client
        self._now = now

    def _apply(self, action: str, patches: list[tuple[QueryKey, Updater]]) -> list[QueryKey]:
        patched = []
        for key, updater in patches:
            if self._client.write(key, updater) is not None:
                patched.append(key)
        logger.debug("Optimistic %s patched %d of %d keys", action, len(patched), len(patches))
        return patched

    # -- Tokens -------------------------------------------------------------

    def award_tokens(self, student_id: str, amount: int, classroom_id: str) -> list[QueryKey]:
        """Adds amount to the student's record, leaderboard entry and roster entry."""

        def credit_record(record: StudentRecord) -> dict[str, Any]:
            return {
                "tokens": record.tokens + amount,
                "total_earnings": record.total_earnings + amount,
            }

        def credit_entry(entry: StudentListEntry) -> dict[str, Any]:
            return {"tokens": entry.tokens + amount}

        return self._apply("award_tokens", [
            (keys.student(student_id), _update_record(StudentRecord, credit_record)),
            (keys.leaderboard(classroom_id), _update_list_item(StudentListEntry, student_id, credit_entry)),
            (keys.roster(classroom_id), _update_list_item(StudentListEntry, student_id, credit_entry)),
        ])

    def purchase_item(self, student_id: str, cost: int, classroom_id: str) -> list[QueryKey]:
        """Deducts cost from the student's record and leaderboard entry.

        Balances clamp at zero. This is a display guard only — the Remote
        Store decides whether the purchase is allowed.
        """

        def debit_record(record: StudentRecord) -> dict[str, Any]:
            return {
                "tokens": max(0, record.tokens - cost),
                "total_spent": record.total_spent + cost,
            }

        def debit_entry(entry: StudentListEntry) -> dict[str, Any]:
            return {"tokens": max(0, entry.tokens - cost)}

        return self._apply("purchase_item", [
            (keys.student(student_id), _update_record(StudentRecord, debit_record)),
            (keys.leaderboard(classroom_id), _update_list_item(StudentListEntry, student_id, debit_entry)),
        ])

    # -- Assignments ----------------------------------------------------------

    def submit_assignment(
        self,
        assignment_id: str,
        student_id: str,
        submission: Submission | dict[str, Any],
    ) -> list[QueryKey]:
        """Prepends the submission to both submission lists and flags the assignment submitted.

        assignmentId and studentId default to the arguments, so the
        submission itself may be as little as {"link": ...}.
        """
        wire = {"assignmentId": assignment_id, "studentId": student_id, **_as_wire(submission)}
        Submission.model_validate(wire)

        def mark_submitted(assignment: StudentAssignment) -> dict[str, Any]:
            return {"submission_status": "submitted", "has_submission": True}

        return self._apply("submit_assignment", [
            (keys.student_submissions(student_id), _prepend(wire)),
            (keys.assignment_submissions(assignment_id), _prepend(wire)),
            (keys.student_assignments(), _update_list_item(StudentAssignment, assignment_id, mark_submitted)),
        ])

    def create_assignment(
        self,
        assignment: Assignment | dict[str, Any],
        classroom_id: str,
    ) -> list[QueryKey]:
        wire = {"classroomId": classroom_id, **_as_wire(assignment)}
        Assignment.model_validate(wire)
        return self._apply("create_assignment", [
            (keys.classroom_assignments(classroom_id), _prepend(wire)),
            (keys.teacher_assignments(), _prepend(wire)),
        ])

    def delete_assignment(self, assignment_id: str, classroom_id: str) -> list[QueryKey]:
        return self._apply("delete_assignment", [
            (keys.classroom_assignments(classroom_id), _remove_id(assignment_id)),
            (keys.teacher_assignments(), _remove_id(assignment_id)),
        ])

    # -- Time tracking --------------------------------------------------------

    def clock_in_out(
        self,
        student_id: str,
        is_clocking_in: bool,
        classroom_id: str,
    ) -> list[QueryKey]:
        """Flips the student's clock state and their active-students membership together.

        The time status is created if absent. Clocking in twice never adds a
        second active-students entry; clocking out removes only this student.
        """
        now = self._now()

        def update_status(old: Any) -> Any:
            wire = old or {}
            return TimeStatus.model_validate(wire).patch_wire(
                wire,
                is_clocked_in=is_clocking_in,
                last_clock_action=now,
                current_session_start=now if is_clocking_in else None,
            )

        def update_active(old: Any) -> Any:
            if old is None:
                return None
            if not is_clocking_in:
                return [item for item in old if item.get("id") != student_id]
            if any(item.get("id") == student_id for item in old):
                return old
            return [*old, ActiveStudent(id=student_id, clocked_in_at=now).to_wire()]

        return self._apply("clock_in_out", [
            (keys.time_status(student_id), update_status),
            (keys.active_students(classroom_id), update_active),
        ])
