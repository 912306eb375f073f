"""Rollback/invalidation layer — back to server truth after a mutation.

An optimistic patch is never undone by replaying the inverse delta; that
drifts as soon as two patches overlap. Instead the affected keys are
invalidated, observed ones refetch immediately and the rest refetch on
their next read. A brief flash back to the pre-optimistic value is
expected.

Each rollback bundle comes in two forms: a *_keys function returning the
keys (what perform_mutation pairs with an action) and a RollbackUpdates
method that invalidates them.

Tier 2 service: imports from bizcoin.cache.client (Tier 2) and
bizcoin.cache.keys (Tier 1).
"""

from collections.abc import Iterable

from bizcoin.cache import keys
from bizcoin.cache.client import QueryClient
from bizcoin.cache.keys import QueryKey

# ---------------------------------------------------------------------------
# Rollback bundles: the keys each action's optimistic patch touches
# ---------------------------------------------------------------------------


def token_award_keys(student_id: str, classroom_id: str) -> list[QueryKey]:
    return [
        keys.student(student_id),
        keys.leaderboard(classroom_id),
        keys.roster(classroom_id),
    ]


def purchase_keys(student_id: str, classroom_id: str) -> list[QueryKey]:
    """Same three token-bearing projections as a token award.

    The purchase patch leaves the roster alone, but the server's purchase
    changes the balance the roster shows, so the roster is resynced too.
    """
    return [
        keys.student(student_id),
        keys.leaderboard(classroom_id),
        keys.roster(classroom_id),
    ]


def submission_keys(assignment_id: str, student_id: str) -> list[QueryKey]:
    return [
        keys.student_submissions(student_id),
        keys.assignment_submissions(assignment_id),
        keys.student_assignments(),
    ]


def clock_keys(student_id: str, classroom_id: str) -> list[QueryKey]:
    return [
        keys.time_status(student_id),
        keys.active_students(classroom_id),
    ]


def assignment_keys(classroom_id: str) -> list[QueryKey]:
    return [
        keys.classroom_assignments(classroom_id),
        keys.teacher_assignments(),
    ]


def _invalidate_all(client: QueryClient, prefixes: Iterable[QueryKey]) -> list[QueryKey]:
    """Invalidates every prefix; returns the swept keys without duplicates."""
    invalidated: list[QueryKey] = []
    for prefix in prefixes:
        for key in client.invalidate(prefix):
            if key not in invalidated:
                invalidated.append(key)
    return invalidated


class RollbackUpdates:
    """Invalidates the projections an optimistic patch may have got wrong."""

    def __init__(self, client: QueryClient) -> None:
        self._client = client

    def invalidate_related(self, query_keys: Iterable[QueryKey]) -> list[QueryKey]:
        """Invalidates each key (and everything under it).

        Returns:
            Every cache key that was marked stale.
        """
        return _invalidate_all(self._client, query_keys)

    def token_award(self, student_id: str, classroom_id: str) -> list[QueryKey]:
        return self.invalidate_related(token_award_keys(student_id, classroom_id))

    def purchase(self, student_id: str, classroom_id: str) -> list[QueryKey]:
        return self.invalidate_related(purchase_keys(student_id, classroom_id))

    def submission(self, assignment_id: str, student_id: str) -> list[QueryKey]:
        return self.invalidate_related(submission_keys(assignment_id, student_id))

    def clock(self, student_id: str, classroom_id: str) -> list[QueryKey]:
        return self.invalidate_related(clock_keys(student_id, classroom_id))

    def assignment(self, classroom_id: str) -> list[QueryKey]:
        return self.invalidate_related(assignment_keys(classroom_id))


# ---------------------------------------------------------------------------
# Resource sweeps
# ---------------------------------------------------------------------------


class InvalidateQueries:
    """Invalidates everything cached about one resource.

    Used after writes that no optimistic patch models (roster uploads,
    store edits, announcements) — the sweep is broad on purpose.
    """

    def __init__(self, client: QueryClient) -> None:
        self._client = client

    def _sweep(self, prefixes: list[QueryKey]) -> list[QueryKey]:
        return _invalidate_all(self._client, prefixes)

    def classroom(self, classroom_id: str) -> list[QueryKey]:
        """Classroom record plus stats, roster, leaderboard and every other sub-key."""
        return self._sweep([keys.classroom(classroom_id)])

    def student(self, student_id: str) -> list[QueryKey]:
        """Student record plus progress, submissions, enrollments and time status."""
        return self._sweep([keys.student(student_id)])

    def assignments(self, classroom_id: str) -> list[QueryKey]:
        return self._sweep([
            keys.teacher_assignments(),
            keys.classroom_assignments(classroom_id),
        ])

    def store(self, classroom_id: str) -> list[QueryKey]:
        return self._sweep([keys.store(), keys.classroom_store(classroom_id)])

    def announcements(self, classroom_id: str) -> list[QueryKey]:
        return self._sweep([
            keys.announcements(),
            keys.classroom_announcements(classroom_id),
        ])
