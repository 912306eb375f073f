"""Derived read views — computed from cached data, never written back.

The cache keeps wire-shaped data; screens want rankings and durations.
These functions take a cached value (possibly None) and return a view.
They don't mutate their input, so one cached list can feed several views.
"""

from datetime import datetime
from typing import Any

from bizcoin.schemas import ActiveStudent, StudentBalance, TimeStatus


def rank_leaderboard(entries: list[dict[str, Any]] | None) -> list[dict[str, Any]] | None:
    """Sorts by tokens (highest first) and adds rank and isTop3."""
    if entries is None:
        return None
    ordered = sorted(entries, key=lambda entry: entry.get("tokens", 0), reverse=True)
    return [
        {**entry, "rank": index + 1, "isTop3": index < 3}
        for index, entry in enumerate(ordered)
    ]


def _minutes_between(start: datetime, now: datetime) -> int:
    return int((now - start).total_seconds() // 60)


def time_status_view(status: dict[str, Any] | None, now: datetime) -> dict[str, Any] | None:
    """Adds currentSessionDuration (whole minutes) and canClockOut."""
    if status is None:
        return None
    parsed = TimeStatus.model_validate(status)
    start = parsed.current_session_start
    return {
        **status,
        "currentSessionDuration": _minutes_between(start, now) if start else 0,
        "canClockOut": parsed.is_clocked_in and start is not None,
    }


def active_students_view(
    students: list[dict[str, Any]] | None,
    now: datetime,
) -> list[dict[str, Any]] | None:
    """Adds sessionDuration (whole minutes) per student, longest session first."""
    if students is None:
        return None
    viewed = [
        {
            **student,
            "sessionDuration": _minutes_between(
                ActiveStudent.model_validate(student).clocked_in_at, now
            ),
        }
        for student in students
    ]
    return sorted(viewed, key=lambda student: student["sessionDuration"], reverse=True)


class BalanceView:
    """A student's balance with spending helpers."""

    def __init__(self, balance: dict[str, Any]) -> None:
        self._balance = StudentBalance.model_validate(balance)

    @property
    def spending_power(self) -> int:
        return self._balance.tokens

    @property
    def next_level_tokens(self) -> int:
        return self._balance.level * 100

    @property
    def progress_to_next_level(self) -> float:
        return (self._balance.total_earnings % 100) / 100

    def can_purchase(self, cost: int) -> bool:
        return self._balance.tokens >= cost


def balance_view(balance: dict[str, Any] | None) -> BalanceView | None:
    if balance is None:
        return None
    return BalanceView(balance)
