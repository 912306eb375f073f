"""Core data models — typed projections of server-owned BizCoin entities.

The cache holds JSON exactly as the Remote Store sends it (camelCase keys,
ISO timestamps). Every optimistic patch parses the cached value through one
of these models, computes the new value, and writes only the changed
fields back into the wire dict (patch_wire). That way a patch is checked
against the exact shape it mutates, while unknown fields and fields the
patch didn't touch keep the value the server sent.

Tier 1 leaf module: imports only from pydantic and the stdlib.

Usage:
    from bizcoin.schemas import StudentRecord

    record = StudentRecord.model_validate({"id": "s1", "tokens": 10})
    record.patch_wire({"id": "s1", "tokens": 10}, tokens=25)  # {"id": "s1", "tokens": 25}
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Projection(BaseModel):
    """Base for every cached projection.

    Frozen — patches produce a new instance via model_copy(update=...).
    Accepts both camelCase (wire) and snake_case (Python) field names.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        frozen=True,
    )

    def to_wire(self) -> dict[str, Any]:
        """Dumps back to the camelCase JSON shape stored in the cache."""
        return self.model_dump(by_alias=True, mode="json")

    def patch_wire(self, wire: dict[str, Any], **changes: Any) -> dict[str, Any]:
        """Returns wire with only the changed fields replaced.

        Fields the patch doesn't touch keep the exact value the server sent,
        so timestamps are not re-formatted by a round trip.
        """
        updated = self.model_copy(update=changes)
        dumped = updated.model_dump(by_alias=True, mode="json", include=set(changes))
        return {**wire, **dumped}


# ---------------------------------------------------------------------------
# Token-bearing projections
# ---------------------------------------------------------------------------


class StudentRecord(Projection):
    """A student's own record — ["/api/students", id]."""

    id: str
    tokens: int = 0
    total_earnings: int = 0
    total_spent: int = 0

    @field_validator("tokens", "total_earnings", "total_spent", mode="before")
    @classmethod
    def null_balance_is_zero(cls, value: Any) -> Any:
        """Balance columns are nullable server-side; null reads as 0."""
        return 0 if value is None else value


class StudentListEntry(Projection):
    """One element of a leaderboard or roster list."""

    id: str
    tokens: int = 0

    @field_validator("tokens", mode="before")
    @classmethod
    def null_balance_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value


class StudentBalance(Projection):
    """A student's balance summary — ["/api/students", id, "balance"]."""

    tokens: int = 0
    total_earnings: int = 0
    level: int = 1

    @field_validator("tokens", "total_earnings", mode="before")
    @classmethod
    def null_balance_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value


# ---------------------------------------------------------------------------
# Assignments and submissions
# ---------------------------------------------------------------------------


class Assignment(Projection):
    """An assignment as listed for a classroom or a teacher.

    id is None for an assignment the server hasn't numbered yet.
    """

    id: str | None = None
    title: str | None = None
    classroom_id: str | None = None
    created_at: datetime | None = None


class StudentAssignment(Projection):
    """An assignment as the signed-in student sees it, with submission flags."""

    id: str
    submission_status: str | None = None
    has_submission: bool = False


class Submission(Projection):
    """A student's submitted link for one assignment."""

    id: str | None = None
    assignment_id: str
    student_id: str | None = None
    link: str | None = None
    submitted_at: datetime | None = None


# ---------------------------------------------------------------------------
# Time tracking
# ---------------------------------------------------------------------------


class TimeStatus(Projection):
    """A student's clock state — ["/api/students", id, "time-status"].

    isClockedIn and membership in the classroom's active-students list
    must change together.
    """

    is_clocked_in: bool = False
    last_clock_action: datetime | None = None
    current_session_start: datetime | None = None


class ActiveStudent(Projection):
    """One element of a classroom's active-students list."""

    id: str
    clocked_in_at: datetime


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class StoreItem(Projection):
    """A purchasable item in a classroom store."""

    id: str
    name: str | None = None
    cost: int = Field(ge=0)


# ---------------------------------------------------------------------------
# Error envelope (stub Remote Store)
# ---------------------------------------------------------------------------


class ApiError(BaseModel):
    """Error body returned by the stub Remote Store.

    code is an uppercase string like "STUDENT_NOT_FOUND". Not an enum.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
