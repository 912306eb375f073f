"""Cache-key addressing scheme — one builder per key family.

A key is a tuple of segments. The first segment is a REST resource path
prefix ("/api/classrooms"), followed by entity ids and sub-resource names:

    ("/api/classrooms", "c1", "leaderboard")

Joined with "/" the key is also the GET URL for its data. Keys that
denormalize the same entity share that entity's id segment, so a prefix
sweep like ("/api/classrooms", "c1") reaches every sub-resource of the
classroom without a reverse index.

Tier 1 leaf — stdlib only. Nothing else in the package spells out a key
literal; everything goes through the builders below.
"""

from typing import TypeAlias

Segment: TypeAlias = str | int
QueryKey: TypeAlias = tuple[Segment, ...]

# ---------------------------------------------------------------------------
# Resource prefixes
# ---------------------------------------------------------------------------

STUDENTS = "/api/students"
CLASSROOMS = "/api/classrooms"
ASSIGNMENTS = "/api/assignments"
STUDENT_ASSIGNMENTS = "/api/student/assignments"
STORE = "/api/store"
ANNOUNCEMENTS = "/api/announcements"


# ---------------------------------------------------------------------------
# Student family
# ---------------------------------------------------------------------------


def student(student_id: str) -> QueryKey:
    return (STUDENTS, student_id)


def student_progress(student_id: str) -> QueryKey:
    return (STUDENTS, student_id, "progress")


def student_enrollments(student_id: str) -> QueryKey:
    return (STUDENTS, student_id, "enrollments")


def student_submissions(student_id: str) -> QueryKey:
    return (STUDENTS, student_id, "submissions")


def student_balance(student_id: str) -> QueryKey:
    return (STUDENTS, student_id, "balance")


def time_status(student_id: str) -> QueryKey:
    return (STUDENTS, student_id, "time-status")


def student_assignments() -> QueryKey:
    """The signed-in student's assignment list (identity comes from auth)."""
    return (STUDENT_ASSIGNMENTS,)


# ---------------------------------------------------------------------------
# Classroom family
# ---------------------------------------------------------------------------


def classrooms() -> QueryKey:
    return (CLASSROOMS,)


def classroom(classroom_id: str) -> QueryKey:
    return (CLASSROOMS, classroom_id)


def classroom_stats(classroom_id: str) -> QueryKey:
    return (CLASSROOMS, classroom_id, "stats")


def roster(classroom_id: str) -> QueryKey:
    return (CLASSROOMS, classroom_id, "students")


def leaderboard(classroom_id: str) -> QueryKey:
    return (CLASSROOMS, classroom_id, "leaderboard")


def active_students(classroom_id: str) -> QueryKey:
    return (CLASSROOMS, classroom_id, "active-students")


def classroom_assignments(classroom_id: str) -> QueryKey:
    return (CLASSROOMS, classroom_id, "assignments")


def classroom_store(classroom_id: str) -> QueryKey:
    return (CLASSROOMS, classroom_id, "store")


def classroom_announcements(classroom_id: str) -> QueryKey:
    return (CLASSROOMS, classroom_id, "announcements")


# ---------------------------------------------------------------------------
# Top-level lists
# ---------------------------------------------------------------------------


def teacher_assignments() -> QueryKey:
    """The signed-in teacher's assignments across all classrooms."""
    return (ASSIGNMENTS,)


def assignment_submissions(assignment_id: str) -> QueryKey:
    return (ASSIGNMENTS, assignment_id, "submissions")


def store() -> QueryKey:
    return (STORE,)


def announcements() -> QueryKey:
    return (ANNOUNCEMENTS,)


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


def key_to_url(key: QueryKey) -> str:
    """Joins key segments with "/" — the GET path for the key's data."""
    return "/".join(str(segment) for segment in key)


def matches(prefix: QueryKey, key: QueryKey, *, exact: bool = False) -> bool:
    """Checks whether key falls under prefix.

    Args:
        prefix: The sweep prefix, e.g. ("/api/classrooms", "c1").
        key: A concrete cache key.
        exact: Require key == prefix instead of a prefix match.

    Returns:
        True if key is addressed by prefix.
    """
    if exact:
        return key == prefix
    return key[: len(prefix)] == prefix
