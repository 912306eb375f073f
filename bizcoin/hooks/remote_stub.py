"""In-memory Remote Store — development stub of the BizCoin REST API.

A FastAPI app over Python dicts that answers the GET keys and mutation
endpoints the cache layer uses, with the server-side rules the client
only predicts (balances never go negative, a purchase needs enough
tokens). Data lives only in memory and is lost on restart.

It exists so the cache layer can be exercised end to end without the
production API: tests drive it through httpx.ASGITransport, developers
run it with uvicorn. fail_next() injects failures for rollback testing.

TEAM: This is not the production API. Point BIZCOIN_API_BASE_URL at the
real server; nothing in the client changes.

Run with: uvicorn bizcoin.hooks.remote_stub:app --port 5000

Tier 3 orchestration module: imports from config (Tier 2), schemas (Tier 1).
"""

from __future__ import annotations

import logging
import time
from collections import Counter, defaultdict, deque
from datetime import datetime, timezone
from typing import Any, Literal
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from starlette.exceptions import HTTPException as StarletteHTTPException

from bizcoin.config import get_settings
from bizcoin.schemas import ApiError

logger = logging.getLogger("bizcoin.stub")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class StubError(Exception):
    """Raised by InMemoryRemoteStore to reject a request with a status code."""

    def __init__(self, status_code: int, code: str, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


class InMemoryRemoteStore:
    """STUB — dict-backed BizCoin data, loses everything on restart.

    Students belong to one classroom. current_student_id plays the
    signed-in student for "/api/student/assignments".
    """

    def __init__(self) -> None:
        self.students: dict[str, dict[str, Any]] = {}
        self.classrooms: dict[str, dict[str, Any]] = {}
        self.store_items: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.assignments: dict[str, dict[str, Any]] = {}
        self.submissions: list[dict[str, Any]] = []
        self.time_status: dict[str, dict[str, Any]] = {}
        self.current_student_id: str | None = None
        self.require_auth = False
        self.request_counts: Counter[tuple[str, str]] = Counter()
        self._failures: dict[tuple[str, str], deque[int]] = defaultdict(deque)

    # -- Seeding and failure injection --------------------------------------

    def add_classroom(self, classroom_id: str, name: str = "") -> None:
        self.classrooms[classroom_id] = {"id": classroom_id, "name": name or classroom_id}

    def add_student(self, student_id: str, classroom_id: str, tokens: int = 0, name: str = "") -> None:
        if classroom_id not in self.classrooms:
            self.add_classroom(classroom_id)
        self.students[student_id] = {
            "id": student_id,
            "name": name or student_id,
            "classroomId": classroom_id,
            "tokens": tokens,
            "totalEarnings": tokens,
            "totalSpent": 0,
        }

    def add_store_item(self, classroom_id: str, item_id: str, cost: int, name: str = "") -> None:
        self.store_items[classroom_id].append({"id": item_id, "name": name or item_id, "cost": cost})

    def add_assignment(self, assignment_id: str, classroom_id: str, title: str = "") -> None:
        self.assignments[assignment_id] = {
            "id": assignment_id,
            "title": title or assignment_id,
            "classroomId": classroom_id,
            "createdAt": _now_iso(),
        }

    def fail_next(self, method: str, path: str, status_code: int = 500, times: int = 1) -> None:
        """Makes the next `times` requests to method+path answer status_code."""
        for _ in range(times):
            self._failures[(method.upper(), path)].append(status_code)

    def pop_failure(self, method: str, path: str) -> int | None:
        queue = self._failures.get((method, path))
        if queue:
            return queue.popleft()
        return None

    # -- Reads --------------------------------------------------------------

    def _student(self, student_id: str) -> dict[str, Any]:
        student = self.students.get(student_id)
        if student is None:
            raise StubError(404, "STUDENT_NOT_FOUND", f"Student {student_id} not found")
        return student

    def _members(self, classroom_id: str) -> list[dict[str, Any]]:
        if classroom_id not in self.classrooms:
            raise StubError(404, "CLASSROOM_NOT_FOUND", f"Classroom {classroom_id} not found")
        return [s for s in self.students.values() if s["classroomId"] == classroom_id]

    def get_student(self, student_id: str) -> dict[str, Any]:
        return dict(self._student(student_id))

    def roster(self, classroom_id: str) -> list[dict[str, Any]]:
        return [{"id": s["id"], "name": s["name"], "tokens": s["tokens"]} for s in self._members(classroom_id)]

    def leaderboard(self, classroom_id: str) -> list[dict[str, Any]]:
        return sorted(self.roster(classroom_id), key=lambda s: s["tokens"], reverse=True)

    def get_time_status(self, student_id: str) -> dict[str, Any]:
        self._student(student_id)
        return dict(self.time_status.get(student_id, {
            "isClockedIn": False,
            "lastClockAction": None,
            "currentSessionStart": None,
        }))

    def active_students(self, classroom_id: str) -> list[dict[str, Any]]:
        return [
            {"id": s["id"], "clockedInAt": self.time_status[s["id"]]["currentSessionStart"]}
            for s in self._members(classroom_id)
            if self.time_status.get(s["id"], {}).get("isClockedIn")
        ]

    def classroom_assignments(self, classroom_id: str) -> list[dict[str, Any]]:
        self._members(classroom_id)
        return [a for a in self.assignments.values() if a["classroomId"] == classroom_id]

    def student_assignments(self) -> list[dict[str, Any]]:
        if self.current_student_id is None:
            raise StubError(401, "UNAUTHORIZED", "Unauthorized")
        student = self._student(self.current_student_id)
        submitted = {
            sub["assignmentId"] for sub in self.submissions
            if sub["studentId"] == student["id"]
        }
        return [
            {
                **a,
                "submissionStatus": "submitted" if a["id"] in submitted else "pending",
                "hasSubmission": a["id"] in submitted,
            }
            for a in self.classroom_assignments(student["classroomId"])
        ]

    # -- Mutations ----------------------------------------------------------

    def award(self, student_id: str, amount: int) -> dict[str, Any]:
        student = self._student(student_id)
        student["tokens"] = max(0, student["tokens"] + amount)
        if amount > 0:
            student["totalEarnings"] += amount
        return dict(student)

    def purchase(self, student_id: str, item_id: str, classroom_id: str) -> dict[str, Any]:
        student = self._student(student_id)
        item = next((i for i in self.store_items[classroom_id] if i["id"] == item_id), None)
        if item is None:
            raise StubError(404, "ITEM_NOT_FOUND", f"Item {item_id} not found")
        if student["tokens"] < item["cost"]:
            raise StubError(400, "INSUFFICIENT_TOKENS", "Not enough tokens")
        student["tokens"] -= item["cost"]
        student["totalSpent"] += item["cost"]
        return {"student": dict(student), "item": dict(item)}

    def clock(self, student_id: str, action: str) -> dict[str, Any]:
        status = self.get_time_status(student_id)
        now = _now_iso()
        if action == "clock_in":
            if status["isClockedIn"]:
                raise StubError(409, "ALREADY_CLOCKED_IN", "Already clocked in")
            status = {"isClockedIn": True, "lastClockAction": now, "currentSessionStart": now}
            self.time_status[student_id] = status
            return status
        if not status["isClockedIn"]:
            raise StubError(409, "NOT_CLOCKED_IN", "Not clocked in")
        started = datetime.fromisoformat(status["currentSessionStart"])
        minutes = int((datetime.now(timezone.utc) - started).total_seconds() // 60)
        self.time_status[student_id] = {
            "isClockedIn": False,
            "lastClockAction": now,
            "currentSessionStart": None,
        }
        return {**self.time_status[student_id], "sessionDuration": f"{minutes} min"}

    def create_assignment(self, data: dict[str, Any]) -> dict[str, Any]:
        assignment = {**data, "id": f"a-{uuid4().hex[:8]}", "createdAt": _now_iso()}
        self.assignments[assignment["id"]] = assignment
        return assignment

    def delete_assignment(self, assignment_id: str) -> None:
        if self.assignments.pop(assignment_id, None) is None:
            raise StubError(404, "ASSIGNMENT_NOT_FOUND", f"Assignment {assignment_id} not found")

    def submit(self, student_id: str, data: dict[str, Any]) -> dict[str, Any]:
        if data["assignmentId"] not in self.assignments:
            raise StubError(404, "ASSIGNMENT_NOT_FOUND", f"Assignment {data['assignmentId']} not found")
        submission = {
            **data,
            "id": f"sub-{uuid4().hex[:8]}",
            "studentId": student_id,
            "submittedAt": _now_iso(),
        }
        self.submissions.insert(0, submission)
        return submission


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class AwardBody(_Body):
    student_id: str
    amount: int
    reason: str = ""
    classroom_id: str | None = None


class PurchaseBody(_Body):
    item_id: str
    student_id: str
    classroom_id: str


class ClockBody(_Body):
    action: Literal["clock_in", "clock_out"]
    student_id: str
    classroom_id: str | None = None


class SubmissionBody(_Body):
    assignment_id: str
    link: str | None = None


# ---------------------------------------------------------------------------
# Error responses
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ApiError(code=code, message=message).model_dump(),
    )


def _stub_error_response(request: Request, exc: StubError) -> JSONResponse:
    return _error(exc.status_code, exc.code, exc.message)


def _http_exception_response(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error(exc.status_code, "HTTP_ERROR", str(exc.detail))


def _validation_error_response(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        loc = " -> ".join(str(part) for part in first.get("loc", []))
        msg = first.get("msg", "Validation error")
        detail = f"{loc}: {msg}" if loc else msg
    else:
        detail = "Request validation failed."
    return _error(422, "VALIDATION_ERROR", detail)


def _unhandled_exception_response(request: Request, exc: Exception) -> JSONResponse:
    """Logs the traceback server-side and answers a generic 500."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "INTERNAL_ERROR", "Internal server error")


# ---------------------------------------------------------------------------
# App creation
# ---------------------------------------------------------------------------


def create_stub_app(store: InMemoryRemoteStore | None = None) -> FastAPI:
    """Creates the stub Remote Store app over store (a fresh one by default)."""
    settings = get_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    store = store or InMemoryRemoteStore()
    application = FastAPI(
        title="BizCoin Remote Store (stub)",
        description="In-memory stand-in for the BizCoin REST API",
        version="0.1.0",
    )
    application.state.store = store

    @application.middleware("http")
    async def gate(request: Request, call_next: Any) -> Any:
        """Counts and logs requests, enforces auth when required, injects queued failures.

        Logs method, path, status and duration only; never bodies or headers.
        """
        method, path = request.method, request.url.path
        store.request_counts[(method, path)] += 1
        start = time.monotonic()
        if store.require_auth and not request.headers.get("authorization", "").startswith("Bearer "):
            response = _error(401, "UNAUTHORIZED", "Unauthorized")
        else:
            failure = store.pop_failure(method, path)
            if failure is not None:
                response = _error(failure, "INJECTED_FAILURE", f"Injected failure for {method} {path}")
            else:
                response = await call_next(request)
        logger.info(
            "%s %s %d %.1fms",
            method,
            path,
            response.status_code,
            (time.monotonic() - start) * 1000,
        )
        return response

    application.add_exception_handler(StubError, _stub_error_response)
    application.add_exception_handler(StarletteHTTPException, _http_exception_response)
    application.add_exception_handler(RequestValidationError, _validation_error_response)
    application.add_exception_handler(Exception, _unhandled_exception_response)

    _register_routes(application, store)
    return application


def _register_routes(application: FastAPI, store: InMemoryRemoteStore) -> None:
    """Registers the GET keys and mutation endpoints."""

    # -- Students -----------------------------------------------------------

    @application.get("/api/students/{student_id}")
    async def get_student(student_id: str) -> dict:
        return store.get_student(student_id)

    @application.get("/api/students/{student_id}/submissions")
    async def get_student_submissions(student_id: str) -> list:
        store.get_student(student_id)
        return [s for s in store.submissions if s["studentId"] == student_id]

    @application.get("/api/students/{student_id}/time-status")
    async def get_time_status(student_id: str) -> dict:
        return store.get_time_status(student_id)

    @application.get("/api/student/assignments")
    async def get_student_assignments() -> list:
        return store.student_assignments()

    # -- Classrooms ---------------------------------------------------------

    @application.get("/api/classrooms/{classroom_id}/leaderboard")
    async def get_leaderboard(classroom_id: str) -> list:
        return store.leaderboard(classroom_id)

    @application.get("/api/classrooms/{classroom_id}/students")
    async def get_roster(classroom_id: str) -> list:
        return store.roster(classroom_id)

    @application.get("/api/classrooms/{classroom_id}/active-students")
    async def get_active_students(classroom_id: str) -> list:
        return store.active_students(classroom_id)

    @application.get("/api/classrooms/{classroom_id}/assignments")
    async def get_classroom_assignments(classroom_id: str) -> list:
        return store.classroom_assignments(classroom_id)

    @application.get("/api/classrooms/{classroom_id}/store")
    async def get_classroom_store(classroom_id: str) -> list:
        return list(store.store_items[classroom_id])

    # -- Assignments --------------------------------------------------------

    @application.get("/api/assignments")
    async def get_assignments() -> list:
        return list(store.assignments.values())

    @application.get("/api/assignments/{assignment_id}/submissions")
    async def get_assignment_submissions(assignment_id: str) -> list:
        return [s for s in store.submissions if s["assignmentId"] == assignment_id]

    @application.post("/api/assignments", status_code=201)
    async def create_assignment(request: Request) -> dict:
        return store.create_assignment(await request.json())

    @application.delete("/api/assignments/{assignment_id}", status_code=204)
    async def delete_assignment(assignment_id: str) -> None:
        store.delete_assignment(assignment_id)

    @application.post("/api/submissions", status_code=201)
    async def create_submission(body: SubmissionBody) -> dict:
        if store.current_student_id is None:
            raise StubError(401, "UNAUTHORIZED", "Unauthorized")
        return store.submit(store.current_student_id, body.model_dump(by_alias=True))

    # -- Tokens, store, time ------------------------------------------------

    @application.post("/api/tokens/award")
    async def award_tokens(body: AwardBody) -> dict:
        return store.award(body.student_id, body.amount)

    @application.post("/api/store/purchase")
    async def purchase(body: PurchaseBody) -> dict:
        return store.purchase(body.student_id, body.item_id, body.classroom_id)

    @application.post("/api/time-tracking/clock")
    async def clock(body: ClockBody) -> dict:
        return store.clock(body.student_id, body.action)


def _demo_store() -> InMemoryRemoteStore:
    """A tiny classroom so `uvicorn bizcoin.hooks.remote_stub:app` has data to serve."""
    store = InMemoryRemoteStore()
    store.add_classroom("demo", "Demo Classroom")
    store.add_student("ada", "demo", tokens=40, name="Ada")
    store.add_student("grace", "demo", tokens=25, name="Grace")
    store.add_store_item("demo", "pencil", 5, "Pencil")
    store.add_store_item("demo", "homework-pass", 30, "Homework Pass")
    store.add_assignment("essay-1", "demo", "Persuasive Essay")
    store.current_student_id = "ada"
    return store


app = create_stub_app(_demo_store())
