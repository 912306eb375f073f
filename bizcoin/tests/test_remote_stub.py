"""Tests for bizcoin.hooks.remote_stub — the in-memory Remote Store app.

Only the server-side rules the client relies on in other tests: error
envelope, auth gate, failure injection, balance rules.
"""

import logging

import pytest


class TestReads:

    @pytest.mark.asyncio
    async def test_leaderboard_sorted(self, asgi_client) -> None:
        async with asgi_client:
            response = await asgi_client.get("/api/classrooms/c1/leaderboard")
        assert response.status_code == 200
        assert [s["id"] for s in response.json()] == ["s2", "s1"]

    @pytest.mark.asyncio
    async def test_unknown_student_error_envelope(self, asgi_client) -> None:
        async with asgi_client:
            response = await asgi_client.get("/api/students/nobody")
        assert response.status_code == 404
        assert response.json() == {
            "code": "STUDENT_NOT_FOUND",
            "message": "Student nobody not found",
        }

    @pytest.mark.asyncio
    async def test_student_assignments_need_a_signed_in_student(self, asgi_client, stub_store) -> None:
        stub_store.current_student_id = None
        async with asgi_client:
            response = await asgi_client.get("/api/student/assignments")
        assert response.status_code == 401
        assert response.json()["message"] == "Unauthorized"


class TestGate:

    @pytest.mark.asyncio
    async def test_require_auth(self, asgi_client, stub_store) -> None:
        stub_store.require_auth = True
        async with asgi_client:
            anonymous = await asgi_client.get("/api/students/s1")
            signed_in = await asgi_client.get(
                "/api/students/s1", headers={"Authorization": "Bearer t"}
            )
        assert anonymous.status_code == 401
        assert signed_in.status_code == 200

    @pytest.mark.asyncio
    async def test_fail_next_is_consumed(self, asgi_client, stub_store) -> None:
        stub_store.fail_next("get", "/api/students/s1", status_code=503)
        async with asgi_client:
            first = await asgi_client.get("/api/students/s1")
            second = await asgi_client.get("/api/students/s1")
        assert first.status_code == 503
        assert first.json()["code"] == "INJECTED_FAILURE"
        assert second.status_code == 200
        assert stub_store.request_counts[("GET", "/api/students/s1")] == 2

    @pytest.mark.asyncio
    async def test_requests_logged_without_headers(self, asgi_client, stub_store, caplog) -> None:
        stub_store.fail_next("get", "/api/students/s1", status_code=503)
        with caplog.at_level(logging.INFO, logger="bizcoin.stub"):
            async with asgi_client:
                await asgi_client.get("/api/students/s1", headers={"Authorization": "Bearer secret"})
                await asgi_client.get("/api/students/s1")
        messages = [r.getMessage() for r in caplog.records if r.name == "bizcoin.stub"]
        assert messages[0].startswith("GET /api/students/s1 503 ")
        assert messages[1].startswith("GET /api/students/s1 200 ")
        assert not any("secret" in message for message in messages)


class TestMutations:

    @pytest.mark.asyncio
    async def test_award_never_goes_negative(self, asgi_client, stub_store) -> None:
        async with asgi_client:
            response = await asgi_client.post(
                "/api/tokens/award", json={"studentId": "s1", "amount": -50}
            )
        assert response.status_code == 200
        assert stub_store.students["s1"]["tokens"] == 0

    @pytest.mark.asyncio
    async def test_purchase_insufficient_tokens(self, asgi_client, stub_store) -> None:
        async with asgi_client:
            response = await asgi_client.post(
                "/api/store/purchase",
                json={"studentId": "s1", "itemId": "trophy", "classroomId": "c1"},
            )
        assert response.status_code == 400
        assert response.json()["code"] == "INSUFFICIENT_TOKENS"
        assert stub_store.students["s1"]["tokens"] == 10

    @pytest.mark.asyncio
    async def test_double_clock_in_rejected(self, asgi_client) -> None:
        body = {"action": "clock_in", "studentId": "s1", "classroomId": "c1"}
        async with asgi_client:
            first = await asgi_client.post("/api/time-tracking/clock", json=body)
            second = await asgi_client.post("/api/time-tracking/clock", json=body)
        assert first.status_code == 200
        assert second.status_code == 409

    @pytest.mark.asyncio
    async def test_validation_error_envelope(self, asgi_client) -> None:
        async with asgi_client:
            response = await asgi_client.post("/api/tokens/award", json={"studentId": "s1"})
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert "amount" in response.json()["message"]
