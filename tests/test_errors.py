"""Tests for result envelopes, the boundary guard and best-effort cleanup."""

import asyncio

import pytest

from facial_gateway.errors import ErrorKind, best_effort, error_result, guarded, http_status_for, ok_result


def test_envelopes():
    assert ok_result(raw="OK") == {"ok": True, "raw": "OK"}
    assert error_result(ErrorKind.AUTH_FAILED, "nope", status=401) == {
        "ok": False, "error": "AUTH_FAILED", "message": "nope", "status": 401,
    }
    assert error_result("Error: Invalid Authority") == {"ok": False, "error": "Error: Invalid Authority"}


@pytest.mark.parametrize("error, status", [
    ("VALIDATION_ERROR", 400),
    ("CONFIG_ERROR", 400),
    ("UNSUPPORTED_COMMAND", 400),
    ("INTERNAL_ERROR", 500),
    ("UNREACHABLE", 502),
    ("INVALID_IMAGE", 502),
    ("Error: Invalid Authority", 502),
])
def test_http_status_for(error, status):
    assert http_status_for({"ok": False, "error": error}) == status


def test_http_status_for_success():
    assert http_status_for({"ok": True}) == 200


def test_guarded_turns_exceptions_into_internal_error():
    @guarded("explode")
    async def explode():
        raise KeyError("ip")

    res = asyncio.run(explode())

    assert res["ok"] is False
    assert res["error"] == "INTERNAL_ERROR"
    assert "ip" in res["message"]


def test_guarded_passes_results_through():
    @guarded("fine")
    async def fine(x):
        return ok_result(x=x)

    assert asyncio.run(fine(3)) == {"ok": True, "x": 3}


def test_best_effort_reports_outcome():
    async def succeed():
        return {"ok": True, "result": True}

    async def refuse():
        return {"ok": True, "result": False}

    async def fail():
        return {"ok": False, "error": "TRANSPORT_ERROR"}

    async def explode():
        raise RuntimeError("socket closed")

    async def scenario():
        return [
            await best_effort("stop", succeed()),
            await best_effort("stop", refuse()),
            await best_effort("stop", fail()),
            await best_effort("stop", explode()),
        ]

    assert asyncio.run(scenario()) == [True, False, False, False]
