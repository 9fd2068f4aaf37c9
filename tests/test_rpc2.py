"""Unit tests for the RPC2 session client."""

import asyncio
import json

import httpx

from facial_gateway.rpc2 import (
    MODE_AUTO,
    MODE_FORM,
    MODE_JSON,
    Rpc2Client,
    build_payload,
    is_session_error,
    login_hash,
)

from conftest import DEVICE_IP, DEVICE_PASS, DEVICE_USER, PRE_SESSION, SESSION, FakeDevice, md5_hex


def _run(device, op):
    async def scenario():
        async with device.client() as client:
            return await op(Rpc2Client(client))
    return asyncio.run(scenario())


def test_login_hash_matches_webui_scheme():
    inner = md5_hex("admin:Login to X:pw").upper()
    expected = md5_hex(f"admin:42:{inner}").upper()

    assert login_hash("admin", "pw", "Login to X", "42") == expected


def test_login_two_step_handshake(device):
    res = _run(device, lambda rpc: rpc.login(DEVICE_IP, DEVICE_USER, DEVICE_PASS))

    assert res == {"ok": True, "session": SESSION}
    step1, step2 = device.logins
    assert "session" not in step1
    assert step1["params"] == {"userName": DEVICE_USER, "password": "", "clientType": "Web3.0"}
    assert step2["session"] == PRE_SESSION
    assert step2["params"]["authorityType"] == "Default"
    assert step2["params"]["clientType"] == "Web3.0"
    assert step2["params"]["password"] == login_hash(DEVICE_USER, DEVICE_PASS,
                                                     FakeDevice.realm, FakeDevice.random)


def test_login_wrong_password_is_auth_failed(device):
    res = _run(device, lambda rpc: rpc.login(DEVICE_IP, DEVICE_USER, "nope"))

    assert res["ok"] is False
    assert res["error"] == "AUTH_FAILED"


def test_login_unreachable(device):
    device.reachable = False

    res = _run(device, lambda rpc: rpc.login(DEVICE_IP, DEVICE_USER, DEVICE_PASS))

    assert res["ok"] is False
    assert res["error"] == "UNREACHABLE"


def test_login_malformed_challenge_is_auth_failed():
    def handler(request):
        return httpx.Response(200, json={"id": 1, "result": False, "params": {}})

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await Rpc2Client(client).login(DEVICE_IP, "admin", "admin")

    res = asyncio.run(scenario())

    assert res["ok"] is False
    assert res["error"] == "AUTH_FAILED"


def test_call_form_mode_sends_json_string_as_form(device):
    res = _run(device, lambda rpc: rpc.call(DEVICE_IP, SESSION, "RecordFinder.factory.create",
                                            {"name": "AccessControlCardRec"}, id=73))

    assert res["ok"] is True
    assert res["result"] == 3001
    assert device.rpc_content_types == ["application/x-www-form-urlencoded"]
    assert device.rpc[0] == {
        "method": "RecordFinder.factory.create",
        "params": {"name": "AccessControlCardRec"},
        "session": SESSION,
        "id": 73,
    }


def test_call_json_mode(device):
    res = _run(device, lambda rpc: rpc.call(DEVICE_IP, SESSION, "AccessUser.removeMulti",
                                            {"UserIDList": ["7"]}, mode=MODE_JSON))

    assert res["ok"] is True
    assert res["result"] is True
    assert device.rpc_content_types == ["application/json"]


def test_call_puts_object_at_request_root(device):
    _run(device, lambda rpc: rpc.call(DEVICE_IP, SESSION, "RecordFinder.stopFind", None,
                                      id=78, object=3001))

    assert device.rpc[0]["object"] == 3001
    assert device.rpc[0]["params"] is None


def test_build_payload_omits_missing_object():
    assert "object" not in build_payload("global.keepAlive", {}, SESSION, 5)


def test_call_device_error_is_rpc_error(device):
    device.start_ok = False

    res = _run(device, lambda rpc: rpc.call(DEVICE_IP, SESSION, "RecordFinder.startFind",
                                            {"condition": {}}, id=74, object=3001))

    assert res["ok"] is False
    assert res["error"] == "RPC_ERROR"
    assert res["raw"]["error"]["code"] == 268959743


def test_call_with_stale_session_is_session_invalid(device):
    res = _run(device, lambda rpc: rpc.call(DEVICE_IP, "expired", "RecordFinder.factory.create",
                                            {"name": "AccessControlCardRec"}))

    assert res["ok"] is False
    assert res["error"] == "SESSION_INVALID"


def test_call_undecodable_reply_is_transport_error(device):
    device.do_find = "transport"

    res = _run(device, lambda rpc: rpc.call(DEVICE_IP, SESSION, "RecordFinder.doFind",
                                            {"count": 1, "begin": 0}, object=3001))

    assert res["ok"] is False
    assert res["error"] == "TRANSPORT_ERROR"


def test_call_unreachable_is_transport_error(device):
    device.reachable = False

    res = _run(device, lambda rpc: rpc.call(DEVICE_IP, SESSION, "RecordFinder.factory.create", {}))

    assert res["error"] == "TRANSPORT_ERROR"


def test_call_auto_mode_falls_back_to_json():
    seen = []

    def handler(request):
        content_type = request.headers.get("content-type")
        seen.append(content_type)
        if content_type == "application/x-www-form-urlencoded":
            return httpx.Response(400, text="Bad Request")
        body = json.loads(request.content)
        return httpx.Response(200, json={"id": body["id"], "result": True, "params": {"ok": 1}})

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await Rpc2Client(client).call(DEVICE_IP, SESSION, "magicBox.getSystemInfo",
                                                 mode=MODE_AUTO)

    res = asyncio.run(scenario())

    assert res["ok"] is True
    assert res["params"] == {"ok": 1}
    assert seen == ["application/x-www-form-urlencoded", "application/json"]


def test_call_form_mode_does_not_fall_back():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(400, text="Bad Request")

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await Rpc2Client(client).call(DEVICE_IP, SESSION, "magicBox.getSystemInfo",
                                                 mode=MODE_FORM)

    res = asyncio.run(scenario())

    assert res["error"] == "TRANSPORT_ERROR"
    assert len(calls) == 1


def test_is_session_error():
    assert is_session_error({"code": 287637504, "message": "x"})
    assert is_session_error({"code": 1, "message": "Invalid session in request data!"})
    assert not is_session_error({"code": 268959743, "message": "Unknown error"})
    assert not is_session_error("session invalid")
