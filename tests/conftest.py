"""Shared fixtures: an in-memory terminal behind httpx.MockTransport."""

import hashlib
import json
import re

import httpx
import pytest

from facial_gateway.config import GatewayConfig

DEVICE_IP = "10.0.0.5"
DEVICE_USER = "admin"
DEVICE_PASS = "s3cret"

PRE_SESSION = "prelogin-7c1e"
SESSION = "2f9c0d4b8a1e4f6a"

JPEG = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00\xff\xd9"

_AUTH_PARAM = re.compile(r'(\w+)=(?:"([^"]*)"|([^,\s]*))')


def md5_hex(s):
    return hashlib.md5(s.encode("utf-8")).hexdigest()


class FakeDevice:
    """A terminal speaking Digest CGI and RPC2, with scriptable replies."""

    realm = "Login to 4K0123456789"
    nonce = "1a2b3c4d5e"
    random = "1469983429"

    def __init__(self, ip=DEVICE_IP, user=DEVICE_USER, password=DEVICE_PASS):
        self.ip = ip
        self.user = user
        self.password = password
        self.reachable = True

        self.door_body = "OK\r\n"
        self.snapshot = JPEG
        self.files = {}

        self.handle = 3001
        self.start_ok = True
        self.records = []
        self.found = None
        self.do_find = "ok"  # ok | error | transport
        self.stop_ok = True
        self.load_file = None
        self.command_reply = {"result": True, "params": None}

        self.requests = []
        self.logins = []
        self.rpc = []
        self.rpc_content_types = []

    def client(self):
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    @property
    def rpc_methods(self):
        return [body["method"] for body in self.rpc]

    @property
    def challenge(self):
        return (f'Digest realm="{self.realm}", qop="auth", nonce="{self.nonce}", '
                f'opaque="5ccc069c403ebaf9f0171e9517f40e41"')

    def handler(self, request):
        self.requests.append(request)
        if request.url.host != self.ip or not self.reachable:
            raise httpx.ConnectError("connection refused", request=request)

        path = request.url.path
        if path == "/RPC2_Login":
            return self._login(json.loads(request.content))
        if path == "/RPC2":
            self.rpc_content_types.append(request.headers.get("content-type"))
            return self._rpc(json.loads(request.content))

        if not self._authorized(request):
            return httpx.Response(401, headers={"WWW-Authenticate": self.challenge},
                                  text="Unauthorized")
        if path == "/cgi-bin/accessControl.cgi":
            return httpx.Response(200, text=self.door_body)
        if path == "/cgi-bin/snapshot.cgi":
            return httpx.Response(200, content=self.snapshot,
                                  headers={"Content-Type": "image/jpeg"})
        status, body = self.files.get(path, (404, b"Not Found"))
        return httpx.Response(status, content=body)

    def _authorized(self, request):
        header = request.headers.get("Authorization", "")
        if not header.startswith("Digest "):
            return False
        fields = {}
        for m in _AUTH_PARAM.finditer(header[len("Digest "):]):
            fields[m.group(1)] = m.group(2) if m.group(2) is not None else m.group(3)
        if fields.get("username") != self.user:
            return False
        ha1 = md5_hex(f"{self.user}:{self.realm}:{self.password}")
        ha2 = md5_hex(f"{request.method}:{fields.get('uri', '')}")
        expected = md5_hex(":".join([
            ha1, fields.get("nonce", ""), fields.get("nc", ""),
            fields.get("cnonce", ""), fields.get("qop", ""), ha2,
        ]))
        return fields.get("response") == expected

    def _login(self, body):
        self.logins.append(body)
        params = body.get("params") or {}
        if not body.get("session"):
            return httpx.Response(200, json={
                "id": body.get("id"),
                "result": False,
                "session": PRE_SESSION,
                "params": {"realm": self.realm, "random": self.random, "encryption": "Default"},
                "error": {"code": 268632079, "message": "Component error: login challenge!"},
            })

        pass_hash = md5_hex(f"{self.user}:{self.realm}:{self.password}").upper()
        expected = md5_hex(f"{self.user}:{self.random}:{pass_hash}").upper()
        if (body.get("session") == PRE_SESSION and params.get("userName") == self.user
                and params.get("password") == expected):
            return httpx.Response(200, json={
                "id": body.get("id"), "result": True, "session": SESSION, "params": None,
            })
        return httpx.Response(200, json={
            "id": body.get("id"),
            "result": False,
            "error": {"code": 268632085, "message": "User or password not valid"},
        })

    def _rpc(self, body):
        self.rpc.append(body)
        method = body.get("method")
        reply = {"id": body.get("id"), "session": body.get("session")}

        if body.get("session") != SESSION:
            reply.update(result=False,
                         error={"code": 287637504, "message": "Invalid session in request data!"})
            return httpx.Response(200, json=reply)

        if method == "RecordFinder.factory.create":
            reply["result"] = self.handle
        elif method == "RecordFinder.startFind":
            reply["result"] = self.start_ok
            if not self.start_ok:
                reply["error"] = {"code": 268959743, "message": "Unknown error! error code was not set in service!"}
        elif method == "RecordFinder.doFind":
            if self.do_find == "transport":
                return httpx.Response(500, text="<html>Internal Server Error</html>")
            if self.do_find == "error":
                reply.update(result=False, error={"code": 268959743, "message": "doFind failed"})
            else:
                p = body["params"]
                page = self.records[p["begin"]:p["begin"] + p["count"]]
                found = self.found if self.found is not None else len(page)
                reply.update(result=True, params={"found": found, "records": page})
        elif method == "RecordFinder.stopFind":
            reply["result"] = self.stop_ok
        elif method == "RPC_Loadfile":
            reply.update(result=self.load_file is not None, params=self.load_file)
        else:
            reply.update(self.command_reply)
        return httpx.Response(200, json=reply)


class StubRegistry:
    """In-memory stand-in for the Supabase registry."""

    def __init__(self, devices=None, secrets=None, fail=False):
        self.devices = devices or {}
        self.secrets = secrets or {}
        self.fail = fail
        self.lookups = []

    async def get_device(self, device_id):
        self.lookups.append(device_id)
        if self.fail:
            raise httpx.ConnectError("registry unreachable")
        return self.devices.get(device_id)

    async def get_secrets(self, device_id):
        return self.secrets.get(device_id)


@pytest.fixture
def device():
    return FakeDevice()


@pytest.fixture
def config():
    return GatewayConfig(
        facial_ip=DEVICE_IP,
        facial_user=DEVICE_USER,
        facial_pass=DEVICE_PASS,
        timeout_ms=2000,
        rpc2_timeout_ms=2000,
        command_timeout_ms=2000,
        ping_timeout_ms=500,
        log_dir=None,
    )


@pytest.fixture
def registry():
    return StubRegistry(
        devices={"dev-1": {"id": "dev-1", "ip": DEVICE_IP, "name": "Portaria"}},
        secrets={"dev-1": {"username": DEVICE_USER, "password": DEVICE_PASS}},
    )
