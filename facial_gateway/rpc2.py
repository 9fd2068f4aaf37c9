"""
RPC2 Session Client
===================
Vendor JSON-RPC over HTTP. Two endpoints:

  POST /RPC2_Login   global.login handshake (challenge, then hashed password)
  POST /RPC2         {method, params, session, id, object?}

Login hash (reversed from the WebUI's rpcCore.getAuthByType):
  MD5UPPER(user ":" random ":" MD5UPPER(user ":" realm ":" pass))

Calls can be sent the way the WebUI does (JSON string in a form-encoded
body), as plain JSON, or form first with a JSON fallback. Nothing here
retries; a failed call is handed back to the caller.
"""

import asyncio
import hashlib
import json
from typing import Any, Optional

import httpx

from .errors import ErrorKind, error_result, guarded, ok_result
from .logs import log_debug, log_proto, log_warn, redact

CLIENT_TYPE = "Web3.0"

MODE_FORM = "form"
MODE_JSON = "json"
MODE_AUTO = "auto"

# Device replies meaning the session token is no longer accepted
SESSION_INVALID_CODES = {287637504, 287637505}


def md5_upper(s: str) -> str:
    return hashlib.md5(s.encode("utf-8")).hexdigest().upper()


def login_hash(user: str, password: str, realm: str, random: str) -> str:
    """Password field of the second global.login step."""
    pass_hash = md5_upper(f"{user}:{realm}:{password}")
    return md5_upper(f"{user}:{random}:{pass_hash}")


def build_payload(method: str, params: Any, session: Optional[str], id: int,
                  object: Any = None) -> dict:
    payload = {"method": method, "params": params, "session": session, "id": id}
    # "object" sits at the root of the request, as the WebUI sends it
    if object is not None:
        payload["object"] = object
    return payload


def is_session_error(error: Any) -> bool:
    if not isinstance(error, dict):
        return False
    if error.get("code") in SESSION_INVALID_CODES:
        return True
    message = str(error.get("message", "")).lower()
    return "session" in message and "invalid" in message


class RpcTransportError(Exception):
    """Network, timeout or undecodable reply from the RPC endpoint."""


class Rpc2Client:
    """RPC2 login and calls over a shared ``httpx.AsyncClient``."""

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def _post(self, url: str, payload: dict, timeout_ms: int,
                    mode: str = MODE_JSON) -> Any:
        timeout = max(timeout_ms, 1) / 1000
        if mode == MODE_FORM:
            request = self.client.post(
                url,
                content=json.dumps(payload),
                headers={"Content-Type": "application/x-www-form-urlencoded",
                         "Connection": "close"},
                timeout=timeout,
            )
        else:
            request = self.client.post(
                url,
                json=payload,
                headers={"Connection": "close"},
                timeout=timeout,
            )
        log_proto(f"[RPC2] -> {url} {payload.get('method')} id={payload.get('id')} ({mode})")
        try:
            resp = await asyncio.wait_for(request, timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            raise RpcTransportError("timeout")
        except (httpx.HTTPError, httpx.InvalidURL, OSError) as e:
            raise RpcTransportError(str(e) or type(e).__name__)
        try:
            data = resp.json()
        except ValueError:
            raise RpcTransportError(f"invalid JSON reply (HTTP {resp.status_code})")
        log_proto(f"[RPC2] <- {payload.get('method')}: {str(data)[:300]}")
        return data

    @guarded("rpc2.login", "PROTO")
    async def login(self, ip: str, user: str, password: str, timeout_ms: int = 15000) -> dict:
        """Two-step global.login. Returns ``{ok, session}``."""
        url = f"http://{ip}/RPC2_Login"

        # Step 1: challenge
        step1 = build_payload(
            "global.login",
            {"userName": user, "password": "", "clientType": CLIENT_TYPE},
            None, 1,
        )
        step1.pop("session")
        try:
            reply1 = await self._post(url, step1, timeout_ms)
        except RpcTransportError as e:
            log_warn(f"[RPC2] login {ip}: {e}", "PROTO")
            return error_result(ErrorKind.UNREACHABLE, str(e), ip=ip)

        challenge = reply1.get("params") if isinstance(reply1, dict) else None
        session1 = reply1.get("session") if isinstance(reply1, dict) else None
        if not isinstance(challenge, dict) or not challenge.get("realm") \
                or not challenge.get("random") or not session1:
            log_warn(f"[RPC2] login {ip}: unexpected challenge {reply1}", "PROTO")
            return error_result(ErrorKind.AUTH_FAILED,
                                "RPC2_Login challenge invalid (no realm/random/session)",
                                raw=reply1)

        # Step 2: hashed login
        step2 = build_payload(
            "global.login",
            {
                "userName": user,
                "password": login_hash(user, password, challenge["realm"], challenge["random"]),
                "clientType": CLIENT_TYPE,
                "authorityType": challenge.get("encryption") or "Default",
            },
            session1, 2,
        )
        try:
            reply2 = await self._post(url, step2, timeout_ms)
        except RpcTransportError as e:
            log_warn(f"[RPC2] login {ip}: {e}", "PROTO")
            return error_result(ErrorKind.UNREACHABLE, str(e), ip=ip)

        session2 = reply2.get("session") if isinstance(reply2, dict) else None
        if not session2 or reply2.get("result") is False:
            log_warn(f"[RPC2] login {ip}: rejected", "PROTO")
            return error_result(ErrorKind.AUTH_FAILED, "RPC2_Login step 2 rejected", raw=reply2)

        log_debug(f"[RPC2] login {ip}: session {redact(session2)}", "PROTO")
        return ok_result(session=session2)

    @guarded("rpc2.call", "PROTO")
    async def call(self, ip: str, session: Optional[str], method: str, params: Any = None,
                   id: int = 1000, object: Any = None, timeout_ms: int = 15000,
                   mode: str = MODE_FORM) -> dict:
        """One RPC call. Returns ``{ok, result, params, raw}``."""
        url = f"http://{ip}/RPC2"
        payload = build_payload(method, params, session, id, object)

        try:
            if mode == MODE_AUTO:
                try:
                    reply = await self._post(url, payload, timeout_ms, MODE_FORM)
                except RpcTransportError as e:
                    log_debug(f"[RPC2] {method}: form call failed ({e}), retrying as JSON", "PROTO")
                    reply = await self._post(url, payload, timeout_ms, MODE_JSON)
            else:
                reply = await self._post(url, payload, timeout_ms, mode)
        except RpcTransportError as e:
            log_warn(f"[RPC2] {method} @ {ip}: {e}", "PROTO")
            return error_result(ErrorKind.TRANSPORT_ERROR, str(e), method=method)

        if not isinstance(reply, dict):
            return error_result(ErrorKind.TRANSPORT_ERROR, "reply is not a JSON object",
                                method=method, raw=reply)

        result = reply.get("result")
        error = reply.get("error")
        if not result and error:
            kind = ErrorKind.SESSION_INVALID if is_session_error(error) else ErrorKind.RPC_ERROR
            message = error.get("message") if isinstance(error, dict) else str(error)
            return error_result(kind, message, method=method, raw=reply)

        return ok_result(result=result, params=reply.get("params"), raw=reply)
