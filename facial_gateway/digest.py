"""
Digest HTTP Client
==================
One Digest-authenticated HTTP exchange against a terminal.

httpx.DigestAuth performs the challenge round trip (401 → realm/nonce/qop/
opaque → retry), so callers only see a 401 when the credentials are wrong.
The timeout bounds the whole exchange, handshake and body transfer included.

Neither fetch raises: failures come back as ``{"ok": False, ...}``.
"""

import asyncio
import json
from typing import Any, Optional

import httpx

from .errors import ErrorKind, error_result, guarded, ok_result
from .logs import log_proto, log_warn


class DigestHttpClient:
    """Digest fetches over a shared ``httpx.AsyncClient``."""

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def _exchange(self, method: str, url: str, user: str, password: str,
                        timeout_ms: int, body: Any = None) -> httpx.Response:
        timeout = max(timeout_ms, 1) / 1000
        kwargs = {
            "auth": httpx.DigestAuth(user or "", password or ""),
            "headers": {"Connection": "close"},
            "timeout": timeout,
        }
        if body is not None:
            kwargs["json"] = body
        log_proto(f"[DIGEST] {method} {url}")
        return await asyncio.wait_for(self.client.request(method, url, **kwargs), timeout)

    @staticmethod
    def _transport_failure(url: str, exc: BaseException) -> dict:
        if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
            message = "timeout"
        else:
            message = str(exc) or type(exc).__name__
        log_warn(f"[DIGEST] {url}: {message}", "PROTO")
        return error_result(ErrorKind.UNREACHABLE, message, url=url)

    @guarded("digest.fetch_text", "PROTO")
    async def fetch_text(self, url: str, user: str, password: str, method: str = "GET",
                         body: Any = None, timeout_ms: int = 15000) -> dict:
        """Return ``{ok, data, raw, status}``; ``data`` is parsed JSON when the body is JSON."""
        try:
            resp = await self._exchange(method, url, user, password, timeout_ms, body)
        except (httpx.HTTPError, httpx.InvalidURL, asyncio.TimeoutError, OSError) as e:
            return self._transport_failure(url, e)

        raw = resp.text
        if resp.status_code == 401:
            return error_result(ErrorKind.AUTH_FAILED, "digest credentials rejected",
                                status=401, raw=raw)
        try:
            data = json.loads(raw)
        except ValueError:
            data = raw
        log_proto(f"[DIGEST] {url} -> HTTP {resp.status_code} ({len(raw)} chars)")
        return ok_result(data=data, raw=raw, status=resp.status_code)

    @guarded("digest.fetch_binary", "PROTO")
    async def fetch_binary(self, url: str, user: str, password: str,
                           timeout_ms: int = 15000) -> dict:
        """Return ``{ok, code, buffer, stderr}``; the caller interprets ``buffer``."""
        try:
            resp = await self._exchange("GET", url, user, password, timeout_ms)
        except (httpx.HTTPError, httpx.InvalidURL, asyncio.TimeoutError, OSError) as e:
            failure = self._transport_failure(url, e)
            failure.update(code=-1, buffer=b"", stderr=failure.get("message", ""))
            return failure

        buffer = resp.content
        if resp.status_code == 401:
            return error_result(ErrorKind.AUTH_FAILED, "digest credentials rejected",
                                code=401, buffer=b"", stderr="HTTP 401", url=url)
        log_proto(f"[DIGEST] {url} -> HTTP {resp.status_code} ({len(buffer)} bytes)")
        return ok_result(code=resp.status_code, buffer=buffer, stderr="", url=url)


def body_sample(buffer: Optional[bytes], size: int = 80) -> Optional[str]:
    """Short printable sample of a response body, for diagnostics."""
    if buffer is None:
        return None
    text = bytes(buffer[:size]).decode("utf-8", errors="replace")
    return "".join(c if c.isprintable() or c in "\r\n\t" else "." for c in text)
