"""
Snapshot and stored-photo retrieval.

All three paths end the same way: fetch bytes over Digest and accept them
only if they start with the JPEG SOI marker (FF D8).
"""

from dataclasses import dataclass
from typing import Any, Optional, Union

from .cgi import CgiClient
from .digest import DigestHttpClient, body_sample
from .errors import ErrorKind, error_result, ok_result
from .logs import log_evt, log_warn
from .rpc2 import Rpc2Client

JPEG_SOI = b"\xff\xd8"
LOAD_FILE_ID = 99


def is_jpeg(buffer: Optional[bytes]) -> bool:
    return bool(buffer) and len(buffer) >= 2 and bytes(buffer[:2]) == JPEG_SOI


def safe_device_path(path: Any) -> Optional[str]:
    """Absolute device-local path without traversal, else None."""
    if not path or not isinstance(path, str):
        return None
    if not path.startswith("/"):
        return None
    if ".." in path:
        return None
    return path


def _jpeg_or_failure(fetch: dict, url: str) -> dict:
    buffer = fetch.get("buffer")
    if not is_jpeg(buffer):
        return error_result(
            ErrorKind.INVALID_IMAGE,
            "Response is not a JPEG",
            details={"url": url, "sample": body_sample(buffer), "stderr": fetch.get("stderr")},
        )
    return ok_result(jpeg=bytes(buffer), url=url)


# ─── RPC_Loadfile reply shapes ────────────────────────────────────────────────

@dataclass(frozen=True)
class StringResult:
    """params.result is the download location."""
    location: str


@dataclass(frozen=True)
class UrlField:
    """params.url is the download location."""
    location: str


@dataclass(frozen=True)
class Neither:
    """No usable download location in the reply."""
    raw: Any = None


LoadFileReply = Union[StringResult, UrlField, Neither]


def classify_load_file(reply: dict) -> LoadFileReply:
    """Read an RPC_Loadfile call envelope into one of the three reply shapes."""
    if not reply.get("ok") or not reply.get("result"):
        return Neither(reply.get("raw"))
    params = reply.get("params")
    if not isinstance(params, dict):
        return Neither(reply.get("raw"))
    if isinstance(params.get("result"), str) and params["result"]:
        return StringResult(params["result"])
    if isinstance(params.get("url"), str) and params["url"]:
        return UrlField(params["url"])
    return Neither(reply.get("raw"))


def device_download_url(location: str, ip: str) -> str:
    """Make a device-returned location reachable from the gateway."""
    if "127.0.0.1" in location:
        return location.replace("127.0.0.1", ip, 1)
    if location.startswith("/"):
        return f"http://{ip}{location}"
    return location


# ─── Retrieval ────────────────────────────────────────────────────────────────

class PhotoService:
    def __init__(self, cgi: CgiClient, digest: DigestHttpClient, rpc: Rpc2Client):
        self.cgi = cgi
        self.digest = digest
        self.rpc = rpc

    async def live_snapshot(self, target: dict) -> dict:
        """Snapshot of a merged DeviceTarget. Returns ``{ok, jpeg}``."""
        if not target.get("ip") or not target.get("user") or not target.get("pass"):
            return error_result(ErrorKind.CONFIG_ERROR,
                                "Missing FACIAL_IP / FACIAL_USER / FACIAL_PASS")

        fetch = await self.cgi.fetch_snapshot(target["ip"], target.get("channel") or 1,
                                              target["user"], target["pass"],
                                              timeout_ms=target.get("timeoutMs") or 15000)
        url = fetch.get("url") or f"http://{target['ip']}"
        if not fetch.get("ok"):
            if fetch.get("error") == ErrorKind.INTERNAL_ERROR.value:
                return fetch
            log_warn(f"snapshot {target['ip']}: {fetch.get('message')}", "CMD")
            return error_result(
                ErrorKind.FETCH_ERROR,
                "digest fetch failed",
                details={"code": fetch.get("code"), "stderr": fetch.get("stderr"),
                         "url": url, "cause": fetch.get("error")},
            )
        return _jpeg_or_failure(fetch, url)

    async def stored_photo(self, device: dict, path: Any, timeout_ms: int = 15000) -> dict:
        """Device-stored JPEG fetched straight from ``http://{ip}{path}``."""
        safe = safe_device_path(path)
        if not safe:
            return error_result(ErrorKind.VALIDATION_ERROR, "invalid path")

        url = f"http://{device['ip']}{safe}"
        fetch = await self.digest.fetch_binary(url, device["user"], device["pass"],
                                               timeout_ms=timeout_ms)
        if not fetch.get("ok"):
            return error_result(fetch.get("error"), fetch.get("message") or fetch.get("stderr"),
                                url=url)
        if fetch["code"] >= 400:
            return error_result(
                ErrorKind.DEVICE_FETCH_ERROR,
                body_sample(fetch["buffer"], 200) or "device refused the photo download",
                httpCode=fetch["code"],
                url=url,
            )
        log_evt(f"photo {safe} from {device['ip']}: {len(fetch['buffer'])} bytes")
        return _jpeg_or_failure(fetch, url)

    async def loaded_file(self, device: dict, path: Any, rpc_timeout_ms: int = 15000,
                          timeout_ms: int = 15000) -> dict:
        """Device-stored file fetched through the RPC_Loadfile download link."""
        safe = safe_device_path(path)
        if not safe:
            return error_result(ErrorKind.VALIDATION_ERROR, "invalid path")

        login = await self.rpc.login(device["ip"], device["user"], device["pass"],
                                     timeout_ms=rpc_timeout_ms)
        if not login["ok"]:
            return login

        reply = await self.rpc.call(device["ip"], login["session"], "RPC_Loadfile",
                                    {"Name": safe}, id=LOAD_FILE_ID, timeout_ms=rpc_timeout_ms)
        shape = classify_load_file(reply)
        if isinstance(shape, Neither):
            log_warn(f"RPC_Loadfile {safe} on {device['ip']}: no download location", "EVT")
            return error_result(ErrorKind.LOAD_FILE_FAILED, "RPC_Loadfile returned no download URL",
                                raw=shape.raw)

        url = device_download_url(shape.location, device["ip"])
        fetch = await self.digest.fetch_binary(url, device["user"], device["pass"],
                                               timeout_ms=timeout_ms)
        if not fetch.get("ok"):
            return error_result(ErrorKind.FETCH_ERROR, fetch.get("message"),
                                details=fetch.get("stderr"))
        return _jpeg_or_failure(fetch, url)
