"""
CGI Command Client
==================
One-shot vendor CGI actions over Digest auth:

  /cgi-bin/accessControl.cgi?action=openDoor&channel=N&UserID=1&Type=Remote
  /cgi-bin/snapshot.cgi?channel=N

CGI replies are loose text ("OK", "Error\\r\\nBad Request!", ...). The
success/failure reading lives in ``classify_cgi_response`` and can be
swapped per vendor.
"""

import json
from typing import Any, Callable
from urllib.parse import quote

from .digest import DigestHttpClient
from .errors import ErrorKind, error_result, ok_result
from .logs import log_cmd, log_warn

OPEN_DOOR_PATH = "/cgi-bin/accessControl.cgi?action=openDoor&channel={channel}&UserID=1&Type=Remote"
SNAPSHOT_PATH = "/cgi-bin/snapshot.cgi?channel={channel}"


def classify_cgi_response(data: Any) -> dict:
    """Read a CGI reply body. Anything not clearly "OK" is a failure."""
    if isinstance(data, str):
        if "OK" in data:
            return ok_result(raw=data)
        if "Error" in data or "Invalid" in data:
            return error_result(data.strip())
        return error_result(f"{ErrorKind.UNKNOWN_RESPONSE.value}: {data}")
    return error_result(f"{ErrorKind.UNKNOWN_RESPONSE.value}: {json.dumps(data)}")


class CgiClient:
    def __init__(self, digest: DigestHttpClient,
                 classifier: Callable[[Any], dict] = classify_cgi_response):
        self.digest = digest
        self.classifier = classifier

    async def open_door(self, ip: str, channel, user: str, password: str,
                        timeout_ms: int = 15000) -> dict:
        """Trigger the door relay. Returns ``{ok, raw}`` or ``{ok: False, error}``."""
        url = f"http://{ip}" + OPEN_DOOR_PATH.format(channel=quote(str(channel)))
        res = await self.digest.fetch_text(url, user, password, timeout_ms=timeout_ms)
        if not res["ok"]:
            return res

        outcome = self.classifier(res["data"])
        if outcome["ok"]:
            log_cmd(f"open_door {ip} ch={channel}: OK")
        else:
            log_warn(f"open_door {ip} ch={channel}: {outcome['error']}", "CMD")
        return outcome

    async def fetch_snapshot(self, ip: str, channel, user: str, password: str,
                             timeout_ms: int = 15000) -> dict:
        """Raw snapshot bytes; the caller checks that they are a JPEG."""
        url = f"http://{ip}" + SNAPSHOT_PATH.format(channel=quote(str(channel)))
        return await self.digest.fetch_binary(url, user, password, timeout_ms=timeout_ms)
