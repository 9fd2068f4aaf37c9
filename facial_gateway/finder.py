"""
Access-log Record Finder
========================
Server-side cursor over the terminal's access-control card records,
driven through RPC2:

  1. RecordFinder.factory.create  {name: "AccessControlCardRec"}  -> object handle
  2. RecordFinder.startFind       CreateTime in (from, to), newest first
  3. RecordFinder.doFind          {count: limit, begin: offset}   -> records, found
  4. RecordFinder.stopFind        releases the handle

Once a handle exists, stopFind is attempted exactly once on every path.
Its outcome is reported (``stop_ok``) but never turns a result into a failure.
"""

import math
import re
from datetime import datetime, timezone
from typing import Any, Optional

from .errors import ErrorKind, best_effort, error_result, ok_result
from .logs import log_evt, log_warn
from .rpc2 import Rpc2Client

RECORD_TABLE = "AccessControlCardRec"

DEFAULT_LIMIT, MIN_LIMIT, MAX_LIMIT = 50, 1, 200
DEFAULT_OFFSET, MIN_OFFSET, MAX_OFFSET = 0, 0, 5000

# Request ids, matching what the WebUI sends
ID_CREATE, ID_START, ID_DO, ID_STOP = 73, 74, 75, 78

_DIGITS = re.compile(r"^\d+$")
_ISO_TIME = re.compile(
    r"^(?P<head>.+[T ]\d{2}:\d{2}(?::\d{2})?)"
    r"(?:\.(?P<frac>\d+))?"
    r"(?P<tz>[+-]\d{2}(?::?\d{2})?)?$"
)


def _normalize_iso(s: str) -> str:
    # fromisoformat before 3.11 wants a 6-digit fraction and a colon in the offset
    m = _ISO_TIME.match(s)
    if not m:
        return s
    out = m.group("head")
    if m.group("frac"):
        out += "." + (m.group("frac") + "000000")[:6]
    tz = m.group("tz")
    if tz:
        digits = tz[1:].replace(":", "")
        out += f"{tz[0]}{digits[:2]}:{digits[2:] or '00'}"
    return out


def parse_epoch_seconds(value: Any) -> Optional[int]:
    """Epoch seconds from an all-digit string or an ISO-8601 timestamp; None if unparsable."""
    if value is None:
        return None
    s = str(value).strip()
    if not s:
        return None
    if _DIGITS.match(s):
        return int(s)
    if s.endswith("Z") or s.endswith("z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(_normalize_iso(s))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return math.floor(dt.timestamp())


def clamp_int(value: Any, default: int, lo: int, hi: int) -> int:
    """Floor and clamp; missing, empty or non-finite input gives the default."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    try:
        x = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(x):
        return default
    return max(lo, min(hi, math.floor(x)))


def parse_window(from_: Any, to: Any, limit: Any = None, offset: Any = None):
    """Validate the query window. Returns ``(window, None)`` or ``(None, failure)``."""
    from_epoch = parse_epoch_seconds(from_)
    to_epoch = parse_epoch_seconds(to)

    if from_epoch is None or to_epoch is None or from_epoch >= to_epoch:
        return None, error_result(
            ErrorKind.VALIDATION_ERROR,
            "invalid from/to (use ISO-8601 or epoch seconds, with from < to)",
            example={
                "good1": "/facial/events/<deviceId>?from=1768359600&to=1768446000&limit=50",
                "good2": "/facial/events/<deviceId>?from=2026-01-14T00:00:00-03:00"
                         "&to=2026-01-15T00:00:00-03:00&limit=50",
            },
        )

    return {
        "fromEpoch": from_epoch,
        "toEpoch": to_epoch,
        "limit": clamp_int(limit, DEFAULT_LIMIT, MIN_LIMIT, MAX_LIMIT),
        "offset": clamp_int(offset, DEFAULT_OFFSET, MIN_OFFSET, MAX_OFFSET),
    }, None


class RecordFinder:
    """The four-step cursor protocol, bound to one logged-in session."""

    def __init__(self, rpc: Rpc2Client, ip: str, session: str, timeout_ms: int = 15000):
        self.rpc = rpc
        self.ip = ip
        self.session = session
        self.timeout_ms = timeout_ms

    async def _call(self, method, params, id, object=None):
        return await self.rpc.call(self.ip, self.session, method, params, id=id,
                                   object=object, timeout_ms=self.timeout_ms)

    async def create(self) -> dict:
        return await self._call("RecordFinder.factory.create", {"name": RECORD_TABLE}, ID_CREATE)

    async def start_find(self, handle, from_epoch: int, to_epoch: int) -> dict:
        condition = {
            "CreateTime": ["<>", from_epoch, to_epoch],
            "Orders": [{"Field": "CreateTime", "Type": "Descent"}],
        }
        return await self._call("RecordFinder.startFind", {"condition": condition}, ID_START, handle)

    async def do_find(self, handle, limit: int, offset: int) -> dict:
        return await self._call("RecordFinder.doFind", {"count": limit, "begin": offset}, ID_DO, handle)

    async def stop_find(self, handle) -> dict:
        return await self._call("RecordFinder.stopFind", None, ID_STOP, handle)

    async def find(self, window: dict) -> dict:
        """Run create → startFind → doFind → stopFind for a validated window."""
        create = await self.create()
        handle = create.get("result") if create.get("ok") else None
        if not handle:
            log_warn(f"[FINDER] {self.ip}: factory.create returned no handle", "EVT")
            return error_result(ErrorKind.FACTORY_CREATE_FAILED,
                                create.get("message") or "no object handle",
                                raw=create.get("raw"))

        start = await self.start_find(handle, window["fromEpoch"], window["toEpoch"])
        if not (start.get("ok") and start.get("result")):
            await best_effort("RecordFinder.stopFind", self.stop_find(handle), "EVT")
            return error_result(ErrorKind.START_FIND_FAILED,
                                start.get("message") or "startFind rejected",
                                raw=start.get("raw"))

        page = await self.do_find(handle, window["limit"], window["offset"])
        stop_ok = await best_effort("RecordFinder.stopFind", self.stop_find(handle), "EVT")

        if not page.get("ok") and page.get("error") != ErrorKind.RPC_ERROR.value:
            return error_result(page.get("error"), page.get("message"), stop_ok=stop_ok)

        params = page.get("params") if page.get("ok") else None
        if not isinstance(params, dict):
            params = {}
        records = params.get("records") or []
        found = params.get("found")
        if found is None:
            found = len(records)

        log_evt(f"[FINDER] {self.ip}: {len(records)} record(s), found={found}, "
                f"limit={window['limit']} offset={window['offset']}")
        return ok_result(
            object=handle,
            fromEpoch=window["fromEpoch"],
            toEpoch=window["toEpoch"],
            limit=window["limit"],
            offset=window["offset"],
            found=found,
            stop_ok=stop_ok,
            records=records,
        )
