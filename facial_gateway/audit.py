"""
Access-log records as dashboard audit rows.

``map_device_event_to_audit_row`` is a pure function of (deviceId, record).
Labels are in Portuguese, as the dashboard shows them.
"""

from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import quote

METHOD_FACE = 15

ACTION_FACE = "Reconhecimento facial"
ACTION_CARD = "Acesso via cartão"
ACTION_UNKNOWN = "Acesso não identificado"
UNKNOWN_USER = "Desconhecido"

# Characters encodeURIComponent leaves alone
_URI_COMPONENT_SAFE = "-_.!~*'()"


def mask_card(card_no: Any) -> str:
    s = "" if card_no is None else str(card_no)
    if not s:
        return ""
    if len(s) <= 4:
        return "****"
    return "*" * (len(s) - 4) + s[-4:]


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _iso_utc(epoch: Any) -> Optional[str]:
    seconds = _to_int(epoch)
    if seconds is None:
        return None
    try:
        dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _key_part(value: Any) -> str:
    return "" if value is None else str(value)


def photo_proxy_url(device_id: str, device_path: str) -> str:
    return f"/facial/events/{device_id}/photo?url={quote(device_path, safe=_URI_COMPONENT_SAFE)}"


def map_device_event_to_audit_row(device_id: str, record: dict) -> dict:
    method = _to_int(record.get("Method"))
    user_id = record.get("UserID")
    has_user = user_id is not None and str(user_id).strip() != ""
    card_no = record.get("CardNo")

    if method == METHOD_FACE:
        action = ACTION_FACE
    elif card_no:
        action = ACTION_CARD
    else:
        action = ACTION_UNKNOWN

    succeeded = _to_int(record.get("Status")) == 1 and _to_int(record.get("ErrorCode")) == 0

    event_key = ":".join([
        device_id,
        _key_part(record.get("RecNo")),
        _key_part(record.get("CreateTime")),
        _key_part(method),
        _key_part(user_id),
        _key_part(card_no),
    ])

    return {
        "eventKey": event_key,
        "deviceId": device_id,
        "occurredAt": _iso_utc(record.get("CreateTime")),
        "action": action,
        "status": "Success" if succeeded else "Failed",
        "userLabel": (record.get("CardName") or f"User {user_id}") if has_user else UNKNOWN_USER,
        "userId": str(user_id) if has_user else None,
        "method": method,
        "type": record.get("Type") or None,
        "cardLast4": mask_card(card_no) if card_no else None,
        "snapshotUrl": photo_proxy_url(device_id, record["URL"]) if record.get("URL") else None,
    }
