"""
Device management commands (users, cards, faces) sent as RPC2 calls.

  create_user         AccessUser.insertMulti
  update_user         AccessUser.updateMulti
  delete_user         AccessUser.removeMulti
  add_card            AccessCard.insertMulti
  delete_card         AccessCard.removeMulti
  upload_face_base64  AccessFace.insertMulti
"""

import json
import re
from typing import Any, Optional

# Known device error codes
ERROR_CODES = {
    286064926: "FACE_NOT_DETECTED_OR_QUALITY_LOW",   # 0x110C465E
    268632336: "OPERATION_FAILED_GENERIC",           # 0x10031110
}

_DATA_URL_PREFIX = re.compile(r"^data:image/\w+;base64,")


def _create_user(p):
    user = {
        "UserID": str(p.get("userID")),
        "UserName": str(p.get("userName")),
        "Password": str(p.get("password") or "123456"),
        "Authority": int(p.get("authority") or 2),
        "UserType": 0,
        "UserStatus": 0,
        "Doors": [0],
        "TimeSections": [255],
        "ValidFrom": "1970-01-01 00:00:00",
        "ValidTo": "2037-12-31 23:59:59",
    }
    if p.get("cardNo"):
        user["CardNo"] = str(p["cardNo"])
    return "AccessUser.insertMulti", {"UserList": [user]}


def _update_user(p):
    user = {"UserID": str(p.get("userID")), "UserName": str(p.get("userName"))}
    if p.get("password"):
        user["Password"] = str(p["password"])
    return "AccessUser.updateMulti", {"UserList": [user]}


def _delete_user(p):
    return "AccessUser.removeMulti", {"UserIDList": [str(p.get("userID"))]}


def _add_card(p):
    return "AccessCard.insertMulti", {
        "CardList": [{"UserID": str(p.get("userID")), "CardNo": str(p.get("cardNo"))}]
    }


def _delete_card(p):
    return "AccessCard.removeMulti", {"CardNoList": [str(p.get("cardNo"))]}


def _upload_face(p):
    photo = _DATA_URL_PREFIX.sub("", p.get("photoData") or "")
    return "AccessFace.insertMulti", {
        "FaceList": [{"UserID": str(p.get("userID")), "PhotoData": [photo]}]
    }


BUILDERS = {
    "create_user": _create_user,
    "update_user": _update_user,
    "delete_user": _delete_user,
    "add_card": _add_card,
    "delete_card": _delete_card,
    "upload_face_base64": _upload_face,
}


def build_command(command_type: str, payload: Optional[dict]):
    """``(method, params)`` for a command type, or None if the type is unknown."""
    builder = BUILDERS.get(command_type)
    if builder is None:
        return None
    return builder(payload or {})


def readable_error(raw: Any) -> str:
    """Turn a failed RPC reply into a stable error string."""
    error = raw.get("error") if isinstance(raw, dict) else None
    if isinstance(error, dict):
        code = error.get("code")
        if code in ERROR_CODES:
            return ERROR_CODES[code]
        return json.dumps(error)
    if error:
        return str(error)
    return "RPC_RETURN_FALSE"
