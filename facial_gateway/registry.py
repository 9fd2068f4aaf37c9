"""
Device Resolver
===============
Maps a device id to ``{ip, user, pass}``.

The device registry (the dashboard's Supabase project, tables ``facials``
and ``facial_secrets``) is authoritative when it answers; otherwise the
gateway falls back to its static configuration. The gateway never writes
to the registry.
"""

import asyncio
from typing import Any, Optional

import httpx

from .config import GatewayConfig
from .logs import log_debug, log_warn

DEFAULT_USER = "admin"
DEFAULT_PASS = "admin"


class SupabaseRegistry:
    """Read-only PostgREST queries against the dashboard's tables."""

    def __init__(self, client: httpx.AsyncClient, url: str, key: str, timeout_ms: int = 5000):
        self.client = client
        self.base = url.rstrip("/") + "/rest/v1"
        self.headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Accept": "application/json",
        }
        self.timeout = timeout_ms / 1000

    async def _select_one(self, table: str, column: str, value: str, select: str) -> Optional[dict]:
        resp = await asyncio.wait_for(
            self.client.get(
                f"{self.base}/{table}",
                params={column: f"eq.{value}", "select": select, "limit": "1"},
                headers=self.headers,
                timeout=self.timeout,
            ),
            self.timeout,
        )
        resp.raise_for_status()
        rows = resp.json()
        if isinstance(rows, list) and rows:
            return rows[0]
        return None

    async def get_device(self, device_id: str) -> Optional[dict]:
        return await self._select_one("facials", "id", device_id, "*")

    async def get_secrets(self, device_id: str) -> Optional[dict]:
        return await self._select_one("facial_secrets", "facial_id", device_id, "username,password")


class DeviceResolver:
    """Resolve device ids. ``resolve`` never raises."""

    def __init__(self, config: GatewayConfig, registry: Any = None):
        self.config = config
        self.registry = registry

    def static_device(self) -> dict:
        return {
            "ip": self.config.facial_ip or None,
            "user": self.config.facial_user or DEFAULT_USER,
            "pass": self.config.facial_pass or DEFAULT_PASS,
        }

    async def resolve(self, device_id: Optional[str]) -> dict:
        if self.registry is None or not device_id:
            return self.static_device()

        try:
            device = await self.registry.get_device(device_id)
        except Exception as e:
            log_warn(f"[RESOLVER] registry lookup for {device_id} failed: {type(e).__name__}: {e}")
            return self.static_device()
        if not device or not device.get("ip"):
            log_debug(f"[RESOLVER] {device_id}: not in registry, using static config")
            return self.static_device()

        # A registry record pins the IP even when its secrets cannot be read
        try:
            secrets = await self.registry.get_secrets(device_id) or {}
        except Exception as e:
            log_warn(f"[RESOLVER] secrets lookup for {device_id} failed: {type(e).__name__}: {e}")
            secrets = {}

        log_debug(f"[RESOLVER] {device_id} -> {device['ip']} (registry)")
        resolved = {
            "ip": device["ip"],
            "user": secrets.get("username") or DEFAULT_USER,
            "pass": secrets.get("password") or DEFAULT_PASS,
        }
        if device.get("channel") is not None:
            resolved["channel"] = device["channel"]
        return resolved


def _first(*values):
    for v in values:
        if v is not None and v != "":
            return v
    return None


def resolve_target(config: GatewayConfig, explicit: Optional[dict] = None,
                   device: Optional[dict] = None) -> dict:
    """Merge a DeviceTarget field by field: explicit target > resolved device > static config."""
    explicit = explicit or {}
    device = device or {}

    channel = _first(explicit.get("channel"), device.get("channel"), config.facial_channel, 1)
    timeout_ms = _first(explicit.get("timeoutMs"), config.timeout_ms, 15000)
    try:
        timeout_ms = int(timeout_ms)
    except (TypeError, ValueError):
        timeout_ms = config.timeout_ms
    if timeout_ms <= 0:
        timeout_ms = config.timeout_ms

    return {
        "ip": _first(explicit.get("ip"), device.get("ip"), config.facial_ip),
        "channel": str(channel),
        "user": _first(explicit.get("user"), device.get("user"), config.facial_user),
        "pass": _first(explicit.get("pass"), device.get("pass"), config.facial_pass),
        "timeoutMs": timeout_ms,
    }


def needs_lookup(explicit: Optional[dict]) -> bool:
    """True unless the explicit target already names ip, user and pass."""
    explicit = explicit or {}
    return not (explicit.get("ip") and explicit.get("user") and explicit.get("pass"))
