"""
Gateway operations
==================
One object, built by the process entry point, that owns the shared
``httpx.AsyncClient`` and wires the resolver to the device clients.
Each public coroutine serves one inbound request and returns an
``{ok, ...}`` envelope.
"""

from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from .audit import map_device_event_to_audit_row
from .cgi import CgiClient, classify_cgi_response
from .commands import build_command, readable_error
from .config import GatewayConfig
from .digest import DigestHttpClient
from .errors import ErrorKind, error_result, guarded, ok_result
from .finder import RecordFinder, parse_window
from .logs import log_cmd, log_evt, log_info, log_warn
from .photos import PhotoService, safe_device_path
from .probe import tcp_ping
from .registry import DeviceResolver, SupabaseRegistry, needs_lookup, resolve_target
from .rpc2 import MODE_JSON, Rpc2Client


class Gateway:
    def __init__(self, config: GatewayConfig, client: httpx.AsyncClient,
                 registry: Any = None, classifier=classify_cgi_response):
        self.config = config
        self.client = client
        self.digest = DigestHttpClient(client)
        self.rpc = Rpc2Client(client)
        self.cgi = CgiClient(self.digest, classifier)
        self.photos = PhotoService(self.cgi, self.digest, self.rpc)
        self.resolver = DeviceResolver(config, registry)

    @classmethod
    def from_config(cls, config: GatewayConfig,
                    transport: Optional[httpx.AsyncBaseTransport] = None,
                    registry: Any = None) -> "Gateway":
        """Build the gateway and its HTTP client; a Supabase registry is attached when configured."""
        client = httpx.AsyncClient(transport=transport, timeout=config.timeout_ms / 1000)
        if registry is None and config.has_registry:
            registry = SupabaseRegistry(client, config.supabase_url, config.supabase_key)
            log_info(f"Device registry: {config.supabase_url}")
        return cls(config, client, registry)

    async def aclose(self):
        await self.client.aclose()

    # ─── Target resolution ───────────────────────────────────────────────────

    async def target_for(self, device_id: Optional[str], explicit: Optional[dict] = None) -> dict:
        device = None
        if device_id and needs_lookup(explicit):
            device = await self.resolver.resolve(device_id)
        return resolve_target(self.config, explicit, device)

    async def device_for(self, device_id: str, explicit: Optional[dict] = None) -> dict:
        """Credentials for RPC paths: explicit target fields first, then the resolver."""
        if explicit and not needs_lookup(explicit):
            return {"ip": explicit["ip"], "user": explicit["user"], "pass": explicit["pass"]}
        device = await self.resolver.resolve(device_id)
        if explicit:
            device = {k: explicit.get(k) or device.get(k) for k in ("ip", "user", "pass")}
        return device

    # ─── Door ────────────────────────────────────────────────────────────────

    @guarded("open_door", "CMD")
    async def open_door(self, device_id: Optional[str] = None, target: Optional[dict] = None) -> dict:
        t = await self.target_for(device_id, target)
        if not t["ip"] or not t["user"] or not t["pass"]:
            return error_result(ErrorKind.CONFIG_ERROR, "Missing FACIAL_IP / FACIAL_USER / FACIAL_PASS")
        log_cmd(f"open_door -> {t['ip']} ch={t['channel']}")
        return await self.cgi.open_door(t["ip"], t["channel"], t["user"], t["pass"],
                                        timeout_ms=t["timeoutMs"])

    # ─── Snapshot ────────────────────────────────────────────────────────────

    @guarded("snapshot", "CMD")
    async def snapshot(self, device_id: Optional[str], channel: Any = None,
                       target: Optional[dict] = None) -> dict:
        explicit = dict(target or {})
        if channel not in (None, ""):
            explicit["channel"] = channel
        t = await self.target_for(device_id, explicit)
        log_cmd(f"snapshot {device_id} -> {t['ip']} ch={t['channel']}")
        return await self.photos.live_snapshot(t)

    # ─── Access log ──────────────────────────────────────────────────────────

    @guarded("list_events", "EVT")
    async def list_events(self, device_id: str, from_: Any = None, to: Any = None,
                          limit: Any = None, offset: Any = None,
                          target: Optional[dict] = None) -> dict:
        window, failure = parse_window(from_, to, limit, offset)
        if failure:
            return failure

        device = await self.device_for(device_id, target)
        if not device.get("ip"):
            return error_result(ErrorKind.DEVICE_NOT_FOUND, "no IP for device", deviceId=device_id)

        timeout_ms = self.config.rpc2_timeout_ms
        login = await self.rpc.login(device["ip"], device["user"], device["pass"], timeout_ms=timeout_ms)
        if not login["ok"]:
            log_warn(f"events {device_id}: login failed ({login['error']})", "EVT")
            return login

        finder = RecordFinder(self.rpc, device["ip"], login["session"], timeout_ms)
        return await finder.find(window)

    @guarded("audit_access", "EVT")
    async def audit_access(self, device_id: str, from_: Any = None, to: Any = None,
                           limit: Any = None, offset: Any = None) -> dict:
        events = await self.list_events(device_id, from_, to, limit, offset)
        if not events["ok"]:
            return events
        rows = [map_device_event_to_audit_row(device_id, r) for r in events.get("records") or []]
        return ok_result(deviceId=device_id, total=len(rows), records=rows)

    # ─── Stored photos ───────────────────────────────────────────────────────

    @guarded("event_photo", "EVT")
    async def event_photo(self, device_id: str, path: Any, target: Optional[dict] = None) -> dict:
        if not safe_device_path(path):
            return error_result(ErrorKind.VALIDATION_ERROR, "invalid path")
        device = await self.device_for(device_id, target)
        if not device.get("ip"):
            return error_result(ErrorKind.DEVICE_NOT_FOUND, "no IP for device", deviceId=device_id)
        return await self.photos.stored_photo(device, path, timeout_ms=self.config.timeout_ms)

    @guarded("event_file", "EVT")
    async def event_file(self, device_id: str, path: Any, target: Optional[dict] = None) -> dict:
        if not safe_device_path(path):
            return error_result(ErrorKind.VALIDATION_ERROR, "invalid path")
        device = await self.device_for(device_id, target)
        if not device.get("ip"):
            return error_result(ErrorKind.DEVICE_NOT_FOUND, "no IP for device", deviceId=device_id)
        log_evt(f"load file {path} from {device['ip']}")
        return await self.photos.loaded_file(device, path,
                                             rpc_timeout_ms=self.config.rpc2_timeout_ms,
                                             timeout_ms=self.config.timeout_ms)

    # ─── Management commands ─────────────────────────────────────────────────

    @guarded("run_command", "CMD")
    async def run_command(self, device_id: str, command_type: str, payload: Optional[dict] = None,
                          target: Optional[dict] = None) -> dict:
        try:
            rpc = build_command(command_type, payload)
        except (TypeError, ValueError) as e:
            return error_result(ErrorKind.VALIDATION_ERROR, f"bad payload for {command_type}: {e}")
        if rpc is None:
            return error_result(ErrorKind.UNSUPPORTED_COMMAND,
                                f"Unsupported command type: {command_type}")
        method, params = rpc

        device = await self.device_for(device_id, target)
        if not device.get("ip"):
            return error_result(ErrorKind.DEVICE_NOT_FOUND, "no IP for device", deviceId=device_id)

        login = await self.rpc.login(device["ip"], device["user"], device["pass"],
                                     timeout_ms=self.config.rpc2_timeout_ms)
        if not login["ok"]:
            return login

        log_cmd(f"{command_type} -> {method} on {device['ip']}")
        reply = await self.rpc.call(device["ip"], login["session"], method, params,
                                    timeout_ms=self.config.command_timeout_ms, mode=MODE_JSON)
        if reply.get("ok") and reply.get("result") is True:
            return ok_result(data=reply["raw"])
        if reply.get("error") in (ErrorKind.TRANSPORT_ERROR.value, ErrorKind.SESSION_INVALID.value,
                                  ErrorKind.INTERNAL_ERROR.value):
            return reply

        error = readable_error(reply.get("raw"))
        log_warn(f"{command_type} on {device['ip']} failed: {error}", "CMD")
        return error_result(error, raw=reply.get("raw"))

    # ─── Liveness ────────────────────────────────────────────────────────────

    @guarded("ping", "SYS")
    async def ping(self, device_id: str, port: Any = None, target: Optional[dict] = None) -> dict:
        device = await self.device_for(device_id, target)
        if not device.get("ip"):
            return error_result(ErrorKind.DEVICE_NOT_FOUND, "no IP for device", deviceId=device_id)
        try:
            port = int(port) if port not in (None, "") else 80
        except ValueError:
            return error_result(ErrorKind.VALIDATION_ERROR, "port must be an integer")
        probe = await tcp_ping(device["ip"], port, timeout_ms=self.config.ping_timeout_ms)
        return {
            "ok": probe["online"],
            "ip": device["ip"],
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **probe,
        }
