"""
Facial Gateway: HTTP Façade
===========================
FastAPI server relaying dashboard requests to facial / access-control
terminals on the LAN (CGI over Digest, RPC2 sessions).

Usage:
    pip install -e .
    facial-gateway serve
    # or
    uvicorn facial_gateway.server:create_app --factory --host 0.0.0.0 --port 4000

Every route is served both at the root and under /facial.
"""

import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional, Union

import httpx
from fastapi import APIRouter, Body, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import GatewayConfig, load_config
from .errors import ErrorKind, error_result, http_status_for
from .gateway import Gateway
from .logs import log_info, log_warn, read_logs, setup_logging

SERVICE_NAME = "facial-gateway"

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}


# ─── Pydantic Models ──────────────────────────────────────────────────────────

class TargetModel(BaseModel):
    """Explicit device target; any field left out comes from the registry or config."""
    model_config = {"populate_by_name": True}

    ip: Optional[str] = None
    channel: Optional[Union[int, str]] = None
    user: Optional[str] = None
    password: Optional[str] = Field(None, alias="pass")
    timeout_ms: Optional[int] = Field(None, alias="timeoutMs")

    def as_target(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class DoorOpenRequest(BaseModel):
    deviceId: Optional[str] = None
    target: Optional[TargetModel] = None


class CommandRequest(BaseModel):
    type: str
    payload: Optional[dict] = None
    target: Optional[TargetModel] = None


# ─── Helpers ──────────────────────────────────────────────────────────────────

def sanitize(obj):
    """Recursively convert bytes to hex strings and tuples to lists for JSON serialization."""
    if isinstance(obj, bytes):
        return obj.hex()
    if isinstance(obj, dict):
        return {k: sanitize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [sanitize(v) for v in obj]
    return obj


def envelope(result: dict, status_code: Optional[int] = None) -> JSONResponse:
    return JSONResponse(sanitize(result), status_code=status_code or http_status_for(result))


def jpeg_or_envelope(result: dict) -> Response:
    if result.get("ok"):
        return Response(content=result["jpeg"], media_type="image/jpeg", headers=NO_CACHE_HEADERS)
    return envelope(result)


def parse_target_query(target: Optional[str], **fields):
    """Explicit target from a JSON ``target`` query param, else from loose query params."""
    if target:
        try:
            data = json.loads(target)
        except ValueError:
            data = None
        if not isinstance(data, dict):
            return None, error_result(ErrorKind.VALIDATION_ERROR, "target must be a JSON object")
        try:
            return TargetModel.model_validate(data).as_target(), None
        except ValueError as e:
            return None, error_result(ErrorKind.VALIDATION_ERROR, f"invalid target: {e}")
    explicit = {k: v for k, v in fields.items() if v not in (None, "")}
    return explicit or None, None


# ─── Routes ───────────────────────────────────────────────────────────────────

def build_router(gateway: Gateway) -> APIRouter:
    router = APIRouter()

    @router.get("/health")
    async def health():
        return {"ok": True, "service": SERVICE_NAME, "time": datetime.now(timezone.utc).isoformat()}

    @router.get("/logs")
    async def get_logs(after: int = 0, cat: str = "", level: str = ""):
        """Get log entries from ring buffer. Filters: after=index, cat=SYS|PROTO|CMD|EVT, level=DEBUG|INFO|WARNING|ERROR"""
        return read_logs(after, cat, level)

    # ─── Door ────────────────────────────────────────────────────────────────

    @router.post("/door/open")
    async def open_door(req: Optional[DoorOpenRequest] = Body(None)):
        req = req or DoorOpenRequest()
        target = req.target.as_target() if req.target else None
        result = await gateway.open_door(req.deviceId, target)
        return envelope(result)

    # ─── Access log ──────────────────────────────────────────────────────────

    @router.get("/events/{device_id}")
    async def list_events(device_id: str,
                          from_: Optional[str] = Query(None, alias="from"),
                          to: Optional[str] = None,
                          limit: Optional[str] = None,
                          offset: Optional[str] = None,
                          target: Optional[str] = None):
        explicit, failure = parse_target_query(target)
        if failure:
            return envelope(failure)
        result = await gateway.list_events(device_id, from_, to, limit, offset, explicit)
        return envelope(result)

    @router.get("/events/{device_id}/photo")
    async def event_photo(device_id: str, url: Optional[str] = None):
        return jpeg_or_envelope(await gateway.event_photo(device_id, url))

    @router.get("/events/{device_id}/file")
    async def event_file(device_id: str, url: Optional[str] = None):
        return jpeg_or_envelope(await gateway.event_file(device_id, url))

    @router.get("/audit/access/{device_id}")
    async def audit_access(device_id: str,
                           from_: Optional[str] = Query(None, alias="from"),
                           to: Optional[str] = None,
                           limit: Optional[str] = None,
                           offset: Optional[str] = None):
        result = await gateway.audit_access(device_id, from_, to, limit, offset)
        return envelope(result)

    # ─── Management commands ─────────────────────────────────────────────────

    @router.post("/commands/{device_id}")
    async def run_command(device_id: str, req: CommandRequest):
        target = req.target.as_target() if req.target else None
        result = await gateway.run_command(device_id, req.type, req.payload, target)
        return envelope(result)

    # ─── Per-device ──────────────────────────────────────────────────────────

    @router.get("/{device_id}/snapshot")
    async def snapshot(device_id: str,
                       channel: Optional[str] = None,
                       target: Optional[str] = None,
                       ip: Optional[str] = None,
                       user: Optional[str] = None,
                       password: Optional[str] = Query(None, alias="pass"),
                       timeout_ms: Optional[int] = Query(None, alias="timeoutMs")):
        explicit, failure = parse_target_query(target, ip=ip, user=user, timeoutMs=timeout_ms,
                                               **{"pass": password})
        if failure:
            return envelope(failure)
        return jpeg_or_envelope(await gateway.snapshot(device_id, channel, explicit))

    @router.get("/{device_id}/ping")
    async def ping(device_id: str, port: Optional[str] = None):
        result = await gateway.ping(device_id, port)
        if "online" in result and not result["online"]:
            return envelope(result, 503)
        return envelope(result)

    return router


# ─── App Setup ────────────────────────────────────────────────────────────────

def create_app(config: Optional[GatewayConfig] = None, registry=None,
               transport: Optional[httpx.AsyncBaseTransport] = None) -> FastAPI:
    """Build the app. ``registry`` and ``transport`` replace the real ones in tests."""
    config = config or load_config()
    setup_logging(config.log_dir, config.log_level)
    gateway = Gateway.from_config(config, transport=transport, registry=registry)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log_info(f"{SERVICE_NAME} listening on {config.host}:{config.port} "
                 f"(static device {config.facial_ip or '-'}, "
                 f"registry {'on' if gateway.resolver.registry else 'off'})")
        yield
        await gateway.aclose()
        log_info(f"{SERVICE_NAME} stopped")

    app = FastAPI(title="Facial Gateway", version="1.0.0", lifespan=lifespan)
    app.state.gateway = gateway

    router = build_router(gateway)
    app.include_router(router)
    app.include_router(router, prefix="/facial")

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse(
                error_result(ErrorKind.ROUTE_NOT_FOUND, method=request.method, path=request.url.path),
                status_code=404,
            )
        return JSONResponse({"ok": False, "error": str(exc.detail)}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        log_warn(f"{request.method} {request.url.path}: invalid request ({len(exc.errors())} error(s))")
        return JSONResponse(
            error_result(ErrorKind.VALIDATION_ERROR, "invalid request",
                         details=json.loads(json.dumps(exc.errors(), default=str))),
            status_code=400,
        )

    return app


# ─── Entry Point ──────────────────────────────────────────────────────────────

def serve(config: Optional[GatewayConfig] = None):
    import uvicorn
    config = config or load_config()
    uvicorn.run(create_app(config), host=config.host, port=config.port)


if __name__ == "__main__":
    serve()
