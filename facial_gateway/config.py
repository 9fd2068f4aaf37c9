"""
Gateway configuration, read from the environment (and a .env file if present).
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel


class GatewayConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 4000

    # Static fallback target
    facial_ip: Optional[str] = "192.168.1.100"
    facial_channel: int = 1
    facial_user: str = "admin"
    facial_pass: str = "admin"

    # Timeouts (milliseconds)
    timeout_ms: int = 15000
    rpc2_timeout_ms: int = 15000
    command_timeout_ms: int = 60000
    ping_timeout_ms: int = 2000

    # Device registry
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    log_dir: Optional[str] = "logs"
    log_level: str = "INFO"

    @property
    def has_registry(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


def _env_int(name, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def load_config(env_file: Optional[str] = None) -> GatewayConfig:
    """Build a GatewayConfig from the process environment."""
    load_dotenv(env_file)

    timeout_ms = _env_int("TIMEOUT_MS", 15000)

    return GatewayConfig(
        host=os.getenv("HOST", "0.0.0.0"),
        port=_env_int("PORT", 4000),
        facial_ip=os.getenv("FACIAL_IP", "192.168.1.100") or None,
        facial_channel=_env_int("FACIAL_CHANNEL", 1),
        facial_user=os.getenv("FACIAL_USER") or "admin",
        facial_pass=os.getenv("FACIAL_PASS") or "admin",
        timeout_ms=timeout_ms,
        rpc2_timeout_ms=_env_int("RPC2_TIMEOUT_MS", timeout_ms),
        command_timeout_ms=_env_int("COMMAND_TIMEOUT_MS", 60000),
        ping_timeout_ms=_env_int("PING_TIMEOUT_MS", 2000),
        # NEXT_PUBLIC_* names are what the dashboard's .env.local carries
        supabase_url=os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL"),
        supabase_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("NEXT_PUBLIC_SUPABASE_ANON_KEY"),
        log_dir=os.getenv("LOG_DIR", "logs") or None,
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
