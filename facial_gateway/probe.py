"""TCP liveness probe for terminals."""

import asyncio
import time


async def tcp_ping(host: str, port: int = 80, timeout_ms: int = 2000) -> dict:
    """Try a TCP connect. Returns ``{online, latencyMs}``; never raises on network errors."""
    start = time.monotonic()
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout_ms / 1000)
    except (asyncio.TimeoutError, OSError):
        return {"online": False, "latencyMs": 0}

    latency = int((time.monotonic() - start) * 1000)
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return {"online": True, "latencyMs": latency}
