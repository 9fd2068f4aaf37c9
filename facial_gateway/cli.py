"""
Facial Gateway: Command-line Client
===================================
Talk to one terminal directly, or run the HTTP gateway.

Usage:
  facial-gateway serve
  facial-gateway <device_ip> <command> [args]

Credentials come from FACIAL_USER / FACIAL_PASS (environment or .env).

Commands:
  open [channel]                 Open the door relay
  snapshot <file> [channel]      Save a live JPEG snapshot
  events <from> <to> [limit] [offset]
                                 List access-log records (epoch seconds or ISO-8601)
  photo <device_path> <file>     Save a stored event photo (direct path)
  file <device_path> <file>      Save a stored file via RPC_Loadfile
  ping [port]                    TCP liveness probe
  command <type> [json_payload]  Run a management command (create_user, add_card, ...)

Example:
  facial-gateway 192.168.1.100 open
  facial-gateway 192.168.1.100 events 2026-01-14T00:00:00-03:00 2026-01-15T00:00:00-03:00 20
  facial-gateway 192.168.1.100 command delete_card '{"cardNo": "12349999"}'
"""

import asyncio
import json
import sys
from pathlib import Path

from .config import load_config
from .gateway import Gateway
from .logs import setup_logging


def _print_result(result):
    if result.get("ok"):
        print("[+] OK")
    else:
        print(f"[!] {result.get('error')}: {result.get('message', '')}".rstrip(": "))
    shown = {k: v for k, v in result.items() if k not in ("ok", "jpeg")}
    if shown:
        print(json.dumps(shown, indent=2, ensure_ascii=False, default=str))


def _save_jpeg(result, file):
    if result.get("ok"):
        Path(file).write_bytes(result["jpeg"])
        print(f"[+] Saved {len(result['jpeg'])} bytes to {file}")
    else:
        _print_result(result)


async def run(ip, command, args, config, transport=None):
    gateway = Gateway.from_config(config, transport=transport)
    target = {"ip": ip, "user": config.facial_user, "pass": config.facial_pass}
    try:
        if command == "open":
            if args:
                target["channel"] = args[0]
            result = await gateway.open_door(None, target)
            _print_result(result)
        elif command == "snapshot":
            if not args:
                print("Usage: snapshot <file> [channel]")
                return 1
            result = await gateway.snapshot(ip, args[1] if len(args) > 1 else None, target)
            _save_jpeg(result, args[0])
        elif command == "events":
            if len(args) < 2:
                print("Usage: events <from> <to> [limit] [offset]")
                return 1
            result = await gateway.list_events(ip, args[0], args[1],
                                               args[2] if len(args) > 2 else None,
                                               args[3] if len(args) > 3 else None,
                                               target)
            _print_result(result)
        elif command in ("photo", "file"):
            if len(args) < 2:
                print(f"Usage: {command} <device_path> <file>")
                return 1
            fetch = gateway.event_photo if command == "photo" else gateway.event_file
            result = await fetch(ip, args[0], target)
            _save_jpeg(result, args[1])
        elif command == "ping":
            result = await gateway.ping(ip, args[0] if args else None, target)
            _print_result(result)
        elif command == "command":
            if not args:
                print("Usage: command <type> [json_payload]")
                return 1
            payload = json.loads(args[1]) if len(args) > 1 else {}
            result = await gateway.run_command(ip, args[0], payload, target)
            _print_result(result)
        else:
            print(f"Unknown command: {command}")
            print(__doc__)
            return 1
    finally:
        await gateway.aclose()
    return 0 if result.get("ok") else 2


def main():
    if len(sys.argv) >= 2 and sys.argv[1].lower() == "serve":
        from .server import serve
        serve()
        return

    if len(sys.argv) < 3:
        print(__doc__)
        sys.exit(1)

    ip = sys.argv[1]
    command = sys.argv[2].lower()
    args = sys.argv[3:]

    config = load_config()
    setup_logging(None, config.log_level)

    try:
        code = asyncio.run(run(ip, command, args, config))
    except KeyboardInterrupt:
        print("\n[*] Interrupted")
        code = 130
    except ValueError as e:
        print(f"[!] Error: {e}")
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
