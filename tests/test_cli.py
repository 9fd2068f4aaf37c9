"""Tests for the command-line client."""

import asyncio

import httpx

from facial_gateway.cli import run

from conftest import DEVICE_IP, JPEG


def _cli(device, config, command, *args):
    return asyncio.run(run(DEVICE_IP, command, list(args), config,
                           transport=httpx.MockTransport(device.handler)))


def test_open(device, config, capsys):
    assert _cli(device, config, "open", "2") == 0
    assert "[+] OK" in capsys.readouterr().out
    assert device.requests[-1].url.params["channel"] == "2"


def test_open_failure_exit_code(device, config, capsys):
    device.door_body = "Error: Invalid Authority"

    assert _cli(device, config, "open") == 2
    assert "[!] Error: Invalid Authority" in capsys.readouterr().out


def test_snapshot_writes_file(device, config, tmp_path):
    out = tmp_path / "snap.jpg"

    assert _cli(device, config, "snapshot", str(out)) == 0
    assert out.read_bytes() == JPEG


def test_events(device, config, capsys):
    device.records = [{"RecNo": 1, "CreateTime": 1768360000}]

    assert _cli(device, config, "events", "1768359600", "1768446000", "5") == 0
    assert '"RecNo": 1' in capsys.readouterr().out


def test_unknown_command(device, config, capsys):
    assert _cli(device, config, "dance") == 1
    assert "Unknown command: dance" in capsys.readouterr().out
