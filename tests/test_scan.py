from __future__ import annotations

import asyncio
from types import SimpleNamespace

import scan


def test_list_devices_marks_configured_names(monkeypatch, capsys):
    devices = [
        SimpleNamespace(name="Polar H10 8A8F192B", address="A0:9E:1A:8A:8F:19"),
        SimpleNamespace(name=None, address="11:22:33:44:55:66"),
    ]

    async def fake_discover(timeout=5.0, **kwargs):
        return devices

    monkeypatch.setattr(scan.BleakScanner, "discover", fake_discover)

    found = asyncio.run(scan.list_devices(["Polar H10 8A8F192B"], timeout=0.1))

    assert found == [
        ("Polar H10 8A8F192B", "A0:9E:1A:8A:8F:19", True),
        (None, "11:22:33:44:55:66", False),
    ]
    out = capsys.readouterr().out.splitlines()
    assert out == [
        "0: Polar H10 8A8F192B - A0:9E:1A:8A:8F:19 *",
        "1: None - 11:22:33:44:55:66",
    ]
