"""Static device information and battery level for H10-class sensors."""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Dict, List

from bleak.uuids import normalize_uuid_str

from bluez import GATT_CHARACTERISTIC_IFACE, Transport, TransportError
from pipeline import now_ms

logger = logging.getLogger(__name__)

BATTERY_LEVEL_UUID = normalize_uuid_str("2a19")
BODY_SENSOR_LOCATION_UUID = normalize_uuid_str("2a38")

STRING_FIELDS = {
    "manufacturer_name": normalize_uuid_str("2a29"),
    "model_number": normalize_uuid_str("2a24"),
    "hardware_rev": normalize_uuid_str("2a27"),
    "firmware_rev": normalize_uuid_str("2a26"),
    "software_rev": normalize_uuid_str("2a28"),
}

BATTERY_POLL_SECONDS = 60.0


def prefix_for_name(name: str) -> str:
    if "H10" in name:
        return "polarh10"
    return "polarh9"


async def characteristic_paths(transport: Transport, device_path: str) -> Dict[str, str]:
    """uuid -> path for every characteristic under device_path (first wins)."""
    prefix = device_path.rstrip("/") + "/"
    out: Dict[str, str] = {}
    for entry in await transport.list_objects():
        if entry.interface != GATT_CHARACTERISTIC_IFACE or entry.uuid is None:
            continue
        if entry.path.startswith(prefix):
            out.setdefault(entry.uuid, entry.path)
    return out


class DeviceInfo:
    def __init__(
        self,
        transport: Transport,
        output_dir: Path,
        prefix: str,
        clock: Callable[[], float] = time.monotonic,
        clock_ms: Callable[[], int] = now_ms,
        battery_poll: float = BATTERY_POLL_SECONDS,
    ):
        self.transport = transport
        self.output_dir = Path(output_dir).expanduser()
        self.prefix = prefix
        self.clock = clock
        self.clock_ms = clock_ms
        self.battery_poll = battery_poll
        self.last_battery_poll: float | None = None

    def _append(self, suffix: str, lines: List[str]) -> None:
        if not lines:
            return
        path = self.output_dir / f"{self.prefix}_{suffix}"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as f:
                f.write("\n".join(lines) + "\n")
        except OSError as exc:
            logger.warning("cannot write %s: %s", path, exc)

    async def _read(self, path: str) -> bytes | None:
        try:
            return await self.transport.read_value(path)
        except TransportError as exc:
            logger.warning("ReadValue failed on %s: %s", path, exc.text or exc.name)
            return None

    async def capture(self, device_path: str) -> Dict[str, str]:
        """Read the device-information fields once and append them to <prefix>_device_info."""
        info: Dict[str, str] = {}
        try:
            paths = await characteristic_paths(self.transport, device_path)
        except TransportError as exc:
            logger.warning("device info skipped: %s", exc)
            return info

        location_path = paths.get(BODY_SENSOR_LOCATION_UUID)
        if location_path:
            data = await self._read(location_path)
            if data:
                info["body_sensor_location"] = str(data[0])

        for key, uuid in STRING_FIELDS.items():
            path = paths.get(uuid)
            if not path:
                continue
            data = await self._read(path)
            if data is not None:
                info[key] = data.decode("utf-8", errors="replace").rstrip("\x00")

        ts = self.clock_ms()
        for key, value in info.items():
            logger.debug("info %s=%s", key, value)
        self._append("device_info", [f"{ts},{key}={value}" for key, value in info.items()])
        return info

    async def poll_battery(self, device_path: str | None) -> int | None:
        """Battery percent, read at most once per battery_poll seconds."""
        now = self.clock()
        if self.last_battery_poll is not None and now - self.last_battery_poll < self.battery_poll:
            return None
        self.last_battery_poll = now
        if not device_path:
            return None

        try:
            paths = await characteristic_paths(self.transport, device_path)
        except TransportError as exc:
            logger.debug("battery poll skipped: %s", exc)
            return None
        path = paths.get(BATTERY_LEVEL_UUID)
        if not path:
            return None
        data = await self._read(path)
        if not data:
            return None

        percent = data[0]
        self._append("battery", [f"{self.clock_ms()},{percent}"])
        logger.debug("battery poll: %d%%", percent)
        return percent
