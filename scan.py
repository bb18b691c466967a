from __future__ import annotations

import logging
from typing import List, Sequence, Tuple

from bleak import BleakScanner

logger = logging.getLogger(__name__)


async def list_devices(names: Sequence[str] = (), timeout: float = 5.0) -> List[Tuple[str | None, str, bool]]:
    """Scan once; returns (name, address, matches-a-configured-name) per device."""
    logger.info("Scanning...")
    devices = await BleakScanner.discover(timeout=timeout)
    wanted = set(names)
    found = []
    for i, device in enumerate(devices):
        match = device.name in wanted
        marker = " *" if match else ""
        print(f"{i}: {device.name} - {device.address}{marker}")
        found.append((device.name, device.address, match))
    return found
