"""
Device session supervisor.

start() performs the first acquisition, connection and subscription and
treats failure as fatal. maintain() runs on every idle tick afterwards and
walks the same steps again, repairing whatever precondition was lost:
device path, connection, characteristic path, subscription, notifying.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, fields
from typing import Any, Awaitable, Callable, Dict, Sequence

from bleak.uuids import normalize_uuid_str

from bluez import (
    ADAPTER_IFACE,
    DEFAULT_ADAPTER_PATH,
    DEVICE_IFACE,
    ERROR_FAILED,
    ERROR_IN_PROGRESS,
    ERROR_TIMEOUT,
    GATT_CHARACTERISTIC_IFACE,
    PropertiesHandler,
    Subscription,
    Transport,
    TransportError,
)
from hrm import HR_MEASUREMENT_UUID

logger = logging.getLogger(__name__)


class SetupError(Exception):
    """First acquisition, connection or subscription failed."""


@dataclass(slots=True)
class SessionTimings:
    discovery_poll: float = 2.0
    initial_discovery_timeout: float = 90.0
    reacquire_timeout: float = 15.0
    reacquire_retry: float = 10.0
    connect_poll: float = 0.5
    connect_timeout: float = 20.0
    in_progress_retry: float = 3.0
    backoff_cap: float = 30.0
    backoff_floor: float = 5.0
    backoff_max_exponent: int = 5

    @classmethod
    def from_dict(cls, values: Dict[str, Any] | None) -> "SessionTimings":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (values or {}).items() if k in known})

    def connect_backoff(self, failures: int, error_name: str) -> float:
        backoff = min(self.backoff_cap, float(2 ** min(failures, self.backoff_max_exponent)))
        if error_name in (ERROR_TIMEOUT, ERROR_FAILED):
            backoff = max(backoff, self.backoff_floor)
        return backoff


@dataclass(slots=True)
class FoundDevice:
    path: str
    name: str


@dataclass(slots=True)
class SessionState:
    device_path: str | None = None
    device_name: str | None = None
    characteristic_path: str | None = None
    subscription: Subscription | None = None
    consecutive_connect_failures: int = 0
    next_connect_attempt_at: float = field(default=float("-inf"))
    next_reacquire_attempt_at: float = field(default=float("-inf"))


class DeviceSession:
    def __init__(
        self,
        transport: Transport,
        device_names: Sequence[str],
        on_properties: PropertiesHandler,
        *,
        characteristic_uuid: str = HR_MEASUREMENT_UUID,
        adapter_path: str = DEFAULT_ADAPTER_PATH,
        timings: SessionTimings | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if not device_names:
            raise ValueError("at least one device name is required")
        self.transport = transport
        self.device_names = list(device_names)
        self.on_properties = on_properties
        self.characteristic_uuid = normalize_uuid_str(characteristic_uuid)
        self.adapter_path = adapter_path
        self.timings = timings or SessionTimings()
        self.clock = clock
        self.sleep = sleep
        self.state = SessionState()

    # --- lookups ---

    async def find_device(self) -> FoundDevice | None:
        """First configured name present on the bus; list order is preference."""
        entries = [
            e for e in await self.transport.list_objects()
            if e.interface == DEVICE_IFACE and e.name is not None
        ]
        for name in self.device_names:
            for entry in entries:
                if entry.name == name:
                    return FoundDevice(entry.path, name)
        return None

    async def find_characteristic(self, device_path: str) -> str | None:
        prefix = device_path.rstrip("/") + "/"
        for entry in await self.transport.list_objects():
            if (
                entry.interface == GATT_CHARACTERISTIC_IFACE
                and entry.path.startswith(prefix)
                and entry.uuid is not None
                and entry.uuid.lower() == self.characteristic_uuid
            ):
                logger.debug("Found characteristic %s at: %s", self.characteristic_uuid, entry.path)
                return entry.path
        return None

    async def path_has_interface(self, path: str, interface: str) -> bool:
        return any(
            e.path == path and e.interface == interface
            for e in await self.transport.list_objects()
        )

    async def is_connected(self, device_path: str) -> bool:
        try:
            value = await self.transport.get_property(device_path, DEVICE_IFACE, "Connected")
        except TransportError:
            return False
        return value is True

    async def is_notifying(self, characteristic_path: str) -> bool | None:
        try:
            value = await self.transport.get_property(
                characteristic_path, GATT_CHARACTERISTIC_IFACE, "Notifying"
            )
        except TransportError:
            return None
        return value if isinstance(value, bool) else None

    # --- steps ---

    async def acquire(self, timeout: float) -> FoundDevice | None:
        """Run adapter discovery until a configured device appears or timeout."""
        try:
            await self.transport.invoke(self.adapter_path, ADAPTER_IFACE, "StartDiscovery")
        except TransportError as exc:
            logger.warning("StartDiscovery failed: %s", exc)

        device = None
        deadline = self.clock() + timeout
        iteration = 0
        try:
            while self.clock() < deadline:
                await self.sleep(self.timings.discovery_poll)
                device = await self.find_device()
                if device is not None:
                    break
                iteration += 1
                logger.debug("scan iteration %d ... not yet found", iteration)
        finally:
            try:
                await self.transport.invoke(self.adapter_path, ADAPTER_IFACE, "StopDiscovery")
            except TransportError as exc:
                logger.debug("StopDiscovery failed: %s", exc)
        return device

    async def wait_connected(self, device_path: str) -> bool:
        deadline = self.clock() + self.timings.connect_timeout
        while self.clock() < deadline:
            if await self.is_connected(device_path):
                return True
            await self.sleep(self.timings.connect_poll)
        return await self.is_connected(device_path)

    async def subscribe(self, characteristic_path: str) -> None:
        """Point the subscription at characteristic_path, releasing the old one first."""
        if self.state.subscription is not None:
            if self.state.subscription.path == characteristic_path and not self.state.subscription.released:
                self.state.characteristic_path = characteristic_path
                return
            await self.state.subscription.release()
            self.state.subscription = None
        self.state.characteristic_path = characteristic_path
        self.state.subscription = await self.transport.subscribe(
            characteristic_path, GATT_CHARACTERISTIC_IFACE, self.on_properties
        )
        logger.debug("Installed HR Value match for %s", characteristic_path)

    async def start_notify(self, characteristic_path: str) -> None:
        logger.debug("Starting notifications on: %s", characteristic_path)
        await self.transport.invoke(characteristic_path, GATT_CHARACTERISTIC_IFACE, "StartNotify")

    # --- lifecycle ---

    async def start(self) -> FoundDevice:
        """
        First acquisition, connect and subscribe.

        Raises SetupError when the device is not found within the initial
        discovery window, cannot be connected, or exposes no characteristic
        to subscribe to.
        """
        try:
            device = await self.find_device()
            if device is None:
                logger.info("Starting discovery on %s ...", self.adapter_path)
                device = await self.acquire(self.timings.initial_discovery_timeout)
        except TransportError as exc:
            raise SetupError(f"Device lookup failed: {exc}") from exc
        if device is None:
            raise SetupError("Device not found after scan")
        logger.info("Found device: %s path: %s", device.name, device.path)
        self.state.device_path = device.path
        self.state.device_name = device.name

        if not await self.is_connected(device.path):
            logger.info("Connecting...")
            try:
                await self.transport.invoke(device.path, DEVICE_IFACE, "Connect")
            except TransportError as exc:
                raise SetupError(f"Connect failed: {exc}") from exc
            if not await self.wait_connected(device.path):
                raise SetupError("Failed to connect (timeout)")
        logger.info("Connected.")

        try:
            characteristic_path = await self.find_characteristic(device.path)
        except TransportError as exc:
            raise SetupError(f"Characteristic lookup failed: {exc}") from exc
        if characteristic_path is None:
            raise SetupError("Heart Rate Measurement characteristic not found")
        logger.info("Heart Rate characteristic: %s", characteristic_path)

        try:
            await self.subscribe(characteristic_path)
            await self.start_notify(characteristic_path)
        except TransportError as exc:
            raise SetupError(f"Subscribing to notifications failed: {exc}") from exc
        return device

    async def maintain(self) -> None:
        """One maintenance tick; transient failures are logged and rescheduled, never raised."""
        logger.debug("maintenance tick: ensuring connection and HR notifications")
        try:
            await self._maintain()
        except TransportError as exc:
            logger.warning("maintenance step failed: %s", exc)

    async def _maintain(self) -> None:
        state = self.state
        timings = self.timings
        now = self.clock()

        if not state.device_path or not await self.path_has_interface(state.device_path, DEVICE_IFACE):
            if now < state.next_reacquire_attempt_at:
                return
            logger.warning("Device path missing; attempting reacquire...")
            # throttled even when the attempt itself raises
            state.next_reacquire_attempt_at = now + timings.reacquire_retry
            device = await self.acquire(timings.reacquire_timeout)
            if device is None:
                logger.warning("Reacquire failed: device still not present.")
                return
            logger.info("Reacquired device path: %s", device.path)
            state.device_path = device.path
            state.device_name = device.name
            state.next_reacquire_attempt_at = now
            state.consecutive_connect_failures = 0

        if not await self.is_connected(state.device_path):
            if now < state.next_connect_attempt_at:
                return
            if not await self._reconnect(now):
                return

        if not state.characteristic_path or not await self.path_has_interface(
            state.characteristic_path, GATT_CHARACTERISTIC_IFACE
        ):
            characteristic_path = await self.find_characteristic(state.device_path)
            if characteristic_path is None:
                logger.warning("HR characteristic not present yet.")
                return
            if characteristic_path != state.characteristic_path:
                logger.info("HR characteristic path changed -> %s", characteristic_path)
            state.characteristic_path = characteristic_path

        subscription = state.subscription
        if subscription is None or subscription.released or subscription.path != state.characteristic_path:
            await self.subscribe(state.characteristic_path)

        notifying = await self.is_notifying(state.characteristic_path)
        if notifying:
            logger.debug("Notifying=true")
            return
        logger.info("Notifying=false (or unknown). Calling StartNotify...")
        try:
            await self.start_notify(state.characteristic_path)
        except TransportError as exc:
            logger.warning("StartNotify failed in maintenance: %s", exc)
        else:
            logger.info("StartNotify ok (maintenance).")

    async def _reconnect(self, now: float) -> bool:
        state = self.state
        timings = self.timings
        logger.info("Connecting (maintenance)...")
        try:
            await self.transport.invoke(state.device_path, DEVICE_IFACE, "Connect")
        except TransportError as exc:
            if exc.name == ERROR_IN_PROGRESS:
                logger.warning("Connect already in progress; retrying in %.0fs", timings.in_progress_retry)
                state.next_connect_attempt_at = now + timings.in_progress_retry
                return False
            state.consecutive_connect_failures += 1
            backoff = timings.connect_backoff(state.consecutive_connect_failures, exc.name)
            logger.warning(
                "Connect() failed in maintenance (%d consecutive); retrying in %.0fs",
                state.consecutive_connect_failures, backoff,
            )
            state.next_connect_attempt_at = now + backoff
            return False

        if not await self.wait_connected(state.device_path):
            state.consecutive_connect_failures += 1
            backoff = timings.connect_backoff(state.consecutive_connect_failures, ERROR_TIMEOUT)
            logger.warning(
                "Connect timeout in maintenance (%d consecutive); retrying in %.0fs",
                state.consecutive_connect_failures, backoff,
            )
            state.next_connect_attempt_at = self.clock() + backoff
            return False

        logger.info("Connected (maintenance).")
        state.consecutive_connect_failures = 0
        state.next_connect_attempt_at = self.clock()
        return True

    async def close(self) -> None:
        if self.state.subscription is not None:
            await self.state.subscription.release()
            self.state.subscription = None
