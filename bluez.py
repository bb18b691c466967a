"""
BlueZ over the system D-Bus.

Only the handful of calls the session needs: a managed-objects snapshot,
parameterless method calls, property reads, characteristic reads and
PropertiesChanged subscriptions scoped to one object path.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Protocol

from dbus_fast import BusType, Message, MessageType, Variant
from dbus_fast.aio import MessageBus

logger = logging.getLogger(__name__)

BLUEZ_SERVICE = "org.bluez"
OBJECT_MANAGER_IFACE = "org.freedesktop.DBus.ObjectManager"
PROPERTIES_IFACE = "org.freedesktop.DBus.Properties"
DEVICE_IFACE = "org.bluez.Device1"
ADAPTER_IFACE = "org.bluez.Adapter1"
GATT_CHARACTERISTIC_IFACE = "org.bluez.GattCharacteristic1"
DEFAULT_ADAPTER_PATH = "/org/bluez/hci0"

ERROR_IN_PROGRESS = "org.bluez.Error.InProgress"
ERROR_FAILED = "org.bluez.Error.Failed"
ERROR_TIMEOUT = "org.freedesktop.DBus.Error.Timeout"

PropertiesHandler = Callable[[Dict[str, Any]], None]


class TransportError(Exception):
    def __init__(self, name: str, text: str = ""):
        super().__init__(f"{name}: {text}" if text else name)
        self.name = name
        self.text = text


@dataclass(frozen=True, slots=True)
class ObjectEntry:
    path: str
    interface: str
    name: str | None = None
    uuid: str | None = None


class Subscription:
    """Handle for one PropertiesChanged registration; release() stops delivery."""

    def __init__(self, path: str, on_release: Callable[[], Any] | None = None):
        self.path = path
        self._on_release = on_release
        self.released = False

    async def release(self) -> None:
        if self.released:
            return
        self.released = True
        if self._on_release is not None:
            result = self._on_release()
            if asyncio.iscoroutine(result):
                await result


class Transport(Protocol):
    async def list_objects(self) -> List[ObjectEntry]: ...

    async def invoke(self, path: str, interface: str, method: str) -> None: ...

    async def get_property(self, path: str, interface: str, name: str) -> Any: ...

    async def read_value(self, path: str) -> bytes: ...

    async def subscribe(self, path: str, interface: str, handler: PropertiesHandler) -> Subscription: ...


def _unwrap(value: Any) -> Any:
    return value.value if isinstance(value, Variant) else value


def parse_managed_objects(objects: Dict[str, Dict[str, Dict[str, Any]]]) -> List[ObjectEntry]:
    """Flatten a GetManagedObjects reply to one entry per (path, interface)."""
    out = []
    for path, interfaces in objects.items():
        for interface, props in interfaces.items():
            name = _unwrap(props.get("Name"))
            uuid = _unwrap(props.get("UUID"))
            out.append(ObjectEntry(
                path=path,
                interface=interface,
                name=name if isinstance(name, str) else None,
                uuid=uuid.lower() if isinstance(uuid, str) else None,
            ))
    return out


def properties_changed_match(path: str) -> str:
    return (
        "type='signal',"
        f"sender='{BLUEZ_SERVICE}',"
        f"interface='{PROPERTIES_IFACE}',"
        "member='PropertiesChanged',"
        f"path='{path}'"
    )


class BluezTransport:
    def __init__(self, call_timeout: float = 25.0):
        self.call_timeout = call_timeout
        self.bus: MessageBus | None = None

    async def connect(self) -> None:
        self.bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
        logger.debug("system bus connected")

    def disconnect(self) -> None:
        if self.bus is not None:
            self.bus.disconnect()
            self.bus = None

    async def _call(self, message: Message) -> Message:
        if self.bus is None:
            raise TransportError(ERROR_FAILED, "bus not connected")
        try:
            reply = await asyncio.wait_for(self.bus.call(message), timeout=self.call_timeout)
        except asyncio.TimeoutError as exc:
            raise TransportError(ERROR_TIMEOUT, f"{message.member} timed out") from exc
        if reply.message_type == MessageType.ERROR:
            text = reply.body[0] if reply.body else ""
            raise TransportError(reply.error_name or "unknown", str(text))
        return reply

    async def list_objects(self) -> List[ObjectEntry]:
        reply = await self._call(Message(
            destination=BLUEZ_SERVICE,
            path="/",
            interface=OBJECT_MANAGER_IFACE,
            member="GetManagedObjects",
        ))
        entries = parse_managed_objects(reply.body[0])
        logger.debug("GetManagedObjects -> %d iface entries", len(entries))
        return entries

    async def invoke(self, path: str, interface: str, method: str) -> None:
        try:
            await self._call(Message(
                destination=BLUEZ_SERVICE,
                path=path,
                interface=interface,
                member=method,
            ))
        except TransportError as exc:
            logger.error("D-Bus: %s - %s", exc.name, exc.text)
            raise
        logger.debug("call %s.%s on %s -> ok", interface, method, path)

    async def get_property(self, path: str, interface: str, name: str) -> Any:
        reply = await self._call(Message(
            destination=BLUEZ_SERVICE,
            path=path,
            interface=PROPERTIES_IFACE,
            member="Get",
            signature="ss",
            body=[interface, name],
        ))
        return _unwrap(reply.body[0])

    async def read_value(self, path: str) -> bytes:
        reply = await self._call(Message(
            destination=BLUEZ_SERVICE,
            path=path,
            interface=GATT_CHARACTERISTIC_IFACE,
            member="ReadValue",
            signature="a{sv}",
            body=[{}],
        ))
        return bytes(reply.body[0])

    async def _bus_match(self, member: str, rule: str) -> None:
        await self._call(Message(
            destination="org.freedesktop.DBus",
            path="/org/freedesktop/DBus",
            interface="org.freedesktop.DBus",
            member=member,
            signature="s",
            body=[rule],
        ))

    async def subscribe(self, path: str, interface: str, handler: PropertiesHandler) -> Subscription:
        if self.bus is None:
            raise TransportError(ERROR_FAILED, "bus not connected")
        rule = properties_changed_match(path)
        await self._bus_match("AddMatch", rule)

        def on_message(message: Message) -> None:
            if (
                message.message_type != MessageType.SIGNAL
                or message.member != "PropertiesChanged"
                or message.interface != PROPERTIES_IFACE
                or message.path != path
            ):
                return
            changed_iface, changed, _invalidated = message.body
            if changed_iface != interface:
                return
            handler({key: _unwrap(value) for key, value in changed.items()})

        bus = self.bus
        bus.add_message_handler(on_message)
        logger.debug("installed PropertiesChanged match: %s", rule)

        async def remove() -> None:
            bus.remove_message_handler(on_message)
            try:
                await self._bus_match("RemoveMatch", rule)
            except TransportError as exc:
                logger.debug("RemoveMatch failed for %s: %s", path, exc)

        return Subscription(path, remove)
