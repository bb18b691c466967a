from __future__ import annotations

import pytest

from bluez import (
    DEVICE_IFACE,
    GATT_CHARACTERISTIC_IFACE,
    ObjectEntry,
    Subscription,
    TransportError,
)
from hrm import HR_MEASUREMENT_UUID

DEVICE_PATH = "/org/bluez/hci0/dev_A0_9E_1A_8A_8F_19"
CHAR_PATH = DEVICE_PATH + "/service000e/char000f"
DEVICE_NAME = "Polar H10 8A8F192B"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """
    In-memory BlueZ object tree.

    `errors` maps a method name to a list of exceptions raised by successive
    calls, None letting that call through; `hooks` maps a method name to a
    callable run after a successful invoke.
    """

    def __init__(self):
        self.objects: list[ObjectEntry] = []
        self.props: dict[tuple[str, str], object] = {}
        self.values: dict[str, bytes] = {}
        self.errors: dict[str, list[Exception]] = {}
        self.hooks: dict[str, object] = {}
        self.calls: list[tuple] = []
        self.subscriptions: list[Subscription] = []
        self.handlers: dict[str, object] = {}

    def add_device(self, path=DEVICE_PATH, name=DEVICE_NAME):
        self.objects.append(ObjectEntry(path, DEVICE_IFACE, name=name))

    def add_characteristic(self, path=CHAR_PATH, uuid=HR_MEASUREMENT_UUID):
        self.objects.append(ObjectEntry(path, GATT_CHARACTERISTIC_IFACE, uuid=uuid))

    def remove_path(self, path):
        self.objects = [e for e in self.objects if e.path != path]

    def _maybe_raise(self, key):
        queued = self.errors.get(key)
        if queued:
            exc = queued.pop(0)
            if exc is not None:
                raise exc

    async def list_objects(self):
        self.calls.append(("list_objects",))
        self._maybe_raise("list_objects")
        return list(self.objects)

    async def invoke(self, path, interface, method):
        self.calls.append(("invoke", path, method))
        self._maybe_raise(method)
        hook = self.hooks.get(method)
        if hook is not None:
            hook()

    async def get_property(self, path, interface, name):
        self.calls.append(("get_property", path, name))
        self._maybe_raise(name)
        try:
            return self.props[(path, name)]
        except KeyError:
            raise TransportError("org.freedesktop.DBus.Error.InvalidArgs", "No such property") from None

    async def read_value(self, path):
        self.calls.append(("read_value", path))
        self._maybe_raise("read_value")
        return self.values[path]

    async def subscribe(self, path, interface, handler):
        self.calls.append(("subscribe", path))
        self._maybe_raise("subscribe")
        self.handlers[path] = handler

        def release():
            self.calls.append(("release", path))
            self.handlers.pop(path, None)

        sub = Subscription(path, release)
        self.subscriptions.append(sub)
        return sub

    def mutating_calls(self):
        return [c for c in self.calls if c[0] in ("invoke", "subscribe", "release")]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def healthy_transport(transport):
    transport.add_device()
    transport.add_characteristic()
    transport.props[(DEVICE_PATH, "Connected")] = True
    transport.props[(CHAR_PATH, "Notifying")] = True
    return transport
