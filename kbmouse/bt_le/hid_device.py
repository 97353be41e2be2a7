#!/usr/bin/env python3
"""BlueZ HID-over-GATT service definitions and lifecycle helpers."""

import asyncio
import os
import contextlib
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from bluez_peripheral.util import get_message_bus, Adapter, is_bluez_available
from bluez_peripheral.advert import Advertisement
from bluez_peripheral.agent import NoIoAgent
from bluez_peripheral.gatt.service import Service, ServiceCollection
from bluez_peripheral.gatt.characteristic import characteristic, CharacteristicFlags as CharFlags
from bluez_peripheral.gatt.descriptor import DescriptorFlags as DescFlags

from dbus_fast.constants import MessageType
from dbus_fast import Variant
from dbus_fast.errors import DBusError

from .report_map import REPORT_MAP, RID_KEYBOARD, RID_MOUSE
from .transport import OutputReportHandler

logger = logging.getLogger(__name__)

# --------------------------
# Device identity / advert
# --------------------------

APPEARANCE = 0x03C0  # Generic HID

PROTOCOL_BOOT   = 0x00
PROTOCOL_REPORT = 0x01

# Report Reference (0x2908) report types
_REF_INPUT  = 0x01
_REF_OUTPUT = 0x02

ADVERT_BASE_PATH = "/com/spacecheese/bluez_peripheral/advert"


def split_report(report: bytes) -> tuple[int, bytes]:
    """Split a full report into (report ID, notification payload).

    HID-over-GATT carries the report ID in the Report Reference descriptor, so
    the characteristic value is the report without its first byte.
    """
    if not report:
        raise ValueError("empty HID report")
    return report[0], bytes(report[1:])


async def ensure_controller_baseline(bus, adapter_name: str, *, adapter_proxy=None) -> None:
    """Re-apply the controller state needed for pairing and reconnect.

    Toggling Powered (or restarting bluetoothd) can reset Pairable/Discoverable
    and their timeouts.
    """
    path = f"/org/bluez/{adapter_name}"

    if adapter_proxy is None:
        try:
            xml = await bus.introspect("org.bluez", path)
            adapter_proxy = bus.get_proxy_object("org.bluez", path, xml)
        except Exception as exc:
            logger.warning("[hid] Baseline: couldn't introspect %s: %s", path, exc)
            return

    props = adapter_proxy.get_interface("org.freedesktop.DBus.Properties")

    async def _set(prop: str, sig: str, val):
        try:
            await props.call_set("org.bluez.Adapter1", prop, Variant(sig, val))
        except Exception as exc:
            # Some properties may be read-only depending on controller/BlueZ build
            logger.debug("[hid] Baseline: set %s=%r failed: %s", prop, val, exc)

    await _set("Powered", "b", True)
    await _set("PairableTimeout", "u", 0)
    await _set("DiscoverableTimeout", "u", 0)
    await _set("Pairable", "b", True)
    await _set("Discoverable", "b", True)


async def _cleanup_stale_adverts(bus, adapter_name: str, max_ids: int = 8) -> None:
    """Best-effort cleanup for advertisements left registered by a crashed run."""
    try:
        mgr = await _get_adv_manager(bus, adapter_name)
    except Exception:
        return

    for i in range(max_ids):
        with contextlib.suppress(Exception):
            await mgr.call_unregister_advertisement(f"{ADVERT_BASE_PATH}{i}")


async def _get_adv_manager(bus, adapter_name: str):
    """Return LEAdvertisingManager1 proxy for the given adapter."""
    obj = await bus.introspect("org.bluez", f"/org/bluez/{adapter_name}")
    proxy = bus.get_proxy_object("org.bluez", f"/org/bluez/{adapter_name}", obj)
    return proxy.get_interface("org.bluez.LEAdvertisingManager1")


def _make_advert(cfg) -> Advertisement:
    device_name = getattr(cfg, "device_name", None) or os.uname().nodename
    appearance = int(getattr(cfg, "appearance", APPEARANCE))
    return Advertisement(
        localName=device_name,
        serviceUUIDs=["1812"],
        appearance=appearance,
    )


async def _adv_register(runtime, cfg) -> bool:
    async with runtime.advert_lock:
        if runtime.advertising:
            return False
        if runtime.advert is None:
            runtime.advert = _make_advert(cfg)
        if runtime.advert_path is None:
            runtime.advert_path = f"{ADVERT_BASE_PATH}_{os.getpid()}"
        await runtime.advert.register(runtime.bus, adapter=runtime.adapter, path=runtime.advert_path)
        runtime.advertising = True
        return True


async def _adv_unregister(runtime) -> bool:
    async with runtime.advert_lock:
        if not runtime.advertising:
            return False
        try:
            if runtime.advert is not None:
                await runtime.advert.unregister()
            elif runtime.advert_path:
                mgr = await _get_adv_manager(runtime.bus, runtime.adapter_name)
                await mgr.call_unregister_advertisement(runtime.advert_path)
        except DBusError as exc:
            if "does not exist" not in str(exc).lower():
                raise
        runtime.advertising = False
        return True

# --------------------------
# BlueZ object manager helpers
# --------------------------
def _get_bool(v):  # unwrap dbus_fast.Variant or use raw bool
    return bool(v.value) if isinstance(v, Variant) else bool(v)

def _get_str(v):  # unwrap dbus_fast.Variant or use raw str
    if v is None:
        return ""
    return str(v.value) if isinstance(v, Variant) else str(v)


async def _get_managed_objects(bus):
    root_xml = await bus.introspect("org.bluez", "/")
    root = bus.get_proxy_object("org.bluez", "/", root_xml)
    om = root.get_interface("org.freedesktop.DBus.ObjectManager")
    return await om.call_get_managed_objects()


async def trust_device(bus, device_path) -> bool:
    """Set org.bluez.Device1.Trusted = True so the peer may reconnect on its own."""
    try:
        root_xml = await bus.introspect("org.bluez", device_path)
        dev_obj = bus.get_proxy_object("org.bluez", device_path, root_xml)
        props = dev_obj.get_interface("org.freedesktop.DBus.Properties")
        await props.call_set("org.bluez.Device1", "Trusted", Variant("b", True))
        return True
    except Exception as exc:
        logger.debug("[hid] trust failed for %s: %s", device_path, exc)
        return False


async def watch_link(runtime, cfg) -> None:
    """Advertise while idle, track the connected central, and mark the link ready.

    A link is ready once services are resolved and the host has subscribed to
    our input reports; reports are dropped until then.
    """
    bus = runtime.bus
    adapter_path = f"/org/bluez/{runtime.adapter_name}"
    dev_prefix = f"{adapter_path}/dev_"
    loop = asyncio.get_running_loop()
    ready_task: Optional[asyncio.Task] = None

    def _connected_from(managed: dict) -> dict[str, dict]:
        out = {}
        for path, ifaces in managed.items():
            dev = ifaces.get("org.bluez.Device1")
            if dev and path.startswith(dev_prefix) and _get_bool(dev.get("Connected", False)):
                out[path] = dev
        return out

    async def _sync_advertising() -> None:
        if runtime.connected_devices:
            if await _adv_unregister(runtime):
                logger.info("[hid] advertising stopped")
            return
        if await _adv_register(runtime, cfg):
            with contextlib.suppress(Exception):
                await ensure_controller_baseline(bus, runtime.adapter_name)
            logger.info("[hid] advertising resumed")

    async def _maybe_ready() -> None:
        if runtime.ready or not runtime.device_path:
            return
        if not runtime.services_resolved:
            managed = await _get_managed_objects(bus)
            dev = managed.get(runtime.device_path, {}).get("org.bluez.Device1", {})
            runtime.services_resolved = _get_bool(dev.get("ServicesResolved", False))
        if not runtime.services_resolved or not any(runtime.hid.notif_state()):
            return
        runtime.ready = True
        runtime.hid.link_ready = True
        logger.info("[hid] ready (%s)", runtime.peer_mac or runtime.device_path)

    async def _poll_ready() -> None:
        while runtime.device_path and not runtime.ready:
            await _maybe_ready()
            await asyncio.sleep(0.25)

    def _start_ready_poll() -> None:
        nonlocal ready_task
        if ready_task:
            ready_task.cancel()
        ready_task = loop.create_task(_poll_ready())

    async def _handle_connected(path: str, dev: dict) -> None:
        if path in runtime.connected_devices:
            return
        runtime.connected_devices.add(path)
        label = _get_str(dev.get("Alias")) or _get_str(dev.get("Address")) or path
        logger.info("[hid] connected %s", label)
        if not runtime.device_path:
            runtime.device_path = path
            runtime.peer_mac = _get_str(dev.get("Address")) or None
            runtime.services_resolved = _get_bool(dev.get("ServicesResolved", False))
            runtime.ready = False
            runtime.hid.link_ready = False
            _start_ready_poll()
        await _sync_advertising()

    async def _handle_disconnected(path: str) -> None:
        if path not in runtime.connected_devices:
            return
        runtime.connected_devices.discard(path)
        logger.info("[hid] disconnected %s", path.rsplit("/", 1)[-1])
        if runtime.device_path == path:
            runtime.device_path = None
            runtime.peer_mac = None
            runtime.services_resolved = False
            runtime.ready = False
            runtime.hid.link_ready = False
        await _sync_advertising()

    def handler(msg):
        if msg.message_type is not MessageType.SIGNAL:
            return
        if msg.member != "PropertiesChanged" or not (msg.path or "").startswith(dev_prefix):
            return
        iface, changed, _ = msg.body
        if iface != "org.bluez.Device1":
            return
        if "Connected" in changed:
            if _get_bool(changed["Connected"]):
                loop.create_task(_handle_connected(msg.path, changed))
            else:
                loop.create_task(_handle_disconnected(msg.path))
        if "ServicesResolved" in changed and msg.path == runtime.device_path:
            runtime.services_resolved = _get_bool(changed["ServicesResolved"])
        if "Paired" in changed and _get_bool(changed["Paired"]):
            loop.create_task(trust_device(bus, msg.path))

    bus.add_message_handler(handler)
    try:
        # Seed: BlueZ won't re-signal a connection that already exists.
        for path, dev in _connected_from(await _get_managed_objects(bus)).items():
            await _handle_connected(path, dev)
        await _sync_advertising()

        while True:
            await asyncio.sleep(15.0)
            desired = _connected_from(await _get_managed_objects(bus))
            for path in sorted(runtime.connected_devices - desired.keys()):
                await _handle_disconnected(path)
            for path in sorted(desired.keys() - runtime.connected_devices):
                await _handle_connected(path, desired[path])
    finally:
        if ready_task:
            ready_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await ready_task
        bus.remove_message_handler(handler)


class BatteryService(Service):
    def __init__(self, initial_level: int = 100):
        super().__init__("180F", True)
        lvl = max(0, min(100, int(initial_level)))
        self._level = bytearray([lvl])

    @characteristic("2A19", CharFlags.READ | CharFlags.NOTIFY)
    def battery_level(self, _):
        # 0..100
        return bytes(self._level)


class DeviceInfoService(Service):
    def __init__(self, manufacturer="KbMouse", model="KbMouse-1", serial_number="0000",
                 vid=0xFFFF, pid=0x0002, ver=0x0100):
        super().__init__("180A", True)
        self._mfg    = manufacturer.encode("utf-8")
        self._model  = model.encode("utf-8")
        self._serial = serial_number.encode("utf-8")
        self._pnp    = bytes([0x02, vid & 0xFF, (vid>>8)&0xFF, pid & 0xFF, (pid>>8)&0xFF, ver & 0xFF, (ver>>8)&0xFF])

    @characteristic("2A29", CharFlags.READ | CharFlags.ENCRYPT_READ)
    def manufacturer_name(self, _):
        return self._mfg

    @characteristic("2A24", CharFlags.READ | CharFlags.ENCRYPT_READ)
    def model_number(self, _):
        return self._model

    @characteristic("2A25", CharFlags.READ | CharFlags.ENCRYPT_READ)
    def serial_number(self, _):
        return self._serial

    @characteristic("2A50", CharFlags.READ | CharFlags.ENCRYPT_READ)
    def pnp_id(self, _):
        return self._pnp


class HIDService(Service):
    def __init__(self, report_map: bytes = REPORT_MAP, on_output: Optional[Callable[[bytes], None]] = None):
        super().__init__("1812", True)
        self._report_map = bytes(report_map)
        self._on_output = on_output
        self._proto = bytearray([PROTOCOL_REPORT])
        self._leds = bytearray([0])
        self.link_ready: bool = False

    @property
    def protocol(self) -> int:
        return self._proto[0]

    # -------- subscription helpers --------
    def _is_subscribed(self, char) -> bool:
        # Supports both property and method styles found in bluez_peripheral
        for attr in ("is_notifying", "notifying"):
            if hasattr(char, attr):
                v = getattr(char, attr)
                return v() if callable(v) else bool(v)
        # If the library doesn't expose state, assume subscribed
        return True

    def notif_state(self) -> tuple[bool, bool]:
        mouse = self._is_subscribed(self.input_mouse) or self._is_subscribed(self.boot_mouse_input)
        kb    = self._is_subscribed(self.input_keyboard) or self._is_subscribed(self.boot_keyboard_input)
        return (mouse, kb)

    def _output_written(self, value) -> None:
        self._leds[:] = bytes(value)[:1] or b"\x00"
        if self._on_output is not None:
            self._on_output(bytes(value))

    # ---------------- GATT Characteristics ----------------
    # Protocol Mode (2A4E): READ/WRITE_WITHOUT_RESPONSE
    @characteristic("2A4E", CharFlags.READ | CharFlags.WRITE_WITHOUT_RESPONSE | CharFlags.ENCRYPT_READ)
    def protocol_mode(self, _):
        return bytes(self._proto)
    @protocol_mode.setter
    def protocol_mode_set(self, value, _):
        self._proto[:] = bytes(value)[:1] or bytes([PROTOCOL_REPORT])
        logger.info("[hid] protocol mode %s", "BOOT" if self._proto[0] == PROTOCOL_BOOT else "REPORT")

    # HID Information (2A4A): READ
    @characteristic("2A4A", CharFlags.READ | CharFlags.ENCRYPT_READ)
    def hid_info(self, _):
        return bytes([0x11, 0x01, 0x00, 0x03])  # bcdHID=0x0111, country=0, flags=0x03

    # HID Control Point (2A4C): suspend / exit suspend
    @characteristic("2A4C", CharFlags.WRITE_WITHOUT_RESPONSE | CharFlags.ENCRYPT_WRITE)
    def hid_cp(self, _):
        return b""
    @hid_cp.setter
    def hid_cp_set(self, value, _):
        logger.debug("[hid] control point %s", bytes(value).hex())

    # Report Map (2A4B): READ
    @characteristic("2A4B", CharFlags.READ | CharFlags.ENCRYPT_READ)
    def report_map(self, _):
        return self._report_map

    # Mouse input (Report-mode, RID 1) - 4-byte payload
    @characteristic("2A4D", CharFlags.READ | CharFlags.NOTIFY | CharFlags.ENCRYPT_READ)
    def input_mouse(self, _):
        return bytes(4)
    @input_mouse.descriptor("2908", DescFlags.READ)
    def input_mouse_ref(self, _):
        return bytes([RID_MOUSE, _REF_INPUT])

    # Keyboard input (Report-mode, RID 2) - 8-byte payload
    @characteristic("2A4D", CharFlags.READ | CharFlags.NOTIFY | CharFlags.ENCRYPT_READ)
    def input_keyboard(self, _):
        return bytes(8)
    @input_keyboard.descriptor("2908", DescFlags.READ)
    def input_keyboard_ref(self, _):
        return bytes([RID_KEYBOARD, _REF_INPUT])

    # Keyboard output (RID 2) - 1-byte LED bitfield written by the host
    @characteristic("2A4D", CharFlags.READ | CharFlags.WRITE | CharFlags.WRITE_WITHOUT_RESPONSE
                    | CharFlags.ENCRYPT_READ | CharFlags.ENCRYPT_WRITE)
    def output_keyboard(self, _):
        return bytes(self._leds)
    @output_keyboard.setter
    def output_keyboard_set(self, value, _):
        self._output_written(value)
    @output_keyboard.descriptor("2908", DescFlags.READ)
    def output_keyboard_ref(self, _):
        return bytes([RID_KEYBOARD, _REF_OUTPUT])

    # Boot Keyboard Input (2A22) - 8-byte payload (no report ID)
    @characteristic("2A22", CharFlags.READ | CharFlags.NOTIFY)
    def boot_keyboard_input(self, _):
        return bytes(8)

    # Boot Keyboard Output (2A32) - LEDs in boot protocol
    @characteristic("2A32", CharFlags.READ | CharFlags.WRITE | CharFlags.WRITE_WITHOUT_RESPONSE)
    def boot_keyboard_output(self, _):
        return bytes(self._leds)
    @boot_keyboard_output.setter
    def boot_keyboard_output_set(self, value, _):
        self._output_written(value)

    # Boot Mouse Input (2A33) - buttons, x, y
    @characteristic("2A33", CharFlags.READ | CharFlags.NOTIFY)
    def boot_mouse_input(self, _):
        return bytes(3)

    # ---------------- Send helpers ----------------
    def send_report(self, report: bytes) -> bool:
        """Notify one full report on the matching characteristic.

        Returns False when the link isn't ready and the report was dropped.
        """
        if not self.link_ready:
            return False
        rid, payload = split_report(report)
        boot = self._proto[0] == PROTOCOL_BOOT
        if rid == RID_MOUSE:
            if boot:
                self.boot_mouse_input.changed(payload[:3])
            else:
                self.input_mouse.changed(payload)
        elif rid == RID_KEYBOARD:
            if boot:
                self.boot_keyboard_input.changed(payload)
            else:
                self.input_keyboard.changed(payload)
        else:
            raise ValueError(f"unknown report id 0x{rid:02X}")
        return True


@dataclass
class HidRuntime:
    bus: any
    adapter: any
    adapter_name: str
    advert: any = None
    advert_path: str | None = None
    hid: any = None
    advertising: bool = False
    device_path: str | None = None
    peer_mac: str | None = None
    services_resolved: bool = False
    ready: bool = False
    connected_devices: set[str] = field(default_factory=set)
    advert_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class GattTransport:
    """Transport that publishes the HID service on a local BlueZ adapter.

    Config attributes used: device_name, adapter, appearance, manufacturer,
    model, serial_number, vid, pid.
    """

    def __init__(self, cfg, *, report_map: bytes = REPORT_MAP) -> None:
        self._cfg = cfg
        self._report_map = bytes(report_map)
        self._handler: Optional[OutputReportHandler] = None
        self._runtime: Optional[HidRuntime] = None
        self._app: Optional[ServiceCollection] = None
        self._tasks: list[asyncio.Task] = []
        self._dropped_not_ready = 0

    # ---- Transport ----
    def get_report_descriptor(self) -> bytes:
        return self._report_map

    def send_report(self, report: bytes) -> None:
        rt = self._runtime
        if rt is None or rt.hid is None or not rt.hid.send_report(report):
            self._dropped_not_ready += 1
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("[hid] link not ready; dropped %s", bytes(report).hex(" "))

    def set_output_report_handler(self, handler: Optional[OutputReportHandler]) -> None:
        self._handler = handler

    def _dispatch_output(self, data: bytes) -> None:
        if self._handler is not None:
            self._handler(data)

    @property
    def status(self) -> dict:
        rt = self._runtime
        return {
            "adapter": getattr(self._cfg, "adapter", "hci0"),
            "advertising": bool(rt and rt.advertising),
            "connected": bool(rt and rt.device_path),
            "ready": bool(rt and rt.ready),
            "peer": rt.peer_mac if rt else None,
            "protocol": ("boot" if rt.hid.protocol == PROTOCOL_BOOT else "report") if rt and rt.hid else None,
            "dropped_not_ready": self._dropped_not_ready,
        }

    # ---- lifecycle ----
    async def start(self) -> None:
        """Register agent, services and advertisement, then watch the link."""
        if self._runtime is not None:
            return
        cfg = self._cfg
        device_name = getattr(cfg, "device_name", None) or os.uname().nodename

        bus = await get_message_bus()
        if not await is_bluez_available(bus):
            raise RuntimeError("BlueZ not available on system DBus.")

        adapter_name = getattr(cfg, "adapter", "hci0")
        try:
            xml = await bus.introspect("org.bluez", f"/org/bluez/{adapter_name}")
        except Exception as exc:
            raise RuntimeError(f"Bluetooth adapter {adapter_name} not found") from exc

        proxy = bus.get_proxy_object("org.bluez", f"/org/bluez/{adapter_name}", xml)
        adapter = Adapter(proxy)
        await ensure_controller_baseline(bus, adapter_name, adapter_proxy=proxy)
        await adapter.set_alias(device_name)

        agent = NoIoAgent()
        await agent.register(bus, default=True)

        hid = HIDService(report_map=self._report_map, on_output=self._dispatch_output)
        app = ServiceCollection()
        app.add_service(DeviceInfoService(
            manufacturer=getattr(cfg, "manufacturer", "KbMouse"),
            model=getattr(cfg, "model", "KbMouse-1"),
            serial_number=getattr(cfg, "serial_number", "0000"),
            vid=int(getattr(cfg, "vid", 0xFFFF)),
            pid=int(getattr(cfg, "pid", 0x0002)),
        ))
        app.add_service(BatteryService(initial_level=100))
        app.add_service(hid)

        async def _power_cycle_adapter():
            """Toggle adapter power and then re-apply our baseline settings."""
            try:
                await adapter.set_powered(False)
                await asyncio.sleep(0.4)
                await adapter.set_powered(True)
                await asyncio.sleep(0.8)
            except Exception as e:
                logger.warning("[hid] Bluetooth adapter power-cycle failed: %s", e)
            await ensure_controller_baseline(bus, adapter_name, adapter_proxy=proxy)
            with contextlib.suppress(Exception):
                await adapter.set_alias(device_name)

        try:
            await app.register(bus, adapter=adapter)
        except Exception as e:
            logger.warning("[hid] GATT register failed: %s - retrying after power-cycle", e)
            await _power_cycle_adapter()
            try:
                await app.register(bus, adapter=adapter)
            except Exception as e2:
                raise RuntimeError(f"GATT application register failed after retry: {e2}") from e2

        runtime = HidRuntime(bus=bus, adapter=adapter, adapter_name=adapter_name, hid=hid)
        await _cleanup_stale_adverts(bus, adapter_name)
        try:
            await _adv_register(runtime, cfg)
        except Exception as e:
            with contextlib.suppress(Exception):
                await app.unregister()
            raise RuntimeError(f"Advertising register failed: {e}") from e
        logger.info("[hid] advertising started as %s", device_name)

        self._runtime = runtime
        self._app = app
        self._tasks = [asyncio.create_task(watch_link(runtime, cfg), name="hid-watch-link")]

    async def stop(self) -> None:
        """Tear down the HID service and disconnect any connected central."""
        runtime, app = self._runtime, self._app
        if runtime is None:
            return

        for t in self._tasks:
            t.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        for path in list(runtime.connected_devices):
            try:
                xml = await runtime.bus.introspect("org.bluez", path)
                dev_obj = runtime.bus.get_proxy_object("org.bluez", path, xml)
                await dev_obj.get_interface("org.bluez.Device1").call_disconnect()
                logger.info("[hid] disconnected %s (clean shutdown)", path.rsplit("/", 1)[-1])
            except Exception as exc:
                logger.debug("[hid] disconnect %s failed: %s", path, exc)

        with contextlib.suppress(Exception):
            await _adv_unregister(runtime)
        if app is not None:
            with contextlib.suppress(Exception):
                await app.unregister()

        runtime.hid.link_ready = False
        self._runtime = None
        self._app = None
