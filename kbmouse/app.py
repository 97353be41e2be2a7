"""Application entry point wiring the HID transport, report pump and control API."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import sys

try:
    import uvloop as _uvloop  # type: ignore
    _uvloop.install()
except Exception:
    pass

from .config import Config
from .control import ControlServer
from .bt_le.controller import BTLEController
from .bt_le.transport import LogTransport


def _debug_enabled() -> bool:
    value = os.getenv("DEBUG", "")
    return value.strip().lower() in {"1", "true", "yes", "on"}


logger = logging.getLogger(__name__)


def _make_transport(cfg: Config):
    if cfg.transport == "log":
        return LogTransport()
    # bluez_peripheral/dbus_fast are only needed for the real radio
    from .bt_le.hid_device import GattTransport
    return GattTransport(cfg)


async def main() -> None:
    """Run the peripheral until interrupted."""
    cfg = Config.load()

    transport = _make_transport(cfg)
    bt = BTLEController(transport, send_interval_ms=cfg.send_interval_ms)
    control = ControlServer(host=cfg.control_host, port=cfg.control_port, bt=bt)

    logger.info(
        "[app] name=%s adapter=%s transport=%s",
        cfg.device_name,
        cfg.adapter,
        cfg.transport,
    )

    stop = asyncio.Event()

    # Stop order is reverse of start order.
    started = []  # list[tuple[str, callable]]

    try:
        start_transport = getattr(transport, "start", None)
        if start_transport is not None:
            await start_transport()
            started.append(("transport", transport.stop))

        await bt.start()
        started.append(("bt", bt.stop))

        await control.start()
        started.append(("control", control.stop))

        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(Exception):
                asyncio.get_running_loop().add_signal_handler(sig, stop.set)

        await stop.wait()

    finally:
        stop.set()

        # Leave the host with nothing pressed.
        if bt.status["running"]:
            with contextlib.suppress(Exception):
                bt.hid_client.send_key_up()
                bt.hid_client.move_pointer(0, 0, 0)

        for _name, stopper in reversed(started):
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await stopper()


def run() -> None:
    logging.basicConfig(
        level=logging.DEBUG if _debug_enabled() else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )
    asyncio.run(main())


if __name__ == "__main__":
    run()
