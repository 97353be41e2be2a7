"""Configuration helpers for environment-driven settings."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

TRANSPORTS = ("gatt", "log")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip(), 0)
    except ValueError:
        logger.warning("Invalid %s=%r (using default=%s)", name, raw, default)
        return default


@dataclass(frozen=True)
class Config:
    # BLE identity
    device_name: str
    adapter: str
    appearance: int
    manufacturer: str
    model: str
    serial_number: str
    vid: int
    pid: int

    # Report transport
    transport: str
    send_interval_ms: int

    # Control endpoint
    control_host: str
    control_port: int

    @staticmethod
    def load() -> "Config":
        """Build a Config from environment."""
        device_name   = os.getenv("KBM_DEVICE_NAME", "KbMouse")
        adapter       = os.getenv("KBM_ADAPTER", "hci0")
        appearance    = _env_int("KBM_APPEARANCE", 0x03C0)
        manufacturer  = os.getenv("KBM_MANUFACTURER", "KbMouse")
        model         = os.getenv("KBM_MODEL", "KbMouse-1")
        serial_number = os.getenv("KBM_SERIAL_NUMBER", "0000")
        vid = _env_int("KBM_VID", 0xFFFF)
        pid = _env_int("KBM_PID", 0x0002)

        transport = os.getenv("KBM_TRANSPORT", "gatt").strip().lower()
        if transport not in TRANSPORTS:
            logger.warning("Unknown KBM_TRANSPORT=%r (using gatt)", transport)
            transport = "gatt"

        # Reports are paced at this interval on the radio link.
        send_interval_ms = max(0, _env_int("KBM_SEND_INTERVAL_MS", 10))

        control_host = os.getenv("CONTROL_HOST", "127.0.0.1")
        control_port = _env_int("CONTROL_PORT", 9124)

        return Config(
            device_name=device_name,
            adapter=adapter,
            appearance=appearance,
            manufacturer=manufacturer,
            model=model,
            serial_number=serial_number,
            vid=vid & 0xFFFF,
            pid=pid & 0xFFFF,
            transport=transport,
            send_interval_ms=send_interval_ms,
            control_host=control_host,
            control_port=control_port,
        )
