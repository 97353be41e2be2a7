# Copyright (c) 2025 KbMouse
# SPDX-License-Identifier: MIT

"""
BTLEController - ordered report pump between HIDClient and a Transport.

The controller owns the transport, checks that it publishes our Report Map, and
delivers every report strictly in the order it was produced:
- one asyncio queue, one pump task, one report in flight at a time
- a fixed sending interval between reports (radio links drop bursts)
- small retry-on-error for transient transport failures
- inbound output reports (keyboard LEDs) are logged and kept for status
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

from .hid_client import HIDClient
from .report_map import REPORT_MAP
from .transport import Transport


logger = logging.getLogger(__name__)

_STOP = object()


@dataclass
class BTLEControllerStatus:
    """Minimal status surface for diagnostics."""
    transport: str = "gatt"
    running: bool = False
    send_interval_ms: int = 10
    queued: int = 0
    sent: int = 0
    dropped: int = 0
    last_output_report: Optional[str] = None


class BTLEController:
    """
    Peripheral-side controller that forwards HID reports to a Transport in order.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        send_interval_ms: int = 10,
        max_retries: int = 2,
        retry_delay_s: float = 0.02,
    ) -> None:
        self._transport = transport
        self._send_interval_s = max(0, int(send_interval_ms)) / 1000.0
        self._max_retries = max(0, int(max_retries))
        self._retry_delay_s = retry_delay_s

        # HIDClient expects a keyword-only `hid` argument.
        self._hid_client = HIDClient(hid=self)

        # Created in start() when an event loop is running
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None

        # serializes inline delivery before start()
        self._inline_lock = threading.Lock()

        self._status = BTLEControllerStatus(
            transport=type(transport).__name__,
            send_interval_ms=int(send_interval_ms),
        )

    @property
    def hid_client(self) -> HIDClient:
        return self._hid_client

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def status(self) -> dict:
        s = self._status
        out = {
            "transport": s.transport,
            "running": s.running,
            "send_interval_ms": s.send_interval_ms,
            "queued": self._queue.qsize() if self._queue is not None else 0,
            "sent": s.sent,
            "dropped": s.dropped,
            "last_output_report": s.last_output_report,
        }
        link = getattr(self._transport, "status", None)
        if isinstance(link, dict):
            out["link"] = dict(link)
        return out

    async def start(self) -> None:
        if self._task is not None:
            return

        descriptor = bytes(self._transport.get_report_descriptor())
        if descriptor != REPORT_MAP:
            raise RuntimeError(
                f"Transport {self._status.transport} publishes a different Report Map "
                f"({len(descriptor)} bytes, expected {len(REPORT_MAP)})"
            )

        self._transport.set_output_report_handler(self._on_output_report)

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._task = self._loop.create_task(self._pump(self._queue), name="hid-report-pump")
        self._status.running = True

        logger.info(
            "[ctl] BTLEController ready (transport=%s interval=%.0fms)",
            self._status.transport, self._send_interval_s * 1000.0,
        )

    async def stop(self, *, drain_timeout: float = 2.0) -> None:
        """Deliver what is already queued (bounded by ``drain_timeout``), then stop."""
        task, queue = self._task, self._queue
        if task is None or queue is None:
            return
        queue.put_nowait(_STOP)
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=drain_timeout)
        except asyncio.TimeoutError:
            logger.warning("[ctl] %d report(s) not delivered before shutdown", queue.qsize())
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        finally:
            self._task = None
            self._queue = None
            self._loop = None
            self._status.running = False
            self._transport.set_output_report_handler(None)

    # --- transport-facing API used by HIDClient ---

    def send_report(self, report: bytes) -> None:
        """Queue one report for transmission; safe to call from any thread."""
        report = bytes(report)
        loop, queue = self._loop, self._queue
        if loop is None or queue is None:
            with self._inline_lock:
                self._deliver_blocking(report)
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            queue.put_nowait(report)
        else:
            loop.call_soon_threadsafe(queue.put_nowait, report)

    # --- internals ---

    async def _pump(self, queue: asyncio.Queue) -> None:
        while True:
            item = await queue.get()
            if item is _STOP:
                return
            await self._deliver(item)
            if self._send_interval_s > 0:
                await asyncio.sleep(self._send_interval_s)

    async def _deliver(self, report: bytes) -> None:
        attempts = 1 + self._max_retries
        for attempt in range(attempts):
            try:
                self._transport.send_report(report)
            except Exception as e:
                logger.warning(
                    "[ctl] report send failed (attempt %d/%d): %r",
                    attempt + 1, attempts, e,
                )
                await asyncio.sleep(self._retry_delay_s)
                continue
            self._status.sent += 1
            return
        self._status.dropped += 1

    def _deliver_blocking(self, report: bytes) -> None:
        attempts = 1 + self._max_retries
        for attempt in range(attempts):
            try:
                self._transport.send_report(report)
            except Exception as e:
                logger.warning(
                    "[ctl] report send failed (attempt %d/%d): %r",
                    attempt + 1, attempts, e,
                )
                time.sleep(self._retry_delay_s)
                continue
            self._status.sent += 1
            return
        self._status.dropped += 1

    def _on_output_report(self, data: bytes) -> None:
        # Called from the BLE stack; observation only.
        raw = bytes(data)
        self._status.last_output_report = raw.hex()
        logger.info("[ctl] output report data: %s", list(raw))
