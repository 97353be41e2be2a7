"""Transport interface between the report encoders and the BLE stack."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Protocol

from .report_map import get_report_descriptor

OutputReportHandler = Callable[[bytes], None]

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """What the HID core needs from whatever actually carries reports."""

    def get_report_descriptor(self) -> bytes:
        """Return the Report Map this transport publishes to the host."""
        ...

    def send_report(self, report: bytes) -> None:
        """Transmit one full report (report ID first), preserving call order."""
        ...

    def set_output_report_handler(self, handler: Optional[OutputReportHandler]) -> None:
        """Register the callback for host-to-device output reports (LEDs)."""
        ...


class LogTransport:
    """Dry-run transport: logs every report and keeps a copy in ``sent``."""

    def __init__(self, *, keep: int = 256) -> None:
        self._keep = max(0, int(keep))
        self._handler: Optional[OutputReportHandler] = None
        self.sent: List[bytes] = []

    def get_report_descriptor(self) -> bytes:
        return get_report_descriptor()

    def send_report(self, report: bytes) -> None:
        logger.info("[log] report %s", bytes(report).hex(" "))
        self.sent.append(bytes(report))
        if len(self.sent) > self._keep:
            del self.sent[: len(self.sent) - self._keep]

    def set_output_report_handler(self, handler: Optional[OutputReportHandler]) -> None:
        self._handler = handler

    def inject_output_report(self, data: bytes) -> None:
        """Deliver an output report as if the host had written it."""
        if self._handler is not None:
            self._handler(bytes(data))
