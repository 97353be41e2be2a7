"""Mouse report encoding with last-report deduplication."""

from __future__ import annotations

import threading
from typing import Optional

from .report_map import MOUSE_REPORT_LEN, RID_MOUSE

BUTTON_LEFT   = 0x01
BUTTON_RIGHT  = 0x02
BUTTON_MIDDLE = 0x04

AXIS_MIN = -127
AXIS_MAX = 127

_REST_PAYLOAD = bytes(MOUSE_REPORT_LEN - 1)


def _clamp(value: int) -> int:
    return max(AXIS_MIN, min(AXIS_MAX, int(value)))


def _s8(value: int) -> int:
    # two's complement byte
    return value & 0xFF


def build_mouse_report(
    dx: int,
    dy: int,
    wheel: int,
    left: bool = False,
    right: bool = False,
    middle: bool = False,
) -> bytes:
    """Build a 5-byte mouse report: RID, buttons, dx, dy, wheel."""
    buttons = 0
    if left:
        buttons |= BUTTON_LEFT
    if right:
        buttons |= BUTTON_RIGHT
    if middle:
        buttons |= BUTTON_MIDDLE
    return bytes([
        RID_MOUSE,
        buttons & 0x07,
        _s8(_clamp(dx)),
        _s8(_clamp(dy)),
        _s8(_clamp(wheel)),
    ])


class MouseReportEncoder:
    """Encode pointer intent and drop repeated rest reports.

    A report is suppressed only when both the previously forwarded report and
    the new one are at rest (no buttons, no motion, no wheel). Moving back to
    rest therefore produces exactly one rest report.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last_sent = bytes(MOUSE_REPORT_LEN)

    def encode(
        self,
        dx: int,
        dy: int,
        wheel: int,
        left: bool = False,
        right: bool = False,
        middle: bool = False,
    ) -> Optional[bytes]:
        report = build_mouse_report(dx, dy, wheel, left, right, middle)
        with self._lock:
            # compare payloads only: the report ID byte is never zero
            if self._last_sent[1:] == _REST_PAYLOAD and report[1:] == _REST_PAYLOAD:
                return None
            self._last_sent = report
        return report
