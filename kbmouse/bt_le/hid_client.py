"""Translate pointer and keyboard intent into HID reports."""

from __future__ import annotations

import logging
import threading
from typing import List, Optional

from . import keymap
from .keyboard import KeySequencer
from .mouse import MouseReportEncoder

logger = logging.getLogger(__name__)


class HIDClient:
    """Encode mouse/keyboard actions and forward the reports to the transport."""
    def __init__(self, *, hid) -> None:
        self._hid = hid
        self._mouse = MouseReportEncoder()
        self._keys = KeySequencer()
        # dedup decision and send must reach the transport in the same order
        self._mouse_lock = threading.Lock()
        # one text sequence at a time so inter-key releases stay correct
        self._text_lock = threading.Lock()

    # ---------- mouse ----------
    def move_pointer(
        self,
        dx: int = 0,
        dy: int = 0,
        wheel: int = 0,
        *,
        left: bool = False,
        right: bool = False,
        middle: bool = False,
    ) -> bool:
        """Send a mouse report; returns False when it was deduplicated."""
        with self._mouse_lock:
            report = self._mouse.encode(dx, dy, wheel, left, right, middle)
            if report is None:
                return False
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug('mouse %s', report.hex(" "))
            self._hid.send_report(report)
        return True

    # ---------- keyboard ----------
    def send_keys(self, text: str) -> int:
        """Type ``text``; returns the number of reports sent.

        Characters with no US-keyboard key are still sent (usage 0) and logged.
        """
        with self._text_lock:
            for char in dict.fromkeys(text):
                if not keymap.is_mappable(char):
                    logger.warning('unmapped character %r; sending usage 0', char)
            reports: List[bytes] = list(self._keys.type_text(text))
            for report in reports:
                self._hid.send_report(report)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug('typed %d char(s) as %d report(s)', len(text), len(reports))
        return len(reports)

    def send_key_down(self, modifier: int = keymap.MODIFIER_KEY_NONE, usage: int = keymap.KEY_NONE) -> None:
        """Press a key (no auto-release)."""
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug('keyboard down mod=0x%02X usage=0x%02X', modifier, usage)
        self._hid.send_report(self._keys.press_key(modifier, usage))

    def send_key_up(self) -> None:
        """Release all keys."""
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug('keyboard up')
        self._hid.send_report(self._keys.release_key())

    def send_named_key(self, name: str, modifier: int = keymap.MODIFIER_KEY_NONE) -> Optional[int]:
        """Press a key by symbolic name (``f1``, ``up``, ...); None if unknown."""
        usage = keymap.KEY_NAMES.get(name.strip().lower())
        if usage is None:
            logger.warning('unknown key name %s; ignoring', name)
            return None
        self.send_key_down(modifier, usage)
        return usage
