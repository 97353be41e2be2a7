"""Keyboard report encoding and text-to-keystroke sequencing."""

from __future__ import annotations

from typing import Iterable, Iterator, Optional

from . import keymap
from .report_map import KEYBOARD_REPORT_LEN, RID_KEYBOARD

MODIFIER_INDEX = 1
KEYCODE_INDEX  = 3

# Report ID followed by an all-zero payload: no keys pressed
KEY_UP_REPORT = bytes([RID_KEYBOARD]) + bytes(KEYBOARD_REPORT_LEN - 1)


class KeyboardReportEncoder:
    """Build 9-byte keyboard reports (single key per report)."""

    @staticmethod
    def key_down(modifier: int, usage: int) -> bytes:
        report = bytearray(KEY_UP_REPORT)
        report[MODIFIER_INDEX] = modifier & 0xFF
        report[KEYCODE_INDEX] = usage & 0xFF
        return bytes(report)

    @staticmethod
    def key_up() -> bytes:
        return KEY_UP_REPORT


class KeySequencer:
    """Turn text or discrete key actions into ordered keyboard reports."""

    def __init__(self, encoder: Optional[KeyboardReportEncoder] = None) -> None:
        self._encoder = encoder or KeyboardReportEncoder()

    def type_text(self, text: Iterable[str]) -> Iterator[bytes]:
        """Yield key-down/key-up reports for ``text`` in order.

        A key-up is inserted before a character that repeats the one just
        typed, so the host sees two presses instead of one held key. The
        sequence always ends with a key-up.
        """
        last: Optional[str] = None
        for char in text:
            modifier, usage = keymap.lookup(char)
            if char == last:
                yield self._encoder.key_up()
            yield self._encoder.key_down(modifier, usage)
            last = char
        yield self._encoder.key_up()

    def press_key(self, modifier: int, usage: int) -> bytes:
        return self._encoder.key_down(modifier, usage)

    def release_key(self) -> bytes:
        return self._encoder.key_up()
