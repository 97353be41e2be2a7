"""HID Report Map for the combined mouse + keyboard peripheral."""

from __future__ import annotations

# Report IDs
RID_MOUSE    = 0x01
RID_KEYBOARD = 0x02

# Report lengths, report ID included
MOUSE_REPORT_LEN    = 5
KEYBOARD_REPORT_LEN = 9

# --------------------------
# HID Report Map (Mouse + Keyboard)
# --------------------------
# Hosts match this table byte for byte; do not reorder items.
REPORT_MAP = bytes([
    # Mouse - Report ID 1
    0x05,0x01, 0x09,0x02, 0xA1,0x01,
      0x85,RID_MOUSE,         # REPORT_ID (1)
      0x09,0x01,              # USAGE (Pointer)
      0xA1,0x00,              # COLLECTION (Physical)
        0x05,0x09,            #   USAGE_PAGE (Buttons)
        0x19,0x01, 0x29,0x03, #   USAGE_MIN/MAX (buttons 1..3)
        0x15,0x00, 0x25,0x01, #   LOGICAL_MIN 0 / MAX 1
        0x95,0x03, 0x75,0x01, #   REPORT_COUNT 3, SIZE 1 (button bits)
        0x81,0x02,            #   INPUT (Data,Var,Abs)
        0x95,0x01, 0x75,0x05, #   5 bits padding
        0x81,0x01,            #   INPUT (Const)
        0x05,0x01,            #   USAGE_PAGE (Generic Desktop)
        0x09,0x30, 0x09,0x31, #   USAGE (X), USAGE (Y)
        0x09,0x38,            #   USAGE (Wheel)
        0x15,0x81, 0x25,0x7F, #   LOGICAL_MIN -127 / MAX 127
        0x75,0x08, 0x95,0x03, #   three signed bytes
        0x81,0x06,            #   INPUT (Data,Var,Rel)
      0xC0,
    0xC0,

    # Keyboard - Report ID 2 (REPORT_ID precedes the collection here)
    0x05,0x01, 0x09,0x06,
      0x85,RID_KEYBOARD,      # REPORT_ID (2)
    0xA1,0x01,
      0x05,0x07,              #   USAGE_PAGE (Keyboard)
      0x19,0xE0, 0x29,0xE7,   #   USAGE_MIN/MAX (modifiers)
      0x15,0x00, 0x25,0x01,   #   LOGICAL_MIN 0 / MAX 1
      0x75,0x01, 0x95,0x08,   #   REPORT_SIZE 1, COUNT 8  (mod bits)
      0x81,0x02,              #   INPUT (Data,Var,Abs)
      0x95,0x01, 0x75,0x08,   #   reserved byte
      0x81,0x01,              #   INPUT (Const,Array,Abs)
      0x95,0x05, 0x75,0x01,   #   5 LED bits
      0x05,0x08,              #   USAGE_PAGE (LEDs)
      0x19,0x01, 0x29,0x05,   #   Num Lock .. Kana
      0x91,0x02,              #   OUTPUT (Data,Var,Abs)
      0x95,0x01, 0x75,0x03,   #   3 bits padding
      0x91,0x01,              #   OUTPUT (Const)
      0x95,0x06, 0x75,0x08,   #   6 keys
      0x15,0x00, 0x25,0x65,   #   key range 0..0x65
      0x05,0x07,              #   USAGE_PAGE (Keyboard)
      0x19,0x00, 0x29,0x65,   #   USAGE_MIN/MAX (keys)
      0x81,0x00,              #   INPUT (Data,Array,Abs)
    0xC0,
])


def get_report_descriptor() -> bytes:
    """Return the HID Report Map published on characteristic 0x2A4B."""
    return REPORT_MAP
