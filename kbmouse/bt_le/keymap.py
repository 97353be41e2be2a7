"""US keyboard mapping from characters to (modifier, usage) pairs.

Usage codes come from the HID Usage Tables, Keyboard/Keypad page (0x07).
Only the US QWERTY layout is covered.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Dict, Mapping, Tuple

# --------------------------
# Modifier bits (byte 1 of the keyboard report)
# --------------------------
MODIFIER_KEY_NONE  = 0x00
MODIFIER_KEY_CTRL  = 0x01
MODIFIER_KEY_SHIFT = 0x02
MODIFIER_KEY_ALT   = 0x04

# --------------------------
# Named usage codes
# --------------------------
KEY_NONE = 0x00

KEY_ENTER     = 0x28
KEY_BACKSPACE = 0x2A
KEY_TAB       = 0x2B
KEY_SPACE     = 0x2C

KEY_F1  = 0x3A
KEY_F2  = 0x3B
KEY_F3  = 0x3C
KEY_F4  = 0x3D
KEY_F5  = 0x3E
KEY_F6  = 0x3F
KEY_F7  = 0x40
KEY_F8  = 0x41
KEY_F9  = 0x42
KEY_F10 = 0x43
KEY_F11 = 0x44
KEY_F12 = 0x45

KEY_PRINT_SCREEN = 0x46
KEY_SCROLL_LOCK  = 0x47
KEY_CAPS_LOCK    = 0x39
KEY_NUM_LOCK     = 0x53
KEY_INSERT       = 0x49
KEY_HOME         = 0x4A
KEY_PAGE_UP      = 0x4B
KEY_PAGE_DOWN    = 0x4E

KEY_RIGHT_ARROW = 0x4F
KEY_LEFT_ARROW  = 0x50
KEY_DOWN_ARROW  = 0x51
KEY_UP_ARROW    = 0x52

KeyPair = Tuple[int, int]

_UNMAPPED: KeyPair = (MODIFIER_KEY_NONE, KEY_NONE)

# (unshifted, shifted, usage) for every non-letter key sharing one usage code
_KEY_PAIRS = (
    ("1", "!", 0x1E), ("2", "@", 0x1F), ("3", "#", 0x20), ("4", "$", 0x21),
    ("5", "%", 0x22), ("6", "^", 0x23), ("7", "&", 0x24), ("8", "*", 0x25),
    ("9", "(", 0x26), ("0", ")", 0x27),
    ("-", "_", 0x2D), ("=", "+", 0x2E),
    ("[", "{", 0x2F), ("]", "}", 0x30), ("\\", "|", 0x31),
    (";", ":", 0x33), ("'", '"', 0x34), ("`", "~", 0x35),
    (",", "<", 0x36), (".", ">", 0x37), ("/", "?", 0x38),
)


def _build_character_map() -> Mapping[str, KeyPair]:
    table: Dict[str, KeyPair] = {}
    for offset in range(26):
        usage = 0x04 + offset
        table[chr(ord("a") + offset)] = (MODIFIER_KEY_NONE, usage)
        table[chr(ord("A") + offset)] = (MODIFIER_KEY_SHIFT, usage)
    for plain, shifted, usage in _KEY_PAIRS:
        table[plain] = (MODIFIER_KEY_NONE, usage)
        table[shifted] = (MODIFIER_KEY_SHIFT, usage)
    table["\n"] = (MODIFIER_KEY_NONE, KEY_ENTER)
    table["\b"] = (MODIFIER_KEY_NONE, KEY_BACKSPACE)
    table["\t"] = (MODIFIER_KEY_NONE, KEY_TAB)
    table[" "] = (MODIFIER_KEY_NONE, KEY_SPACE)
    return MappingProxyType(table)


CHARACTER_MAP: Mapping[str, KeyPair] = _build_character_map()

# Symbolic names accepted by the control API
KEY_NAMES: Mapping[str, int] = MappingProxyType({
    "enter": KEY_ENTER, "backspace": KEY_BACKSPACE, "tab": KEY_TAB, "space": KEY_SPACE,
    "f1": KEY_F1, "f2": KEY_F2, "f3": KEY_F3, "f4": KEY_F4,
    "f5": KEY_F5, "f6": KEY_F6, "f7": KEY_F7, "f8": KEY_F8,
    "f9": KEY_F9, "f10": KEY_F10, "f11": KEY_F11, "f12": KEY_F12,
    "print_screen": KEY_PRINT_SCREEN, "scroll_lock": KEY_SCROLL_LOCK,
    "caps_lock": KEY_CAPS_LOCK, "num_lock": KEY_NUM_LOCK,
    "insert": KEY_INSERT, "home": KEY_HOME,
    "page_up": KEY_PAGE_UP, "page_down": KEY_PAGE_DOWN,
    "right": KEY_RIGHT_ARROW, "left": KEY_LEFT_ARROW,
    "down": KEY_DOWN_ARROW, "up": KEY_UP_ARROW,
})

MODIFIER_NAMES: Mapping[str, int] = MappingProxyType({
    "ctrl": MODIFIER_KEY_CTRL,
    "shift": MODIFIER_KEY_SHIFT,
    "alt": MODIFIER_KEY_ALT,
})


def lookup(char: str) -> KeyPair:
    """Return (modifier, usage) for one character; (0, 0) when unmapped."""
    return CHARACTER_MAP.get(char, _UNMAPPED)


def modifier_for(char: str) -> int:
    return lookup(char)[0]


def usage_code_for(char: str) -> int:
    return lookup(char)[1]


def is_mappable(char: str) -> bool:
    """True when the character produces a real keystroke on a US keyboard."""
    return char in CHARACTER_MAP
