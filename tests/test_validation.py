import unittest

from kbmouse.validation import parse_bool, parse_int, parse_modifiers, parse_usage


class TestParseInt(unittest.TestCase):
    def test_values(self) -> None:
        self.assertEqual(parse_int(5), 5)
        self.assertEqual(parse_int("-12"), -12)
        self.assertEqual(parse_int("0x10"), 16)
        self.assertEqual(parse_int(None, default=3), 3)
        self.assertEqual(parse_int(1000), 1000)  # clamping belongs to the encoder

    def test_invalid_falls_back(self) -> None:
        with self.assertLogs("kbmouse.validation", level="WARNING"):
            self.assertEqual(parse_int("abc", default=7, context="t"), 7)

    def test_overflowing_float_falls_back(self) -> None:
        with self.assertLogs("kbmouse.validation", level="WARNING"):
            self.assertEqual(parse_int(float("inf"), default=4), 4)


class TestParseBool(unittest.TestCase):
    def test_values(self) -> None:
        self.assertTrue(parse_bool(True))
        self.assertTrue(parse_bool(1))
        self.assertTrue(parse_bool("Yes"))
        self.assertFalse(parse_bool("off"))
        self.assertFalse(parse_bool(0))
        self.assertFalse(parse_bool(None))

    def test_invalid_falls_back(self) -> None:
        with self.assertLogs("kbmouse.validation", level="WARNING"):
            self.assertTrue(parse_bool("maybe", default=True))


class TestParseModifiers(unittest.TestCase):
    def test_forms(self) -> None:
        self.assertEqual(parse_modifiers(None), 0)
        self.assertEqual(parse_modifiers(6), 6)
        self.assertEqual(parse_modifiers("shift"), 2)
        self.assertEqual(parse_modifiers("ctrl+alt"), 5)
        self.assertEqual(parse_modifiers(["CTRL", "shift"]), 3)

    def test_unknown_names_are_ignored(self) -> None:
        with self.assertLogs("kbmouse.validation", level="WARNING"):
            self.assertEqual(parse_modifiers("ctrl+hyper"), 1)


class TestParseUsage(unittest.TestCase):
    def test_values(self) -> None:
        self.assertEqual(parse_usage(0x3A), 0x3A)
        self.assertEqual(parse_usage("0x04"), 4)
        self.assertEqual(parse_usage(0), 0)

    def test_invalid(self) -> None:
        with self.assertLogs("kbmouse.validation", level="WARNING"):
            self.assertIsNone(parse_usage(256))
        with self.assertLogs("kbmouse.validation", level="WARNING"):
            self.assertIsNone(parse_usage("f1"))
        with self.assertLogs("kbmouse.validation", level="WARNING"):
            self.assertIsNone(parse_usage(True))
        with self.assertLogs("kbmouse.validation", level="WARNING"):
            self.assertIsNone(parse_usage(float("inf")))


if __name__ == "__main__":
    unittest.main()
