import unittest

from kbmouse.bt_le.hid_device import PROTOCOL_BOOT, HIDService, split_report
from kbmouse.bt_le.keyboard import KEY_UP_REPORT, KeyboardReportEncoder
from kbmouse.bt_le.mouse import build_mouse_report

_NOTIFYING = (
    "input_mouse",
    "input_keyboard",
    "boot_mouse_input",
    "boot_keyboard_input",
)


class TestSplitReport(unittest.TestCase):
    def test_mouse_payload_drops_report_id(self) -> None:
        rid, payload = split_report(build_mouse_report(1, -1, 0, left=True))
        self.assertEqual(rid, 1)
        self.assertEqual(payload, bytes([1, 1, 0xFF, 0]))

    def test_keyboard_payload_is_boot_layout(self) -> None:
        rid, payload = split_report(KeyboardReportEncoder.key_down(2, 0x04))
        self.assertEqual(rid, 2)
        self.assertEqual(payload, bytes([2, 0, 4, 0, 0, 0, 0, 0]))

    def test_empty_report_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            split_report(b"")


class TestHIDServiceRouting(unittest.TestCase):
    def setUp(self) -> None:
        self.outputs = []
        self.svc = HIDService(on_output=self.outputs.append)
        self.svc.link_ready = True

        # characteristic objects are shared by the class; record on each and restore
        self.notified = []
        for name in _NOTIFYING:
            char = getattr(self.svc, name)
            char.changed = self._recorder(name)
            self.addCleanup(vars(char).pop, "changed", None)

    def _recorder(self, name: str):
        def _changed(value) -> None:
            self.notified.append((name, bytes(value)))
        return _changed

    def test_report_mode_routes_by_report_id(self) -> None:
        self.assertTrue(self.svc.send_report(build_mouse_report(3, -2, 1, right=True)))
        self.assertTrue(self.svc.send_report(KeyboardReportEncoder.key_down(2, 0x04)))
        self.assertEqual(
            self.notified,
            [
                ("input_mouse", bytes([2, 3, 0xFE, 1])),
                ("input_keyboard", bytes([2, 0, 4, 0, 0, 0, 0, 0])),
            ],
        )

    def test_boot_mode_uses_boot_characteristics(self) -> None:
        self.svc._proto[0] = PROTOCOL_BOOT
        self.assertEqual(self.svc.protocol, PROTOCOL_BOOT)

        self.assertTrue(self.svc.send_report(build_mouse_report(5, 6, -1, left=True)))
        self.assertTrue(self.svc.send_report(KEY_UP_REPORT))
        self.assertEqual(
            self.notified,
            [
                ("boot_mouse_input", bytes([1, 5, 6])),
                ("boot_keyboard_input", bytes(8)),
            ],
        )

    def test_reports_dropped_until_link_ready(self) -> None:
        self.svc.link_ready = False
        self.assertFalse(self.svc.send_report(build_mouse_report(1, 1, 0)))
        self.assertFalse(self.svc.send_report(KEY_UP_REPORT))
        self.assertEqual(self.notified, [])

    def test_unknown_report_id_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.svc.send_report(bytes([0x03, 0, 0]))
        self.assertEqual(self.notified, [])

    def test_output_report_reaches_handler(self) -> None:
        self.svc._output_written(bytearray([0x02]))
        self.assertEqual(self.outputs, [b"\x02"])
        self.assertEqual(bytes(self.svc._leds), b"\x02")

    def test_empty_output_report_clears_leds(self) -> None:
        self.svc._output_written(bytearray([0x01]))
        self.svc._output_written(b"")
        self.assertEqual(bytes(self.svc._leds), b"\x00")
        self.assertEqual(self.outputs, [b"\x01", b""])


if __name__ == "__main__":
    unittest.main()
