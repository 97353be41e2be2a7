import threading
import unittest

from kbmouse.bt_le.mouse import MouseReportEncoder, build_mouse_report


def _s8(b: int) -> int:
    return b - 256 if b > 127 else b


class TestBuildMouseReport(unittest.TestCase):
    def test_layout(self) -> None:
        report = build_mouse_report(5, -3, 1, left=True)
        self.assertEqual(report, bytes([0x01, 0x01, 0x05, 0xFD, 0x01]))

    def test_clamping_is_symmetric_at_127(self) -> None:
        report = build_mouse_report(200, -200, 1000)
        self.assertEqual(_s8(report[2]), 127)
        self.assertEqual(_s8(report[3]), -127)
        self.assertEqual(_s8(report[4]), 127)

        report = build_mouse_report(-128, 128, -128)
        self.assertEqual(report[2:], bytes([0x81, 0x7F, 0x81]))

    def test_boundaries_pass_through(self) -> None:
        report = build_mouse_report(127, -127, 0)
        self.assertEqual(report[2:], bytes([0x7F, 0x81, 0x00]))

    def test_button_bits(self) -> None:
        self.assertEqual(build_mouse_report(0, 0, 0, left=True)[1], 0b001)
        self.assertEqual(build_mouse_report(0, 0, 0, right=True)[1], 0b010)
        self.assertEqual(build_mouse_report(0, 0, 0, middle=True)[1], 0b100)
        self.assertEqual(build_mouse_report(0, 0, 0, True, True, True)[1], 0b111)


class TestMouseReportEncoder(unittest.TestCase):
    def test_rest_after_construction_is_suppressed(self) -> None:
        enc = MouseReportEncoder()
        self.assertIsNone(enc.encode(0, 0, 0, False, False, False))
        self.assertIsNone(enc.encode(0, 0, 0, False, False, False))

    def test_exactly_one_rest_report_after_motion(self) -> None:
        enc = MouseReportEncoder()
        self.assertEqual(enc.encode(10, 0, 0), bytes([1, 0, 10, 0, 0]))
        self.assertEqual(enc.encode(0, 0, 0), bytes([1, 0, 0, 0, 0]))
        self.assertIsNone(enc.encode(0, 0, 0))

    def test_button_release_emits_rest_report(self) -> None:
        enc = MouseReportEncoder()
        self.assertIsNotNone(enc.encode(0, 0, 0, left=True))
        self.assertIsNotNone(enc.encode(0, 0, 0, left=True))
        self.assertEqual(enc.encode(0, 0, 0), bytes([1, 0, 0, 0, 0]))
        self.assertIsNone(enc.encode(0, 0, 0))

    def test_identical_motion_is_not_deduplicated(self) -> None:
        enc = MouseReportEncoder()
        first = enc.encode(1, 1, 0)
        second = enc.encode(1, 1, 0)
        self.assertEqual(first, second)
        self.assertIsNotNone(second)

    def test_concurrent_rest_calls_emit_one_report(self) -> None:
        enc = MouseReportEncoder()
        enc.encode(3, 3, 0)
        results = []
        results_lock = threading.Lock()
        barrier = threading.Barrier(8)

        def worker() -> None:
            barrier.wait()
            r = enc.encode(0, 0, 0)
            with results_lock:
                results.append(r)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        emitted = [r for r in results if r is not None]
        self.assertEqual(emitted, [bytes([1, 0, 0, 0, 0])])


if __name__ == "__main__":
    unittest.main()
