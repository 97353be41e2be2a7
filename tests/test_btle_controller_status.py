import asyncio
import threading
import unittest

from kbmouse.bt_le.controller import BTLEController
from kbmouse.bt_le.keyboard import KEY_UP_REPORT
from kbmouse.bt_le.transport import LogTransport


class _FlakyTransport(LogTransport):
    """Fails the first ``failures`` sends."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures

    def send_report(self, report: bytes) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise OSError("busy")
        super().send_report(report)


class _WrongMapTransport(LogTransport):
    def get_report_descriptor(self) -> bytes:
        return b"\x05\x01\xc0"


class TestBTLEControllerStatus(unittest.TestCase):
    def test_status_shape_defaults(self) -> None:
        bt = BTLEController(LogTransport())

        status = bt.status

        self.assertEqual(
            set(status.keys()),
            {
                "transport",
                "running",
                "send_interval_ms",
                "queued",
                "sent",
                "dropped",
                "last_output_report",
            },
        )
        self.assertEqual(status["transport"], "LogTransport")
        self.assertFalse(status["running"])
        self.assertEqual(status["send_interval_ms"], 10)
        self.assertEqual(status["queued"], 0)
        self.assertEqual(status["sent"], 0)
        self.assertIsNone(status["last_output_report"])

    def test_link_status_is_included_when_transport_exposes_it(self) -> None:
        transport = LogTransport()
        transport.status = {"connected": True}  # type: ignore[attr-defined]
        bt = BTLEController(transport)
        self.assertEqual(bt.status["link"], {"connected": True})

    def test_inline_delivery_before_start(self) -> None:
        transport = LogTransport()
        bt = BTLEController(transport)
        bt.hid_client.send_keys("ab")
        self.assertEqual(len(transport.sent), 3)
        self.assertEqual(bt.status["sent"], 3)

    def test_inline_retry_then_drop(self) -> None:
        transport = _FlakyTransport(failures=3)
        bt = BTLEController(transport, max_retries=1, retry_delay_s=0)
        bt.send_report(KEY_UP_REPORT)  # first try and one retry fail, dropped
        bt.send_report(KEY_UP_REPORT)  # fails once, delivered on retry
        self.assertEqual(transport.sent, [KEY_UP_REPORT])
        self.assertEqual(bt.status["dropped"], 1)
        self.assertEqual(bt.status["sent"], 1)

    def test_max_retries_counts_retries_after_first_try(self) -> None:
        transport = _FlakyTransport(failures=2)
        bt = BTLEController(transport, max_retries=2, retry_delay_s=0)
        bt.send_report(KEY_UP_REPORT)
        self.assertEqual(transport.sent, [KEY_UP_REPORT])
        self.assertEqual(bt.status["dropped"], 0)

    def test_zero_retries_drops_on_first_failure(self) -> None:
        transport = _FlakyTransport(failures=1)
        bt = BTLEController(transport, max_retries=0, retry_delay_s=0)
        with self.assertLogs("kbmouse.bt_le.controller", level="WARNING") as cm:
            bt.send_report(KEY_UP_REPORT)
        self.assertEqual(transport.sent, [])
        self.assertEqual(bt.status["dropped"], 1)
        self.assertIn("attempt 1/1", cm.output[0])


class TestBTLEControllerPump(unittest.IsolatedAsyncioTestCase):
    async def test_reports_delivered_in_order(self) -> None:
        transport = LogTransport()
        bt = BTLEController(transport, send_interval_ms=0)
        await bt.start()
        self.assertTrue(bt.status["running"])

        bt.hid_client.move_pointer(1, 2, 0)
        bt.hid_client.send_keys("aa")
        bt.hid_client.move_pointer(0, 0, 0)
        await bt.stop()

        self.assertFalse(bt.status["running"])
        self.assertEqual(
            transport.sent,
            [
                bytes([1, 0, 1, 2, 0]),
                bytes([2, 0, 0, 0x04, 0, 0, 0, 0, 0]),
                KEY_UP_REPORT,
                bytes([2, 0, 0, 0x04, 0, 0, 0, 0, 0]),
                KEY_UP_REPORT,
                bytes([1, 0, 0, 0, 0]),
            ],
        )

    async def test_reports_from_other_thread(self) -> None:
        transport = LogTransport()
        bt = BTLEController(transport, send_interval_ms=0)
        await bt.start()

        caller = []

        def _type() -> None:
            caller.append(threading.get_ident())
            bt.hid_client.send_keys("ab")

        await asyncio.to_thread(_type)
        await bt.stop()

        self.assertNotEqual(caller[0], threading.get_ident())
        self.assertEqual(len(transport.sent), 3)
        self.assertEqual(transport.sent[-1], KEY_UP_REPORT)

    async def test_pump_retries_transient_failures(self) -> None:
        transport = _FlakyTransport(failures=1)
        bt = BTLEController(transport, send_interval_ms=0, retry_delay_s=0)
        await bt.start()
        bt.send_report(KEY_UP_REPORT)
        await bt.stop()
        self.assertEqual(transport.sent, [KEY_UP_REPORT])
        self.assertEqual(bt.status["dropped"], 0)

    async def test_descriptor_mismatch_is_rejected(self) -> None:
        bt = BTLEController(_WrongMapTransport())
        with self.assertRaises(RuntimeError):
            await bt.start()
        self.assertFalse(bt.status["running"])

    async def test_output_report_is_surfaced(self) -> None:
        transport = LogTransport()
        bt = BTLEController(transport)
        await bt.start()
        with self.assertLogs("kbmouse.bt_le.controller", level="INFO"):
            transport.inject_output_report(b"\x02")
        self.assertEqual(bt.status["last_output_report"], "02")
        await bt.stop()
        # handler detached on stop
        transport.inject_output_report(b"\x01")
        self.assertEqual(bt.status["last_output_report"], "02")

    async def test_start_twice_is_noop(self) -> None:
        bt = BTLEController(LogTransport(), send_interval_ms=0)
        await bt.start()
        await bt.start()
        await bt.stop()
        await bt.stop()


if __name__ == "__main__":
    unittest.main()
