"""Tests for wrappers: CBW encoding, CSW decoding, tag counter, stall recovery."""

import struct
import unittest
from unittest.mock import MagicMock

import pytest

from conftest import EP_IN, FakeTransport, make_csw
from it8951.errors import (
    ProtocolError,
    RetryBudgetExhausted,
    StallError,
    TransportError,
    TransportTimeout,
)
from it8951.wrappers import (
    CBW_SIZE,
    CSW_SIZE,
    CommandBlockWrapper,
    CommandFramer,
    CommandStatusWrapper,
    CswStatus,
    Direction,
    StatusReader,
)

COMMAND = bytes(range(16))


class TestCommandFramer(unittest.TestCase):
    """31-byte CBW layout, little-endian."""

    def test_exact_bytes(self):
        framer = CommandFramer()
        cbw = framer.build(COMMAND, 18, Direction.OUT)
        expected = bytes([85, 83, 66, 67, 1, 0, 0, 0, 18, 0, 0, 0, 0, 0, 16]) + COMMAND
        self.assertEqual(cbw, expected)
        self.assertEqual(len(cbw), CBW_SIZE)

    def test_second_call_differs_only_in_tag(self):
        framer = CommandFramer()
        first = framer.build(COMMAND, 18, Direction.OUT)
        second = framer.build(COMMAND, 18, Direction.OUT)
        self.assertEqual(first[:4], second[:4])
        self.assertEqual(first[8:], second[8:])
        tag1 = struct.unpack('<I', first[4:8])[0]
        tag2 = struct.unpack('<I', second[4:8])[0]
        self.assertEqual(tag2, tag1 + 1)

    def test_direction_in_sets_flag(self):
        cbw = CommandFramer().build(COMMAND, 112, Direction.IN)
        self.assertEqual(cbw[12], 0x80)

    def test_direction_none_clears_flag(self):
        cbw = CommandFramer().build(COMMAND, 0, Direction.NONE)
        self.assertEqual(cbw[12], 0x00)

    def test_transfer_length_little_endian(self):
        cbw = CommandFramer().build(COMMAND, 0x0001F014, Direction.OUT)
        self.assertEqual(cbw[8:12], b'\x14\xf0\x01\x00')

    def test_start_tag(self):
        framer = CommandFramer(start_tag=41)
        self.assertEqual(framer.next_tag, 41)
        cbw = CommandBlockWrapper.unpack(framer.build(COMMAND, 0, Direction.OUT))
        self.assertEqual(cbw.tag, 41)
        self.assertEqual(framer.next_tag, 42)

    def test_tag_wraps_at_32_bits(self):
        framer = CommandFramer(start_tag=0xFFFFFFFF)
        framer.build(COMMAND, 0, Direction.OUT)
        self.assertEqual(framer.next_tag, 0)

    def test_independent_counters(self):
        a, b = CommandFramer(), CommandFramer()
        a.build(COMMAND, 0, Direction.OUT)
        a.build(COMMAND, 0, Direction.OUT)
        cbw = CommandBlockWrapper.unpack(b.build(COMMAND, 0, Direction.OUT))
        self.assertEqual(cbw.tag, 1)

    def test_rejects_short_command(self):
        with self.assertRaises(ValueError):
            CommandFramer().build(b'\x12', 0, Direction.OUT)

    def test_rejects_oversize_length(self):
        with self.assertRaises(ValueError):
            CommandFramer().build(COMMAND, 2**32, Direction.OUT)

    def test_cbw_round_trip_fields(self):
        cbw = CommandBlockWrapper.unpack(CommandFramer().build(COMMAND, 40, Direction.IN))
        self.assertEqual(cbw.data_transfer_length, 40)
        self.assertEqual(cbw.direction, Direction.IN)
        self.assertEqual(cbw.lun, 0)
        self.assertEqual(cbw.command_data, COMMAND)


class TestCommandStatusWrapper:

    def test_decode_success(self):
        csw = CommandStatusWrapper.unpack(b'USBS' + struct.pack('<I', 5) + struct.pack('<I', 0) + b'\x00')
        assert csw.tag == 5
        assert csw.data_residue == 0
        assert csw.status is CswStatus.PASSED
        assert csw.passed

    def test_decode_failed(self):
        csw = CommandStatusWrapper.unpack(make_csw(9, status=1, residue=20))
        assert csw.status is CswStatus.FAILED
        assert csw.data_residue == 20
        assert not csw.passed

    def test_decode_phase_error(self):
        csw = CommandStatusWrapper.unpack(make_csw(1, status=2))
        assert csw.status is CswStatus.PHASE_ERROR

    def test_unknown_status_kept_as_int(self):
        csw = CommandStatusWrapper.unpack(make_csw(1, status=7))
        assert csw.status == 7
        assert not csw.passed

    def test_bad_signature(self):
        with pytest.raises(ProtocolError):
            CommandStatusWrapper.unpack(b'USBC' + bytes(9))

    def test_wrong_length(self):
        with pytest.raises(ProtocolError):
            CommandStatusWrapper.unpack(make_csw(1)[:12])

    def test_pack_matches_wire(self):
        assert CommandStatusWrapper(tag=5, data_residue=0, status=CswStatus.PASSED).pack() == make_csw(5)


class TestStatusReader:

    def _reader(self, transport, **kw):
        kw.setdefault('sleep', MagicMock())
        return StatusReader(transport, EP_IN, timeout=1000, **kw)

    def test_reads_13_bytes_from_in_endpoint(self):
        t = FakeTransport()
        t.queue.append(make_csw(3))
        csw = self._reader(t).read_status()
        assert csw.tag == 3
        assert t.reads == [(EP_IN, CSW_SIZE)]

    def test_stall_then_success_clears_halt_once(self):
        t = FakeTransport()
        t.queue.extend([StallError("stall"), make_csw(5)])
        csw = self._reader(t).read_status()
        assert csw.tag == 5
        assert csw.passed
        assert t.halt_clears == [EP_IN]
        assert len(t.reads) == 2

    def test_backoff_grows_per_attempt(self):
        t = FakeTransport()
        t.queue.extend([StallError("stall"), StallError("stall"), make_csw(1)])
        sleep = MagicMock()
        self._reader(t, backoff_s=0.1, sleep=sleep).read_status()
        assert [c.args[0] for c in sleep.call_args_list] == [pytest.approx(0.1), pytest.approx(0.2)]

    def test_retry_budget_exhausted(self):
        t = FakeTransport()
        t.queue.extend([StallError("stall")] * 4)
        with pytest.raises(RetryBudgetExhausted) as exc:
            self._reader(t, max_retries=3).read_status()
        assert exc.value.attempts == 3
        assert len(t.halt_clears) == 3
        assert len(t.reads) == 4

    def test_zero_retries_fails_on_first_stall(self):
        t = FakeTransport()
        t.queue.append(StallError("stall"))
        with pytest.raises(RetryBudgetExhausted):
            self._reader(t, max_retries=0).read_status()
        assert t.halt_clears == []

    def test_budget_exhausted_is_transport_error(self):
        assert issubclass(RetryBudgetExhausted, TransportError)

    def test_timeout_not_retried(self):
        t = FakeTransport()
        t.queue.append(TransportTimeout("timeout"))
        with pytest.raises(TransportTimeout):
            self._reader(t).read_status()
        assert t.halt_clears == []
        assert len(t.reads) == 1

    def test_other_transport_error_propagates(self):
        t = FakeTransport()
        t.queue.append(TransportError("no device"))
        with pytest.raises(TransportError):
            self._reader(t).read_status()
        assert t.halt_clears == []
