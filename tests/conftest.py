"""Shared fixtures: a fake USB transport that records bulk traffic.

No real USB hardware required: reads are replayed from a queue and
every write is recorded for inspection.
"""
import struct
from collections import deque

import pytest

from it8951.transport import UsbTransport
from it8951.wrappers import CBW_SIZE, CSW_SIZE, CommandBlockWrapper

EP_OUT = 0x02
EP_IN = 0x81


def make_csw(tag: int, status: int = 0, residue: int = 0) -> bytes:
    return b'USBS' + struct.pack('<IIB', tag, residue, status)


class FakeTransport(UsbTransport):
    """In-memory UsbTransport.

    ``queue`` holds what the next reads return: bytes, or an exception
    instance to raise.  When the queue is empty a 13-byte read gets a
    passing CSW echoing the last CBW's tag.
    """

    def __init__(self, ep_out: int = EP_OUT, ep_in: int = EP_IN):
        self._ep_out = ep_out
        self._ep_in = ep_in
        self.queue = deque()
        self.writes = []        # (endpoint, bytes)
        self.reads = []         # (endpoint, length)
        self.halt_clears = []   # endpoints
        self.open_calls = 0
        self.close_calls = 0
        self.open_error = None
        self._is_open = False
        self._last_tag = 0

    # -- UsbTransport --------------------------------------------------

    def open(self):
        self.open_calls += 1
        if self.open_error is not None:
            raise self.open_error
        self._is_open = True

    def close(self):
        self.close_calls += 1
        self._is_open = False

    def write(self, endpoint, data, timeout=1000):
        data = bytes(data)
        self.writes.append((endpoint, data))
        if len(data) == CBW_SIZE and data[:4] == b'USBC':
            self._last_tag = struct.unpack_from('<I', data, 4)[0]
        return len(data)

    def read(self, endpoint, length, timeout=1000):
        self.reads.append((endpoint, length))
        if self.queue:
            item = self.queue.popleft()
            if isinstance(item, BaseException):
                raise item
            return item
        if length == CSW_SIZE:
            return make_csw(self._last_tag)
        raise AssertionError(f"unexpected {length}-byte read with empty queue")

    def clear_halt(self, endpoint):
        self.halt_clears.append(endpoint)

    @property
    def is_open(self):
        return self._is_open

    @property
    def ep_out(self):
        return self._ep_out

    @property
    def ep_in(self):
        return self._ep_in

    # -- Inspection ----------------------------------------------------

    def cbws(self):
        """Decoded CBWs in the order they were written."""
        return [CommandBlockWrapper.unpack(d) for _, d in self.writes
                if len(d) == CBW_SIZE and d[:4] == b'USBC']

    def transactions(self):
        """List of (cbw, payload) for host-to-device commands.

        Pairs each CBW with the data write that followed it (b'' if none).
        """
        result = []
        pending = None
        for _, data in self.writes:
            if len(data) == CBW_SIZE and data[:4] == b'USBC':
                if pending is not None:
                    result.append((pending, b''))
                pending = CommandBlockWrapper.unpack(data)
            elif pending is not None:
                result.append((pending, data))
                pending = None
        if pending is not None:
            result.append((pending, b''))
        return result

    def reset_log(self):
        self.writes.clear()
        self.reads.clear()
        self.halt_clears.clear()


@pytest.fixture
def fake_transport():
    return FakeTransport()
