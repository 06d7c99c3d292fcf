"""
Bulk-Only Transport framing: Command Block Wrapper and Command Status Wrapper.

Every command is a CBW written to the OUT endpoint, an optional data phase,
then a CSW read from the IN endpoint.  Framing fields are little-endian.

CBW (31 bytes)::

    0   4s  signature          b'USBC'
    4   I   tag
    8   I   data_transfer_length
    12  B   flags              0x80 = device-to-host
    13  B   lun                always 0
    14  B   command_length     always 16
    15  16s command_data

CSW (13 bytes)::

    0   4s  signature          b'USBS'
    4   I   tag
    8   I   data_residue
    12  B   status             0 = passed, 1 = failed, 2 = phase error
"""

from __future__ import annotations

import logging
import struct
import time
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Callable, Union

from .errors import ProtocolError, RetryBudgetExhausted, StallError
from .transport import DEFAULT_TIMEOUT_MS, UsbTransport

log = logging.getLogger(__name__)

CBW_SIGNATURE = b'USBC'
CSW_SIGNATURE = b'USBS'

CBW_STRUCT = struct.Struct('<4sIIBBB16s')
CSW_STRUCT = struct.Struct('<4sIIB')

CBW_SIZE = CBW_STRUCT.size  # 31
CSW_SIZE = CSW_STRUCT.size  # 13

COMMAND_LENGTH = 16
FLAG_DATA_IN = 0x80

_TAG_MASK = 0xFFFFFFFF

# Stall recovery defaults
DEFAULT_STALL_RETRIES = 3
DEFAULT_STALL_BACKOFF_S = 0.05


class Direction(Enum):
    """Data phase direction relative to the host."""
    IN = 'in'     # device-to-host
    OUT = 'out'   # host-to-device
    NONE = 'none'


class CswStatus(IntEnum):
    PASSED = 0
    FAILED = 1
    PHASE_ERROR = 2


# =========================================================================
# Wrapper values
# =========================================================================

@dataclass(frozen=True)
class CommandBlockWrapper:
    tag: int
    data_transfer_length: int
    flags: int
    command_data: bytes
    lun: int = 0
    signature: bytes = CBW_SIGNATURE

    def pack(self) -> bytes:
        return CBW_STRUCT.pack(
            self.signature,
            self.tag,
            self.data_transfer_length,
            self.flags,
            self.lun,
            COMMAND_LENGTH,
            self.command_data,
        )

    @classmethod
    def unpack(cls, data: bytes) -> 'CommandBlockWrapper':
        if len(data) != CBW_SIZE:
            raise ProtocolError(f"CBW must be {CBW_SIZE} bytes, got {len(data)}")
        sig, tag, length, flags, lun, _cmd_len, cmd = CBW_STRUCT.unpack(data)
        if sig != CBW_SIGNATURE:
            raise ProtocolError(f"Bad CBW signature {sig!r}")
        return cls(tag=tag, data_transfer_length=length, flags=flags,
                   command_data=cmd, lun=lun)

    @property
    def direction(self) -> Direction:
        return Direction.IN if self.flags & FLAG_DATA_IN else Direction.OUT


@dataclass(frozen=True)
class CommandStatusWrapper:
    tag: int
    data_residue: int
    status: Union[CswStatus, int]
    signature: bytes = CSW_SIGNATURE

    @property
    def passed(self) -> bool:
        return self.status == CswStatus.PASSED

    def pack(self) -> bytes:
        return CSW_STRUCT.pack(self.signature, self.tag, self.data_residue, int(self.status))

    @classmethod
    def unpack(cls, data: bytes) -> 'CommandStatusWrapper':
        """Decode a 13-byte CSW.  Unknown status bytes are kept as plain ints."""
        if len(data) != CSW_SIZE:
            raise ProtocolError(f"CSW must be {CSW_SIZE} bytes, got {len(data)}")
        sig, tag, residue, status = CSW_STRUCT.unpack(data)
        if sig != CSW_SIGNATURE:
            raise ProtocolError(f"Bad CSW signature {sig!r}")
        try:
            status = CswStatus(status)
        except ValueError:
            pass
        return cls(tag=tag, data_residue=residue, status=status)


# =========================================================================
# Framer
# =========================================================================

class CommandFramer:
    """Builds CBWs and owns the transaction tag counter.

    One framer per connection.  The tag advances by one on every build,
    whether or not the transfer that follows succeeds.
    """

    def __init__(self, start_tag: int = 1):
        self._tag = start_tag & _TAG_MASK

    @property
    def next_tag(self) -> int:
        return self._tag

    def build_cbw(self, command: bytes, transfer_length: int,
                  direction: Direction) -> CommandBlockWrapper:
        if len(command) != COMMAND_LENGTH:
            raise ValueError(f"command must be {COMMAND_LENGTH} bytes, got {len(command)}")
        if not 0 <= transfer_length <= _TAG_MASK:
            raise ValueError(f"transfer length out of range: {transfer_length}")

        tag = self._tag
        self._tag = (self._tag + 1) & _TAG_MASK
        flags = FLAG_DATA_IN if direction is Direction.IN else 0x00
        return CommandBlockWrapper(
            tag=tag,
            data_transfer_length=transfer_length,
            flags=flags,
            command_data=bytes(command),
        )

    def build(self, command: bytes, transfer_length: int, direction: Direction) -> bytes:
        """Encode the next CBW as its 31-byte wire form."""
        return self.build_cbw(command, transfer_length, direction).pack()


# =========================================================================
# Status reader
# =========================================================================

class StatusReader:
    """Reads the CSW that closes every transaction.

    A stall on the IN endpoint is cleared and the read retried, up to
    *max_retries* halt-clears with a linearly growing pause between them.
    """

    def __init__(
        self,
        transport: UsbTransport,
        endpoint: int,
        timeout: int = DEFAULT_TIMEOUT_MS,
        max_retries: int = DEFAULT_STALL_RETRIES,
        backoff_s: float = DEFAULT_STALL_BACKOFF_S,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.transport = transport
        self.endpoint = endpoint
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_s = backoff_s
        self._sleep = sleep

    def read_status(self) -> CommandStatusWrapper:
        clears = 0
        while True:
            try:
                data = self.transport.read(self.endpoint, CSW_SIZE, self.timeout)
            except StallError:
                if clears >= self.max_retries:
                    raise RetryBudgetExhausted(clears)
                clears += 1
                log.warning("Status read stalled on 0x%02x, clearing halt (%d/%d)",
                            self.endpoint, clears, self.max_retries)
                self.transport.clear_halt(self.endpoint)
                if self.backoff_s:
                    self._sleep(self.backoff_s * clears)
                continue

            csw = CommandStatusWrapper.unpack(data)
            log.debug("CSW tag=%d residue=%d status=%r", csw.tag, csw.data_residue, csw.status)
            return csw
