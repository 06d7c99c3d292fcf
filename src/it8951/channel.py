"""
One command transaction over the bulk-only transport.

    CBW (OUT) -> data phase (IN or OUT) -> CSW (IN)

The channel is synchronous and never has more than one transaction in
flight.  Stall recovery on the status read is the only local retry.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, Type, TypeVar

from .commands import Command
from .errors import SizeMismatch, TagMismatch, UnexpectedStatus
from .transport import DEFAULT_TIMEOUT_MS, UsbTransport
from .wrappers import (
    DEFAULT_STALL_BACKOFF_S,
    DEFAULT_STALL_RETRIES,
    CommandFramer,
    CommandStatusWrapper,
    Direction,
    StatusReader,
)

log = logging.getLogger(__name__)


class Packable(Protocol):
    def pack(self) -> bytes: ...


T = TypeVar('T')


class CommandChannel:
    """Typed read/write commands on one pair of bulk endpoints."""

    def __init__(
        self,
        transport: UsbTransport,
        ep_out: int,
        ep_in: int,
        timeout: int = DEFAULT_TIMEOUT_MS,
        framer: Optional[CommandFramer] = None,
        stall_retries: int = DEFAULT_STALL_RETRIES,
        stall_backoff_s: float = DEFAULT_STALL_BACKOFF_S,
        strict_tags: bool = False,
    ):
        self.transport = transport
        self.ep_out = ep_out
        self.ep_in = ep_in
        self.timeout = timeout
        self.framer = framer or CommandFramer()
        self.status_reader = StatusReader(
            transport, ep_in, timeout,
            max_retries=stall_retries, backoff_s=stall_backoff_s,
        )
        self.strict_tags = strict_tags

    def _send_cbw(self, command: Command, length: int, direction: Direction) -> int:
        cbw = self.framer.build_cbw(command.cdb(), length, direction)
        log.debug("CBW %s tag=%d len=%d dir=%s", command.name, cbw.tag, length, direction.value)
        self.transport.write(self.ep_out, cbw.pack(), self.timeout)
        return cbw.tag

    def _finish(self, command: Command, tag: int) -> CommandStatusWrapper:
        csw = self.status_reader.read_status()
        if csw.tag != tag:
            if self.strict_tags:
                raise TagMismatch(tag, csw.tag)
            log.warning("%s: CSW tag %d does not match CBW tag %d", command.name, csw.tag, tag)
        return csw

    @staticmethod
    def _check_status(command: Command, csw: CommandStatusWrapper) -> None:
        if not csw.passed:
            raise UnexpectedStatus(
                csw, f"{command.name} failed with CSW status {csw.status!r} (tag {csw.tag})")

    def read_command(self, command: Command, response_type: Type[T]) -> T:
        """Run a device-to-host command and decode its reply as *response_type*."""
        expected = response_type.SIZE  # type: ignore[attr-defined]
        tag = self._send_cbw(command, expected, Direction.IN)
        data = self.transport.read(self.ep_in, expected, self.timeout)
        csw = self._finish(command, tag)
        if len(data) != expected:
            raise SizeMismatch(expected, len(data))
        self._check_status(command, csw)
        return response_type.unpack(data)  # type: ignore[attr-defined]

    def write_command(self, command: Command, value: Packable, trailing: bytes = b"") -> None:
        """Run a host-to-device command carrying *value* then *trailing* bytes."""
        payload = value.pack() + bytes(trailing)
        tag = self._send_cbw(command, len(payload), Direction.OUT)
        self.transport.write(self.ep_out, payload, self.timeout)
        csw = self._finish(command, tag)
        self._check_status(command, csw)
