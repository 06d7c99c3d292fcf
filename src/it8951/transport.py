#!/usr/bin/env python3
"""
USB bulk transport for the IT8951 controller.

The ``UsbTransport`` ABC abstracts the raw USB I/O so that:
  • Tests can inject a fake transport (no real hardware needed).
  • ``PyUsbTransport`` provides real USB via pyusb (libusb backend).

The controller enumerates as a mass-storage style device with one bulk OUT
and one bulk IN endpoint on interface 0.  Endpoint addresses differ between
board revisions, so they are read from the interface descriptor on open.

Linux dependencies:
  • pyusb:  ``pip install pyusb``  (needs libusb1, ``apt install libusb-1.0-0``)
"""

from __future__ import annotations

import errno
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Tuple

import usb.core
import usb.util

from .errors import (
    ClaimFailed,
    ConnectError,
    DeviceNotFound,
    StallError,
    TransportError,
    TransportTimeout,
)

log = logging.getLogger(__name__)


# =========================================================================
# Constants
# =========================================================================

# Known VID/PID pairs.  The first is the ITE reference board, the second a
# later revision seen on Waveshare HATs.
IT8951_VID = 0x048D
IT8951_PID = 0x8951
IT8951_ALT_VID = 0x1B3F
IT8951_ALT_PID = 0x30FE

DEFAULT_DEVICE_IDS: Tuple[Tuple[int, int], ...] = (
    (IT8951_VID, IT8951_PID),
    (IT8951_ALT_VID, IT8951_ALT_PID),
)

# Default timeout (ms) for every bulk transfer
DEFAULT_TIMEOUT_MS = 1000

USB_INTERFACE = 0


# =========================================================================
# Abstract USB transport
# =========================================================================

class UsbTransport(ABC):
    """Abstract USB bulk transport, mockable for testing.

    Implementations raise ``TransportTimeout`` / ``StallError`` /
    ``TransportError`` from ``write`` and ``read``, never backend-specific
    exceptions.
    """

    @abstractmethod
    def open(self) -> None:
        """Open the USB device and claim the interface."""

    @abstractmethod
    def close(self) -> None:
        """Release the interface and close."""

    @abstractmethod
    def write(self, endpoint: int, data: bytes, timeout: int = DEFAULT_TIMEOUT_MS) -> int:
        """Bulk write to endpoint.  Returns bytes transferred."""

    @abstractmethod
    def read(self, endpoint: int, length: int, timeout: int = DEFAULT_TIMEOUT_MS) -> bytes:
        """Bulk read from endpoint.  Returns data read."""

    @abstractmethod
    def clear_halt(self, endpoint: int) -> None:
        """Clear a halt (stall) condition on endpoint."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the device is currently open."""

    @property
    @abstractmethod
    def ep_out(self) -> int:
        """Bulk OUT endpoint address."""

    @property
    @abstractmethod
    def ep_in(self) -> int:
        """Bulk IN endpoint address."""


# =========================================================================
# Helpers
# =========================================================================

def _translate(e: usb.core.USBError, what: str) -> TransportError:
    """Map a pyusb error onto the driver's transport errors."""
    if isinstance(e, usb.core.USBTimeoutError):
        return TransportTimeout(f"{what} timed out: {e}")
    if getattr(e, 'errno', None) == errno.EPIPE:
        return StallError(f"{what} stalled: {e}")
    return TransportError(f"{what} failed: {e}")


def _is_bulk(ep: Any, direction: int) -> bool:
    return (
        usb.util.endpoint_direction(ep.bEndpointAddress) == direction
        and usb.util.endpoint_type(ep.bmAttributes) == usb.util.ENDPOINT_TYPE_BULK
    )


def _usb_find(**kwargs) -> Any:
    """``usb.core.find`` with a missing libusb reported as ConnectError."""
    try:
        return usb.core.find(**kwargs)
    except usb.core.NoBackendError as e:
        raise ConnectError(
            f"No USB backend available ({e}); install libusb (apt install libusb-1.0-0)"
        ) from e


@dataclass
class FoundDevice:
    """A matching device seen on the bus."""
    vid: int
    pid: int
    bus: Optional[int] = None
    address: Optional[int] = None

    @property
    def label(self) -> str:
        return f"{self.vid:04x}:{self.pid:04x}"


def find_devices(device_ids: Iterable[Tuple[int, int]] = DEFAULT_DEVICE_IDS) -> List[FoundDevice]:
    """List connected devices matching any of *device_ids*."""
    devices = []
    for vid, pid in device_ids:
        found = _usb_find(find_all=True, idVendor=vid, idProduct=pid)
        for dev in found or []:
            devices.append(FoundDevice(
                vid=vid,
                pid=pid,
                bus=getattr(dev, 'bus', None),
                address=getattr(dev, 'address', None),
            ))
    return devices


# =========================================================================
# Real transport: PyUSB  (libusb backend)
# =========================================================================

class PyUsbTransport(UsbTransport):
    """Real USB transport using pyusb (libusb backend).

    Sequence on open:
    1. Find the first device matching one of the VID/PID candidates
    2. Detach the usb-storage kernel driver if it grabbed the interface
    3. Set configuration, claim interface 0
    4. Resolve bulk IN/OUT endpoints from the interface descriptor

    Requires: ``pip install pyusb`` + ``apt install libusb-1.0-0``
    """

    def __init__(self, device_ids: Sequence[Tuple[int, int]] = DEFAULT_DEVICE_IDS):
        self._device_ids = tuple(device_ids)
        self._device: Any = None
        self._is_open = False
        self._ep_out: Optional[int] = None
        self._ep_in: Optional[int] = None
        self.vid: Optional[int] = None
        self.pid: Optional[int] = None

    def _find(self) -> Any:
        for vid, pid in self._device_ids:
            dev = _usb_find(idVendor=vid, idProduct=pid)
            if dev is not None:
                self.vid, self.pid = vid, pid
                return dev
        ids = ", ".join(f"{v:04x}:{p:04x}" for v, p in self._device_ids)
        raise DeviceNotFound(f"No IT8951 device found (tried {ids})")

    def open(self) -> None:
        """Find the USB device, claim the interface, and detect endpoints."""
        dev = self._find()

        try:
            if dev.is_kernel_driver_active(USB_INTERFACE):
                dev.detach_kernel_driver(USB_INTERFACE)
                log.debug("Detached kernel driver from interface %d", USB_INTERFACE)
        except (usb.core.USBError, NotImplementedError) as e:
            log.debug("Kernel driver detach: %s", e)

        try:
            dev.set_configuration()
            usb.util.claim_interface(dev, USB_INTERFACE)
        except usb.core.USBError as e:
            usb.util.dispose_resources(dev)
            raise ClaimFailed(
                f"Cannot claim interface {USB_INTERFACE} on {self.vid:04x}:{self.pid:04x}: {e}"
            ) from e

        self._device = dev
        self._is_open = True

        try:
            self._detect_endpoints()
        except ClaimFailed:
            self.close()
            raise
        except usb.core.USBError as e:
            self.close()
            raise ClaimFailed(f"Cannot read interface descriptor: {e}") from e

        log.info("Opened %04x:%04x (EP OUT=0x%02x, EP IN=0x%02x)",
                 self.vid, self.pid, self._ep_out, self._ep_in)

    def _detect_endpoints(self) -> None:
        cfg = self._device.get_active_configuration()
        intf = cfg[(USB_INTERFACE, 0)]

        ep_out = usb.util.find_descriptor(
            intf, custom_match=lambda e: _is_bulk(e, usb.util.ENDPOINT_OUT))
        ep_in = usb.util.find_descriptor(
            intf, custom_match=lambda e: _is_bulk(e, usb.util.ENDPOINT_IN))

        if ep_out is None or ep_in is None:
            raise ClaimFailed("Could not find bulk IN/OUT endpoints on interface 0")

        self._ep_out = ep_out.bEndpointAddress
        self._ep_in = ep_in.bEndpointAddress

    def close(self) -> None:
        """Release the interface and free libusb resources.  Safe to call twice."""
        if self._device is None:
            return
        dev, self._device = self._device, None
        self._is_open = False
        try:
            usb.util.release_interface(dev, USB_INTERFACE)
        except usb.core.USBError as e:
            log.debug("Release interface: %s", e)
        usb.util.dispose_resources(dev)
        log.info("Closed %04x:%04x", self.vid, self.pid)

    def _require_open(self) -> Any:
        if not self._is_open or self._device is None:
            raise TransportError("Transport not open")
        return self._device

    def write(self, endpoint: int, data: bytes, timeout: int = DEFAULT_TIMEOUT_MS) -> int:
        dev = self._require_open()
        try:
            return dev.write(endpoint, data, timeout=timeout)
        except usb.core.USBError as e:
            raise _translate(e, f"write to 0x{endpoint:02x}") from e

    def read(self, endpoint: int, length: int, timeout: int = DEFAULT_TIMEOUT_MS) -> bytes:
        dev = self._require_open()
        try:
            return bytes(dev.read(endpoint, length, timeout=timeout))
        except usb.core.USBError as e:
            raise _translate(e, f"read from 0x{endpoint:02x}") from e

    def clear_halt(self, endpoint: int) -> None:
        dev = self._require_open()
        try:
            dev.clear_halt(endpoint)
        except usb.core.USBError as e:
            raise _translate(e, f"clear halt on 0x{endpoint:02x}") from e

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def ep_out(self) -> int:
        if self._ep_out is None:
            raise TransportError("Endpoints not resolved; open() first")
        return self._ep_out

    @property
    def ep_in(self) -> int:
        if self._ep_in is None:
            raise TransportError("Endpoints not resolved; open() first")
        return self._ep_in

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, *exc):
        self.close()
