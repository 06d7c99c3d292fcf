"""
it8951-usb - IT8951 e-paper controller over USB

Drives an ITE IT8951 panel controller that enumerates as a USB
mass-storage device and takes vendor SCSI commands over bulk-only
transport.

Features:
- CBW/CSW framing with per-connection tags and stall recovery
- System info, inquiry, image load and display commands
- Band-split region updates sized to the 60 KiB transfer limit

Usage:
    # As a library
    from it8951 import Connection, Mode
    with Connection.open_usb() as epd:
        epd.update_region(pixels, width, height, mode=Mode.GC16)

    # Command line
    it8951 info
    it8951 show image.png --fit
"""

from it8951.__version__ import __version__
from it8951.channel import CommandChannel
from it8951.commands import Area, DisplayArea, InquiryData, Mode, SystemInfo
from it8951.conf import Settings, load_settings
from it8951.connection import Connection, ConnectionState
from it8951.errors import (
    ConfigError,
    ConnectError,
    IT8951Error,
    ProtocolError,
    TransportError,
)
from it8951.region import plan_bands, update_region
from it8951.transport import PyUsbTransport, UsbTransport, find_devices

__all__ = [
    "__version__",
    # Connection
    "Connection",
    "ConnectionState",
    "CommandChannel",
    "Settings",
    "load_settings",
    # Transport
    "UsbTransport",
    "PyUsbTransport",
    "find_devices",
    # Values
    "Mode",
    "SystemInfo",
    "InquiryData",
    "Area",
    "DisplayArea",
    # Region updates
    "plan_bands",
    "update_region",
    # Errors
    "IT8951Error",
    "ConnectError",
    "TransportError",
    "ProtocolError",
    "ConfigError",
]
