"""
Connection to one IT8951 controller.

Owns the transport, the command channel (and with it the tag counter) and
the cached SystemInfo.  Use as a context manager so the claimed interface
is released on every exit path:

    with Connection.open_usb() as epd:
        print(epd.system_info.resolution)
        epd.update_region(pixels, w, h, mode=Mode.GC16)

State machine::

    DISCONNECTED ──open()──> CONNECTING ──claimed──> CONNECTED ──close()──> DISCONNECTED
                                 │
                                 └──claim failed──> CONNECT_FAILED  (terminal)
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional, Sequence, Tuple

from .channel import CommandChannel
from .commands import GET_SYS, INQUIRY, InquiryData, Mode, SystemInfo
from .conf import Settings, load_settings
from .errors import ConnectError, InvalidGeometry
from .image import WHITE, blank, to_grayscale
from .region import update_region
from .transport import PyUsbTransport, UsbTransport
from .wrappers import CommandFramer

log = logging.getLogger(__name__)


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CONNECT_FAILED = "connect_failed"


class Connection:
    """Talk to an IT8951 e-paper controller over a USB bulk transport."""

    def __init__(self, transport: UsbTransport, settings: Optional[Settings] = None):
        self.transport = transport
        self.settings = settings or Settings()
        self.state = ConnectionState.DISCONNECTED
        self._channel: Optional[CommandChannel] = None
        self._system_info: Optional[SystemInfo] = None

    @classmethod
    def open_usb(
        cls,
        device_ids: Optional[Sequence[Tuple[int, int]]] = None,
        settings: Optional[Settings] = None,
    ) -> 'Connection':
        """Find the controller with pyusb and connect.

        Args:
            device_ids: VID/PID candidates; defaults to the configured list.
            settings: Connection parameters; defaults to ``load_settings()``.
        """
        settings = settings or load_settings()
        transport = PyUsbTransport(device_ids or settings.device_ids)
        conn = cls(transport, settings)
        conn.open()
        return conn

    # -- Lifecycle -----------------------------------------------------

    def open(self) -> None:
        """Claim the interface and fetch SystemInfo."""
        if self.state is ConnectionState.CONNECTED:
            return
        if self.state is ConnectionState.CONNECT_FAILED:
            raise ConnectError("Connection failed earlier; create a new Connection")

        self.state = ConnectionState.CONNECTING
        try:
            self.transport.open()
        except BaseException:
            self.state = ConnectionState.CONNECT_FAILED
            raise

        s = self.settings
        self._channel = CommandChannel(
            self.transport,
            ep_out=self.transport.ep_out,
            ep_in=self.transport.ep_in,
            timeout=s.timeout_ms,
            framer=CommandFramer(),
            stall_retries=s.stall_retries,
            stall_backoff_s=s.stall_backoff_s,
            strict_tags=s.strict_tags,
        )
        self.state = ConnectionState.CONNECTED

        try:
            self._system_info = self._channel.read_command(GET_SYS, SystemInfo)
        except BaseException:
            self.close()
            raise
        info = self._system_info
        log.info("Connected: %dx%d panel, command table v%d, image buffer 0x%08x",
                 info.width, info.height, info.version, info.image_buffer_base)

    def close(self) -> None:
        """Release the claimed interface.  Safe to call more than once."""
        if self.state is not ConnectionState.CONNECTED:
            return
        self.state = ConnectionState.DISCONNECTED
        self._channel = None
        self.transport.close()

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, *exc):
        self.close()

    # -- Commands --------------------------------------------------------

    @property
    def channel(self) -> CommandChannel:
        if self._channel is None:
            raise ConnectError(f"Not connected (state: {self.state.value})")
        return self._channel

    @property
    def system_info(self) -> SystemInfo:
        """SystemInfo fetched once at connect time."""
        if self._system_info is None:
            raise ConnectError(f"Not connected (state: {self.state.value})")
        return self._system_info

    def inquiry(self) -> InquiryData:
        """Standard SCSI INQUIRY.  Usually 'Generic' / 'Storage RamDisc'."""
        return self.channel.read_command(INQUIRY, InquiryData)

    def update_region(
        self,
        pixels: bytes,
        width: int,
        height: int,
        x: int = 0,
        y: int = 0,
        mode: Mode = Mode.GC16,
    ) -> int:
        """Load an 8bpp region into the image buffer and refresh it.

        Returns the number of bands sent.
        """
        return update_region(
            self.channel,
            pixels,
            width,
            height,
            origin_x=x,
            origin_y=y,
            mode=mode,
            base_address=self.system_info.image_buffer_base,
            max_transfer_bytes=self.settings.max_transfer,
        )

    def display_image(self, image: Any, x: int = 0, y: int = 0,
                      mode: Mode = Mode.GC16, fit: bool = False) -> int:
        """Show a PIL Image at (x, y), optionally scaled to fit the panel."""
        info = self.system_info
        bound = None
        if fit:
            bound = (info.width - x, info.height - y)
            if min(bound) <= 0:
                raise InvalidGeometry(
                    f"origin ({x},{y}) leaves no room on the {info.width}x{info.height} panel")
        pixels, w, h = to_grayscale(image, fit=bound)
        return self.update_region(pixels, w, h, x, y, mode)

    def clear(self, mode: Mode = Mode.INIT) -> int:
        """Fill the panel with white and refresh."""
        w, h = self.system_info.resolution
        return self.update_region(blank(w, h, WHITE), w, h, 0, 0, mode)
