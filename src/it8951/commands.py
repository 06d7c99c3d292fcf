"""
IT8951 vendor commands and their payload layouts.

Each command renders its own 16-byte CDB.  Payload structures own their
byte layout: the controller's structures are big-endian u32 fields, while
the INQUIRY reply is plain bytes.  Do not unify these.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import ClassVar, Optional, Tuple

from .errors import SizeMismatch

# CDB building blocks
OP_INQUIRY = 0x12
OP_CUSTOMER = 0xFE  # vendor "customer command" prefix
PANEL_ID = b'8951'

SUB_GET_SYS = 0x80
SUB_LD_IMAGE_AREA = 0xA2
SUB_DPY_AREA = 0x94


class Mode(IntEnum):
    """Waveform refresh modes.  Values are the controller's ordinals."""
    INIT = 0      # full blank
    DU = 1
    GC16 = 2      # 16-level greyscale
    GL16 = 3
    GLR16 = 4
    GLD16 = 5
    DU4 = 6
    A2 = 7        # fast 2-level
    UNKNOWN1 = 8  # reported by the Waveshare 7.8" HAT, meaning undocumented


def _check_size(data: bytes, size: int) -> None:
    if len(data) != size:
        raise SizeMismatch(size, len(data))


# =========================================================================
# Payload structures
# =========================================================================

@dataclass(frozen=True)
class InquiryData:
    """Standard INQUIRY reply (40 bytes, ASCII fields)."""
    vendor: str
    product: str
    revision: str

    SIZE: ClassVar[int] = 40
    _STRUCT: ClassVar[struct.Struct] = struct.Struct('8x8s16s4s4x')

    @classmethod
    def unpack(cls, data: bytes) -> 'InquiryData':
        _check_size(data, cls.SIZE)
        vendor, product, revision = cls._STRUCT.unpack(data)

        def text(raw: bytes) -> str:
            return raw.decode('ascii', errors='replace').strip(' \x00')

        return cls(text(vendor), text(product), text(revision))


@dataclass(frozen=True)
class SystemInfo:
    """GET_SYS reply: panel geometry and controller addresses (112 bytes, BE)."""
    standard_cmd_no: int
    extended_cmd_no: int
    signature: int
    version: int
    width: int
    height: int
    update_buf_base: int
    image_buffer_base: int
    temperature_no: int
    mode_no: int
    frame_count: Tuple[int, ...]
    num_img_buf: int
    reserved: Tuple[int, ...] = field(repr=False)

    SIZE: ClassVar[int] = 112
    _STRUCT: ClassVar[struct.Struct] = struct.Struct('>28I')

    @classmethod
    def unpack(cls, data: bytes) -> 'SystemInfo':
        _check_size(data, cls.SIZE)
        v = cls._STRUCT.unpack(data)
        return cls(
            standard_cmd_no=v[0],
            extended_cmd_no=v[1],
            signature=v[2],
            version=v[3],
            width=v[4],
            height=v[5],
            update_buf_base=v[6],
            image_buffer_base=v[7],
            temperature_no=v[8],
            mode_no=v[9],
            frame_count=tuple(v[10:18]),
            num_img_buf=v[18],
            reserved=tuple(v[19:28]),
        )

    def pack(self) -> bytes:
        return self._STRUCT.pack(
            self.standard_cmd_no, self.extended_cmd_no, self.signature,
            self.version, self.width, self.height, self.update_buf_base,
            self.image_buffer_base, self.temperature_no, self.mode_no,
            *self.frame_count, self.num_img_buf, *self.reserved,
        )

    @property
    def mode(self) -> Optional[Mode]:
        """Current waveform mode, or None if the ordinal is not a known Mode."""
        try:
            return Mode(self.mode_no)
        except ValueError:
            return None

    @property
    def resolution(self) -> Tuple[int, int]:
        return (self.width, self.height)


@dataclass(frozen=True)
class Area:
    """Target rectangle for LOAD_IMAGE_AREA (20 bytes, BE)."""
    address: int
    x: int
    y: int
    w: int
    h: int

    SIZE: ClassVar[int] = 20
    _STRUCT: ClassVar[struct.Struct] = struct.Struct('>5I')

    def pack(self) -> bytes:
        return self._STRUCT.pack(self.address, self.x, self.y, self.w, self.h)

    @classmethod
    def unpack(cls, data: bytes) -> 'Area':
        _check_size(data, cls.SIZE)
        return cls(*cls._STRUCT.unpack(data))


@dataclass(frozen=True)
class DisplayArea:
    """Refresh request for DISPLAY_AREA (28 bytes, BE)."""
    address: int
    display_mode: int
    x: int
    y: int
    w: int
    h: int
    wait_ready: int = 1

    SIZE: ClassVar[int] = 28
    _STRUCT: ClassVar[struct.Struct] = struct.Struct('>7I')

    def pack(self) -> bytes:
        return self._STRUCT.pack(
            self.address, int(self.display_mode), self.x, self.y,
            self.w, self.h, self.wait_ready,
        )

    @classmethod
    def unpack(cls, data: bytes) -> 'DisplayArea':
        _check_size(data, cls.SIZE)
        return cls(*cls._STRUCT.unpack(data))


# =========================================================================
# Commands
# =========================================================================

class Command:
    """A vendor command that knows its 16-byte CDB."""

    name: ClassVar[str] = "command"

    def cdb(self) -> bytes:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.cdb().hex()})"


class Inquiry(Command):
    name = "INQUIRY"

    def cdb(self) -> bytes:
        return bytes([OP_INQUIRY]) + bytes(15)


class GetSystemInfo(Command):
    name = "GET_SYS"

    def cdb(self) -> bytes:
        # FE 00 '8951' 80 00 01 00 02 00 00 00 00 00
        return (bytes([OP_CUSTOMER, 0x00]) + PANEL_ID
                + bytes([SUB_GET_SYS, 0x00, 0x01, 0x00, 0x02, 0x00])
                + bytes(4))


class _CustomerCommand(Command):
    sub_opcode: ClassVar[int] = 0

    def cdb(self) -> bytes:
        # FE, five zero bytes (address field unused), sub-opcode, zero pad
        return bytes([OP_CUSTOMER]) + bytes(5) + bytes([self.sub_opcode]) + bytes(9)


class LoadImageArea(_CustomerCommand):
    name = "LD_IMAGE_AREA"
    sub_opcode = SUB_LD_IMAGE_AREA


class DisplayAreaCommand(_CustomerCommand):
    name = "DPY_AREA"
    sub_opcode = SUB_DPY_AREA


INQUIRY = Inquiry()
GET_SYS = GetSystemInfo()
LD_IMAGE_AREA = LoadImageArea()
DPY_AREA = DisplayAreaCommand()
