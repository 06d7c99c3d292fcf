"""
Region updates: split an 8bpp pixel buffer into full-width bands that fit
one bulk transfer, load each band, then trigger a single refresh.

The USB bridge accepts at most ~60 KiB per command including the 20-byte
Area header, so a 1872px-wide panel takes 32 rows per band.

For 10x100 pixels and a 320-byte quota (20 header + 300 pixels)::

    band 0: rows  0-29   pixels[   0: 300]
    band 1: rows 30-59   pixels[ 300: 600]
    band 2: rows 60-89   pixels[ 600: 900]
    band 3: rows 90-99   pixels[ 900:1000]
    DPY_AREA 10x100
"""

from __future__ import annotations

import logging
from typing import List, NamedTuple

from .channel import CommandChannel
from .commands import DPY_AREA, LD_IMAGE_AREA, Area, DisplayArea, Mode
from .errors import InvalidGeometry

log = logging.getLogger(__name__)

# maximum transfer size is 60k bytes for IT8951 USB
MAX_TRANSFER = 60 * 1024


class Band(NamedTuple):
    row: int      # first row, relative to the region
    height: int   # rows in this band
    start: int    # byte offset into the pixel buffer
    end: int      # exclusive


def row_capacity(width: int, max_transfer_bytes: int) -> int:
    """Rows of *width* pixels that fit in one transfer after the Area header."""
    if width <= 0:
        raise InvalidGeometry(f"width must be positive, got {width}")
    rows = (max_transfer_bytes - Area.SIZE) // width
    if rows <= 0:
        raise InvalidGeometry(
            f"one {width}-pixel row plus {Area.SIZE}-byte header exceeds "
            f"the {max_transfer_bytes}-byte transfer limit"
        )
    return rows


def plan_bands(width: int, height: int, max_transfer_bytes: int = MAX_TRANSFER) -> List[Band]:
    """Compute the band layout for a width x height region."""
    if height <= 0:
        raise InvalidGeometry(f"height must be positive, got {height}")
    capacity = row_capacity(width, max_transfer_bytes)

    bands = []
    size = width * height
    offset = 0
    while offset < size:
        row = offset // width
        band_height = min(capacity, height - row)
        end = offset + band_height * width
        bands.append(Band(row, band_height, offset, end))
        offset = end
    return bands


def update_region(
    channel: CommandChannel,
    pixels: bytes,
    width: int,
    height: int,
    origin_x: int,
    origin_y: int,
    mode: Mode,
    base_address: int,
    max_transfer_bytes: int = MAX_TRANSFER,
) -> int:
    """Load *pixels* into the image buffer band by band, then refresh.

    Geometry is validated before anything is sent.  A failure part way
    leaves the loaded bands in controller memory without a refresh.

    Returns:
        Number of LD_IMAGE_AREA commands issued.
    """
    bands = plan_bands(width, height, max_transfer_bytes)
    if origin_x < 0 or origin_y < 0:
        raise InvalidGeometry(f"origin must be non-negative, got ({origin_x},{origin_y})")
    if len(pixels) != width * height:
        raise InvalidGeometry(
            f"pixel buffer is {len(pixels)} bytes, expected {width}x{height}={width * height}"
        )

    data = memoryview(pixels)
    for band in bands:
        area = Area(base_address, origin_x, origin_y + band.row, width, band.height)
        log.debug("Loading band rows %d-%d (%d bytes)",
                  band.row, band.row + band.height - 1, band.end - band.start)
        channel.write_command(LD_IMAGE_AREA, area, data[band.start:band.end])

    channel.write_command(DPY_AREA, DisplayArea(
        address=base_address,
        display_mode=mode,
        x=origin_x,
        y=origin_y,
        w=width,
        h=height,
        wait_ready=1,
    ))
    log.debug("Displayed %dx%d at (%d,%d) in %s, %d band(s)",
              width, height, origin_x, origin_y, getattr(mode, 'name', mode), len(bands))
    return len(bands)
