#!/usr/bin/env python3
"""
IT8951 USB - Command Line Interface

Entry point for the ``it8951`` console script.
"""

import argparse
import logging
import sys
from typing import Optional, Tuple

from .commands import Mode
from .conf import (
    format_device_id,
    load_settings,
    parse_device_id,
    save_selected_device,
)
from .errors import IT8951Error

log = logging.getLogger(__name__)


def _setup_logging(verbose: int) -> None:
    """Set up logging based on verbosity (filter out noisy PIL)."""
    if verbose >= 2:
        logging.basicConfig(level=logging.DEBUG, format='[%(levelname)s] %(name)s: %(message)s')
        logging.getLogger('PIL').setLevel(logging.WARNING)
        logging.getLogger('usb').setLevel(logging.INFO)
    elif verbose == 1:
        logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')
    else:
        logging.basicConfig(level=logging.WARNING, format='[%(levelname)s] %(message)s')


def _mode(text: str) -> Mode:
    """argparse type: mode by name (GC16) or ordinal (2)."""
    try:
        return Mode(int(text))
    except ValueError:
        pass
    try:
        return Mode[text.upper()]
    except KeyError:
        names = ", ".join(m.name for m in Mode)
        raise argparse.ArgumentTypeError(f"unknown mode {text!r} (choose from {names})")


def _device_id(text: str) -> Tuple[int, int]:
    try:
        return parse_device_id(text)
    except IT8951Error as e:
        raise argparse.ArgumentTypeError(str(e))


def _connect(device: Optional[Tuple[int, int]]):
    from .connection import Connection

    settings = load_settings()
    if device:
        settings = settings.with_device(*device)
    return Connection.open_usb(settings=settings)


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="it8951",
        description="Drive an IT8951 e-paper controller over USB",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    it8951 detect                 List connected controllers
    it8951 select 1b3f:30fe       Prefer this VID:PID from now on
    it8951 info                   Show panel geometry and firmware info
    it8951 show photo.jpg --fit   Display an image scaled to the panel
    it8951 clear                  Blank the panel
        """
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v, -vv)"
    )
    parser.add_argument(
        "--device", "-d",
        type=_device_id,
        help="VID:PID in hex (e.g. 048d:8951), tried before the configured list"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("detect", help="List connected controllers")

    select_parser = subparsers.add_parser("select", help="Remember a preferred controller")
    select_parser.add_argument("id", type=_device_id, help="VID:PID in hex")

    subparsers.add_parser("info", help="Show system info and inquiry data")

    show_parser = subparsers.add_parser("show", help="Display an image file")
    show_parser.add_argument("image", help="Image file to display")
    show_parser.add_argument("--x", type=int, default=0, help="Left edge (pixels)")
    show_parser.add_argument("--y", type=int, default=0, help="Top edge (pixels)")
    show_parser.add_argument("--mode", "-m", type=_mode, default=Mode.GC16,
                             help="Waveform mode name or number (default GC16)")
    show_parser.add_argument("--fit", "-f", action="store_true",
                             help="Scale the image down to fit the panel")

    clear_parser = subparsers.add_parser("clear", help="Blank the panel to white")
    clear_parser.add_argument("--mode", "-m", type=_mode, default=Mode.INIT,
                              help="Waveform mode name or number (default INIT)")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    _setup_logging(args.verbose)

    try:
        if args.command == "detect":
            return detect()
        elif args.command == "select":
            return select_device(*args.id)
        elif args.command == "info":
            return show_info(device=args.device)
        elif args.command == "show":
            return show_image(args.image, x=args.x, y=args.y, mode=args.mode,
                              fit=args.fit, device=args.device)
        elif args.command == "clear":
            return clear(mode=args.mode, device=args.device)
    except IT8951Error as e:
        log.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def detect():
    """List controllers matching the configured VID/PID pairs."""
    from .transport import find_devices

    settings = load_settings()
    devices = find_devices(settings.device_ids)
    if not devices:
        print("No IT8951 controller found")
        ids = ", ".join(format_device_id(*d) for d in settings.device_ids)
        print(f"  searched: {ids}")
        return 1
    for i, dev in enumerate(devices):
        where = f" (bus {dev.bus}, address {dev.address})" if dev.bus is not None else ""
        print(f"[{i}] {dev.label}{where}")
    return 0


def select_device(vid: int, pid: int):
    """Persist a preferred VID/PID."""
    save_selected_device(vid, pid)
    print(f"Selected {format_device_id(vid, pid)}")
    return 0


def show_info(device=None):
    """Print inquiry and system info."""
    with _connect(device) as epd:
        inq = epd.inquiry()
        info = epd.system_info
        mode = info.mode.name if info.mode is not None else f"unknown ({info.mode_no})"
        print(f"vendor:    {inq.vendor}")
        print(f"product:   {inq.product}")
        print(f"revision:  {inq.revision}")
        print(f"width:     {info.width}")
        print(f"height:    {info.height}")
        print(f"mode:      {mode}")
        print(f"version:   {info.version}")
        print(f"image buf: 0x{info.image_buffer_base:08x}")
    return 0


def show_image(path, x=0, y=0, mode=Mode.GC16, fit=False, device=None):
    """Load an image file and display it."""
    from .image import load_image

    img = load_image(path)
    with _connect(device) as epd:
        bands = epd.display_image(img, x=x, y=y, mode=mode, fit=fit)
    print(f"Displayed {path} in {bands} band(s)")
    return 0


def clear(mode=Mode.INIT, device=None):
    """Blank the whole panel."""
    with _connect(device) as epd:
        epd.clear(mode)
    print("Cleared")
    return 0


if __name__ == "__main__":
    sys.exit(main())
