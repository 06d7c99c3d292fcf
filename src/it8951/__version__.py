"""it8951-usb version information."""

__version__ = "0.3.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Version history:
# 0.1.0 - Initial release: CBW/CSW framing, GET_SYS, LD_IMAGE_AREA, DPY_AREA
# 0.2.0 - Per-connection tag counter, endpoints read from the interface
#         descriptor, second VID/PID (1b3f:30fe), bounded stall recovery
# 0.3.0 - Connection state machine, config file, it8951 CLI, CSW status and
#         size checks surfaced as ProtocolError
