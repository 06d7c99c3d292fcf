"""
Exception hierarchy for the IT8951 USB driver.

Everything raised on purpose by this package derives from ``IT8951Error``
so callers can catch one type at the CLI boundary:

    IT8951Error
    ├── ConnectError          DeviceNotFound, ClaimFailed
    ├── TransportError        TransportTimeout, StallError, RetryBudgetExhausted
    ├── ProtocolError         SizeMismatch, UnexpectedStatus, TagMismatch
    └── ConfigError           InvalidGeometry
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .wrappers import CommandStatusWrapper


class IT8951Error(Exception):
    """Base class for all driver errors."""


# =========================================================================
# Connect
# =========================================================================

class ConnectError(IT8951Error):
    """The device could not be opened."""


class DeviceNotFound(ConnectError):
    """No USB device matched any configured VID/PID pair."""


class ClaimFailed(ConnectError):
    """The device was found but its interface could not be claimed."""


# =========================================================================
# Transport
# =========================================================================

class TransportError(IT8951Error):
    """A bulk transfer failed.  Fatal for the in-flight command."""


class TransportTimeout(TransportError):
    """A bulk transfer did not complete within the timeout."""


class StallError(TransportError):
    """The endpoint is halted and needs a clear-halt before reuse."""


class RetryBudgetExhausted(TransportError):
    """Stall recovery gave up after the configured number of halt-clears."""

    def __init__(self, attempts: int):
        super().__init__(f"endpoint still stalled after {attempts} halt-clear(s)")
        self.attempts = attempts


# =========================================================================
# Protocol
# =========================================================================

class ProtocolError(IT8951Error):
    """The device answered with something the protocol does not allow."""


class SizeMismatch(ProtocolError):
    def __init__(self, expected: int, actual: int):
        super().__init__(f"expected {expected} bytes, got {actual}")
        self.expected = expected
        self.actual = actual


class UnexpectedStatus(ProtocolError):
    """The CSW status byte was not PASSED."""

    def __init__(self, csw: CommandStatusWrapper, message: Optional[str] = None):
        super().__init__(message or f"command failed with CSW status {csw.status!r} (tag {csw.tag})")
        self.csw = csw


class TagMismatch(ProtocolError):
    def __init__(self, expected: int, actual: int):
        super().__init__(f"CSW tag {actual} does not match CBW tag {expected}")
        self.expected = expected
        self.actual = actual


# =========================================================================
# Config
# =========================================================================

class ConfigError(IT8951Error):
    """Invalid settings or call parameters."""


class InvalidGeometry(ConfigError):
    """Zero-sized region, wrong buffer size, or a row larger than a transfer."""
