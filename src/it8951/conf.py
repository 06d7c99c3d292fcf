"""Driver settings and config persistence.

Config is stored at ~/.config/it8951/config.json (XDG-compliant).  Every
key is optional; missing keys fall back to the defaults below.

Example config.json::

    {
      "device_ids": ["048d:8951", "1b3f:30fe"],
      "selected_device": "1b3f:30fe",
      "timeout_ms": 1000,
      "max_transfer": 61440,
      "stall_retries": 3,
      "stall_backoff_s": 0.05,
      "strict_tags": false
    }

Usage:
    from it8951.conf import load_settings

    settings = load_settings()
    settings.device_ids     # VID/PID candidates, selected device first
    settings.timeout_ms     # bulk transfer timeout
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

from .errors import ConfigError
from .region import MAX_TRANSFER
from .transport import DEFAULT_DEVICE_IDS, DEFAULT_TIMEOUT_MS
from .wrappers import DEFAULT_STALL_BACKOFF_S, DEFAULT_STALL_RETRIES

log = logging.getLogger(__name__)

# =========================================================================
# Config file location (XDG-compliant)
# =========================================================================


def config_dir() -> str:
    xdg = os.environ.get('XDG_CONFIG_HOME', os.path.expanduser('~/.config'))
    return os.path.join(xdg, 'it8951')


def config_path() -> str:
    return os.path.join(config_dir(), 'config.json')


# =========================================================================
# Low-level config persistence
# =========================================================================

def load_config() -> dict:
    """Load user config from disk. Returns empty dict on missing/corrupt file."""
    try:
        with open(config_path(), 'r') as f:
            config = json.load(f)
    except FileNotFoundError:
        return {}
    except (json.JSONDecodeError, OSError) as e:
        log.warning("Ignoring unreadable config %s: %s", config_path(), e)
        return {}
    if not isinstance(config, dict):
        log.warning("Ignoring config %s: top level is not an object", config_path())
        return {}
    return config


def save_config(config: dict):
    """Save user config to disk."""
    os.makedirs(config_dir(), exist_ok=True)
    with open(config_path(), 'w') as f:
        json.dump(config, f, indent=2)


# =========================================================================
# Device IDs
# =========================================================================

def parse_device_id(text: str) -> Tuple[int, int]:
    """Parse 'vvvv:pppp' (hex) into (vid, pid)."""
    try:
        vid, pid = text.split(':')
        return (int(vid, 16), int(pid, 16))
    except (AttributeError, ValueError):
        raise ConfigError(f"Invalid device id {text!r}, expected VID:PID in hex") from None


def format_device_id(vid: int, pid: int) -> str:
    return f"{vid:04x}:{pid:04x}"


def get_selected_device() -> Optional[Tuple[int, int]]:
    """Get the CLI-selected VID/PID. Returns None if unset."""
    selected = load_config().get('selected_device')
    return parse_device_id(selected) if selected else None


def save_selected_device(vid: int, pid: int):
    """Persist the CLI-selected VID/PID."""
    config = load_config()
    config['selected_device'] = format_device_id(vid, pid)
    save_config(config)


# =========================================================================
# Settings
# =========================================================================

@dataclass(frozen=True)
class Settings:
    """Connection parameters.  Immutable; use ``with_device`` to override."""
    device_ids: Tuple[Tuple[int, int], ...] = DEFAULT_DEVICE_IDS
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_transfer: int = MAX_TRANSFER
    stall_retries: int = DEFAULT_STALL_RETRIES
    stall_backoff_s: float = DEFAULT_STALL_BACKOFF_S
    strict_tags: bool = False

    def __post_init__(self):
        if not self.device_ids:
            raise ConfigError("device_ids must not be empty")
        if self.timeout_ms <= 0:
            raise ConfigError(f"timeout_ms must be positive, got {self.timeout_ms}")
        if self.max_transfer <= 0:
            raise ConfigError(f"max_transfer must be positive, got {self.max_transfer}")
        if self.stall_retries < 0:
            raise ConfigError(f"stall_retries must be >= 0, got {self.stall_retries}")
        if self.stall_backoff_s < 0:
            raise ConfigError(f"stall_backoff_s must be >= 0, got {self.stall_backoff_s}")

    def with_device(self, vid: int, pid: int) -> 'Settings':
        """Copy with (vid, pid) tried first."""
        rest = tuple(d for d in self.device_ids if d != (vid, pid))
        return replace(self, device_ids=((vid, pid),) + rest)

    @classmethod
    def from_config(cls, config: dict) -> 'Settings':
        """Build settings from a config dict, ignoring unknown keys."""
        kwargs: dict = {}
        if 'device_ids' in config:
            if not isinstance(config['device_ids'], list):
                raise ConfigError("device_ids must be a list of 'VID:PID' strings")
            kwargs['device_ids'] = tuple(parse_device_id(d) for d in config['device_ids'])
        for key, kind in (('timeout_ms', int), ('max_transfer', int),
                          ('stall_retries', int), ('stall_backoff_s', float),
                          ('strict_tags', bool)):
            if key not in config:
                continue
            value = config[key]
            if kind is float and isinstance(value, int) and not isinstance(value, bool):
                value = float(value)
            if not isinstance(value, kind) or (kind is not bool and isinstance(value, bool)):
                raise ConfigError(f"{key} must be {kind.__name__}, got {value!r}")
            kwargs[key] = value

        settings = cls(**kwargs)
        selected = config.get('selected_device')
        if selected:
            settings = settings.with_device(*parse_device_id(selected))
        return settings


def load_settings() -> Settings:
    """Defaults overlaid with ~/.config/it8951/config.json."""
    return Settings.from_config(load_config())
