from crash_pulse.shared.config import Settings, get_config, reload_config
from crash_pulse.shared.io import LocalDataIO, file_fingerprint, frame_fingerprint
from crash_pulse.shared.logging import setup_logging

__all__ = [
    "get_config",
    "reload_config",
    "Settings",
    "LocalDataIO",
    "file_fingerprint",
    "frame_fingerprint",
    "setup_logging",
]
