from .config_manager import ConfigManager, get_config_manager
from .errors import (
    ExternalProcessError,
    ParseError,
    ProtocolError,
    UnsupportedPlatformError,
    ValidationError,
    VolmonError,
)
from .volumes import MonitorSettings, VolumeInterrogator, VolumeRecord, VolumeType

__all__ = [
    'ConfigManager',
    'get_config_manager',
    'ExternalProcessError',
    'ParseError',
    'ProtocolError',
    'UnsupportedPlatformError',
    'ValidationError',
    'VolmonError',
    'MonitorSettings',
    'VolumeInterrogator',
    'VolumeRecord',
    'VolumeType',
]
