import asyncio
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import aiofiles

from volmon.core.errors import ValidationError
from volmon.core.logging_utils import get_module_logger
from volmon.core.volumes.settings import (
    DEFAULT_LOW_SPACE_THRESHOLD,
    DEFAULT_MIN_UPTIME_S,
    DEFAULT_PERIOD_HR,
    MonitorSettings,
    VolumeCustomization,
)


logger = get_module_logger("ConfigManager")

_EXCLUSION_KEY = re.compile(r"^exclusion_mask\.(\d+)$")
_VOLUME_KEY = re.compile(r"^volume\.(\d+)\.(\w+)$")
_VOLUME_FIELDS = ("id_method", "name", "serial_num", "alarm_active", "alarm_threshold")


class ConfigManager:
    """Reads ``key = value`` configuration files.

    Example::

        period_hr = 2
        default_alarm_threshold = 10
        exclusion_mask.0 = ^/System
        volume.0.id_method = name
        volume.0.name = Backup
        volume.0.alarm_active = true
        volume.0.alarm_threshold = 25
    """

    def __init__(self):
        self.logger = get_module_logger("ConfigManager")

    # ------------------------------------------------------------------
    # Reading

    def _parse_config_lines(self, lines: Iterable[str]) -> Dict[str, str]:
        config: Dict[str, str] = {}

        for raw_line in lines:
            line = raw_line.strip()
            if not line or line.startswith('#'):
                continue
            if '=' not in line:
                continue

            key, value = line.split('=', 1)
            key = key.strip()
            value = value.strip()

            if ' #' in value:
                value = value.split(' #')[0].strip()

            if (value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'")):
                value = value[1:-1]

            config[key] = value

        return config

    def read_config(self, config_path: Path) -> Dict[str, str]:
        """Synchronous read. Missing or unreadable files yield an empty mapping."""
        if not config_path.exists():
            return {}
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                return self._parse_config_lines(f)
        except OSError as e:
            logger.error("Failed to read config %s: %s", config_path, e)
            return {}

    async def read_config_async(self, config_path: Path) -> Dict[str, str]:
        """Async version for use in async contexts."""
        if not await asyncio.to_thread(config_path.exists):
            return {}
        try:
            lines: List[str] = []
            async with aiofiles.open(config_path, 'r', encoding='utf-8') as f:
                async for line in f:
                    lines.append(line)
            return self._parse_config_lines(lines)
        except OSError as e:
            logger.error("Failed to read config %s: %s", config_path, e)
            return {}

    # ------------------------------------------------------------------
    # Typed access

    def get_bool(self, config: Dict[str, str], key: str, default: bool = False) -> bool:
        if key not in config:
            return default

        value = config[key].lower()
        return value in ('true', '1', 'yes', 'on')

    def get_int(self, config: Dict[str, str], key: str, default: int = 0) -> int:
        if key not in config:
            return default

        try:
            return int(config[key])
        except ValueError:
            logger.warning("Invalid int value for %s: %s, using default %d", key, config[key], default)
            return default

    def get_float(self, config: Dict[str, str], key: str, default: float = 0.0) -> float:
        if key not in config:
            return default

        try:
            return float(config[key])
        except ValueError:
            logger.warning("Invalid float value for %s: %s, using default %f", key, config[key], default)
            return default

    def get_str(self, config: Dict[str, str], key: str, default: str = "") -> str:
        return config.get(key, default)

    def get_optional_float(self, config: Dict[str, str], key: str) -> Optional[float]:
        if key not in config:
            return None
        try:
            return float(config[key])
        except ValueError:
            raise ValidationError(f"'{key}' must be a number ({config[key]!r})") from None

    # ------------------------------------------------------------------
    # Monitor settings

    def exclusion_masks(self, config: Dict[str, str]) -> List[str]:
        indexed = []
        for key, value in config.items():
            match = _EXCLUSION_KEY.match(key)
            if match:
                indexed.append((int(match.group(1)), value))
        return [value for _, value in sorted(indexed)]

    def volume_customizations(self, config: Dict[str, str]) -> List[VolumeCustomization]:
        groups: Dict[int, Dict[str, str]] = {}
        for key in config:
            match = _VOLUME_KEY.match(key)
            if not match:
                continue
            index, field_name = int(match.group(1)), match.group(2)
            if field_name not in _VOLUME_FIELDS:
                logger.warning("Ignoring unknown volume setting '%s'", key)
                continue
            groups.setdefault(index, {})[field_name] = key

        customizations = []
        for index in sorted(groups):
            prefix = f"volume.{index}."
            name = self.get_str(config, prefix + "name") or None
            serial = self.get_str(config, prefix + "serial_num") or None
            customizations.append(VolumeCustomization(
                id_method=self.get_str(config, prefix + "id_method", "name"),
                volume_name=name,
                volume_serial_num=serial,
                low_space_alarm_active=self.get_bool(config, prefix + "alarm_active"),
                alarm_threshold=self.get_optional_float(config, prefix + "alarm_threshold"),
            ))
        return customizations

    def build_monitor_settings(self, config: Dict[str, str], **overrides: Any) -> MonitorSettings:
        """Build validated settings; ``overrides`` that are not None win over the file."""
        values: Dict[str, Any] = {
            "period_hr": self.get_float(config, "period_hr", DEFAULT_PERIOD_HR),
            "default_alarm_threshold": self.get_float(
                config, "default_alarm_threshold", DEFAULT_LOW_SPACE_THRESHOLD
            ),
            "min_uptime_s": self.get_float(config, "min_uptime_s", DEFAULT_MIN_UPTIME_S),
            "exclusion_masks": tuple(self.exclusion_masks(config)),
            "volume_customizations": tuple(self.volume_customizations(config)),
        }
        for key, value in overrides.items():
            if value is not None:
                values[key] = value
        return MonitorSettings(**values)

    async def load_monitor_settings(self, config_path: Optional[Path], **overrides: Any) -> MonitorSettings:
        config = await self.read_config_async(config_path) if config_path is not None else {}
        if config:
            logger.info("Loaded %d setting(s) from %s", len(config), config_path)
        return self.build_monitor_settings(config, **overrides)


_config_manager = ConfigManager()


def get_config_manager() -> ConfigManager:
    return _config_manager


__all__ = ["ConfigManager", "get_config_manager"]
