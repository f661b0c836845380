"""Configuration value objects for the volume monitor.

Everything here is validated once, at construction, and raises
ValidationError on bad input rather than silently falling back.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Tuple

from volmon.core.errors import ValidationError

DEFAULT_PERIOD_HR = 6.0
MIN_PERIOD_HR = 5.0 / 60.0
MAX_PERIOD_HR = 31.0 * 24.0
DEFAULT_LOW_SPACE_THRESHOLD = 15.0
MIN_LOW_SPACE_THRESHOLD = 0.0
MAX_LOW_SPACE_THRESHOLD = 100.0
DEFAULT_MIN_UPTIME_S = 600.0


class IdentificationMethod(str, Enum):
    """How a customization picks out its volume."""
    NAME = "name"
    SERIAL_NUMBER = "serial_num"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_period(period_hr: Any) -> float:
    if not _is_number(period_hr):
        raise ValidationError(
            f"'period_hr' must be a number between {MIN_PERIOD_HR} and {MAX_PERIOD_HR}"
        )
    if not MIN_PERIOD_HR <= period_hr <= MAX_PERIOD_HR:
        raise ValidationError(
            f"'period_hr' must be between {MIN_PERIOD_HR} and {MAX_PERIOD_HR} ({period_hr})"
        )
    return float(period_hr)


def validate_threshold(threshold: Any, *, name: str = "default_alarm_threshold") -> float:
    if not _is_number(threshold):
        raise ValidationError(f"'{name}' must be a number")
    if not MIN_LOW_SPACE_THRESHOLD <= threshold <= MAX_LOW_SPACE_THRESHOLD:
        raise ValidationError(
            f"'{name}' must be between {MIN_LOW_SPACE_THRESHOLD} and "
            f"{MAX_LOW_SPACE_THRESHOLD} ({threshold})"
        )
    return float(threshold)


def validate_exclusion_masks(masks: Iterable[Any]) -> Tuple[str, ...]:
    """Check every mask is a string that compiles as a regular expression."""
    if isinstance(masks, (str, bytes)):
        raise ValidationError("'exclusion_masks' must be a list of strings")
    validated = []
    for mask in masks:
        if not isinstance(mask, str):
            raise ValidationError(f"Exclusion mask must be a string, got {type(mask).__name__}")
        try:
            re.compile(mask)
        except re.error as exc:
            raise ValidationError(f"Exclusion mask {mask!r} is not a valid pattern: {exc}") from exc
        validated.append(mask)
    return tuple(validated)


@dataclass(frozen=True)
class VolumeCustomization:
    """Per-volume override of the low space alarm.

    Attributes:
        id_method: Whether the volume is matched by name or by serial number
        volume_name: Name to match (required for IdentificationMethod.NAME)
        volume_serial_num: UUID/serial to match (required for SERIAL_NUMBER)
        low_space_alarm_active: Whether this volume raises a low space alarm
        alarm_threshold: Percent free below which the alarm trips; required
            when active and restricted to the open interval (0, 100)
    """

    id_method: IdentificationMethod
    volume_name: Optional[str] = None
    volume_serial_num: Optional[str] = None
    low_space_alarm_active: bool = False
    alarm_threshold: Optional[float] = None

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "id_method", IdentificationMethod(self.id_method))
        except ValueError:
            raise ValidationError(f"Unknown volume identification method: {self.id_method!r}") from None

        if self.id_method is IdentificationMethod.NAME:
            if not isinstance(self.volume_name, str) or not self.volume_name:
                raise ValidationError("'volume_name' must be a non-empty string")
        else:
            if not isinstance(self.volume_serial_num, str) or not self.volume_serial_num:
                raise ValidationError("'volume_serial_num' must be a non-empty string")

        if not isinstance(self.low_space_alarm_active, bool):
            raise ValidationError("'low_space_alarm_active' must be a bool")

        if self.low_space_alarm_active:
            threshold = self.alarm_threshold
            if not _is_number(threshold) or not (
                MIN_LOW_SPACE_THRESHOLD < threshold < MAX_LOW_SPACE_THRESHOLD
            ):
                raise ValidationError(
                    f"'alarm_threshold' must be a number in ({MIN_LOW_SPACE_THRESHOLD}, "
                    f"{MAX_LOW_SPACE_THRESHOLD}) when the alarm is active ({threshold!r})"
                )

    def matches(self, volume_name: str, volume_identifier: Optional[str]) -> bool:
        """Case-insensitive match by the declared identification method."""
        if self.id_method is IdentificationMethod.NAME:
            return self.volume_name.lower() == volume_name.lower()
        if volume_identifier is None:
            return False
        return self.volume_serial_num.lower() == volume_identifier.lower()

    def is_tripped(self, percent_free: float) -> bool:
        return self.low_space_alarm_active and percent_free < self.alarm_threshold

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "VolumeCustomization":
        """Build from the plugin-style keys (``volume_id_method`` and friends)."""
        if not isinstance(data, Mapping):
            raise ValidationError("Volume customization must be a mapping")
        if "volume_id_method" not in data:
            raise ValidationError("Volume customization is missing 'volume_id_method'")
        if "volume_low_space_alarm_active" not in data:
            raise ValidationError("Volume customization is missing 'volume_low_space_alarm_active'")
        return cls(
            id_method=data["volume_id_method"],
            volume_name=data.get("volume_name"),
            volume_serial_num=data.get("volume_serial_num"),
            low_space_alarm_active=data["volume_low_space_alarm_active"],
            alarm_threshold=data.get("volume_alarm_threshold"),
        )


@dataclass(frozen=True)
class MonitorSettings:
    """Settings accepted by the interrogation engine at construction."""

    period_hr: float = DEFAULT_PERIOD_HR
    default_alarm_threshold: float = DEFAULT_LOW_SPACE_THRESHOLD
    exclusion_masks: Tuple[str, ...] = ()
    volume_customizations: Tuple[VolumeCustomization, ...] = field(default_factory=tuple)
    min_uptime_s: float = DEFAULT_MIN_UPTIME_S

    def __post_init__(self) -> None:
        object.__setattr__(self, "period_hr", validate_period(self.period_hr))
        object.__setattr__(
            self, "default_alarm_threshold", validate_threshold(self.default_alarm_threshold)
        )
        object.__setattr__(self, "exclusion_masks", validate_exclusion_masks(self.exclusion_masks))

        customizations = []
        for item in self.volume_customizations:
            if isinstance(item, Mapping):
                item = VolumeCustomization.from_mapping(item)
            elif not isinstance(item, VolumeCustomization):
                raise ValidationError("'volume_customizations' item is not valid")
            customizations.append(item)
        object.__setattr__(self, "volume_customizations", tuple(customizations))

        if not _is_number(self.min_uptime_s) or self.min_uptime_s < 0:
            raise ValidationError("'min_uptime_s' must be a non-negative number")


__all__ = [
    "DEFAULT_LOW_SPACE_THRESHOLD",
    "DEFAULT_PERIOD_HR",
    "IdentificationMethod",
    "MAX_LOW_SPACE_THRESHOLD",
    "MAX_PERIOD_HR",
    "MIN_LOW_SPACE_THRESHOLD",
    "MIN_PERIOD_HR",
    "MonitorSettings",
    "VolumeCustomization",
    "validate_exclusion_masks",
    "validate_period",
    "validate_threshold",
]
