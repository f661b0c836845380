"""Low space alert and visibility decisions."""

from __future__ import annotations

import re
from typing import Any, Iterable, Optional, Sequence, Tuple

from volmon.core.errors import ValidationError
from volmon.core.logging_utils import get_module_logger

from .settings import (
    MAX_LOW_SPACE_THRESHOLD,
    MIN_LOW_SPACE_THRESHOLD,
    VolumeCustomization,
    validate_exclusion_masks,
    validate_threshold,
)

logger = get_module_logger("AlertPolicy")


class AlertPolicy:
    """Maps a volume's free space to a low space alert.

    The global threshold applies only to volumes without a matching
    customization. When one or more customizations match, they replace the
    default: the alert is raised only if a matching customization is active
    and tripped.
    """

    def __init__(
        self,
        default_threshold: float,
        customizations: Sequence[VolumeCustomization] = (),
    ) -> None:
        self._default_threshold = validate_threshold(default_threshold)
        for item in customizations:
            if not isinstance(item, VolumeCustomization):
                raise ValidationError("'customizations' must contain VolumeCustomization items")
        self._customizations: Tuple[VolumeCustomization, ...] = tuple(customizations)

    @property
    def default_threshold(self) -> float:
        return self._default_threshold

    @property
    def customizations(self) -> Tuple[VolumeCustomization, ...]:
        return self._customizations

    def compute_alert(
        self,
        volume_name: str,
        volume_identifier: Optional[str],
        percent_free: Any,
    ) -> bool:
        """Decide the low space alert for one volume.

        ``volume_identifier`` is the UUID/serial, or None when it is not
        known yet (serial-number customizations cannot match then).
        """
        if not isinstance(volume_name, str) or not volume_name:
            raise ValidationError("'volume_name' must be a non-empty string")
        if volume_identifier is not None and (
            not isinstance(volume_identifier, str) or not volume_identifier
        ):
            raise ValidationError("'volume_identifier' must be a non-empty string or None")
        if not isinstance(percent_free, (int, float)) or isinstance(percent_free, bool):
            raise ValidationError("'percent_free' must be a number")
        if not MIN_LOW_SPACE_THRESHOLD <= percent_free <= MAX_LOW_SPACE_THRESHOLD:
            raise ValidationError(
                f"'percent_free' must be in the range {MIN_LOW_SPACE_THRESHOLD}..."
                f"{MAX_LOW_SPACE_THRESHOLD} ({percent_free})"
            )

        matching = [
            item for item in self._customizations
            if item.matches(volume_name, volume_identifier)
        ]
        if not matching:
            return percent_free < self._default_threshold

        alert = any(item.is_tripped(percent_free) for item in matching)
        logger.debug(
            "Volume '%s' matched %d customization(s): alert=%s",
            volume_name,
            len(matching),
            alert,
        )
        return alert


def percent_free_of(free: float, total: float) -> float:
    """Free space percentage, clamped to 0..100. Zero totals count as fully free."""
    if total <= 0:
        return 100.0
    return min(100.0, max(0.0, (free / total) * 100.0))


def is_volume_shown(mount_point: str, exclusion_masks: Iterable[str]) -> bool:
    """True unless one of the exclusion masks is found in ``mount_point``."""
    if not isinstance(mount_point, str) or not mount_point:
        raise ValidationError(f"Mount point is not valid: {mount_point!r}")
    for mask in validate_exclusion_masks(exclusion_masks):
        if re.search(mask, mount_point):
            logger.debug("Exclusion mask '%s' hides '%s'", mask, mount_point)
            return False
    return True


__all__ = ["AlertPolicy", "is_volume_shown", "percent_free_of"]
