"""
Threshold Schedule Module

Maps the caller's settings onto the fixed detection schedule.

Precision level 1 is strict (high binarization threshold), level 7 is
permissive. Each level lowers the threshold by a fixed step; the result is
clamped to safety bounds so that a level never binarizes below MIN_THRESHOLD.

The minimum-area setting is expressed as a percent of the analysis area and
converted to a minimum box side in analysis pixels.
"""

import logging
import math

from .settings import MAX_PRECISION, MIN_PRECISION

logger = logging.getLogger(__name__)


BASE_THRESHOLD = 0.9
THRESHOLD_STEP = 0.05

# Safety bounds - never go outside these limits
MIN_THRESHOLD = 0.6
MAX_THRESHOLD = 0.9


def precision_threshold(
    precision_level: int,
    base_threshold: float = BASE_THRESHOLD,
    step: float = THRESHOLD_STEP,
    min_threshold: float = MIN_THRESHOLD,
    max_threshold: float = MAX_THRESHOLD
) -> float:
    """
    Binarization threshold for a precision level.

    t = base - (level - 1) * step, clamped to [min_threshold, max_threshold].

    Args:
        precision_level: 1 (strict) .. 7 (permissive)

    Returns:
        Threshold in [min_threshold, max_threshold]

    Raises:
        ValueError: If precision_level is outside 1..7

    Example:
        >>> precision_threshold(1)
        0.9
        >>> precision_threshold(7)
        0.6
    """
    if not MIN_PRECISION <= precision_level <= MAX_PRECISION:
        raise ValueError(
            f"precision_level must be in [{MIN_PRECISION}, {MAX_PRECISION}], got {precision_level}"
        )

    threshold = base_threshold - (precision_level - 1) * step
    clamped = max(min_threshold, min(max_threshold, threshold))

    if clamped != threshold:
        logger.debug(f"Threshold {threshold:.4f} clamped to {clamped:.4f}")

    return clamped


def min_area_pixels(min_area_percent: float, width: int, height: int) -> float:
    """Minimum region area in analysis pixels."""
    return width * height * min_area_percent / 100.0


def min_core_side(min_area_px: float, limit: int = 64) -> int:
    """
    Minimum box side for a minimum area.

    side = max(1, min(limit, ceil(sqrt(min_area_px)))), or 0 when the
    minimum area is zero.

    Example:
        >>> min_core_side(min_area_pixels(5.0, 256, 256))
        58
    """
    if min_area_px <= 0:
        return 0
    raw = int(math.ceil(math.sqrt(min_area_px)))
    return max(1, min(limit, raw))
