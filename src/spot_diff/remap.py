"""
Coordinate Remapping Module

Converts boxes between the three pixel spaces of a comparison:
- analysis space (the square map detection runs in)
- left full-image space (through the left crop)
- right full-image space (through the inverse alignment and the right crop)

Offsets are floored and extents rounded half up, so a box mapped from
analysis space to full resolution and back moves by at most one pixel.
"""

import logging
import math
from dataclasses import dataclass
from typing import Tuple

from .geometry import Homography, IntRect

logger = logging.getLogger(__name__)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def analysis_to_full(
    box: IntRect,
    crop: IntRect,
    analysis_size: Tuple[int, int],
    image_size: Tuple[int, int]
) -> IntRect:
    """
    Map an analysis-space box into full-image pixels.

    Args:
        box: Box in analysis space
        crop: Crop rectangle in full-image pixels
        analysis_size: Analysis map size as (width, height)
        image_size: Full image size as (width, height)
    """
    fx = crop.width / float(analysis_size[0])
    fy = crop.height / float(analysis_size[1])

    mapped = IntRect(
        crop.left + int(math.floor(box.left * fx)),
        crop.top + int(math.floor(box.top * fy)),
        _round_half_up(box.width * fx),
        _round_half_up(box.height * fy),
    )
    return mapped.clamp(image_size[0], image_size[1])


def full_to_analysis(
    box: IntRect,
    crop: IntRect,
    analysis_size: Tuple[int, int]
) -> IntRect:
    """Inverse of analysis_to_full, clamped to the analysis map."""
    if crop.is_empty:
        return IntRect(0, 0, 0, 0)

    fx = crop.width / float(analysis_size[0])
    fy = crop.height / float(analysis_size[1])

    mapped = IntRect(
        _round_half_up((box.left - crop.left) / fx),
        _round_half_up((box.top - crop.top) / fy),
        _round_half_up(box.width / fx),
        _round_half_up(box.height / fy),
    )
    return mapped.clamp(analysis_size[0], analysis_size[1])


def scale_rect_between_spaces(
    rect: IntRect,
    from_size: Tuple[int, int],
    to_size: Tuple[int, int]
) -> IntRect:
    """Rescale a box between two pixel spaces of the same content."""
    sx = to_size[0] / float(from_size[0])
    sy = to_size[1] / float(from_size[1])

    scaled = IntRect(
        int(math.floor(rect.left * sx)),
        int(math.floor(rect.top * sy)),
        _round_half_up(rect.width * sx),
        _round_half_up(rect.height * sy),
    )
    return scaled.clamp(to_size[0], to_size[1])


def map_box_through_homography(
    box: IntRect,
    homography: Homography,
    width: int,
    height: int
) -> IntRect:
    """Bounding box of the projected box corners, clamped to width x height."""
    corners = [
        (box.left, box.top),
        (box.right, box.top),
        (box.right, box.bottom),
        (box.left, box.bottom),
    ]
    projected = homography.apply_points(corners)

    left = int(math.floor(projected[:, 0].min()))
    top = int(math.floor(projected[:, 1].min()))
    right = int(math.ceil(projected[:, 0].max()))
    bottom = int(math.ceil(projected[:, 1].max()))

    return IntRect.from_ltrb(left, top, right, bottom).clamp(width, height)


@dataclass(frozen=True)
class RemapContext:
    """
    Everything needed to report an analysis box on both source images.

    `homography` maps right analysis coordinates onto left analysis
    coordinates; its inverse carries a detection back onto the right image.
    """

    left_crop: IntRect
    right_crop: IntRect
    left_size: Tuple[int, int]
    right_size: Tuple[int, int]
    analysis_size: Tuple[int, int]
    homography: Homography

    def to_left(self, box: IntRect) -> IntRect:
        return analysis_to_full(box, self.left_crop, self.analysis_size, self.left_size)

    def to_right(self, box: IntRect) -> IntRect:
        if self.homography.is_invertible:
            inverse = self.homography.inverse()
        else:
            logger.warning("Alignment homography is singular, reporting right box unwarped")
            inverse = Homography.identity()

        width, height = self.analysis_size
        right_analysis = map_box_through_homography(box, inverse, width, height)
        return analysis_to_full(right_analysis, self.right_crop, self.analysis_size, self.right_size)
