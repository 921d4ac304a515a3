"""
Geometry Primitives

Rectangles, points and 3x3 homographies shared by every pipeline stage.

Conventions:
- Rect is float (normalized crop selections or sub-pixel boxes)
- IntRect is integer pixel space, half-open: [left, right) x [top, bottom)
- Homography.compose(a, b) applies b first, then a (matrix a @ b)
"""

import logging
import math
from dataclasses import dataclass
from typing import Iterable, Tuple

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class Rect:
    """Float rectangle, typically a normalized (0..1) crop selection."""

    left: float
    top: float
    width: float
    height: float

    def __post_init__(self):
        if self.width < 0 or self.height < 0:
            raise ValueError(
                f"Rect width and height must be >= 0, got {self.width}x{self.height}"
            )

    @classmethod
    def full(cls) -> "Rect":
        return cls(0.0, 0.0, 1.0, 1.0)

    @classmethod
    def from_ltrb(cls, left: float, top: float, right: float, bottom: float) -> "Rect":
        return cls(left, top, max(0.0, right - left), max(0.0, bottom - top))

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def bottom(self) -> float:
        return self.top + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0


@dataclass(frozen=True)
class IntRect:
    """Integer pixel rectangle (left, top, width, height)."""

    left: int
    top: int
    width: int
    height: int

    def __post_init__(self):
        if self.width < 0 or self.height < 0:
            raise ValueError(
                f"IntRect width and height must be >= 0, got {self.width}x{self.height}"
            )

    @classmethod
    def from_ltrb(cls, left: int, top: int, right: int, bottom: int) -> "IntRect":
        return cls(int(left), int(top), max(0, int(right) - int(left)), max(0, int(bottom) - int(top)))

    @property
    def right(self) -> int:
        return self.left + self.width

    @property
    def bottom(self) -> int:
        return self.top + self.height

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    @property
    def center(self) -> Point:
        return Point(self.left + self.width / 2.0, self.top + self.height / 2.0)

    def to_ltrb(self) -> Tuple[int, int, int, int]:
        return (self.left, self.top, self.right, self.bottom)

    def intersection_area(self, other: "IntRect") -> int:
        iw = min(self.right, other.right) - max(self.left, other.left)
        ih = min(self.bottom, other.bottom) - max(self.top, other.top)
        if iw <= 0 or ih <= 0:
            return 0
        return iw * ih

    def iou(self, other: "IntRect") -> float:
        """Intersection over union; 0.0 when the union is empty."""
        inter = self.intersection_area(other)
        union = self.area + other.area - inter
        return inter / union if union > 0 else 0.0

    def clamp(self, width: int, height: int) -> "IntRect":
        """Clip to the image [0, width) x [0, height)."""
        left = min(max(self.left, 0), width)
        top = min(max(self.top, 0), height)
        right = min(max(self.right, left), width)
        bottom = min(max(self.bottom, top), height)
        return IntRect.from_ltrb(left, top, right, bottom)


class Homography:
    """3x3 projective transform acting on (x, y) pixel coordinates."""

    __slots__ = ("matrix",)

    def __init__(self, matrix=None):
        if matrix is None:
            matrix = np.eye(3, dtype=np.float64)
        matrix = np.asarray(matrix, dtype=np.float64)
        if matrix.shape != (3, 3):
            raise ValueError(f"Homography must be 3x3, got shape {matrix.shape}")
        if abs(matrix[2, 2]) > 1e-12:
            matrix = matrix / matrix[2, 2]
        self.matrix = matrix

    def __repr__(self):
        rows = "; ".join(" ".join(f"{v:.4g}" for v in row) for row in self.matrix)
        return f"Homography([{rows}])"

    @classmethod
    def identity(cls) -> "Homography":
        return cls()

    @classmethod
    def translation(cls, tx: float, ty: float) -> "Homography":
        return cls([[1.0, 0.0, tx], [0.0, 1.0, ty], [0.0, 0.0, 1.0]])

    @classmethod
    def scaling(cls, sx: float, sy: float) -> "Homography":
        return cls([[sx, 0.0, 0.0], [0.0, sy, 0.0], [0.0, 0.0, 1.0]])

    @classmethod
    def from_similarity(cls, scale: float, angle: float, tx: float, ty: float) -> "Homography":
        """
        Build the homography of a similarity transform.

        Args:
            scale: Uniform scale factor
            angle: Rotation in radians (counter-clockwise in image axes)
            tx: Translation along x
            ty: Translation along y
        """
        c = scale * math.cos(angle)
        s = scale * math.sin(angle)
        return cls([[c, -s, tx], [s, c, ty], [0.0, 0.0, 1.0]])

    @classmethod
    def from_affine(cls, affine) -> "Homography":
        affine = np.asarray(affine, dtype=np.float64)
        if affine.shape != (2, 3):
            raise ValueError(f"Affine matrix must be 2x3, got shape {affine.shape}")
        return cls(np.vstack([affine, [0.0, 0.0, 1.0]]))

    @property
    def is_invertible(self) -> bool:
        det = float(np.linalg.det(self.matrix))
        return math.isfinite(det) and abs(det) > 1e-9

    def inverse(self) -> "Homography":
        if not self.is_invertible:
            raise ValueError("Homography is singular and cannot be inverted")
        return Homography(np.linalg.inv(self.matrix))

    def apply(self, point: Point) -> Point:
        x, y = self.apply_points([(point.x, point.y)])[0]
        return Point(float(x), float(y))

    def apply_points(self, points: Iterable) -> np.ndarray:
        """Transform an (N, 2) array of points."""
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        homogeneous = np.hstack([pts, np.ones((len(pts), 1))]) @ self.matrix.T
        w = homogeneous[:, 2:3]
        w = np.where(np.abs(w) < 1e-12, 1e-12, w)
        return homogeneous[:, :2] / w

    def rescaled(self, from_size: Tuple[int, int], to_size: Tuple[int, int]) -> "Homography":
        """
        Express the same transform in another pixel space.

        Both images of the pair must be resampled the same way, from
        from_size (width, height) to to_size (width, height).
        """
        sx = to_size[0] / float(from_size[0])
        sy = to_size[1] / float(from_size[1])
        scale = Homography.scaling(sx, sy)
        unscale = Homography.scaling(1.0 / sx, 1.0 / sy)
        return compose_homography(scale, compose_homography(self, unscale))

    def max_corner_displacement(self, width: int, height: int) -> float:
        """Largest movement of the image corners under this transform."""
        corners = np.array(
            [[0, 0], [width, 0], [width, height], [0, height]], dtype=np.float64
        )
        moved = self.apply_points(corners)
        return float(np.max(np.linalg.norm(moved - corners, axis=1)))

    def is_near_identity(self, width: int, height: int, tolerance: float) -> bool:
        return self.max_corner_displacement(width, height) <= tolerance


def compose_homography(second: Homography, first: Homography) -> Homography:
    """Return the transform that applies `first` and then `second`."""
    return Homography(second.matrix @ first.matrix)


def homography_from_similarity(scale: float, angle: float, tx: float, ty: float) -> Homography:
    return Homography.from_similarity(scale, angle, tx, ty)
