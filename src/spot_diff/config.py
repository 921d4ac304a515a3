"""
Detection Configuration Module

Holds every fixed constant of the comparison pipeline in one immutable
structure that is passed explicitly to each stage:
- working resolutions (analysis 256x256, alignment 384x384)
- feature matching and RANSAC parameters
- difference-map weights
- region extraction, suppression and fallback limits

Overrides can be loaded from a YAML file so alternate parameter sets can be
tested without code changes.
"""

import logging
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Union

import yaml

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectionConfig:
    """Immutable parameter set for one comparison run."""

    # Working resolutions
    analysis_size: int = 256
    alignment_size: int = 384

    # Feature alignment
    orb_features: int = 1000
    match_ratio: float = 0.76
    inlier_threshold: float = 1.1
    min_inliers: int = 20
    min_similarity_inliers: int = 8
    ransac_max_iterations: int = 2000
    ransac_confidence: float = 0.995
    alignment_passes: int = 2
    identity_tolerance_px: float = 0.05

    # Difference map
    blur_radius: int = 1
    ssim_window: int = 7
    structural_weight: float = 1.0
    color_weight: float = 1.0
    chroma_base_weight: float = 0.18
    chroma_energy_weight: float = 0.82
    saturation_energy_weight: float = 0.62
    rgb_weight: float = 0.22
    edge_suppression_strength: float = 0.6
    # Gray step height at which Sobel edge strength saturates
    edge_normalizer: float = 128.0
    # Pixels trimmed inside the edge of the warped right image
    warp_border_margin: int = 5

    # Region extraction
    box_padding: int = 3
    min_core_side_limit: int = 64
    local_maxima_radius: int = 3
    local_maxima_ratio: float = 0.85
    local_maxima_box_radius: int = 4

    # Deduplication and refinement
    nms_iou_threshold: float = 0.5
    containment_threshold: float = 0.8
    tail_fraction: float = 0.5
    max_results: int = 20

    # Tile fallback
    tile_grid: int = 20
    tile_top_k: int = 10
    fallback_min_energy: float = 0.05

    def __post_init__(self):
        if self.analysis_size < 16 or self.alignment_size < 16:
            raise ValueError(
                f"Working resolutions must be >= 16, got analysis={self.analysis_size}, "
                f"alignment={self.alignment_size}"
            )

        if not 0.0 < self.match_ratio < 1.0:
            raise ValueError(f"match_ratio must be in (0, 1), got {self.match_ratio}")

        if self.alignment_passes < 1:
            raise ValueError(f"alignment_passes must be >= 1, got {self.alignment_passes}")

        if self.ssim_window < 3 or self.ssim_window % 2 == 0:
            raise ValueError(f"ssim_window must be odd and >= 3, got {self.ssim_window}")

        if self.edge_normalizer <= 0:
            raise ValueError(f"edge_normalizer must be positive, got {self.edge_normalizer}")

        if not 0.0 <= self.edge_suppression_strength <= 1.0:
            raise ValueError(
                f"edge_suppression_strength must be in [0, 1], got {self.edge_suppression_strength}"
            )

        if self.warp_border_margin < 0:
            raise ValueError(f"warp_border_margin must be >= 0, got {self.warp_border_margin}")

        if not 0.0 < self.tail_fraction <= 1.0:
            raise ValueError(f"tail_fraction must be in (0, 1], got {self.tail_fraction}")

        if self.tile_grid < 1 or self.tile_top_k < 1 or self.max_results < 1:
            raise ValueError("tile_grid, tile_top_k and max_results must be positive")

    @property
    def analysis_shape(self):
        """Analysis map shape as (height, width)."""
        return (self.analysis_size, self.analysis_size)

    def with_overrides(self, **overrides: Any) -> "DetectionConfig":
        """Return a copy with the given fields replaced."""
        _check_known_keys(overrides)
        return replace(self, **overrides)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "DetectionConfig":
        """
        Build a configuration from a mapping of overrides.

        Args:
            values: Field names mapped to values; missing fields keep defaults

        Returns:
            New DetectionConfig

        Raises:
            ValueError: If a key is not a known field or a value is invalid
        """
        if values is None:
            return cls()

        if not isinstance(values, dict):
            raise ValueError(f"Configuration must be a mapping, got {type(values).__name__}")

        _check_known_keys(values)
        return cls(**values)


def _check_known_keys(values: Dict[str, Any]) -> None:
    known = {f.name for f in fields(DetectionConfig)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")


def load_config(config_path: Union[str, Path]) -> DetectionConfig:
    """
    Load detection configuration overrides from a YAML file.

    Args:
        config_path: Path to a YAML mapping of DetectionConfig field overrides

    Returns:
        DetectionConfig with overrides applied

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the YAML is not a mapping or contains unknown keys

    Example:
        >>> config = load_config("detection.yaml")
        >>> config.analysis_size
        256
    """
    path = Path(config_path)
    if not path.exists():
        logger.error(f"Configuration file not found: {path}")
        raise FileNotFoundError(f"Configuration file not found: {path}")

    try:
        with path.open("r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error(f"Failed to parse configuration {path}: {e}")
        raise ValueError(f"Invalid YAML in {path}: {e}")

    config = DetectionConfig.from_dict(loaded or {})
    logger.info(f"Loaded detection configuration from {path}")
    return config
