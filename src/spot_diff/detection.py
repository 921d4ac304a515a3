"""
Main Comparison Pipeline Module

Orchestrates the complete spot-the-difference workflow:
1. Sampling (crop and resample both images to the working resolutions)
2. Feature alignment (register the right image onto the left at 384x384)
3. Difference map (structural + color cues at 256x256, limited to the
   area the warped right image covers)
4. Region extraction and refinement (or a supplied override detector)
5. Optional model rescoring
6. Remapping of every box onto both full-resolution images

Target: <5s total per pair for inputs up to 1280px on the long edge
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import numpy as np

from .alignment import AlignmentResult, align_images, warp_to_reference, warp_validity_mask
from .config import DetectionConfig
from .detector import DiffMapDetector, RegionDetector, RegionScorer, as_candidates, rescore_with_model
from .diff_map import compute_difference_map
from .geometry import Homography, IntRect, Rect
from .regions import Candidate, CandidateSource
from .remap import RemapContext
from .sampling import box_blur, crop_pixel_rect, load_image, prepare_image, source_size, to_grayscale
from .settings import InvalidSettingsError, Settings
from .thresholds import precision_threshold

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Detection:
    """One reported difference, located on both source images."""

    box: IntRect
    right_box: IntRect
    analysis_box: IntRect
    score: float
    source: CandidateSource


@dataclass
class DetectionResult:
    """
    Outcome of one comparison.

    `detections` is ordered: score desc, area desc, top asc, left asc.
    An empty list with `error` set means the comparison failed internally.
    """

    detections: List[Detection] = field(default_factory=list)
    diff_map: Optional[np.ndarray] = None
    analysis_width: int = 256
    analysis_height: int = 256
    alignment: Optional[AlignmentResult] = None
    threshold_used: Optional[float] = None
    processing_time_ms: float = 0.0
    error: Optional[str] = None

    @property
    def boxes(self) -> List[IntRect]:
        return [d.box for d in self.detections]

    @property
    def scores(self) -> List[float]:
        return [d.score for d in self.detections]

    @property
    def is_empty(self) -> bool:
        return not self.detections

    def to_dict(self) -> Dict[str, Any]:
        """Plain summary without the difference map."""
        return {
            'detections': [
                {
                    'box': d.box.to_ltrb(),
                    'right_box': d.right_box.to_ltrb(),
                    'analysis_box': d.analysis_box.to_ltrb(),
                    'score': d.score,
                    'source': d.source.value,
                }
                for d in self.detections
            ],
            'analysis_width': self.analysis_width,
            'analysis_height': self.analysis_height,
            'alignment_method': self.alignment.method if self.alignment else None,
            'threshold_used': self.threshold_used,
            'processing_time_ms': self.processing_time_ms,
            'error': self.error,
        }


def _validate_settings(settings: Union[Settings, Mapping[str, Any], None]) -> Settings:
    if settings is None:
        return Settings()
    if isinstance(settings, Settings):
        return settings
    if isinstance(settings, Mapping):
        try:
            return Settings(**settings)
        except TypeError as e:
            raise InvalidSettingsError(f"Invalid settings: {e}")
    raise InvalidSettingsError(
        f"settings must be Settings or a mapping, got {type(settings).__name__}"
    )


def compare_images(
    left_image,
    right_image,
    settings: Union[Settings, Mapping[str, Any], None] = None,
    left_crop: Optional[Rect] = None,
    right_crop: Optional[Rect] = None,
    detector: Optional[RegionDetector] = None,
    scorer: Optional[RegionScorer] = None,
    config: Optional[DetectionConfig] = None
) -> DetectionResult:
    """
    Find the regions where two photographs of the same scene differ.

    Args:
        left_image: Reference image (PIL Image or numpy array)
        right_image: Image to compare against the reference
        settings: Precision level and minimum area (defaults if None)
        left_crop: Normalized crop of the left image, None for the whole image
        right_crop: Normalized crop of the right image
        detector: Override detector; bypasses sampling, alignment and the
            difference map
        scorer: Optional model that rescores the final candidates
        config: Pipeline constants (defaults if None)

    Returns:
        DetectionResult with boxes in left full-image pixels, strongest first

    Raises:
        InvalidSettingsError: If settings are out of range

    Example:
        >>> result = compare_images(left, right, Settings(precision_level=5))
        >>> len(result.detections)
        3
        >>> result.boxes[0]
        IntRect(left=412, top=230, width=118, height=121)
    """
    start_time = time.time()
    settings = _validate_settings(settings)
    config = config or DetectionConfig()

    if detector is not None:
        return _run_override_detector(
            detector, left_image, right_image, settings, left_crop, right_crop, config, start_time
        )

    size = config.analysis_size

    try:
        logger.info(
            f"Starting comparison: precision={settings.precision_level}, "
            f"min_area={settings.min_area_percent}%"
        )

        # Step 1: Sample both images at alignment and analysis resolution
        left_align = prepare_image(left_image, left_crop, config.alignment_size, config.blur_radius)
        right_align = prepare_image(right_image, right_crop, config.alignment_size, config.blur_radius)
        if left_align is None or right_align is None:
            logger.warning("Degenerate input, returning empty result")
            return _create_empty_result(config, start_time)

        left_analysis = prepare_image(left_image, left_crop, size, config.blur_radius)
        right_analysis = prepare_image(right_image, right_crop, size, config.blur_radius)

        # Step 2: Align right onto left, then express the transform at analysis size
        alignment = align_images(left_align.gray, right_align.gray, config)
        analysis_homography = alignment.homography.rescaled(
            (config.alignment_size, config.alignment_size), (size, size)
        )

        valid_mask = None
        if analysis_homography.is_near_identity(size, size, config.identity_tolerance_px):
            analysis_homography = Homography.identity()
            right_rgba = right_analysis.rgba
            right_blurred = right_analysis.blurred
        else:
            right_rgba = warp_to_reference(right_analysis.rgba, analysis_homography, (size, size))
            right_blurred = box_blur(to_grayscale(right_rgba), config.blur_radius)
            valid_mask = warp_validity_mask(
                right_analysis.size, analysis_homography, (size, size), config.warp_border_margin
            )

        # Step 3: Difference map
        components = compute_difference_map(
            left_analysis.rgba, right_rgba, left_analysis.blurred, right_blurred, config
        )
        diff_map = components.fused

        # Pixels the right image never covered carry no evidence
        if valid_mask is not None:
            diff_map = diff_map * valid_mask

        # Step 4: Extraction and refinement
        candidates = DiffMapDetector(config).detect_from_diff_map(diff_map, settings)

        # Step 5: Optional model rescoring
        if scorer is not None:
            candidates = rescore_with_model(candidates, right_rgba, scorer)

        # Step 6: Report on both source images
        context = RemapContext(
            left_crop=left_analysis.crop,
            right_crop=right_analysis.crop,
            left_size=left_analysis.source_size,
            right_size=right_analysis.source_size,
            analysis_size=(size, size),
            homography=analysis_homography,
        )
        detections = _to_detections(candidates, context)

        processing_time = (time.time() - start_time) * 1000

        logger.info(
            f"Comparison complete: {len(detections)} detections, "
            f"alignment={alignment.method}, time={processing_time:.1f}ms"
        )

        return DetectionResult(
            detections=detections,
            diff_map=diff_map,
            analysis_width=size,
            analysis_height=size,
            alignment=alignment,
            threshold_used=precision_threshold(settings.precision_level),
            processing_time_ms=processing_time,
        )

    except Exception as e:
        logger.error(f"Error during comparison: {e}", exc_info=True)
        return _create_empty_result(config, start_time, error=f"comparison_error: {e}")


def compare_image_files(
    left_path: Union[str, Path],
    right_path: Union[str, Path],
    **compare_kwargs
) -> DetectionResult:
    """
    Load two JPEG/PNG files and compare them.

    Raises:
        ValueError: If a file has an unsupported extension
        FileNotFoundError: If a file does not exist
    """
    left_image = load_image(left_path)
    right_image = load_image(right_path)
    logger.debug(f"Loaded {Path(left_path).name} and {Path(right_path).name}")
    return compare_images(left_image, right_image, **compare_kwargs)


def _run_override_detector(
    detector: RegionDetector,
    left_image,
    right_image,
    settings: Settings,
    left_crop: Optional[Rect],
    right_crop: Optional[Rect],
    config: DetectionConfig,
    start_time: float
) -> DetectionResult:
    """
    Fast path: hand a blank analysis map straight to the override detector.

    Only image sizes are read; no pixel is sampled or aligned.
    """
    size = config.analysis_size

    try:
        left_size = source_size(left_image)
        right_size = source_size(right_image)
        left_px = crop_pixel_rect(left_crop, *left_size)
        right_px = crop_pixel_rect(right_crop, *right_size)

        if left_px.is_empty or right_px.is_empty:
            logger.warning("Degenerate input, returning empty result")
            return _create_empty_result(config, start_time)

        placeholder = np.zeros(config.analysis_shape, dtype=np.float32)
        candidates = as_candidates(detector.detect_from_diff_map(placeholder, settings))

        context = RemapContext(
            left_crop=left_px,
            right_crop=right_px,
            left_size=left_size,
            right_size=right_size,
            analysis_size=(size, size),
            homography=Homography.identity(),
        )
        detections = _to_detections(candidates, context)

        processing_time = (time.time() - start_time) * 1000
        logger.info(
            f"Override detector {type(detector).__name__} returned "
            f"{len(detections)} detections in {processing_time:.1f}ms"
        )

        return DetectionResult(
            detections=detections,
            diff_map=placeholder,
            analysis_width=size,
            analysis_height=size,
            processing_time_ms=processing_time,
        )

    except Exception as e:
        logger.error(f"Error in override detector: {e}", exc_info=True)
        return _create_empty_result(config, start_time, error=f"detector_error: {e}")


def _to_detections(candidates: List[Candidate], context: RemapContext) -> List[Detection]:
    detections = []
    for candidate in candidates:
        detections.append(
            Detection(
                box=context.to_left(candidate.box),
                right_box=context.to_right(candidate.box),
                analysis_box=candidate.box,
                score=float(candidate.score),
                source=candidate.source,
            )
        )
    return detections


def _create_empty_result(
    config: DetectionConfig,
    start_time: float,
    error: Optional[str] = None
) -> DetectionResult:
    """
    Create a result with no detections.

    Used both for degenerate input and, with `error` set, for internal
    failures.
    """
    return DetectionResult(
        detections=[],
        diff_map=None,
        analysis_width=config.analysis_size,
        analysis_height=config.analysis_size,
        processing_time_ms=(time.time() - start_time) * 1000,
        error=error,
    )
