"""
Spot-the-Difference Image Comparison

Finds the regions where two photographs of the same scene differ, reporting
ranked bounding boxes on both source images.

Main components:
- sampling: Input normalization, crop, resize and blur
- alignment: ORB matching and RANSAC registration of the right image
- diff_map: Structural (SSIM) and color difference maps
- thresholds: Precision schedule and minimum-area conversion
- regions: Candidate extraction, local maxima and tile fallback
- refinement: Non-maximum suppression and tail-mean rescoring
- remap: Analysis-space to full-image coordinate mapping
- detector: Pluggable detector and scorer interfaces
- detection: Main comparison pipeline orchestration
- visualization: Debug and analysis visualization tools

Example usage:
    from spot_diff import Settings, compare_images

    result = compare_images(left, right, Settings(precision_level=5))

    for detection in result.detections:
        print(f"{detection.box} score={detection.score:.2f}")
"""

__version__ = "0.1.0"
__author__ = "Spot Diff Team"

from .config import DetectionConfig, load_config
from .detection import Detection, DetectionResult, compare_image_files, compare_images
from .detector import DiffMapDetector, RegionDetector, RegionScorer
from .geometry import Homography, IntRect, Point, Rect
from .settings import InvalidSettingsError, Settings

__all__ = [
    'compare_images',
    'compare_image_files',
    'Detection',
    'DetectionResult',
    'DetectionConfig',
    'load_config',
    'Settings',
    'InvalidSettingsError',
    'RegionDetector',
    'RegionScorer',
    'DiffMapDetector',
    'Homography',
    'IntRect',
    'Point',
    'Rect',
]
