#!/usr/bin/env python3
"""
Example usage script for the spot-the-difference engine

Demonstrates:
1. Comparing two image files with default settings
2. Sweeping the precision level
3. Restricting the comparison to a crop
4. Plugging in an override detector
5. Saving a visualization

Usage:
    python examples/compare_example.py LEFT.png RIGHT.png [OUTPUT.png]
"""

import logging
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from spot_diff import (
    IntRect,
    Rect,
    RegionDetector,
    Settings,
    compare_image_files,
)
from spot_diff.sampling import load_image
from spot_diff.visualization import create_comparison_visualization

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


class CenterBoxDetector(RegionDetector):
    """Toy override detector that always reports the analysis center."""

    def detect_from_diff_map(self, diff_map, settings):
        height, width = diff_map.shape
        return [IntRect(width // 4, height // 4, width // 2, height // 2)]


def print_result(title, result):
    print(f"\n{'─' * 70}")
    print(title)
    print(f"{'─' * 70}")
    if result.error:
        print(f"  Error: {result.error}")
    alignment = result.alignment.method if result.alignment else "n/a"
    print(f"  Alignment: {alignment}")
    print(f"  Threshold Used: {result.threshold_used}")
    print(f"  Processing Time: {result.processing_time_ms:.1f}ms")
    print(f"  Detections: {len(result.detections)}")
    for i, detection in enumerate(result.detections, 1):
        print(f"    #{i}: left={detection.box.to_ltrb()} right={detection.right_box.to_ltrb()} "
              f"score={detection.score:.3f} ({detection.source.value})")


def example_1_default(left_path, right_path):
    result = compare_image_files(left_path, right_path)
    print_result("EXAMPLE 1: Default settings", result)
    return result


def example_2_precision_sweep(left_path, right_path):
    print(f"\n{'─' * 70}")
    print("EXAMPLE 2: Precision sweep")
    print(f"{'─' * 70}")
    for level in range(1, 8):
        result = compare_image_files(left_path, right_path, settings=Settings(precision_level=level))
        print(f"  level {level}: threshold={result.threshold_used:.2f} "
              f"detections={len(result.detections)}")


def example_3_crop(left_path, right_path):
    crop = Rect(0.25, 0.25, 0.5, 0.5)
    result = compare_image_files(left_path, right_path, left_crop=crop, right_crop=crop)
    print_result("EXAMPLE 3: Center crop", result)


def example_4_override_detector(left_path, right_path):
    result = compare_image_files(left_path, right_path, detector=CenterBoxDetector())
    print_result("EXAMPLE 4: Override detector", result)


def main():
    if len(sys.argv) < 3:
        print(__doc__)
        sys.exit(1)

    left_path, right_path = sys.argv[1], sys.argv[2]
    output_path = sys.argv[3] if len(sys.argv) > 3 else "/tmp/spot_diff_comparison.png"

    try:
        result = example_1_default(left_path, right_path)
        example_2_precision_sweep(left_path, right_path)
        example_3_crop(left_path, right_path)
        example_4_override_detector(left_path, right_path)

        create_comparison_visualization(load_image(left_path), load_image(right_path), result, output_path)
        print(f"\nVisualization written to {output_path}\n")

    except Exception as e:
        logger.error(f"Error running examples: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
