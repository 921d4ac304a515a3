"""
Visualization Module

Creates debug visualizations for tuning and false positive analysis.

Generates annotated comparison images showing:
- Left and right images side-by-side with detections outlined
- Difference map with color coding
- Detection count, threshold and alignment metadata

Drawing helpers work on RGB arrays; files are written through OpenCV.
"""

import logging
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .geometry import IntRect
from .sampling import as_rgba

logger = logging.getLogger(__name__)


def _to_rgb(image) -> np.ndarray:
    return cv2.cvtColor(as_rgba(image), cv2.COLOR_RGBA2RGB)


def draw_boxes(
    image: np.ndarray,
    boxes: Sequence[IntRect],
    color: Tuple[int, int, int] = (255, 0, 0),
    thickness: int = 2,
    scores: Optional[Sequence[float]] = None
) -> np.ndarray:
    """
    Draw numbered boxes on a copy of an RGB image.

    Args:
        image: RGB image to annotate
        boxes: Boxes in the image's pixel space
        color: Box color in RGB (default: red)
        thickness: Line thickness in pixels
        scores: Optional scores appended to each label

    Returns:
        Annotated image

    Example:
        >>> annotated = draw_boxes(left_rgb, result.boxes, scores=result.scores)
    """
    annotated = image.copy()

    for i, box in enumerate(boxes):
        cv2.rectangle(
            annotated,
            (box.left, box.top),
            (box.right - 1, box.bottom - 1),
            color,
            thickness
        )

        label = f"#{i+1}"
        if scores is not None:
            label += f" {scores[i]:.2f}"
        label_size, _ = cv2.getTextSize(label, cv2.FONT_HERSHEY_SIMPLEX, 0.5, 1)
        label_y = max(box.top - 5, label_size[1] + 5)

        cv2.putText(
            annotated,
            label,
            (box.left, label_y),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.5,
            color,
            1
        )

    return annotated


def create_heatmap(
    difference_map: np.ndarray,
    colormap: int = cv2.COLORMAP_JET
) -> np.ndarray:
    """
    Convert a difference map to an RGB heatmap.

    Args:
        difference_map: Difference map in [0, 1]
        colormap: OpenCV colormap ID (default: COLORMAP_JET)

    Returns:
        RGB heatmap image
    """
    diff_uint8 = np.clip(difference_map * 255.0, 0, 255).astype(np.uint8)
    heatmap = cv2.applyColorMap(diff_uint8, colormap)
    return cv2.cvtColor(heatmap, cv2.COLOR_BGR2RGB)


def _fit_height(image: np.ndarray, height: int) -> np.ndarray:
    if image.shape[0] == height:
        return image
    width = max(1, int(round(image.shape[1] * height / float(image.shape[0]))))
    return cv2.resize(image, (width, height), interpolation=cv2.INTER_LINEAR)


def add_metadata_overlay(
    image: np.ndarray,
    num_detections: int,
    threshold: Optional[float] = None,
    alignment_method: Optional[str] = None,
    labels: Sequence[str] = ("LEFT", "RIGHT", "DIFFERENCE")
) -> np.ndarray:
    """
    Add a metadata text banner and panel labels to a visualization.

    Args:
        image: RGB panel strip to annotate
        num_detections: Number of reported detections
        threshold: Binarization threshold used (optional)
        alignment_method: Alignment model used (optional)
        labels: One label per equally wide panel

    Returns:
        Annotated image
    """
    annotated = image.copy()
    height, width = annotated.shape[:2]

    overlay = annotated.copy()
    cv2.rectangle(overlay, (0, 0), (width, 80), (0, 0, 0), -1)
    annotated = cv2.addWeighted(annotated, 0.7, overlay, 0.3, 0)

    lines = [
        f"Threshold: {threshold:.2f}" if threshold is not None else None,
        f"Alignment: {alignment_method}" if alignment_method else None,
    ]
    lines = [line for line in lines if line is not None]

    status_text = "NO DIFFERENCES" if num_detections == 0 else f"{num_detections} DIFFERENCES"
    status_color = (0, 255, 0) if num_detections == 0 else (255, 0, 0)

    cv2.putText(
        annotated,
        status_text,
        (10, 30),
        cv2.FONT_HERSHEY_SIMPLEX,
        0.8,
        status_color,
        2
    )

    y_offset = 55
    for line in lines:
        cv2.putText(
            annotated,
            line,
            (10, y_offset),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.5,
            (255, 255, 255),
            1
        )
        y_offset += 20

    if labels:
        panel_width = width // len(labels)
        for i, label in enumerate(labels):
            x_pos = i * panel_width + panel_width // 2 - 50
            cv2.putText(
                annotated,
                label,
                (max(x_pos, 0), height - 10),
                cv2.FONT_HERSHEY_SIMPLEX,
                0.5,
                (255, 255, 255),
                1
            )

    return annotated


def create_comparison_visualization(
    left_image,
    right_image,
    result,
    output_path: Optional[str] = None,
    show_metadata: bool = True
) -> np.ndarray:
    """
    Build (and optionally save) an annotated three-panel comparison.

    Panels:
    1. Left image with detections
    2. Right image with the matching right-side boxes
    3. Difference map heatmap

    Args:
        left_image: Left source image (PIL Image or numpy array)
        right_image: Right source image
        result: DetectionResult of compare_images for this pair
        output_path: File to write (PNG/JPEG); nothing is written if None
        show_metadata: Whether to overlay metadata text

    Returns:
        The visualization as an RGB array

    Example:
        >>> result = compare_images(left, right)
        >>> create_comparison_visualization(left, right, result, "/tmp/diff.png")
    """
    try:
        left_rgb = draw_boxes(_to_rgb(left_image), result.boxes, scores=result.scores)
        right_rgb = draw_boxes(
            _to_rgb(right_image),
            [d.right_box for d in result.detections],
            color=(0, 160, 255)
        )

        panel_height = left_rgb.shape[0]
        panels = [left_rgb, _fit_height(right_rgb, panel_height)]

        if result.diff_map is not None:
            panels.append(_fit_height(create_heatmap(result.diff_map), panel_height))

        visualization = np.hstack(panels)

        if show_metadata:
            visualization = add_metadata_overlay(
                image=visualization,
                num_detections=len(result.detections),
                threshold=result.threshold_used,
                alignment_method=result.alignment.method if result.alignment else None,
                labels=("LEFT", "RIGHT", "DIFFERENCE")[:len(panels)]
            )

        if output_path:
            cv2.imwrite(str(output_path), cv2.cvtColor(visualization, cv2.COLOR_RGB2BGR))
            logger.info(f"Saved comparison visualization to {output_path}")

        return visualization

    except Exception as e:
        logger.error(f"Error creating visualization: {e}")
        raise


def create_region_crops(
    image,
    boxes: Sequence[IntRect],
    padding: int = 20
) -> List[np.ndarray]:
    """
    Cut a padded RGB close-up around each box, with the box outlined.

    Example:
        >>> crops = create_region_crops(left, result.boxes)
        >>> crops[0].shape
        (161, 158, 3)
    """
    rgb = _to_rgb(image)
    height, width = rgb.shape[:2]
    crops = []

    for box in boxes:
        x1 = max(0, box.left - padding)
        y1 = max(0, box.top - padding)
        x2 = min(width, box.right + padding)
        y2 = min(height, box.bottom + padding)

        crop = rgb[y1:y2, x1:x2].copy()
        cv2.rectangle(
            crop,
            (box.left - x1, box.top - y1),
            (box.right - x1 - 1, box.bottom - y1 - 1),
            (0, 255, 0),
            2
        )
        crops.append(crop)

    logger.debug(f"Created {len(crops)} region close-ups")
    return crops
