"""
Candidate Refinement Module

Deduplicates and rescores raw candidates into the final detection list:
1. Non-maximum suppression over the primary candidates (IoU >= 0.5)
2. Tail-mean rescoring of the kept boxes, reading only the box pixels at
   or above the level each candidate was extracted at
3. Second pass: secondary candidates fill the remaining result slots,
   skipping any that overlap or sit inside an already kept box
4. Deterministic ordering: score desc, area desc, top asc, left asc

When extraction produced nothing at all, the tile fallback ranking is
returned instead.
"""

import logging
import math
from typing import Iterable, List, Optional

import numpy as np

from .config import DetectionConfig
from .geometry import IntRect
from .regions import Candidate, CandidateSet, CandidateSource, tile_fallback

logger = logging.getLogger(__name__)


def sort_candidates(candidates: Iterable[Candidate]) -> List[Candidate]:
    """Order by score desc, then area desc, then top, then left."""
    return sorted(
        candidates,
        key=lambda c: (-c.score, -c.box.area, c.box.top, c.box.left)
    )


def non_max_suppression(
    candidates: Iterable[Candidate],
    iou_threshold: float = 0.5,
    limit: Optional[int] = None
) -> List[Candidate]:
    """
    Greedy non-maximum suppression.

    Candidates are visited in sort_candidates order; one is kept unless its
    IoU with an already kept box is >= iou_threshold.

    Args:
        candidates: Candidates to filter
        iou_threshold: Suppression overlap
        limit: Maximum number of candidates to keep

    Returns:
        Kept candidates, in visiting order
    """
    kept: List[Candidate] = []
    for candidate in sort_candidates(candidates):
        if limit is not None and len(kept) >= limit:
            break
        if all(candidate.box.iou(k.box) < iou_threshold for k in kept):
            kept.append(candidate)
    return kept


def tail_mean_score(
    diff_map: np.ndarray,
    box: IntRect,
    fraction: float = 0.5,
    floor: Optional[float] = None
) -> float:
    """
    Mean of the lowest `fraction` of map values inside a box.

    Scoring the low tail rewards regions that differ throughout, rather than
    boxes that merely contain one bright pixel.

    Args:
        diff_map: Difference map in [0, 1]
        box: Region to score
        fraction: Share of the lowest values to average
        floor: When given, only pixels >= floor count as the region's
            support; the rest of the box is background. A box with no
            support pixels falls back to all of its values.
    """
    values = diff_map[box.top:box.bottom, box.left:box.right].ravel()
    if values.size == 0:
        return 0.0

    if floor is not None:
        support = values[values >= floor]
        if support.size:
            values = support

    count = max(1, int(math.ceil(values.size * fraction)))
    if count >= values.size:
        return float(values.mean())

    tail = np.partition(values, count - 1)[:count]
    return float(tail.mean())


def _is_covered(candidate: Candidate, kept: Candidate, config: DetectionConfig) -> bool:
    if candidate.box.iou(kept.box) >= config.nms_iou_threshold:
        return True
    core = candidate.core_box
    if core.area == 0:
        return False
    return core.intersection_area(kept.box) >= config.containment_threshold * core.area


def refine_candidates(
    candidate_set: CandidateSet,
    diff_map: np.ndarray,
    config: Optional[DetectionConfig] = None
) -> List[Candidate]:
    """
    Suppress, rescore and merge primary and secondary candidates.

    Args:
        candidate_set: Output of extract_candidates
        diff_map: The map the candidates were extracted from
        config: Detection configuration

    Returns:
        At most config.max_results candidates, sorted
    """
    config = config or DetectionConfig()

    kept = non_max_suppression(
        candidate_set.primary, config.nms_iou_threshold, limit=config.max_results
    )
    kept = [
        c.with_score(tail_mean_score(diff_map, c.box, config.tail_fraction, c.support_floor))
        for c in kept
    ]

    remaining_slots = config.max_results - len(kept)
    second: List[Candidate] = []

    if remaining_slots > 0:
        for candidate in sort_candidates(candidate_set.secondary):
            if len(second) >= remaining_slots:
                break
            if any(_is_covered(candidate, k, config) for k in kept + second):
                continue
            second.append(candidate)

    second = [
        c.with_score(
            tail_mean_score(diff_map, c.box, config.tail_fraction, c.support_floor),
            CandidateSource.SECOND_PASS
        )
        for c in second
    ]

    logger.debug(
        f"Refinement: {len(candidate_set.primary)} primary -> {len(kept)} kept, "
        f"{len(candidate_set.secondary)} secondary -> {len(second)} added"
    )

    return sort_candidates(kept + second)


def refine_detections(
    candidate_set: CandidateSet,
    diff_map: np.ndarray,
    config: Optional[DetectionConfig] = None
) -> List[Candidate]:
    """Refine candidates, or rank fallback tiles when there are none."""
    config = config or DetectionConfig()

    if candidate_set.is_empty:
        logger.info("No candidates above threshold, using tile fallback")
        return tile_fallback(diff_map, config)

    return refine_candidates(candidate_set, diff_map, config)
