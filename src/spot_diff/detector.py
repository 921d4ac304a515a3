"""
Pluggable Detection Stages

Two extension points of the comparison pipeline:
- RegionDetector: turns a difference map into boxes. Supplying one to
  compare_images bypasses sampling, alignment and map computation.
- RegionScorer: optional learned model that rescores final candidates
  from the aligned right image.

DiffMapDetector is the built-in detector (extraction + refinement).
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Union

import numpy as np

from .config import DetectionConfig
from .geometry import IntRect
from .refinement import refine_detections, sort_candidates
from .regions import Candidate, CandidateSource, extract_candidates
from .sampling import extract_region
from .settings import Settings

logger = logging.getLogger(__name__)


class RegionDetector(ABC):
    """Produces candidate boxes in analysis space from a difference map."""

    @abstractmethod
    def detect_from_diff_map(
        self,
        diff_map: np.ndarray,
        settings: Settings
    ) -> Sequence[Union[Candidate, IntRect]]:
        """
        Detect regions in a difference map.

        Args:
            diff_map: Float map in [0, 1] of shape (H, W)
            settings: Validated comparison settings

        Returns:
            Candidates, or bare boxes which are reported with score 0.0
        """


class DiffMapDetector(RegionDetector):
    """Threshold, extract, suppress and rescore."""

    def __init__(self, config: Optional[DetectionConfig] = None):
        self.config = config or DetectionConfig()

    def detect_from_diff_map(self, diff_map: np.ndarray, settings: Settings) -> List[Candidate]:
        candidate_set = extract_candidates(diff_map, settings, self.config)
        return refine_detections(candidate_set, diff_map, self.config)


class RegionScorer(ABC):
    """Scores one image region; higher means more likely a real difference."""

    @abstractmethod
    def score_region(self, region: np.ndarray) -> float:
        """Return a score in [0, 1] for an RGBA region."""


def as_candidates(items: Sequence[Union[Candidate, IntRect]]) -> List[Candidate]:
    """Normalize detector output to Candidates."""
    candidates = []
    for item in items:
        if isinstance(item, Candidate):
            candidates.append(item)
        elif isinstance(item, IntRect):
            candidates.append(Candidate(item, 0.0, CandidateSource.FIRST_PASS, item))
        else:
            raise TypeError(f"Detector returned unsupported item {type(item).__name__}")
    return candidates


def rescore_with_model(
    candidates: List[Candidate],
    image: np.ndarray,
    scorer: RegionScorer
) -> List[Candidate]:
    """
    Replace candidate scores with the scorer's output and re-sort.

    Scores are clamped to [0, 1]. If the scorer fails, the failure is logged
    and the candidates are returned unchanged.

    Args:
        candidates: Refined candidates in analysis space
        image: Aligned right image (RGBA) at analysis resolution
        scorer: Region scoring model
    """
    rescored = []
    for candidate in candidates:
        region = extract_region(image, candidate.box)
        try:
            score = float(scorer.score_region(region))
        except Exception as e:
            logger.warning(f"Region scorer failed, keeping built-in scores: {e}")
            return candidates
        if not math.isfinite(score):
            score = 0.0
        rescored.append(candidate.with_score(min(max(score, 0.0), 1.0)))

    logger.debug(f"Rescored {len(rescored)} candidates with {type(scorer).__name__}")
    return sort_candidates(rescored)
