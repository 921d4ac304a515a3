"""
Tests for suppression, rescoring and ordering
"""

import numpy as np
import pytest

from spot_diff.config import DetectionConfig
from spot_diff.detector import DiffMapDetector
from spot_diff.geometry import IntRect
from spot_diff.refinement import (
    non_max_suppression,
    refine_candidates,
    refine_detections,
    sort_candidates,
    tail_mean_score,
)
from spot_diff.regions import Candidate, CandidateSet, CandidateSource
from spot_diff.settings import Settings


def _candidate(left, top, width, height, score, source=CandidateSource.FIRST_PASS, core=None, floor=0.0):
    return Candidate(IntRect(left, top, width, height), score, source, core, floor)


class TestNonMaxSuppression:
    """Tests for greedy NMS"""

    def test_keeps_higher_scoring_of_overlapping_pair(self):
        """Test that the weaker of two overlapping boxes is suppressed"""
        strong = _candidate(0, 0, 10, 10, 0.9)
        weak = _candidate(1, 1, 10, 10, 0.8)
        separate = _candidate(20, 20, 10, 10, 0.7)

        kept = non_max_suppression([weak, separate, strong], iou_threshold=0.5)

        assert kept == [strong, separate]

    def test_low_overlap_kept(self):
        """Test that boxes below the IoU threshold both survive"""
        a = _candidate(0, 0, 10, 10, 0.9)
        b = _candidate(5, 0, 10, 10, 0.8)

        assert len(non_max_suppression([a, b], iou_threshold=0.5)) == 2

    def test_limit(self):
        """Test the kept-count cap"""
        candidates = [_candidate(i * 20, 0, 10, 10, 1.0 - i * 0.1) for i in range(5)]

        kept = non_max_suppression(candidates, limit=3)

        assert [c.score for c in kept] == pytest.approx([1.0, 0.9, 0.8])


class TestOrdering:
    """Tests for deterministic ordering"""

    def test_ties_broken_by_area_then_position(self):
        """Test score desc, area desc, top asc, left asc"""
        small = _candidate(0, 0, 5, 5, 0.5)
        large = _candidate(50, 50, 20, 20, 0.5)
        lower = _candidate(0, 30, 10, 10, 0.5)
        upper_right = _candidate(30, 10, 10, 10, 0.5)
        upper_left = _candidate(10, 10, 10, 10, 0.5)
        best = _candidate(90, 90, 2, 2, 0.9)

        ordered = sort_candidates([small, large, lower, upper_right, upper_left, best])

        assert ordered == [best, large, upper_left, upper_right, lower, small]


class TestTailMean:
    """Tests for tail-mean rescoring"""

    def test_mean_of_lower_half(self):
        """Test averaging the lowest 50 percent of values"""
        diff_map = (np.arange(100, dtype=np.float32) / 100.0).reshape(10, 10)

        score = tail_mean_score(diff_map, IntRect(0, 0, 10, 10), 0.5)

        # Lowest 50 values are 0.00 .. 0.49
        assert score == pytest.approx(0.245, abs=1e-6)

    def test_uniform_region(self):
        """Test that a uniform region scores its value"""
        diff_map = np.full((8, 8), 0.6, dtype=np.float32)

        assert tail_mean_score(diff_map, IntRect(2, 2, 4, 4)) == pytest.approx(0.6)

    def test_floor_excludes_background(self):
        """Test that only pixels at or above the floor are averaged"""
        diff_map = np.zeros((10, 10), dtype=np.float32)
        diff_map[0, :] = 0.9
        diff_map[1, :] = 0.8

        assert tail_mean_score(diff_map, IntRect(0, 0, 10, 10), 0.5, floor=0.75) == pytest.approx(0.8)
        assert tail_mean_score(diff_map, IntRect(0, 0, 10, 10), 0.5) == 0.0

    def test_floor_without_support_uses_whole_box(self):
        """Test the fallback when no pixel reaches the floor"""
        diff_map = np.full((4, 4), 0.2, dtype=np.float32)

        assert tail_mean_score(diff_map, IntRect(0, 0, 4, 4), 0.5, floor=0.9) == pytest.approx(0.2)

    def test_empty_box(self):
        """Test that an empty box scores zero"""
        assert tail_mean_score(np.ones((4, 4), np.float32), IntRect(1, 1, 0, 0)) == 0.0


class TestRefineCandidates:
    """Tests for the two-pass refinement"""

    def test_primary_rescored_on_support(self):
        """Test that padding around a component does not dilute its score"""
        diff_map = np.zeros((64, 64), dtype=np.float32)
        diff_map[10:20, 10:20] = 0.8
        core = IntRect(10, 10, 10, 10)
        primary = _candidate(5, 5, 20, 20, 0.8, core=core, floor=0.75)

        refined = refine_candidates(CandidateSet([primary], [], 0.75), diff_map)

        assert len(refined) == 1
        assert refined[0].score == pytest.approx(0.8)
        assert refined[0].box == primary.box

    def test_secondary_inside_kept_box_dropped(self):
        """Test containment suppression of secondary candidates"""
        diff_map = np.zeros((64, 64), dtype=np.float32)
        primary = _candidate(0, 0, 40, 40, 0.9, core=IntRect(5, 5, 30, 30))
        inside = _candidate(0, 0, 20, 20, 0.7, CandidateSource.SECOND_PASS, IntRect(10, 10, 2, 2))
        outside = _candidate(44, 44, 20, 20, 0.6, CandidateSource.SECOND_PASS, IntRect(50, 50, 2, 2))

        refined = refine_candidates(CandidateSet([primary], [inside, outside], 0.75), diff_map)

        assert [c.box for c in refined] == [primary.box, outside.box]
        assert refined[1].source == CandidateSource.SECOND_PASS

    def test_secondaries_fill_remaining_slots(self):
        """Test that secondaries only fill the slots left by primaries"""
        diff_map = np.zeros((256, 256), dtype=np.float32)
        primaries = [_candidate(i * 30, 0, 20, 20, 0.9) for i in range(3)]
        secondaries = [
            _candidate(i * 30, 100, 20, 20, 0.7, CandidateSource.SECOND_PASS)
            for i in range(5)
        ]
        config = DetectionConfig(max_results=5)

        refined = refine_candidates(CandidateSet(primaries, secondaries, 0.75), diff_map, config)

        assert len(refined) == 5
        assert sum(c.source == CandidateSource.SECOND_PASS for c in refined) == 2

    def test_sub_threshold_speck_ranks_below_component(self):
        """Test that an isolated peak below the threshold cannot outrank a real region"""
        diff_map = np.zeros((256, 256), dtype=np.float32)
        diff_map[20:60, 20:60] = 0.95
        diff_map[21:59, 21:59] = 0.0
        diff_map[200, 200] = 0.7

        detections = DiffMapDetector().detect_from_diff_map(diff_map, Settings(precision_level=4))

        assert [d.source for d in detections] == [CandidateSource.FIRST_PASS, CandidateSource.SECOND_PASS]
        assert detections[0].score == pytest.approx(0.95)
        assert detections[1].score < detections[0].score

    def test_refine_detections_falls_back_to_tiles(self):
        """Test that an empty candidate set triggers the tile fallback"""
        diff_map = np.zeros((256, 256), dtype=np.float32)
        diff_map[3, 3] = 0.3

        refined = refine_detections(CandidateSet([], [], 0.75), diff_map)

        assert len(refined) == 1
        assert refined[0].source == CandidateSource.TILE_FALLBACK
        assert refined[0].box.left == 0 and refined[0].box.top == 0
