"""
Feature Alignment Module

Registers the right image onto the left image at the alignment resolution:
1. ORB keypoints and binary descriptors on both images
2. Hamming matching with a ratio test in both directions, mutual-best only
3. RANSAC homography (inlier distance 1.1 px, at least 20 inliers)
4. Fallback: RANSAC similarity transform converted to a homography
5. Fallback: identity

Alignment runs a fixed number of passes; each pass estimates on the currently
warped right image and is composed onto the accumulated transform. Failure
never raises: the worst case is the identity homography.

The homography maps RIGHT pixel coordinates onto LEFT pixel coordinates.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .config import DetectionConfig
from .geometry import Homography, compose_homography, homography_from_similarity

logger = logging.getLogger(__name__)

METHOD_HOMOGRAPHY = "homography"
METHOD_SIMILARITY = "similarity"
METHOD_IDENTITY = "identity"


@dataclass(frozen=True)
class Match:
    """Mutually-best descriptor pair that passed the ratio test."""

    left_index: int
    right_index: int
    distance: float


@dataclass(frozen=True)
class PassEstimate:
    homography: Homography
    method: str
    inliers: int
    matches: int


@dataclass(frozen=True)
class AlignmentResult:
    """Accumulated right-to-left transform and how it was obtained."""

    homography: Homography
    method: str
    passes: int
    inliers: int

    @classmethod
    def identity(cls) -> "AlignmentResult":
        return cls(Homography.identity(), METHOD_IDENTITY, 0, 0)


def detect_features(
    gray: np.ndarray,
    n_features: int = 1000
) -> Tuple[Sequence[cv2.KeyPoint], Optional[np.ndarray]]:
    """
    Extract ORB keypoints and binary descriptors.

    Args:
        gray: Grayscale uint8 image
        n_features: Maximum number of keypoints

    Returns:
        Tuple of (keypoints, descriptors); descriptors is None when no
        keypoint was found
    """
    if gray.ndim != 2:
        raise ValueError(f"Expected grayscale image with shape (H, W), got {gray.shape}")

    orb = cv2.ORB_create(nfeatures=n_features)
    keypoints, descriptors = orb.detectAndCompute(gray, None)

    logger.debug(f"Detected {len(keypoints)} ORB keypoints")
    return keypoints, descriptors


def _ratio_filtered(knn_matches, ratio: float) -> dict:
    best = {}
    for pair in knn_matches:
        if not pair:
            continue
        nearest = pair[0]
        if len(pair) > 1 and nearest.distance >= ratio * pair[1].distance:
            continue
        best[nearest.queryIdx] = nearest
    return best


def match_descriptors_ratio_cross(
    left_descriptors: Optional[np.ndarray],
    right_descriptors: Optional[np.ndarray],
    ratio: float = 0.76
) -> List[Match]:
    """
    Match binary descriptors with a ratio test and a cross check.

    A pair (i, j) is accepted when j is the ratio-passing nearest neighbour
    of left descriptor i and i is the ratio-passing nearest neighbour of
    right descriptor j.

    Returns:
        Matches sorted by Hamming distance
    """
    if left_descriptors is None or right_descriptors is None:
        return []
    if len(left_descriptors) == 0 or len(right_descriptors) == 0:
        return []

    matcher = cv2.BFMatcher(cv2.NORM_HAMMING, crossCheck=False)
    forward = _ratio_filtered(matcher.knnMatch(left_descriptors, right_descriptors, k=2), ratio)
    backward = _ratio_filtered(matcher.knnMatch(right_descriptors, left_descriptors, k=2), ratio)

    matches = []
    for left_index, m in forward.items():
        reverse = backward.get(m.trainIdx)
        if reverse is not None and reverse.trainIdx == left_index:
            matches.append(Match(left_index, m.trainIdx, float(m.distance)))

    matches.sort(key=lambda m: (m.distance, m.left_index))

    logger.debug(
        f"Ratio/cross matching: forward={len(forward)}, backward={len(backward)}, "
        f"mutual={len(matches)}"
    )
    return matches


def estimate_homography_ransac(
    src_points: np.ndarray,
    dst_points: np.ndarray,
    inlier_threshold: float = 1.1,
    min_inliers: int = 20,
    max_iterations: int = 2000,
    confidence: float = 0.995
) -> Tuple[Optional[Homography], int]:
    """
    Fit a homography mapping src_points onto dst_points with RANSAC.

    Returns:
        Tuple of (homography, inlier_count); homography is None when fewer
        than min_inliers correspondences agree or the fit is degenerate
    """
    if len(src_points) < max(4, min_inliers):
        return None, 0

    matrix, mask = cv2.findHomography(
        src_points.reshape(-1, 1, 2),
        dst_points.reshape(-1, 1, 2),
        cv2.RANSAC,
        inlier_threshold,
        maxIters=max_iterations,
        confidence=confidence
    )

    if matrix is None:
        return None, 0

    inliers = int(mask.sum()) if mask is not None else 0
    homography = Homography(matrix)

    if inliers < min_inliers or not homography.is_invertible:
        logger.debug(f"Homography rejected: inliers={inliers} (min {min_inliers})")
        return None, inliers

    return homography, inliers


def estimate_similarity_ransac(
    src_points: np.ndarray,
    dst_points: np.ndarray,
    inlier_threshold: float = 1.1,
    min_inliers: int = 8,
    max_iterations: int = 2000,
    confidence: float = 0.995
) -> Tuple[Optional[Homography], int]:
    """
    Fit rotation + uniform scale + translation with RANSAC.

    The similarity is returned as its equivalent homography.
    """
    if len(src_points) < max(2, min_inliers):
        return None, 0

    affine, mask = cv2.estimateAffinePartial2D(
        src_points.reshape(-1, 1, 2),
        dst_points.reshape(-1, 1, 2),
        method=cv2.RANSAC,
        ransacReprojThreshold=inlier_threshold,
        maxIters=max_iterations,
        confidence=confidence
    )

    if affine is None:
        return None, 0

    inliers = int(mask.sum()) if mask is not None else 0
    if inliers < min_inliers:
        logger.debug(f"Similarity rejected: inliers={inliers} (min {min_inliers})")
        return None, inliers

    a, b = float(affine[0, 0]), float(affine[1, 0])
    scale = math.hypot(a, b)
    angle = math.atan2(b, a)
    homography = homography_from_similarity(scale, angle, float(affine[0, 2]), float(affine[1, 2]))

    if not homography.is_invertible:
        return None, inliers

    logger.debug(
        f"Similarity: scale={scale:.4f}, angle={math.degrees(angle):.2f}deg, "
        f"t=({affine[0, 2]:.2f}, {affine[1, 2]:.2f}), inliers={inliers}"
    )
    return homography, inliers


def estimate_pass(
    left_gray: np.ndarray,
    right_gray: np.ndarray,
    config: DetectionConfig
) -> Optional[PassEstimate]:
    """
    Estimate one right-to-left transform: homography, else similarity.

    Returns:
        PassEstimate, or None when neither model reaches its inlier minimum
    """
    left_kp, left_desc = detect_features(left_gray, config.orb_features)
    right_kp, right_desc = detect_features(right_gray, config.orb_features)

    matches = match_descriptors_ratio_cross(left_desc, right_desc, config.match_ratio)
    if len(matches) < 2:
        logger.debug(f"Not enough matches for alignment: {len(matches)}")
        return None

    src = np.float32([right_kp[m.right_index].pt for m in matches])
    dst = np.float32([left_kp[m.left_index].pt for m in matches])

    homography, inliers = estimate_homography_ransac(
        src, dst,
        inlier_threshold=config.inlier_threshold,
        min_inliers=config.min_inliers,
        max_iterations=config.ransac_max_iterations,
        confidence=config.ransac_confidence
    )
    if homography is not None:
        return PassEstimate(homography, METHOD_HOMOGRAPHY, inliers, len(matches))

    logger.info(
        f"Homography failed ({inliers} inliers of {len(matches)} matches), "
        "trying similarity transform"
    )

    similarity, inliers = estimate_similarity_ransac(
        src, dst,
        inlier_threshold=config.inlier_threshold,
        min_inliers=config.min_similarity_inliers,
        max_iterations=config.ransac_max_iterations,
        confidence=config.ransac_confidence
    )
    if similarity is not None:
        return PassEstimate(similarity, METHOD_SIMILARITY, inliers, len(matches))

    return None


def warp_to_reference(
    image: np.ndarray,
    homography: Homography,
    size: Tuple[int, int]
) -> np.ndarray:
    """Warp `image` into the reference frame; size is (width, height)."""
    return cv2.warpPerspective(
        image,
        homography.matrix,
        size,
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_REPLICATE
    )


def warp_validity_mask(
    source_size: Tuple[int, int],
    homography: Homography,
    size: Tuple[int, int],
    margin: int = 0
) -> np.ndarray:
    """
    Mark the reference pixels that the warped image actually covers.

    The replicated border written by warp_to_reference is not real content,
    so it gets 0 here. The covered area is eroded by `margin` pixels to drop
    values that blurring and windowed SSIM smear across its edge.

    Args:
        source_size: (width, height) of the image before warping
        homography: Transform passed to warp_to_reference
        size: (width, height) of the reference frame
        margin: Erosion radius in pixels

    Returns:
        float32 mask of shape (height, width) with values 0.0 or 1.0
    """
    width, height = source_size
    ones = np.ones((height, width), dtype=np.uint8)
    mask = cv2.warpPerspective(
        ones,
        homography.matrix,
        size,
        flags=cv2.INTER_NEAREST,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=0
    )

    if margin > 0:
        kernel = np.ones((2 * margin + 1, 2 * margin + 1), dtype=np.uint8)
        mask = cv2.erode(mask, kernel)

    covered = float(mask.mean()) if mask.size else 0.0
    logger.debug(f"Warp covers {covered:.1%} of the reference frame (margin={margin})")
    return mask.astype(np.float32)


def align_images(
    left_gray: np.ndarray,
    right_gray: np.ndarray,
    config: Optional[DetectionConfig] = None
) -> AlignmentResult:
    """
    Estimate the homography that registers right_gray onto left_gray.

    Runs config.alignment_passes passes. Pass k estimates on the right image
    warped by the transform accumulated so far, and the result is composed
    as compose(pass_k, accumulated).

    Args:
        left_gray: Reference grayscale image at alignment resolution
        right_gray: Moving grayscale image, same shape
        config: Detection configuration

    Returns:
        AlignmentResult; method is 'identity' when the first pass could not
        estimate any model

    Example:
        >>> result = align_images(left, right)
        >>> result.method
        'homography'
        >>> result.homography.apply(Point(192, 192))
        Point(x=186.0, y=196.0)
    """
    config = config or DetectionConfig()

    if left_gray.shape != right_gray.shape:
        raise ValueError(
            f"Image shape mismatch: left {left_gray.shape} vs right {right_gray.shape}"
        )

    height, width = left_gray.shape[:2]
    accumulated = Homography.identity()
    method = METHOD_IDENTITY
    passes = 0
    inliers = 0
    current = right_gray

    for pass_index in range(config.alignment_passes):
        try:
            estimate = estimate_pass(left_gray, current, config)
        except cv2.error as e:
            logger.warning(f"Alignment pass {pass_index + 1} failed in OpenCV: {e}")
            estimate = None

        if estimate is None:
            if pass_index == 0:
                logger.warning("Alignment failed, falling back to identity homography")
            break

        candidate = compose_homography(estimate.homography, accumulated)
        if not candidate.is_invertible:
            logger.warning(f"Alignment pass {pass_index + 1} produced a singular transform")
            break

        accumulated = candidate
        if pass_index == 0:
            method = estimate.method
        inliers = estimate.inliers
        passes += 1

        logger.debug(
            f"Alignment pass {pass_index + 1}: method={estimate.method}, "
            f"inliers={estimate.inliers}/{estimate.matches}"
        )

        if pass_index + 1 < config.alignment_passes:
            current = warp_to_reference(right_gray, accumulated, (width, height))

    logger.info(f"Alignment complete: method={method}, passes={passes}, inliers={inliers}")

    return AlignmentResult(accumulated, method, passes, inliers)
