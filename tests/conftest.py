from pathlib import Path
import sys

import cv2
import numpy as np
import pytest

sourceRoot = Path(__file__).resolve().parents[1] / "src"
if str(sourceRoot) not in sys.path:
    sys.path.insert(0, str(sourceRoot))


def makeTexturedImage(size, seed=0):
    """Smooth color noise with scattered solid rectangles; rich in corners."""
    rng = np.random.default_rng(seed)
    coarse = rng.integers(0, 256, (max(size // 8, 2), max(size // 8, 2), 3), dtype=np.uint8)
    image = cv2.resize(coarse, (size, size), interpolation=cv2.INTER_CUBIC)

    for _ in range(max(size // 10, 10)):
        x, y = (int(v) for v in rng.integers(0, size - 20, 2))
        w, h = (int(v) for v in rng.integers(8, 40, 2))
        color = tuple(int(c) for c in rng.integers(0, 256, 3))
        cv2.rectangle(image, (x, y), (x + w, y + h), color, -1)

    return image


def shiftImage(image, dx, dy):
    """Translate content by (dx, dy) pixels, reflecting at the borders."""
    height, width = image.shape[:2]
    matrix = np.float32([[1, 0, dx], [0, 1, dy]])
    return cv2.warpAffine(image, matrix, (width, height), borderMode=cv2.BORDER_REFLECT)


@pytest.fixture
def texturedImageFactory():
    return makeTexturedImage


@pytest.fixture
def shiftImageFn():
    return shiftImage


@pytest.fixture
def texturedPair():
    """512x512 scene and a copy with a solid magenta square at (300, 200)."""
    left = makeTexturedImage(512, seed=1)
    right = left.copy()
    right[200:260, 300:360] = (255, 0, 255)
    return left, right
