"""
Image Sampling Module

Normalizes input photographs into the fixed working buffers of the pipeline:
- Converting any supported input to RGBA
- Applying the (optional) normalized crop selection
- Bilinear resize to the analysis (256x256) or alignment (384x384) resolution
- Grayscale conversion with fixed luma weights
- Small box blur before structural similarity to suppress sub-pixel jitter

All functions are pure; inputs are never modified.
"""

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

import cv2
import numpy as np
from PIL import Image

from .geometry import IntRect, Rect

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = ("jpg", "jpeg", "png")


@dataclass(frozen=True)
class PreparedImage:
    """One side of the pair, resampled to a working resolution."""

    rgba: np.ndarray
    gray: np.ndarray
    blurred: np.ndarray
    crop: IntRect
    source_size: Tuple[int, int]

    @property
    def size(self) -> Tuple[int, int]:
        """Working size as (width, height)."""
        return (self.rgba.shape[1], self.rgba.shape[0])


def is_supported_image(filename: str) -> bool:
    """
    Check whether a filename has a supported image extension.

    Example:
        >>> is_supported_image(" Photo.JPG ")
        True
        >>> is_supported_image("scan.")
        False
    """
    if not filename:
        return False

    trimmed = filename.strip()
    dot = trimmed.rfind(".")
    if dot < 0 or dot == len(trimmed) - 1:
        return False

    return trimmed[dot + 1:].lower() in SUPPORTED_EXTENSIONS


def load_image(image_path: Union[str, Path]) -> np.ndarray:
    """
    Load a JPEG or PNG file as an RGBA array.

    Raises:
        ValueError: If the extension is not supported
        FileNotFoundError: If the file does not exist
        IOError: If the file cannot be decoded
    """
    path = Path(image_path)

    if not is_supported_image(path.name):
        raise ValueError(f"Unsupported image type: {path.name}")

    if not path.exists():
        logger.error(f"Image file not found: {path}")
        raise FileNotFoundError(f"Image file not found: {path}")

    try:
        with Image.open(path) as img:
            return np.array(img.convert("RGBA"))
    except Exception as e:
        logger.error(f"Error loading image from {path}: {e}")
        raise IOError(f"Failed to load image: {e}")


def as_rgba(image: Union[np.ndarray, Image.Image]) -> np.ndarray:
    """
    Convert an input image to an RGBA uint8 array.

    Accepts PIL images, grayscale (H, W), RGB (H, W, 3) and RGBA (H, W, 4)
    arrays. Float arrays are assumed to be in 0..255.

    Raises:
        TypeError: If the type is not supported
        ValueError: If the array shape is not an image shape
    """
    if isinstance(image, Image.Image):
        return np.array(image.convert("RGBA"))

    if not isinstance(image, np.ndarray):
        raise TypeError(f"Image must be PIL Image or numpy array, got {type(image)}")

    if image.size == 0:
        return np.zeros((0, 0, 4), dtype=np.uint8)

    if image.dtype != np.uint8:
        image = np.clip(np.rint(image), 0, 255).astype(np.uint8)

    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2RGBA)

    if image.ndim == 3:
        if image.shape[2] == 4:
            return image.copy()
        if image.shape[2] == 3:
            return cv2.cvtColor(image, cv2.COLOR_RGB2RGBA)
        if image.shape[2] == 1:
            return cv2.cvtColor(image[:, :, 0], cv2.COLOR_GRAY2RGBA)

    raise ValueError(f"Unexpected image shape: {image.shape}")


def to_grayscale(rgba: np.ndarray) -> np.ndarray:
    """Luma conversion: 0.299 R + 0.587 G + 0.114 B, rounded to uint8."""
    if rgba.ndim == 2:
        return rgba.copy()
    return cv2.cvtColor(rgba, cv2.COLOR_RGBA2GRAY)


def crop_pixel_rect(crop: Optional[Rect], width: int, height: int) -> IntRect:
    """
    Convert a normalized crop selection into image pixels.

    Offsets are floored and extents are rounded; the resulting edges are then
    clipped to the image, so only the overlapping part is kept. A missing
    crop selects the whole image.
    """
    if crop is None:
        return IntRect(0, 0, width, height)

    raw_left = int(math.floor(crop.left * width))
    raw_top = int(math.floor(crop.top * height))
    raw_right = raw_left + int(round(crop.width * width))
    raw_bottom = raw_top + int(round(crop.height * height))

    return IntRect.from_ltrb(raw_left, raw_top, raw_right, raw_bottom).clamp(width, height)


def extract_region(image: np.ndarray, rect: IntRect) -> np.ndarray:
    """Copy the pixels of `rect` out of `image`."""
    return image[rect.top:rect.bottom, rect.left:rect.right].copy()


def resize_bilinear(image: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
    """Bilinear resize to size (width, height)."""
    if image.shape[1] == size[0] and image.shape[0] == size[1]:
        return image.copy()
    return cv2.resize(image, size, interpolation=cv2.INTER_LINEAR)


def box_blur(gray: np.ndarray, radius: int = 1) -> np.ndarray:
    """Mean filter with a (2*radius+1) square window."""
    if radius <= 0:
        return gray.copy()
    ksize = 2 * radius + 1
    return cv2.blur(gray, (ksize, ksize), borderType=cv2.BORDER_REFLECT)


def prepare_image(
    image: Union[np.ndarray, Image.Image],
    crop: Optional[Rect],
    size: int,
    blur_radius: int = 1
) -> Optional[PreparedImage]:
    """
    Crop and resample one input image to a square working resolution.

    Pipeline:
    1. Convert to RGBA
    2. Apply the normalized crop (whole image if None)
    3. Bilinear resize to size x size
    4. Grayscale conversion and box blur

    Args:
        image: Source image (PIL Image or numpy array)
        crop: Normalized crop rectangle, or None for the whole image
        size: Target width and height in pixels
        blur_radius: Box blur radius for the blurred grayscale buffer

    Returns:
        PreparedImage, or None when the image is empty or the crop has
        zero area

    Example:
        >>> prepared = prepare_image(photo, Rect(0.1, 0.1, 0.5, 0.5), 256)
        >>> prepared.rgba.shape
        (256, 256, 4)
    """
    rgba = as_rgba(image)
    height, width = rgba.shape[:2]

    if width == 0 or height == 0:
        logger.warning("Empty source image, nothing to prepare")
        return None

    crop_px = crop_pixel_rect(crop, width, height)
    if crop_px.is_empty:
        logger.warning(f"Crop {crop} has zero area on {width}x{height} image")
        return None

    region = extract_region(rgba, crop_px)
    resized = resize_bilinear(region, (size, size))
    gray = to_grayscale(resized)
    blurred = box_blur(gray, blur_radius)

    logger.debug(
        f"Prepared image: source={width}x{height}, crop={crop_px.to_ltrb()}, "
        f"size={size}, gray range=[{gray.min()}, {gray.max()}]"
    )

    return PreparedImage(
        rgba=resized,
        gray=gray,
        blurred=blurred,
        crop=crop_px,
        source_size=(width, height),
    )


def source_size(image: Union[np.ndarray, Image.Image]) -> Tuple[int, int]:
    """Image size as (width, height) without converting pixels."""
    if isinstance(image, Image.Image):
        return image.size
    if isinstance(image, np.ndarray):
        if image.ndim < 2:
            return (0, 0)
        return (image.shape[1], image.shape[0])
    raise TypeError(f"Image must be PIL Image or numpy array, got {type(image)}")
