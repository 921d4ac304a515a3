"""
Tests for image sampling module
"""

import numpy as np
import pytest
from PIL import Image

from spot_diff.geometry import IntRect, Rect
from spot_diff.sampling import (
    as_rgba,
    box_blur,
    crop_pixel_rect,
    is_supported_image,
    load_image,
    prepare_image,
    resize_bilinear,
    source_size,
    to_grayscale,
)


class TestAsRgba:
    """Tests for input normalization"""

    def test_rgb_array(self):
        """Test converting an RGB array"""
        rgb = np.random.randint(0, 255, (40, 60, 3), dtype=np.uint8)

        rgba = as_rgba(rgb)

        assert rgba.shape == (40, 60, 4)
        assert rgba.dtype == np.uint8
        assert np.array_equal(rgba[..., :3], rgb)
        assert np.all(rgba[..., 3] == 255)

    def test_grayscale_array(self):
        """Test converting a single-channel array"""
        gray = np.full((10, 12), 77, dtype=np.uint8)

        rgba = as_rgba(gray)

        assert rgba.shape == (10, 12, 4)
        assert np.all(rgba[..., :3] == 77)

    def test_pil_image(self):
        """Test converting a PIL Image"""
        pil_image = Image.new('RGB', (64, 32), color=(10, 20, 30))

        rgba = as_rgba(pil_image)

        assert rgba.shape == (32, 64, 4)
        assert tuple(rgba[0, 0]) == (10, 20, 30, 255)

    def test_input_not_modified(self):
        """Test that the caller's array is never modified"""
        rgba_in = np.zeros((8, 8, 4), dtype=np.uint8)

        rgba_out = as_rgba(rgba_in)
        rgba_out[0, 0] = 255

        assert rgba_in[0, 0, 0] == 0

    def test_empty_image(self):
        """Test that an empty array becomes an empty RGBA buffer"""
        assert as_rgba(np.array([])).shape == (0, 0, 4)

    def test_invalid_type(self):
        """Test that invalid image type raises TypeError"""
        with pytest.raises(TypeError):
            as_rgba("not an image")

    def test_invalid_shape(self):
        """Test that a 2-channel array raises ValueError"""
        with pytest.raises(ValueError):
            as_rgba(np.zeros((4, 4, 2), dtype=np.uint8))


class TestGrayscale:
    """Tests for luma conversion"""

    def test_luma_weights(self):
        """Test 0.299 / 0.587 / 0.114 weighting"""
        rgba = np.zeros((1, 3, 4), dtype=np.uint8)
        rgba[0, 0] = (255, 0, 0, 255)
        rgba[0, 1] = (0, 255, 0, 255)
        rgba[0, 2] = (0, 0, 255, 255)

        gray = to_grayscale(rgba)

        assert gray.dtype == np.uint8
        assert list(gray[0]) == [76, 150, 29]

    def test_neutral_gray_preserved(self):
        """Test that equal channels keep their value"""
        rgba = as_rgba(np.full((4, 4), 123, dtype=np.uint8))

        assert np.all(to_grayscale(rgba) == 123)


class TestCropAndResize:
    """Tests for crop conversion, resizing and blur"""

    def test_crop_none_is_whole_image(self):
        """Test that a missing crop selects everything"""
        assert crop_pixel_rect(None, 640, 480) == IntRect(0, 0, 640, 480)

    def test_crop_floor_offsets_round_extents(self):
        """Test normalized to pixel conversion"""
        crop = crop_pixel_rect(Rect(0.1, 0.25, 0.5, 0.333), 101, 100)

        # left floor(10.1) = 10, width round(50.5) = 50 or 51, top 25, height round(33.3) = 33
        assert crop.left == 10
        assert crop.top == 25
        assert crop.width in (50, 51)
        assert crop.height == 33

    def test_crop_clamped_to_image(self):
        """Test that crops extending past the border are clipped"""
        crop = crop_pixel_rect(Rect(0.8, 0.8, 0.5, 0.5), 100, 100)

        assert crop == IntRect(80, 80, 20, 20)

    def test_crop_negative_origin_keeps_overlap_only(self):
        """Test that a crop starting before the image keeps only the overlapping part"""
        crop = crop_pixel_rect(Rect(-0.5, -0.2, 0.6, 1.0), 100, 50)

        assert crop == IntRect(0, 0, 10, 40)

    def test_crop_outside_image_is_empty(self):
        """Test that a crop entirely past the border has zero area"""
        assert crop_pixel_rect(Rect(1.2, 0.0, 0.5, 1.0), 100, 100).is_empty

    def test_resize_bilinear(self):
        """Test resizing to a working resolution"""
        image = np.random.randint(0, 255, (300, 500, 4), dtype=np.uint8)

        resized = resize_bilinear(image, (256, 256))

        assert resized.shape == (256, 256, 4)

    def test_box_blur_constant_image(self):
        """Test that blurring a flat image changes nothing"""
        gray = np.full((32, 32), 90, dtype=np.uint8)

        assert np.array_equal(box_blur(gray, 1), gray)

    def test_box_blur_smooths_spike(self):
        """Test that a single bright pixel is spread over its 3x3 window"""
        gray = np.zeros((9, 9), dtype=np.uint8)
        gray[4, 4] = 90

        blurred = box_blur(gray, 1)

        assert blurred[4, 4] == 10
        assert blurred[3, 3] == 10
        assert blurred[0, 0] == 0


class TestPrepareImage:
    """Tests for prepare_image"""

    def test_prepare_with_crop(self):
        """Test cropping and resampling to the analysis size"""
        image = np.random.randint(0, 255, (480, 640, 3), dtype=np.uint8)

        prepared = prepare_image(image, Rect(0.25, 0.25, 0.5, 0.5), 256)

        assert prepared.rgba.shape == (256, 256, 4)
        assert prepared.gray.shape == (256, 256)
        assert prepared.blurred.shape == (256, 256)
        assert prepared.crop == IntRect(160, 120, 320, 240)
        assert prepared.source_size == (640, 480)
        assert prepared.size == (256, 256)

    def test_prepare_empty_image(self):
        """Test that an empty source yields None"""
        assert prepare_image(np.zeros((0, 0, 3), dtype=np.uint8), None, 256) is None

    def test_prepare_zero_area_crop(self):
        """Test that a zero-area crop yields None"""
        image = np.zeros((100, 100, 3), dtype=np.uint8)

        assert prepare_image(image, Rect(0.5, 0.5, 0.0, 0.3), 256) is None

    def test_source_size(self):
        """Test reading sizes without conversion"""
        assert source_size(np.zeros((30, 40, 3), dtype=np.uint8)) == (40, 30)
        assert source_size(Image.new('RGB', (7, 9))) == (7, 9)


class TestImageFiles:
    """Tests for supported formats and loading"""

    @pytest.mark.parametrize("filename,expected", [
        ("photo.jpg", True),
        ("photo.JPEG", True),
        ("  scan.Png  ", True),
        ("photo.gif", False),
        ("photo.", False),
        ("noextension", False),
        ("", False),
    ])
    def test_is_supported_image(self, filename, expected):
        """Test case-insensitive, trimmed extension check"""
        assert is_supported_image(filename) is expected

    def test_load_png(self, tmp_path):
        """Test loading a PNG as RGBA"""
        path = tmp_path / "left.png"
        Image.new('RGB', (20, 10), color=(1, 2, 3)).save(path)

        rgba = load_image(path)

        assert rgba.shape == (10, 20, 4)
        assert tuple(rgba[0, 0]) == (1, 2, 3, 255)

    def test_load_unsupported_extension(self, tmp_path):
        """Test that unsupported extensions raise ValueError"""
        with pytest.raises(ValueError):
            load_image(tmp_path / "image.bmp")

    def test_load_missing_file(self, tmp_path):
        """Test that a missing file raises FileNotFoundError"""
        with pytest.raises(FileNotFoundError):
            load_image(tmp_path / "missing.png")
