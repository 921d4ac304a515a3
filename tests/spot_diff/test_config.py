"""
Tests for detection configuration and settings validation
"""

import pytest

from spot_diff.config import DetectionConfig, load_config
from spot_diff.settings import InvalidSettingsError, Settings


class TestDetectionConfig:
    """Tests for DetectionConfig"""

    def test_defaults(self):
        """Test the fixed pipeline constants"""
        config = DetectionConfig()

        assert config.analysis_size == 256
        assert config.alignment_size == 384
        assert config.match_ratio == 0.76
        assert config.inlier_threshold == 1.1
        assert config.min_inliers == 20
        assert config.alignment_passes == 2
        assert config.tile_grid == 20
        assert config.tile_top_k == 10
        assert config.analysis_shape == (256, 256)

    def test_config_is_immutable(self):
        """Test that fields cannot be reassigned"""
        config = DetectionConfig()

        with pytest.raises(AttributeError):
            config.analysis_size = 128

    def test_with_overrides(self):
        """Test copying with replaced fields"""
        config = DetectionConfig().with_overrides(max_results=5, tile_top_k=3)

        assert config.max_results == 5
        assert config.tile_top_k == 3
        assert config.analysis_size == 256

    def test_unknown_override_rejected(self):
        """Test that unknown keys raise ValueError"""
        with pytest.raises(ValueError):
            DetectionConfig().with_overrides(not_a_field=1)

        with pytest.raises(ValueError):
            DetectionConfig.from_dict({'analysis_size': 256, 'bogus': True})

    @pytest.mark.parametrize("overrides", [
        {'match_ratio': 1.5},
        {'ssim_window': 6},
        {'alignment_passes': 0},
        {'tail_fraction': 0.0},
        {'analysis_size': 8},
        {'edge_normalizer': 0.0},
        {'warp_border_margin': -1},
    ])
    def test_invalid_values_rejected(self, overrides):
        """Test validation of out-of-range values"""
        with pytest.raises(ValueError):
            DetectionConfig(**overrides)

    def test_dict_round_trip(self):
        """Test to_dict / from_dict"""
        config = DetectionConfig(max_results=7)

        assert DetectionConfig.from_dict(config.to_dict()) == config


class TestLoadConfig:
    """Tests for YAML configuration loading"""

    def test_load_overrides(self, tmp_path):
        """Test reading overrides from YAML"""
        path = tmp_path / "detection.yaml"
        path.write_text("analysis_size: 128\nmatch_ratio: 0.7\n")

        config = load_config(path)

        assert config.analysis_size == 128
        assert config.match_ratio == 0.7
        assert config.alignment_size == 384

    def test_empty_file_gives_defaults(self, tmp_path):
        """Test that an empty YAML file keeps every default"""
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert load_config(path) == DetectionConfig()

    def test_missing_file(self, tmp_path):
        """Test that a missing file raises FileNotFoundError"""
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        """Test that malformed YAML raises ValueError"""
        path = tmp_path / "broken.yaml"
        path.write_text("analysis_size: [256\n")

        with pytest.raises(ValueError):
            load_config(path)

    def test_non_mapping_yaml(self, tmp_path):
        """Test that a YAML list is rejected"""
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")

        with pytest.raises(ValueError):
            load_config(path)

    def test_unknown_key(self, tmp_path):
        """Test that unknown YAML keys raise ValueError"""
        path = tmp_path / "unknown.yaml"
        path.write_text("analysis_size: 256\nwindow: 3\n")

        with pytest.raises(ValueError):
            load_config(path)


class TestSettings:
    """Tests for caller settings validation"""

    def test_defaults(self):
        """Test default precision and minimum area"""
        settings = Settings()

        assert settings.precision_level == 4
        assert settings.min_area_percent == 5.0

    @pytest.mark.parametrize("kwargs", [
        {'precision_level': 0},
        {'precision_level': 8},
        {'precision_level': 2.5},
        {'precision_level': True},
        {'min_area_percent': -1.0},
        {'min_area_percent': 101.0},
        {'min_area_percent': float('nan')},
        {'min_area_percent': "5"},
    ])
    def test_invalid_settings(self, kwargs):
        """Test that out-of-range settings raise InvalidSettingsError"""
        with pytest.raises(InvalidSettingsError):
            Settings(**kwargs)

    def test_invalid_settings_is_value_error(self):
        """Test that InvalidSettingsError can be caught as ValueError"""
        with pytest.raises(ValueError):
            Settings(precision_level=9)
