"""Tests for BakeSettings presets and validation."""

import pytest

from irradiance_baker.core.errors import BakeError, ConfigurationError
from irradiance_baker.core.settings import (
    DEFAULT_LIGHTMAP_SIZE,
    QUALITY_PRESETS,
    AccumulationMode,
    BakeSettings,
    TextureFilter,
)


def test_defaults_are_valid():
    settings = BakeSettings()
    settings.validate()

    assert settings.lightmap_width == DEFAULT_LIGHTMAP_SIZE
    assert settings.texture_filter == TextureFilter.LINEAR
    assert settings.accumulation_mode == AccumulationMode.OVERWRITE
    assert settings.auto_start_delay_ms is None
    assert settings.factors == {}


@pytest.mark.parametrize("preset", list(QUALITY_PRESETS))
def test_presets_map_to_square_sizes(preset):
    settings = BakeSettings.from_preset(preset)
    assert settings.lightmap_width == settings.lightmap_height == QUALITY_PRESETS[preset]


def test_unknown_preset_falls_back_to_default():
    settings = BakeSettings.from_preset("Ultra", factors={"sun": 1.0})
    assert settings.lightmap_width == DEFAULT_LIGHTMAP_SIZE
    assert settings.factors == {"sun": 1.0}


@pytest.mark.parametrize("overrides", [
    {"lightmap_width": 0},
    {"lightmap_height": -4},
    {"probe_size": 0},
    {"texture_filter": "cubic"},
    {"accumulation_mode": "sum"},
    {"auto_start_delay_ms": -1},
    {"factors": {"": 1.0}},
    {"factors": {"base": 1.0}},
])
def test_invalid_settings_are_rejected(overrides):
    settings = BakeSettings(**overrides)
    with pytest.raises(ConfigurationError):
        settings.validate()


def test_configuration_error_hierarchy():
    assert issubclass(ConfigurationError, BakeError)
    assert issubclass(ConfigurationError, ValueError)


def test_from_preset_validates_overrides():
    with pytest.raises(ConfigurationError):
        BakeSettings.from_preset("Preview (64×64)", texture_filter="cubic")
