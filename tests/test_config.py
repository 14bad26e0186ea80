import pytest

from passport_sheet_studio.config import CropConfig, StudioConfig


def test_defaults_without_environment():
    config = StudioConfig.from_env({})
    assert config.compositor.api_key is None
    assert config.compositor.model == "gemini-2.5-flash-image"
    assert config.sheet.pixels_per_inch == 300
    assert config.preview.interpolation == "linear"
    assert config.preview.debounce_ms == 50
    assert config.crop == CropConfig()


def test_environment_overrides():
    config = StudioConfig.from_env(
        {
            "API_KEY": "fallback",
            "PASSPORT_STUDIO_MODEL": "custom-model",
            "PASSPORT_STUDIO_PPI": "600",
            "PASSPORT_STUDIO_INTERPOLATION": "monotone",
        }
    )
    assert config.compositor.api_key == "fallback"
    assert config.compositor.model == "custom-model"
    assert config.sheet.photo_size == (827, 1063)
    assert config.preview.interpolation == "monotone"


def test_gemini_key_wins_over_generic_key():
    config = StudioConfig.from_env({"GEMINI_API_KEY": "g", "API_KEY": "a"})
    assert config.compositor.api_key == "g"


@pytest.mark.parametrize("value", ["abc", "0", "-300"])
def test_invalid_ppi_is_rejected(value):
    with pytest.raises(ValueError, match="PASSPORT_STUDIO_PPI"):
        StudioConfig.from_env({"PASSPORT_STUDIO_PPI": value})


def test_invalid_interpolation_is_rejected():
    with pytest.raises(ValueError, match="linear or monotone"):
        StudioConfig.from_env({"PASSPORT_STUDIO_INTERPOLATION": "cubic"})
