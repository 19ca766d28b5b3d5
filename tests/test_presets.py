"""Tests for quality preset resolution."""

import pytest

from cadenceflow.core.types import (
    HardwareProfile,
    HardwareTier,
    PipelineParameters,
    QualityPreset,
    ScalingAlgorithm,
)
from cadenceflow.exceptions import InvalidParametersError
from cadenceflow.hardware import FULL_MODEL, LITE_MODEL
from cadenceflow.presets import PRESET_TABLE, preset_table, resolve


class TestFixedPresets:
    """Tests for Fast / Balanced / Beauty."""

    def test_fast(self):
        params = resolve(QualityPreset.FAST)
        assert params.target_height == 540
        assert params.scene_threshold == pytest.approx(0.20)
        assert params.model_id == LITE_MODEL
        assert params.uhd_mode is False
        assert params.scaling == ScalingAlgorithm.BILINEAR

    def test_balanced(self):
        params = resolve(QualityPreset.BALANCED)
        assert params.target_height == 720
        assert params.scene_threshold == pytest.approx(0.15)
        assert params.model_id == FULL_MODEL
        assert params.scaling == ScalingAlgorithm.SPLINE36

    def test_beauty(self):
        params = resolve(QualityPreset.BEAUTY)
        assert params.target_height == 1080
        assert params.scene_threshold == pytest.approx(0.10)
        assert params.uhd_mode is True
        assert params.scaling == ScalingAlgorithm.LANCZOS

    def test_only_beauty_enables_uhd(self):
        uhd = [preset for preset, params in PRESET_TABLE.items() if params.uhd_mode]
        assert uhd == [QualityPreset.BEAUTY]

    def test_monotonic_quality(self):
        fast, balanced, beauty = (PRESET_TABLE[p] for p in (
            QualityPreset.FAST, QualityPreset.BALANCED, QualityPreset.BEAUTY))
        assert fast.target_height < balanced.target_height < beauty.target_height
        assert fast.scene_threshold > balanced.scene_threshold > beauty.scene_threshold

    def test_independent_of_hardware(self):
        low = HardwareProfile(tier=HardwareTier.ENTRY)
        high = HardwareProfile(tier=HardwareTier.HIGH)
        assert resolve("beauty", low) == resolve("beauty", high)

    @pytest.mark.parametrize("name", ["fast", "Balanced", " BEAUTY "])
    def test_accepts_names(self, name):
        assert resolve(name) == PRESET_TABLE[QualityPreset.parse(name)]

    def test_unknown_preset(self):
        with pytest.raises(InvalidParametersError) as exc_info:
            resolve("ultra")
        assert exc_info.value.details["field"] == "quality_preset"

    def test_preset_table_for_display(self):
        table = preset_table()
        assert set(table) == {"fast", "balanced", "beauty"}
        assert table["beauty"]["scaling"] == "lanczos"


class TestCustomPreset:
    """Tests for user-supplied parameters."""

    def test_custom_mapping_used_verbatim(self):
        params = resolve("custom", custom={
            "target_height": 900,
            "scene_threshold": 0.3,
            "model_id": "rife-v4.6",
            "uhd_mode": True,
            "scaling": "mitchell",
        })
        assert params == PipelineParameters(900, 0.3, "rife-v4.6", True, ScalingAlgorithm.MITCHELL)

    def test_custom_parameters_instance(self):
        custom = PipelineParameters(480, 0.5, LITE_MODEL)
        assert resolve(QualityPreset.CUSTOM, custom=custom) is custom

    def test_custom_missing_values(self):
        with pytest.raises(InvalidParametersError):
            resolve("custom")

    def test_custom_missing_field(self):
        with pytest.raises(InvalidParametersError) as exc_info:
            resolve("custom", custom={"target_height": 720, "model_id": "rife-v4.6"})
        assert exc_info.value.details["field"] == "scene_threshold"

    @pytest.mark.parametrize("custom", [
        {"target_height": 0, "scene_threshold": 0.1, "model_id": "m"},
        {"target_height": "720", "scene_threshold": 0.1, "model_id": "m"},
        {"target_height": 720, "scene_threshold": 1.5, "model_id": "m"},
        {"target_height": 720, "scene_threshold": "high", "model_id": "m"},
        {"target_height": 720, "scene_threshold": 0.1, "model_id": ""},
        {"target_height": 720, "scene_threshold": 0.1, "model_id": "m", "scaling": "bicubic"},
    ])
    def test_custom_malformed(self, custom):
        with pytest.raises(InvalidParametersError):
            resolve("custom", custom=custom)

    def test_custom_not_a_mapping(self):
        with pytest.raises(InvalidParametersError):
            resolve("custom", custom=[720, 0.1, "m"])

    def test_custom_ignored_for_fixed_presets(self):
        assert resolve("fast", custom={"target_height": 2160}) == PRESET_TABLE[QualityPreset.FAST]
