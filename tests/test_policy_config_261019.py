"""Policy Config Tests."""
import pytest

from src.engine.errors import ContractViolation
from src.engine.policy_config import PolicyConfig


class TestPolicyConfig:
    """YAML 기반 fairness 설정 로더 테스트."""

    @pytest.fixture
    def config(self):
        return PolicyConfig()

    def test_version(self, config):
        assert config.version == "1.0"

    def test_policy_defaults(self, config):
        assert config.batch_size == 5
        assert config.high_stakes_multiple == 2.0
        assert config.outlier_sigma == 3.0
        assert config.rate_limit_fraction == pytest.approx(0.20)
        assert config.max_pending == 20
        assert config.history_limit == 1000

    def test_distribution_defaults(self, config):
        assert config.fat_tail_probability == pytest.approx(0.02)
        assert config.fat_tail_multiplier == 3.0

    def test_estimator_defaults(self, config):
        assert config.initial_uncertainty == 1000.0
        assert config.min_measurement_noise == 50.0
        assert config.confidence_band == (50.0, 1000.0)

    def test_category_distance(self, config):
        assert config.get_category_distance("wedge") == 100
        assert config.get_category_distance("mid_iron") == 162
        assert config.get_category_distance("long_iron") == 225

    def test_detector_setting(self, config):
        assert config.get_detector_setting("skill_jump", "window", 0) == 3
        assert config.get_detector_setting("skill_jump", "missing", 7) == 7

    def test_settlement_deployment_disables_manual_override(self, config):
        assert config.settles_wagers is True
        assert config.manual_override_enabled is False


class TestOverrides:

    def test_override_merges_over_file(self):
        config = PolicyConfig(overrides={"policy": {"batch_size": 3}})
        assert config.batch_size == 3
        # Untouched keys of the same section survive
        assert config.high_stakes_multiple == 2.0

    def test_manual_override_needs_both_flags(self):
        allow_only = PolicyConfig(overrides={"deployment": {"allow_manual_override": True}})
        assert allow_only.manual_override_enabled is False

        testing = PolicyConfig(overrides={
            "deployment": {"settles_wagers": False, "allow_manual_override": True},
        })
        assert testing.manual_override_enabled is True

    @pytest.mark.parametrize("overrides", [
        {"policy": {"batch_size": 0}},
        {"policy": {"high_stakes_multiple": 1.0}},
        {"policy": {"rate_limit_fraction": 1.5}},
        {"distribution": {"fat_tail_probability": 1.0}},
        {"estimator": {"confidence_band": [1000.0, 50.0]}},
        {"calibration": {"initial_subdivisions": 255}},
        {"policy": {"history_limit": 10}},
    ])
    def test_invalid_values_raise(self, overrides):
        with pytest.raises(ContractViolation):
            PolicyConfig(overrides=overrides)

    def test_partial_file_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "partial.yaml"
        path.write_text("version: '0.9'\npolicy:\n  batch_size: 8\n", encoding="utf-8")
        config = PolicyConfig(config_path=path)
        assert config.version == "0.9"
        assert config.batch_size == 8
        assert config.fat_tail_multiplier == 3.0
        assert config.get_category_distance("wedge") == 100

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        config = PolicyConfig(config_path=path)
        assert config.batch_size == 5
