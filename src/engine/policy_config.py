"""Fairness Config Loader (YAML + overrides)."""
import copy
from pathlib import Path
from typing import Any

import yaml

from src.engine import fairness_config as defaults
from src.engine.errors import ContractViolation


def _deep_merge(base: dict, overrides: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class PolicyConfig:
    """YAML-based fairness engine configuration."""

    DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "fairness_config.yaml"

    def __init__(
        self,
        config_path: Path | str | None = None,
        overrides: dict[str, Any] | None = None,
    ):
        path = Path(config_path) if config_path else self.DEFAULT_CONFIG_PATH
        with open(path, encoding="utf-8") as f:
            self._config = yaml.safe_load(f) or {}
        if overrides:
            self._config = _deep_merge(self._config, overrides)
        self._validate()

    def _section(self, name: str) -> dict:
        return self._config.get(name) or {}

    def _detector(self, name: str) -> dict:
        return self._section("detectors").get(name) or {}

    def _validate(self) -> None:
        if self.batch_size < 1:
            raise ContractViolation(f"batch_size must be >= 1, got {self.batch_size}")
        if self.history_limit < self.max_pending:
            raise ContractViolation(
                f"history_limit must cover the pending bound {self.max_pending}, got {self.history_limit}"
            )
        if self.high_stakes_multiple <= 1.0:
            raise ContractViolation(
                f"high_stakes_multiple must be > 1, got {self.high_stakes_multiple}"
            )
        if self.outlier_sigma <= 0:
            raise ContractViolation(f"outlier_sigma must be > 0, got {self.outlier_sigma}")
        if not 0.0 < self.rate_limit_fraction < 1.0:
            raise ContractViolation(
                f"rate_limit_fraction must be in (0, 1), got {self.rate_limit_fraction}"
            )
        if not 0.0 <= self.fat_tail_probability < 1.0:
            raise ContractViolation(
                f"fat_tail_probability must be in [0, 1), got {self.fat_tail_probability}"
            )
        if self.fat_tail_multiplier < 1.0:
            raise ContractViolation(
                f"fat_tail_multiplier must be >= 1, got {self.fat_tail_multiplier}"
            )
        if self.process_noise < 0 or self.initial_uncertainty <= 0:
            raise ContractViolation("process_noise must be >= 0 and initial_uncertainty > 0")
        low, high = self.confidence_band
        if not 0 < low < high:
            raise ContractViolation(f"confidence_band must be increasing, got {(low, high)}")
        if self.initial_subdivisions < 2 or self.initial_subdivisions % 2:
            raise ContractViolation(
                f"initial_subdivisions must be even and >= 2, got {self.initial_subdivisions}"
            )

    @property
    def version(self) -> str:
        return str(self._config.get("version", "1.0"))

    # ─── policy ───

    @property
    def batch_size(self) -> int:
        return int(self._section("policy").get("batch_size", defaults.BATCH_SIZE))

    @property
    def high_stakes_multiple(self) -> float:
        return float(self._section("policy").get("high_stakes_multiple", defaults.HIGH_STAKES_MULTIPLE))

    @property
    def outlier_sigma(self) -> float:
        return float(self._section("policy").get("outlier_sigma", defaults.OUTLIER_SIGMA))

    @property
    def outlier_min_batch(self) -> int:
        return int(self._section("policy").get("outlier_min_batch", defaults.OUTLIER_MIN_BATCH))

    @property
    def rate_limit_fraction(self) -> float:
        return float(self._section("policy").get("rate_limit_fraction", defaults.RATE_LIMIT_FRACTION))

    @property
    def max_pending(self) -> int:
        factor = int(self._section("policy").get("max_pending_factor", defaults.MAX_PENDING_FACTOR))
        return max(1, factor) * self.batch_size

    @property
    def history_limit(self) -> int:
        return int(self._section("policy").get("history_limit", defaults.HISTORY_LIMIT))

    # ─── distribution ───

    @property
    def fat_tail_probability(self) -> float:
        return float(self._section("distribution").get("fat_tail_probability", defaults.FAT_TAIL_PROBABILITY))

    @property
    def fat_tail_multiplier(self) -> float:
        return float(self._section("distribution").get("fat_tail_multiplier", defaults.FAT_TAIL_MULTIPLIER))

    # ─── estimator ───

    @property
    def process_noise(self) -> float:
        return float(self._section("estimator").get("process_noise", defaults.PROCESS_NOISE))

    @property
    def initial_uncertainty(self) -> float:
        return float(self._section("estimator").get("initial_uncertainty", defaults.INITIAL_UNCERTAINTY))

    @property
    def min_measurement_noise(self) -> float:
        return float(self._section("estimator").get("min_measurement_noise", defaults.MIN_MEASUREMENT_NOISE))

    @property
    def confidence_band(self) -> tuple[float, float]:
        band = self._section("estimator").get(
            "confidence_band",
            [defaults.CONFIDENCE_MIN_UNCERTAINTY, defaults.CONFIDENCE_MAX_UNCERTAINTY],
        )
        return float(band[0]), float(band[1])

    def get_category_distance(self, category: str) -> int:
        distances = self._section("estimator").get("category_distances") or {}
        return int(distances.get(category, defaults.CATEGORY_DISTANCES[category]))

    # ─── calibration ───

    @property
    def integration_tolerance(self) -> float:
        return float(self._section("calibration").get("tolerance", defaults.INTEGRATION_TOLERANCE))

    @property
    def initial_subdivisions(self) -> int:
        return int(self._section("calibration").get("initial_subdivisions", defaults.INITIAL_SUBDIVISIONS))

    @property
    def max_doublings(self) -> int:
        return int(self._section("calibration").get("max_doublings", defaults.MAX_DOUBLINGS))

    # ─── detectors ───

    def get_detector_setting(self, detector: str, key: str, default: float) -> float:
        return self._detector(detector).get(key, default)

    # ─── deployment ───

    @property
    def settles_wagers(self) -> bool:
        return bool(self._section("deployment").get("settles_wagers", defaults.SETTLES_WAGERS))

    @property
    def manual_override_enabled(self) -> bool:
        """Manual distances are only accepted by non-settlement deployments that opt in."""
        allow = bool(self._section("deployment").get("allow_manual_override", defaults.ALLOW_MANUAL_OVERRIDE))
        return allow and not self.settles_wagers
