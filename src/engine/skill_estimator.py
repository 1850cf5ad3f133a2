"""
Skill Estimator — 1D Kalman filter over a player's dispersion (sigma).

One estimator per (player, club category).

  predict : P <- P + Q
  update  : K = P / (P + R)
            sigma <- sigma + K * (z - sigma)
            P <- (1 - K) * P

Batch measurement:
  z = sum(d_i * w_i) / sum(w_i) / sqrt(pi/2)     (Rayleigh mean -> scale)
  R = max(sample variance of d, MIN_MEASUREMENT_NOISE)

Wider batches give a larger R, so they move the estimate less.
"""

import math
from dataclasses import dataclass
from typing import Iterable, Optional

import numpy as np

from src.engine.errors import ContractViolation
from src.engine.fairness_config import (
    CATEGORY_DISTANCES,
    CONFIDENCE_MAX_UNCERTAINTY,
    CONFIDENCE_MIN_UNCERTAINTY,
    INITIAL_UNCERTAINTY,
    MIN_ESTIMATE,
    MIN_MEASUREMENT_NOISE,
    PROCESS_NOISE,
    SINGLE_SHOT_VARIANCE,
)
from src.engine.holes import ClubCategory
from src.engine.shot_distribution import MEAN_FACTOR

MAX_HANDICAP = 54


def initial_dispersion(handicap: float, distance_yds: float) -> float:
    """Prior sigma (feet) from handicap and shot distance.

    sigma_0 = yds * 3 * (0.05 + (yds - 75) / 175 * 0.01) * (0.5 + handicap / 30)

    Longer shots and higher handicaps both widen the prior.
    """
    if not 0 <= handicap <= MAX_HANDICAP:
        raise ContractViolation(f"handicap must be in [0, {MAX_HANDICAP}], got {handicap}")
    if distance_yds <= 0:
        raise ContractViolation(f"distance_yds must be positive, got {distance_yds}")
    distance_factor = 0.05 + ((distance_yds - 75.0) / (250.0 - 75.0)) * 0.01
    skill_factor = 0.5 + handicap / 30.0
    return distance_yds * 3.0 * distance_factor * skill_factor


def weighted_measurement(observations: list[tuple[float, float]]) -> float:
    """Wager-weighted mean miss distance of (distance, wager) pairs."""
    total_weight = sum(w for _, w in observations)
    if total_weight <= 0:
        raise ContractViolation("weighted measurement needs a positive total wager")
    return sum(d * w for d, w in observations) / total_weight


def debias_measurement(mean_distance: float) -> float:
    """Rayleigh mean -> scale parameter.

    Uses the pure Rayleigh factor sqrt(pi/2), not the fat-tail mixture mean.
    Mishits that survive outlier screening therefore read a few percent high
    (about 4% at p=0.02, m=3), which makes the ceiling slightly generous.
    The calibrator keeps sigma as the mixture's base scale; change both
    together or neither.
    """
    return mean_distance / MEAN_FACTOR


def batch_variance(distances: list[float]) -> float:
    if len(distances) <= 1:
        return SINGLE_SHOT_VARIANCE
    return float(np.var(distances, ddof=1))


@dataclass
class MeasurementSummary:
    """Result of one batch update."""
    measurement: float
    measurement_noise: float
    used: int
    excluded_wagers: int
    estimate_before: float
    estimate_after: float
    uncertainty_before: float
    uncertainty_after: float
    gain: float


@dataclass
class SkillEstimator:
    """Recursive dispersion estimate for one skill category."""
    estimate: float
    uncertainty: float = INITIAL_UNCERTAINTY
    process_noise: float = PROCESS_NOISE
    initial_estimate: Optional[float] = None
    initial_uncertainty: float = INITIAL_UNCERTAINTY
    min_measurement_noise: float = MIN_MEASUREMENT_NOISE
    confidence_band: tuple[float, float] = (CONFIDENCE_MIN_UNCERTAINTY, CONFIDENCE_MAX_UNCERTAINTY)

    def __post_init__(self):
        if not (self.estimate > 0) or not math.isfinite(self.estimate):
            raise ContractViolation(f"initial sigma must be positive, got {self.estimate}")
        if self.uncertainty < 0:
            raise ContractViolation(f"uncertainty must be >= 0, got {self.uncertainty}")
        if self.initial_estimate is None:
            self.initial_estimate = self.estimate

    @classmethod
    def from_prior(
        cls,
        category: ClubCategory,
        handicap: float,
        config=None,
        prior_sigma: float | None = None,
    ) -> 'SkillEstimator':
        """Estimator seeded from the handicap prior (or an explicit prior sigma)."""
        category = ClubCategory(category)
        if prior_sigma is None:
            if config is not None:
                distance = config.get_category_distance(category.value)
            else:
                distance = CATEGORY_DISTANCES[category.value]
            prior_sigma = initial_dispersion(handicap, distance)
        if config is None:
            return cls(estimate=prior_sigma)
        return cls(
            estimate=prior_sigma,
            uncertainty=config.initial_uncertainty,
            process_noise=config.process_noise,
            initial_uncertainty=config.initial_uncertainty,
            min_measurement_noise=config.min_measurement_noise,
            confidence_band=config.confidence_band,
        )

    def predict(self) -> tuple[float, float]:
        """Skill has no motion model; only the uncertainty grows."""
        self.uncertainty += self.process_noise
        return self.estimate, self.uncertainty

    def update(self, measurement: float, measurement_noise: float) -> float:
        """Kalman update. Returns the gain used."""
        if not math.isfinite(measurement):
            raise ContractViolation(f"measurement must be finite, got {measurement}")
        if not (measurement_noise > 0):
            raise ContractViolation(f"measurement_noise must be positive, got {measurement_noise}")

        gain = self.uncertainty / (self.uncertainty + measurement_noise)
        self.estimate = max(MIN_ESTIMATE, self.estimate + gain * (measurement - self.estimate))
        self.uncertainty *= 1.0 - gain
        return gain

    def update_from_batch(self, observations: Iterable[tuple[float, float]]) -> MeasurementSummary:
        """Predict + update from (distance, wager) pairs.

        Non-positive wagers are dropped per observation; a batch with nothing
        left is a contract violation and leaves the state untouched.
        """
        observations = list(observations)
        valid = [(d, w) for d, w in observations if w > 0]
        if not valid:
            raise ContractViolation("cannot update from an empty batch")

        measurement = debias_measurement(weighted_measurement(valid))
        noise = max(batch_variance([d for d, _ in valid]), self.min_measurement_noise)

        estimate_before = self.estimate
        self.predict()
        uncertainty_before = self.uncertainty
        gain = self.update(measurement, noise)

        return MeasurementSummary(
            measurement=measurement,
            measurement_noise=noise,
            used=len(valid),
            excluded_wagers=len(observations) - len(valid),
            estimate_before=estimate_before,
            estimate_after=self.estimate,
            uncertainty_before=uncertainty_before,
            uncertainty_after=self.uncertainty,
            gain=gain,
        )

    def confidence(self) -> float:
        """0-100 score: log-linear over the uncertainty band, clamped outside it."""
        low, high = self.confidence_band
        p = self.uncertainty
        if p <= low:
            return 100.0
        if p >= high:
            return 0.0
        normalized = math.log(p / low) / math.log(high / low)
        return 100.0 * (1.0 - normalized)

    def standard_error(self) -> float:
        return math.sqrt(self.uncertainty)

    def reset(self) -> None:
        self.estimate = self.initial_estimate
        self.uncertainty = self.initial_uncertainty

    def snapshot(self) -> tuple[float, float]:
        return self.estimate, self.uncertainty

    def restore(self, state: tuple[float, float]) -> None:
        self.estimate, self.uncertainty = state
