"""Shot Distribution — Rayleigh miss distance with a fat-tail mishit mixture.

For a 2D landing error with independent N(0, sigma^2) components the radial miss
distance is Rayleigh(sigma):

  f(d | sigma) = d / sigma^2 * exp(-d^2 / (2 sigma^2))
  E[d]         = sigma * sqrt(pi / 2)
  Var[d]       = sigma^2 * (4 - pi) / 2

Mishits are modelled as a mixture: with probability p the shot is drawn from
Rayleigh(m * sigma) instead.
"""
import math

import numpy as np

from src.engine.errors import ContractViolation
from src.engine.fairness_config import FAT_TAIL_MULTIPLIER, FAT_TAIL_PROBABILITY

MEAN_FACTOR = math.sqrt(math.pi / 2.0)
VARIANCE_FACTOR = (4.0 - math.pi) / 2.0
# std / mean of a Rayleigh variable, independent of sigma
COEFFICIENT_OF_VARIATION = math.sqrt(VARIANCE_FACTOR) / MEAN_FACTOR


def _check_sigma(sigma: float) -> None:
    if not (sigma > 0.0) or not math.isfinite(sigma):
        raise ContractViolation(f"sigma must be positive and finite, got {sigma}")


def _as_output(values: np.ndarray):
    return float(values) if values.ndim == 0 else values


def base_density(distance, sigma: float):
    """Rayleigh PDF; 0 for negative distances. Accepts scalars or arrays."""
    _check_sigma(sigma)
    d = np.asarray(distance, dtype=float)
    sigma_sq = sigma * sigma
    pdf = np.where(d >= 0.0, d / sigma_sq * np.exp(-(d * d) / (2.0 * sigma_sq)), 0.0)
    return _as_output(pdf)


def _inverse_cdf(u: np.ndarray, scale) -> np.ndarray:
    # u in [0, 1): 1 - u stays in (0, 1] so the log is finite
    return scale * np.sqrt(-2.0 * np.log1p(-u))


class ShotDistribution:
    """Miss-distance model used for both sampling and calibration."""

    def __init__(
        self,
        fat_tail_probability: float = FAT_TAIL_PROBABILITY,
        fat_tail_multiplier: float = FAT_TAIL_MULTIPLIER,
    ):
        if not 0.0 <= fat_tail_probability < 1.0:
            raise ContractViolation(
                f"fat_tail_probability must be in [0, 1), got {fat_tail_probability}"
            )
        if fat_tail_multiplier < 1.0:
            raise ContractViolation(
                f"fat_tail_multiplier must be >= 1, got {fat_tail_multiplier}"
            )
        self.fat_tail_probability = fat_tail_probability
        self.fat_tail_multiplier = fat_tail_multiplier

    @classmethod
    def from_config(cls, config) -> 'ShotDistribution':
        return cls(config.fat_tail_probability, config.fat_tail_multiplier)

    @property
    def max_scale_factor(self) -> float:
        """Largest scale (in units of sigma) carrying probability mass."""
        return self.fat_tail_multiplier if self.fat_tail_probability > 0 else 1.0

    def density(self, distance, sigma: float):
        """Mixture PDF (1-p) f(d|sigma) + p f(d|m sigma); integrates to 1 on [0, inf)."""
        p = self.fat_tail_probability
        pdf = base_density(distance, sigma)
        if p == 0.0:
            return pdf
        return (1.0 - p) * pdf + p * base_density(distance, sigma * self.fat_tail_multiplier)

    def mean(self, sigma: float) -> float:
        _check_sigma(sigma)
        p = self.fat_tail_probability
        return MEAN_FACTOR * sigma * ((1.0 - p) + p * self.fat_tail_multiplier)

    @staticmethod
    def variance(sigma: float) -> float:
        """Variance of the base (non-mishit) family."""
        _check_sigma(sigma)
        return sigma * sigma * VARIANCE_FACTOR

    def sample(
        self,
        sigma: float,
        fat_tail_probability: float | None = None,
        fat_tail_multiplier: float | None = None,
        rng: np.random.Generator | None = None,
    ) -> tuple[float, bool]:
        """Draw one miss distance.

        Returns:
            (distance, is_fat_tail). The distance is never negative.
        """
        _check_sigma(sigma)
        rng = rng if rng is not None else np.random.default_rng()
        p = self.fat_tail_probability if fat_tail_probability is None else fat_tail_probability
        mult = self.fat_tail_multiplier if fat_tail_multiplier is None else fat_tail_multiplier

        is_fat_tail = bool(rng.random() < p)
        scale = sigma * mult if is_fat_tail else sigma
        distance = float(_inverse_cdf(np.asarray(rng.random()), scale))
        return distance, is_fat_tail

    def sample_many(
        self,
        sigma: float,
        n: int,
        rng: np.random.Generator | None = None,
        stratified: bool = False,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Draw n miss distances at once.

        With ``stratified=True`` the fat-tail count is exactly round(n * p) and the
        uniforms of each component are jittered strata, which removes most of the
        Monte Carlo noise from RTP checks.
        """
        _check_sigma(sigma)
        if n < 0:
            raise ContractViolation(f"n must be >= 0, got {n}")
        rng = rng if rng is not None else np.random.default_rng()
        p = self.fat_tail_probability

        if not stratified:
            is_fat = rng.random(n) < p
            u = rng.random(n)
        else:
            is_fat = np.zeros(n, dtype=bool)
            n_fat = int(round(n * p))
            if n_fat:
                is_fat[rng.permutation(n)[:n_fat]] = True
            u = np.empty(n)
            for mask in (~is_fat, is_fat):
                m = int(mask.sum())
                if m:
                    u[mask] = rng.permutation((np.arange(m) + rng.random(m)) / m)

        scale = np.where(is_fat, sigma * self.fat_tail_multiplier, sigma)
        return _inverse_cdf(u, scale), is_fat
