"""
Payout Calibrator — solve the multiplier ceiling (P_max) for a target RTP.

  target_rtp = P_max * I(sigma)
  I(sigma)   = integral[0, d_max] (1 - d/d_max)^k * density(d | sigma) dd

I(sigma) has no closed form under the Rayleigh mixture, so it is evaluated
with composite Simpson on a two-segment mesh: [0, b/8] and [b/8, b] get the same
number of subdivisions, which concentrates points near d=0 where both the
density and the decay curve change fastest. The range is cut at
b = min(d_max, 12 * largest scale) since the density is negligible beyond.

Convergence: subdivisions are doubled until successive values agree within the
relative tolerance, at most `max_doublings` times (bounded latency). Otherwise
CalibrationStalled is raised and the caller keeps its previous ceiling.

Degenerate limits:
  sigma -> 0       : I -> 1, P_max -> target_rtp (floored at 1.0)
  sigma >> d_max   : I -> 0, P_max grows without bound (UpdatePolicy clamps it)
"""

import math

import numpy as np

from src.engine.errors import CalibrationStalled, ContractViolation
from src.engine.fairness_config import (
    INITIAL_SUBDIVISIONS,
    INTEGRATION_TOLERANCE,
    INVERT_MAX_ITERATIONS,
    INVERT_TOLERANCE,
    MAX_DOUBLINGS,
    NEAR_ZERO_FRACTION,
    TAIL_CUTOFF_SIGMAS,
)
from src.engine.holes import Hole, breakeven_radius as _breakeven_radius
from src.engine.shot_distribution import ShotDistribution


# No ceiling below 1x is meaningful
MIN_CEILING = 1.0


def simpsons_rule(f, a: float, b: float, n: int) -> float:
    """Composite Simpson over [a, b] with n (even) subdivisions; f is vectorised."""
    if n <= 0 or n % 2:
        raise ContractViolation(f"n must be a positive even number, got {n}")
    if b <= a:
        return 0.0
    x = np.linspace(a, b, n + 1)
    y = f(x)
    h = (b - a) / n
    return float(h / 3.0 * (y[0] + y[-1] + 4.0 * y[1:-1:2].sum() + 2.0 * y[2:-1:2].sum()))


def _check_geometry(d_max: float, k: float) -> None:
    if not (d_max > 0.0) or not math.isfinite(d_max):
        raise ContractViolation(f"d_max must be positive, got {d_max}")
    if not (k > 0.0) or not math.isfinite(k):
        raise ContractViolation(f"k must be positive, got {k}")


class PayoutCalibrator:
    """Numerical P_max solver."""

    def __init__(
        self,
        distribution: ShotDistribution | None = None,
        tolerance: float = INTEGRATION_TOLERANCE,
        initial_subdivisions: int = INITIAL_SUBDIVISIONS,
        max_doublings: int = MAX_DOUBLINGS,
    ):
        self.distribution = distribution or ShotDistribution()
        self.tolerance = tolerance
        self.initial_subdivisions = initial_subdivisions
        self.max_doublings = max_doublings

    @classmethod
    def from_config(cls, config) -> 'PayoutCalibrator':
        return cls(
            distribution=ShotDistribution.from_config(config),
            tolerance=config.integration_tolerance,
            initial_subdivisions=config.initial_subdivisions,
            max_doublings=config.max_doublings,
        )

    def _integral_at(self, d_max: float, k: float, sigma: float, n: int) -> float:
        upper = min(d_max, TAIL_CUTOFF_SIGMAS * sigma * self.distribution.max_scale_factor)
        split = upper * NEAR_ZERO_FRACTION

        def integrand(d):
            decay = np.clip(1.0 - d / d_max, 0.0, None) ** k
            return decay * self.distribution.density(d, sigma)

        return simpsons_rule(integrand, 0.0, split, n) + simpsons_rule(integrand, split, upper, n)

    def payout_integral(self, d_max: float, k: float, sigma: float) -> float:
        """I(sigma): expected payout fraction for P_max = 1."""
        _check_geometry(d_max, k)
        if not (sigma > 0.0) or not math.isfinite(sigma):
            raise ContractViolation(f"sigma must be positive and finite, got {sigma}")

        n = self.initial_subdivisions
        previous = self._integral_at(d_max, k, sigma, n)
        for _ in range(self.max_doublings):
            n *= 2
            current = self._integral_at(d_max, k, sigma, n)
            converged = abs(current - previous) <= self.tolerance * abs(current)
            if converged and math.isfinite(current) and current > 0.0:
                return current
            previous = current

        raise CalibrationStalled(
            f"payout integral did not converge (d_max={d_max}, k={k}, sigma={sigma:.4g}, "
            f"n={n}, last={previous:.6g})",
            last_value=previous,
        )

    def solve(self, target_rtp: float, d_max: float, k: float, sigma: float) -> float:
        """P_max such that the expected payout ratio equals target_rtp (>= 1)."""
        if not 0.0 < target_rtp <= 1.0:
            raise ContractViolation(f"target_rtp must be in (0, 1], got {target_rtp}")
        integral = self.payout_integral(d_max, k, sigma)
        p_max = target_rtp / integral
        if not math.isfinite(p_max):
            raise CalibrationStalled(f"P_max overflow for sigma={sigma:.4g}", last_value=integral)
        return max(MIN_CEILING, p_max)

    def solve_for_hole(self, hole: Hole, sigma: float) -> float:
        return self.solve(hole.rtp, hole.d_max_ft, hole.k, sigma)

    def expected_payout_ratio(self, p_max: float, d_max: float, k: float, sigma: float) -> float:
        """Expected payout / wager for a given ceiling."""
        return p_max * self.payout_integral(d_max, k, sigma)

    @staticmethod
    def breakeven_radius(p_max: float, d_max: float, k: float) -> float:
        _check_geometry(d_max, k)
        return _breakeven_radius(p_max, d_max, k)

    def invert(
        self,
        target_ceiling: float,
        target_rtp: float,
        d_max: float,
        k: float,
        lo: float,
        hi: float,
    ) -> float:
        """Sigma in [lo, hi] whose ceiling equals target_ceiling (bisection).

        P_max is non-decreasing in sigma, so the answer is clamped to the
        nearest bound when the target lies outside [P_max(lo), P_max(hi)].
        """
        lo, hi = min(lo, hi), max(lo, hi)
        if target_ceiling <= self.solve(target_rtp, d_max, k, lo):
            return lo
        if target_ceiling >= self.solve(target_rtp, d_max, k, hi):
            return hi

        for _ in range(INVERT_MAX_ITERATIONS):
            mid = 0.5 * (lo + hi)
            ceiling = self.solve(target_rtp, d_max, k, mid)
            if abs(ceiling - target_ceiling) <= INVERT_TOLERANCE * target_ceiling:
                return mid
            if ceiling < target_ceiling:
                lo = mid
            else:
                hi = mid
        return 0.5 * (lo + hi)


def calibrate(target_rtp: float, d_max: float, k: float, sigma: float) -> float:
    """Pure P_max solve with the default distribution and integration settings."""
    return PayoutCalibrator().solve(target_rtp, d_max, k, sigma)
