"""RTP Simulation — Monte Carlo check that a calibrated ceiling pays its target RTP.

Fairness means every skill level sees the same expected return: a player at
sigma gets P_max(sigma), and the realised payout ratio should land on the
hole's RTP regardless of handicap.
"""
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

import numpy as np

from src.engine.holes import Hole
from src.engine.payout_calibrator import PayoutCalibrator
from src.engine.shot_distribution import ShotDistribution
from src.engine.skill_estimator import initial_dispersion

logger = logging.getLogger(__name__)


@dataclass
class RtpSimulationResult:
    actual_rtp: float
    target_rtp: float
    deviation: float        # relative: (actual - target) / target
    total_wagered: float
    total_won: float
    shots: int
    p_max: float
    sigma: float
    handicap: Optional[float] = None

    @property
    def deviation_percent(self) -> float:
        return self.deviation * 100.0


@dataclass
class FairnessReport:
    """Expected value per handicap on one hole."""
    hole_id: int
    results: list[RtpSimulationResult]
    max_rtp_difference: float
    max_multiplier_ratio: float
    is_fair: bool


def simulate_rtp(
    hole: Hole,
    sigma: float,
    shots: int,
    wager: float = 1.0,
    seed: int | None = None,
    stratified: bool = True,
    calibrator: PayoutCalibrator | None = None,
) -> RtpSimulationResult:
    """Play `shots` flat-wager shots at the calibrated ceiling for sigma."""
    calibrator = calibrator or PayoutCalibrator()
    distribution: ShotDistribution = calibrator.distribution
    p_max = calibrator.solve_for_hole(hole, sigma)

    rng = np.random.default_rng(seed)
    distances, _ = distribution.sample_many(sigma, shots, rng=rng, stratified=stratified)
    multipliers = np.where(
        distances <= hole.d_max_ft,
        p_max * np.clip(1.0 - distances / hole.d_max_ft, 0.0, None) ** hole.k,
        0.0,
    )

    total_wagered = wager * shots
    total_won = float(wager * multipliers.sum())
    actual = total_won / total_wagered if total_wagered > 0 else 0.0
    return RtpSimulationResult(
        actual_rtp=actual,
        target_rtp=hole.rtp,
        deviation=(actual - hole.rtp) / hole.rtp,
        total_wagered=total_wagered,
        total_won=total_won,
        shots=shots,
        p_max=p_max,
        sigma=sigma,
    )


def validate_rtp_across_handicaps(
    hole: Hole,
    handicaps: Iterable[float],
    shots: int = 10_000,
    seed: int | None = None,
    calibrator: PayoutCalibrator | None = None,
) -> list[RtpSimulationResult]:
    """Simulated RTP for each handicap's prior sigma on one hole."""
    calibrator = calibrator or PayoutCalibrator()
    rng = np.random.default_rng(seed)
    results = []
    for handicap in handicaps:
        sigma = initial_dispersion(handicap, hole.distance_yds)
        result = simulate_rtp(
            hole, sigma, shots, seed=int(rng.integers(2**31)), calibrator=calibrator
        )
        result.handicap = handicap
        results.append(result)
        logger.info(
            f"  Hole {hole.id} hcp {handicap}: sigma={sigma:.1f} P_max={result.p_max:.2f} "
            f"RTP={result.actual_rtp:.4f} ({result.deviation_percent:+.2f}%)"
        )
    return results


def fairness_report(
    hole: Hole,
    handicaps: Iterable[float],
    shots: int = 10_000,
    seed: int | None = None,
    tolerance: float = 0.015,
) -> FairnessReport:
    """Fair when every handicap's RTP is within `tolerance` (relative) of the others."""
    results = validate_rtp_across_handicaps(hole, handicaps, shots, seed)
    rtps = [r.actual_rtp for r in results]
    ceilings = [r.p_max for r in results]
    max_difference = (max(rtps) - min(rtps)) if rtps else 0.0
    return FairnessReport(
        hole_id=hole.id,
        results=results,
        max_rtp_difference=max_difference,
        max_multiplier_ratio=(max(ceilings) / min(ceilings)) if ceilings else 1.0,
        is_fair=max_difference <= tolerance * hole.rtp,
    )
