"""Update Policy — when shots move the estimate, and how far ceilings may move.

  flush    : pending batch reaches batch_size, or a high-stakes wager arrives
             (wager >= multiple * max(session avg, lifetime avg), averages taken
             before the shot; the shot itself is part of the flushed batch)
  screen   : leave-one-out z-score against the other shots of the batch,
             std floored at CV * mean (Rayleigh); excluded shots stay in history
  publish  : new ceiling clamped to prev * (1 +/- rate_limit_fraction), >= 1.
             A clamped ceiling pulls the estimate back to the sigma that yields it.

All state changes of one skill unit happen under its lock.
"""
import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from src.engine.errors import CalibrationStalled, ContractViolation, ManualOverrideRejected
from src.engine.holes import Hole, get_hole_by_id
from src.engine.payout_calibrator import MIN_CEILING, PayoutCalibrator
from src.engine.policy_config import PolicyConfig
from src.engine.shot_distribution import COEFFICIENT_OF_VARIATION
from src.engine.skill_estimator import MeasurementSummary
from src.engine.skill_state_manager import CalibrationRecord, PlayerProfile, ShotRecord, SkillUnit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MeasuredShot:
    """Shot measured by the venue's tracking system."""
    hole_id: int
    distance: float
    wager: float


@dataclass(frozen=True)
class ManualShot:
    """Operator-entered distance (practice / testing deployments only)."""
    hole_id: int
    distance: float
    wager: float
    entered_by: str = ""


@dataclass
class FlushOutcome:
    flushed: bool = False
    ceiling: Optional[float] = None
    rate_limited: bool = False
    calibration_stalled: bool = False
    excluded_outliers: int = 0
    record: Optional[CalibrationRecord] = None
    summary: Optional[MeasurementSummary] = None


@dataclass
class ShotResult:
    """Outcome of one recorded shot."""
    accepted: bool
    ceiling: Optional[float] = None        # P_max the shot was settled at
    multiplier: float = 0.0
    payout: float = 0.0
    high_stakes: bool = False
    flushed: bool = False
    new_ceiling: Optional[float] = None    # P_max published by the flush
    rate_limited: bool = False
    calibration_stalled: bool = False
    excluded_outliers: int = 0
    rejection_reason: Optional[str] = None
    shot: Optional[ShotRecord] = None
    summary: Optional[MeasurementSummary] = None

    def apply(self, outcome: FlushOutcome) -> None:
        self.flushed = outcome.flushed
        self.new_ceiling = outcome.ceiling
        self.rate_limited = outcome.rate_limited
        self.calibration_stalled = outcome.calibration_stalled
        self.excluded_outliers = outcome.excluded_outliers
        self.summary = outcome.summary


def _rejection_reason(distance: float, wager: float) -> Optional[str]:
    if not math.isfinite(wager) or wager <= 0:
        return f"wager must be positive, got {wager}"
    if not math.isfinite(distance) or distance < 0:
        return f"distance must be finite and >= 0, got {distance}"
    return None


class UpdatePolicy:
    """Batching, outlier screening and rate-limited publication."""

    def __init__(self, config: PolicyConfig | None = None, calibrator: PayoutCalibrator | None = None):
        self.config = config or PolicyConfig()
        self.calibrator = calibrator or PayoutCalibrator.from_config(self.config)

    @staticmethod
    def resolve_hole(hole: Hole | int) -> Hole:
        if isinstance(hole, Hole):
            return hole
        resolved = get_hole_by_id(int(hole))
        if resolved is None:
            raise ContractViolation(f"unknown hole id {hole}")
        return resolved

    # ─── screening / clamping ───

    def screen_outliers(self, distances: list[float]) -> list[bool]:
        """Keep-mask for a batch; small batches are never screened."""
        n = len(distances)
        if n < max(self.config.outlier_min_batch, 2):
            return [True] * n

        values = np.asarray(distances, dtype=float)
        keep = []
        for i in range(n):
            others = np.delete(values, i)
            mean = others.mean()
            std = others.std(ddof=1) if len(others) > 1 else 0.0
            scale = max(std, COEFFICIENT_OF_VARIATION * mean)
            if scale <= 0:
                keep.append(True)
                continue
            keep.append(abs(values[i] - mean) / scale <= self.config.outlier_sigma)

        if not any(keep):
            return [True] * n
        return keep

    def clamp_ceiling(self, previous: float, proposed: float) -> tuple[float, bool]:
        """Clamp to prev * (1 -/+ f) and floor at 1. Returns (ceiling, was_clamped)."""
        f = self.config.rate_limit_fraction
        low = max(MIN_CEILING, previous * (1.0 - f))
        high = max(MIN_CEILING, previous * (1.0 + f))
        clamped = min(max(proposed, low), high)
        return clamped, clamped != proposed

    # ─── ceilings ───

    def _publish(self, unit: SkillUnit, hole: Hole) -> float:
        """Ceiling for `hole` at the unit's current estimate (lock held).

        First play of a hole publishes the prior-based ceiling unclamped. If the
        estimate moved since the last publication (a flush on another hole of
        the category), the refreshed ceiling is rate limited without touching
        the estimate.
        """
        estimator = unit.estimator
        previous = unit.ceilings.get(hole.id)
        if previous is not None and unit.published_sigma.get(hole.id) == estimator.estimate:
            return previous

        try:
            proposed = self.calibrator.solve_for_hole(hole, estimator.estimate)
        except CalibrationStalled as e:
            if previous is None:
                raise
            logger.warning(f"Ceiling refresh stalled for hole {hole.id} ({unit.player_id}): {e}")
            return previous

        if previous is None:
            ceiling, limited = proposed, False
        else:
            ceiling, limited = self.clamp_ceiling(previous, proposed)

        unit.add_record(CalibrationRecord(
            index=unit.next_record_index,
            shot_index=unit.next_shot_index,
            hole_id=hole.id,
            estimate=estimator.estimate,
            uncertainty=estimator.uncertainty,
            ceiling=ceiling,
            unclamped_ceiling=proposed,
            rate_limited=limited,
            initial=previous is None,
        ))
        return ceiling

    def current_ceiling(self, profile: PlayerProfile, hole: Hole | int) -> float:
        hole = self.resolve_hole(hole)
        unit = profile.unit(hole.category)
        with unit.lock:
            return self._publish(unit, hole)

    # ─── flush ───

    def _flush(self, unit: SkillUnit, hole: Hole) -> FlushOutcome:
        """Run one estimator update from the pending batch (lock held)."""
        batch = list(unit.pending)
        if not batch:
            return FlushOutcome()

        keep = self.screen_outliers([s.distance for s in batch])
        used = [s for s, k in zip(batch, keep) if k]
        excluded = len(batch) - len(used)
        if excluded:
            logger.info(f"  {unit.player_id}/{unit.category.value}: excluded {excluded} outlier(s) of {len(batch)}")

        estimator = unit.estimator
        state = estimator.snapshot()
        sigma_before = estimator.estimate
        previous = unit.ceilings.get(hole.id)

        try:
            summary = estimator.update_from_batch((s.distance, s.wager) for s in used)
            proposed = self.calibrator.solve_for_hole(hole, estimator.estimate)
            if previous is None:
                ceiling, limited = proposed, False
            else:
                ceiling, limited = self.clamp_ceiling(previous, proposed)
            if limited:
                bounds = [sigma_before, estimator.estimate, unit.published_sigma.get(hole.id, sigma_before)]
                estimator.estimate = self.calibrator.invert(
                    ceiling, hole.rtp, hole.d_max_ft, hole.k, lo=min(bounds), hi=max(bounds)
                )
        except CalibrationStalled as e:
            estimator.restore(state)
            dropped = unit.drop_oldest_pending(self.config.max_pending)
            if dropped:
                logger.warning(
                    f"  {unit.player_id}/{unit.category.value}: pending batch full, "
                    f"dropped {len(dropped)} oldest shot(s)"
                )
            logger.warning(f"Calibration stalled for hole {hole.id} ({unit.player_id}), keeping previous ceiling: {e}")
            return FlushOutcome(calibration_stalled=True, ceiling=previous, excluded_outliers=excluded)

        record = CalibrationRecord(
            index=unit.next_record_index,
            shot_index=batch[-1].index,
            hole_id=hole.id,
            estimate=estimator.estimate,
            uncertainty=estimator.uncertainty,
            ceiling=ceiling,
            unclamped_ceiling=proposed,
            rate_limited=limited,
        )
        unit.add_record(record)
        unit.pending.clear()

        if limited:
            logger.info(
                f"  Hole {hole.id} ceiling rate limited for {unit.player_id}: "
                f"{proposed:.3f} -> {ceiling:.3f}"
            )
        return FlushOutcome(
            flushed=True,
            ceiling=ceiling,
            rate_limited=limited,
            excluded_outliers=excluded,
            record=record,
            summary=summary,
        )

    def flush_pending(self, profile: PlayerProfile, hole: Hole | int) -> FlushOutcome:
        """Flush whatever is pending for the hole's category (end of session)."""
        hole = self.resolve_hole(hole)
        unit = profile.unit(hole.category)
        with unit.lock:
            self._publish(unit, hole)
            return self._flush(unit, hole)

    # ─── recording ───

    def record_shot(
        self,
        profile: PlayerProfile,
        distance: float,
        wager: float,
        hole: Hole | int,
        manual_override: bool = False,
    ) -> ShotResult:
        """Settle one shot at the current ceiling and flush if due."""
        hole = self.resolve_hole(hole)
        reason = _rejection_reason(distance, wager)
        if reason:
            logger.warning(f"Rejected shot for {profile.player_id} on hole {hole.id}: {reason}")
            return ShotResult(accepted=False, rejection_reason=reason)

        unit = profile.unit(hole.category)
        with unit.lock:
            ceiling = self._publish(unit, hole)
            multiplier = hole.payout_multiplier(distance, ceiling)

            reference = unit.reference_average()
            high_stakes = reference is not None and wager >= self.config.high_stakes_multiple * reference

            shot = ShotRecord(
                index=unit.next_shot_index,
                hole_id=hole.id,
                distance=float(distance),
                wager=float(wager),
                ceiling=ceiling,
                multiplier=multiplier,
                manual_override=manual_override,
            )
            unit.add_shot(shot)

            result = ShotResult(
                accepted=True,
                ceiling=ceiling,
                multiplier=multiplier,
                payout=wager * multiplier,
                high_stakes=high_stakes,
                shot=shot,
            )
            if high_stakes or len(unit.pending) >= self.config.batch_size:
                result.apply(self._flush(unit, hole))
        return result

    def submit(self, profile: PlayerProfile, shot: MeasuredShot | ManualShot) -> ShotResult:
        """Tagged entry point: manual distances only where the deployment allows them."""
        if isinstance(shot, ManualShot):
            if not self.config.manual_override_enabled:
                raise ManualOverrideRejected(
                    f"manual shot for {profile.player_id} rejected: deployment settles wagers "
                    f"or does not allow manual overrides"
                )
            logger.info(f"Manual shot for {profile.player_id} on hole {shot.hole_id} (entered by {shot.entered_by or 'unknown'})")
            return self.record_shot(profile, shot.distance, shot.wager, shot.hole_id, manual_override=True)
        if isinstance(shot, MeasuredShot):
            return self.record_shot(profile, shot.distance, shot.wager, shot.hole_id)
        raise ContractViolation(f"unsupported shot type {type(shot).__name__}")
