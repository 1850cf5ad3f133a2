"""Fairness Engine — entry point tying estimator, calibrator, policy and detectors.

One engine instance per deployment. Profiles are created with explicit
lifetime wager aggregates (persisted outside the engine) so that high-stakes
detection sees beyond the current session.
"""
import logging
from typing import Optional

from src.engine.anomaly_detector import AnomalyReport, analyze
from src.engine.holes import ClubCategory, Hole
from src.engine.payout_calibrator import PayoutCalibrator
from src.engine.policy_config import PolicyConfig
from src.engine.skill_estimator import SkillEstimator
from src.engine.skill_state_manager import (
    PlayerProfile,
    ProfileManager,
    ShotHistory,
    SkillUnit,
    WagerAggregate,
)
from src.engine.update_policy import FlushOutcome, ManualShot, MeasuredShot, ShotResult, UpdatePolicy

logger = logging.getLogger(__name__)


class FairnessEngine:
    """Adaptive payout engine."""

    def __init__(self, config: PolicyConfig | None = None):
        self.config = config or PolicyConfig()
        self.calibrator = PayoutCalibrator.from_config(self.config)
        self.policy = UpdatePolicy(self.config, self.calibrator)
        self.profiles = ProfileManager(self.create_profile)

    def create_estimator(
        self, category: ClubCategory, handicap: float, prior_sigma: float | None = None
    ) -> SkillEstimator:
        return SkillEstimator.from_prior(category, handicap, config=self.config, prior_sigma=prior_sigma)

    def create_profile(
        self,
        player_id: str,
        handicap: float,
        prior_sigma: float | dict[ClubCategory, float] | None = None,
        lifetime: dict[ClubCategory, WagerAggregate] | None = None,
    ) -> PlayerProfile:
        """New profile with one skill unit per club category.

        Args:
            prior_sigma: Explicit prior for every category (float) or per category (dict).
                Defaults to the handicap prior.
            lifetime: Persisted lifetime wager aggregates per category.
        """
        lifetime = lifetime or {}
        profile = PlayerProfile(player_id=player_id, handicap=handicap)
        for category in ClubCategory:
            if isinstance(prior_sigma, dict):
                prior = prior_sigma.get(category)
            else:
                prior = prior_sigma
            profile.units[category] = SkillUnit(
                player_id=player_id,
                category=category,
                estimator=self.create_estimator(category, handicap, prior),
                lifetime_wagers=lifetime.get(category, WagerAggregate()),
                history_limit=self.config.history_limit,
            )
        logger.info(f"Created profile {player_id} (handicap {handicap})")
        return profile

    def get_or_create_profile(self, player_id: str, handicap: float) -> PlayerProfile:
        return self.profiles.get_or_create(player_id, handicap)

    # ─── shots ───

    def record_shot(self, profile: PlayerProfile, distance: float, wager: float, hole: Hole | int) -> ShotResult:
        return self.policy.record_shot(profile, distance, wager, hole)

    def submit(self, profile: PlayerProfile, shot: MeasuredShot | ManualShot) -> ShotResult:
        return self.policy.submit(profile, shot)

    def flush_pending(self, profile: PlayerProfile, hole: Hole | int) -> FlushOutcome:
        return self.policy.flush_pending(profile, hole)

    # ─── ceilings ───

    def calibrate(self, target_rtp: float, d_max: float, k: float, sigma: float) -> float:
        return self.calibrator.solve(target_rtp, d_max, k, sigma)

    def current_ceiling(self, profile: PlayerProfile, hole: Hole | int) -> float:
        return self.policy.current_ceiling(profile, hole)

    # ─── detection ───

    def analyze(self, history: ShotHistory) -> dict[str, Optional[AnomalyReport]]:
        return analyze(history, self.config)

    def analyze_profile(self, profile: PlayerProfile) -> dict[ClubCategory, dict[str, Optional[AnomalyReport]]]:
        return {category: self.analyze(unit.snapshot()) for category, unit in profile.units.items()}
