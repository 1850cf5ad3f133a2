"""Anomaly Detector — read-only pattern checks over a shot history snapshot.

Detectors return None when the history is too short (insufficient data is not
an error) and an AnomalyReport otherwise, suspicious or not.

  cherry_picking : Spearman(wager, 1 / (d + eps)) with enough wager spread
  sandbagging    : run of poor cheap shots followed by an inflated ceiling
  skill_jump     : estimate improves > 30% within 3 updates while the
                   uncertainty did not converge

Sandbagging only measures inflation from the run start onwards, against each
hole's last ceiling before the run. Inflation that happened before the run is
already part of that reference value and is not scored.
"""
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np
import pandas as pd

from src.engine import fairness_config as defaults
from src.engine.skill_state_manager import ShotHistory

QUALITY_EPSILON = 1.0  # ft; keeps 1/(d+eps) finite for holed shots


class DetectorKind(str, Enum):
    CHERRY_PICKING = 'cherry_picking'
    SANDBAGGING = 'sandbagging'
    SKILL_JUMP = 'skill_jump'


@dataclass
class AnomalyReport:
    kind: DetectorKind
    confidence: float           # 0.0-1.0
    statistic: float
    evidence: list[str] = field(default_factory=list)
    is_suspicious: bool = False
    recommended_action: str = "Continue monitoring"


def _setting(config, detector: str, key: str, default):
    if config is None:
        return default
    return type(default)(config.get_detector_setting(detector, key, default))


def rank_correlation(x: pd.Series, y: pd.Series) -> float:
    """Spearman correlation (Pearson on average ranks); 0 for constant input."""
    rx = x.rank(method="average")
    ry = y.rank(method="average")
    if rx.std(ddof=0) == 0 or ry.std(ddof=0) == 0:
        return 0.0
    return float(rx.corr(ry))


def longest_run(mask) -> tuple[int, int]:
    """(start, length) of the longest run of True values; (0, 0) when none."""
    best_start, best_len = 0, 0
    start, length = 0, 0
    for i, flag in enumerate(mask):
        if flag:
            if length == 0:
                start = i
            length += 1
            if length > best_len:
                best_start, best_len = start, length
        else:
            length = 0
    return best_start, best_len


def ceiling_inflation(records: pd.DataFrame, run_start_index: int) -> float:
    """Largest per-hole ratio of peak ceiling from the run start to the last ceiling before it.

    Holes of one category have their own d_max/k, so ceilings are only
    compared within a hole. Holes first published after the run start have
    no pre-run value and are skipped; 1.0 when no hole qualifies.
    """
    ratio = 1.0
    for _, hole_records in records.groupby("hole_id", sort=False):
        before = hole_records[hole_records["shot_index"] < run_start_index]
        after = hole_records[
            (hole_records["shot_index"] >= run_start_index) & ~hole_records["initial"].astype(bool)
        ]
        if before.empty or after.empty:
            continue
        reference = float(before["ceiling"].iloc[-1])
        if reference > 0:
            ratio = max(ratio, float(after["ceiling"].max()) / reference)
    return ratio


def detect_cherry_picking(history: ShotHistory, config=None) -> Optional[AnomalyReport]:
    name = DetectorKind.CHERRY_PICKING.value
    min_shots = _setting(config, name, "min_shots", defaults.CHERRY_MIN_SHOTS)
    threshold = _setting(config, name, "correlation_threshold", defaults.CHERRY_CORRELATION_THRESHOLD)
    cv_threshold = _setting(config, name, "wager_cv_threshold", defaults.CHERRY_WAGER_CV_THRESHOLD)

    shots = history.to_frame()
    if len(shots) < min_shots:
        return None

    wagers = shots["wager"]
    quality = 1.0 / (shots["distance"] + QUALITY_EPSILON)
    correlation = rank_correlation(wagers, quality)

    mean_wager = wagers.mean()
    wager_cv = float(wagers.std(ddof=0) / mean_wager) if mean_wager > 0 else 0.0
    varied = wager_cv > cv_threshold

    confidence = float(np.clip(correlation, 0.0, 1.0)) if varied else 0.0
    evidence = [f"Wager/quality rank correlation {correlation:.2f} over {len(shots)} shots"]
    if varied:
        evidence.append(f"Wager coefficient of variation {wager_cv:.2f}")
    else:
        evidence.append(f"Wagers too uniform to exploit (CV {wager_cv:.2f})")

    suspicious = confidence > threshold
    return AnomalyReport(
        kind=DetectorKind.CHERRY_PICKING,
        confidence=confidence,
        statistic=correlation,
        evidence=evidence,
        is_suspicious=suspicious,
        recommended_action="Limit max wager variance per session" if suspicious else "Normal betting pattern",
    )


def detect_sandbagging(history: ShotHistory, config=None) -> Optional[AnomalyReport]:
    name = DetectorKind.SANDBAGGING.value
    min_shots = _setting(config, name, "min_shots", defaults.SANDBAG_MIN_SHOTS)
    quantile = _setting(config, name, "baseline_quantile", defaults.SANDBAG_BASELINE_QUANTILE)
    poor_multiple = _setting(config, name, "poor_multiple", defaults.SANDBAG_POOR_MULTIPLE)
    min_run = _setting(config, name, "min_run", defaults.SANDBAG_MIN_RUN)
    inflation_multiple = _setting(config, name, "inflation_multiple", defaults.SANDBAG_INFLATION_MULTIPLE)

    shots = history.to_frame()
    if len(shots) < min_shots:
        return None

    baseline = float(shots["distance"].quantile(quantile))
    poor = shots["distance"] > poor_multiple * baseline
    start, run = longest_run(poor.tolist())

    run_shots = shots.iloc[start:start + run]
    median_wager = float(shots["wager"].median())
    cheap_run = run >= min_run and float(run_shots["wager"].mean()) <= median_wager

    ratio = 1.0
    records = history.records_frame()
    if cheap_run and not records.empty:
        ratio = ceiling_inflation(records, int(shots["index"].iloc[start]))

    if cheap_run and ratio > 1.0:
        confidence = (
            0.5 * min(1.0, run / defaults.SANDBAG_RUN_SATURATION)
            + 0.5 * min(1.0, math.log(ratio) / math.log(defaults.SANDBAG_INFLATION_SATURATION))
        )
    else:
        confidence = 0.0

    evidence = [f"Baseline miss {baseline:.1f} ft; longest poor run {run} shot(s)"]
    if cheap_run:
        evidence.append(f"Run starts at shot {start} at or below median wager ${median_wager:.2f}")
        evidence.append(f"Ceiling inflation x{ratio:.2f}")

    suspicious = cheap_run and ratio >= inflation_multiple
    return AnomalyReport(
        kind=DetectorKind.SANDBAGGING,
        confidence=confidence,
        statistic=ratio,
        evidence=evidence,
        is_suspicious=suspicious,
        recommended_action="Flag for manual review - potential sandbagging" if suspicious else "Continue monitoring",
    )


def detect_skill_jump(history: ShotHistory, config=None) -> Optional[AnomalyReport]:
    name = DetectorKind.SKILL_JUMP.value
    min_shots = _setting(config, name, "min_shots", defaults.SKILL_JUMP_MIN_SHOTS)
    window = _setting(config, name, "window", defaults.SKILL_JUMP_WINDOW)
    threshold = _setting(config, name, "improvement", defaults.SKILL_JUMP_IMPROVEMENT)
    organic_ratio = _setting(config, name, "organic_ratio", defaults.SKILL_JUMP_ORGANIC_RATIO)

    records = history.records_frame()
    if len(history.shots) < min_shots:
        return None
    updates = records[~records["initial"].astype(bool)].reset_index(drop=True)
    if len(updates) < 2:
        return None

    # Other holes of a category share one estimate; one row per estimator update
    updates = updates.drop_duplicates(subset=["estimate", "uncertainty"])

    best_improvement, best_lag, best_row = 0.0, 0, None
    for lag in range(1, window + 1):
        earlier_estimate = updates["estimate"].shift(lag)
        earlier_uncertainty = updates["uncertainty"].shift(lag)
        improvement = (earlier_estimate - updates["estimate"]) / earlier_estimate
        uncertainty_ratio = updates["uncertainty"] / earlier_uncertainty
        flagged = (improvement > threshold) & (uncertainty_ratio > organic_ratio)
        if flagged.any():
            candidates = improvement[flagged]
            row = candidates.idxmax()
            if candidates[row] > best_improvement:
                best_improvement, best_lag, best_row = float(candidates[row]), lag, row

    if best_row is None:
        return AnomalyReport(
            kind=DetectorKind.SKILL_JUMP,
            confidence=0.0,
            statistic=0.0,
            evidence=[f"No implausible improvement across {len(updates)} updates"],
            recommended_action="Normal skill progression",
        )

    current = updates.loc[best_row]
    return AnomalyReport(
        kind=DetectorKind.SKILL_JUMP,
        confidence=min(1.0, best_improvement / (2.0 * threshold)),
        statistic=best_improvement,
        evidence=[
            f"Sigma improved {best_improvement:.0%} within {best_lag} update(s) "
            f"(now {current['estimate']:.1f} ft at shot {int(current['shot_index'])})",
            "Uncertainty did not shrink as organic convergence would",
        ],
        is_suspicious=True,
        recommended_action="URGENT: Flag for immediate review - possible account sharing",
    )


def analyze(history: ShotHistory, config=None) -> dict[str, Optional[AnomalyReport]]:
    """Run every detector on one history snapshot."""
    return {
        DetectorKind.CHERRY_PICKING.value: detect_cherry_picking(history, config),
        DetectorKind.SANDBAGGING.value: detect_sandbagging(history, config),
        DetectorKind.SKILL_JUMP.value: detect_skill_jump(history, config),
    }
