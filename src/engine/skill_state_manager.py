"""Skill State Manager — per-player, per-category skill units.

A SkillUnit is the unit of mutual exclusion: its estimator, pending batch,
wager aggregates and per-hole ceilings change together under its lock. Units of
different players or categories share nothing.

History is copy-on-write: every append replaces the immutable ShotHistory, so
`snapshot()` hands detectors a consistent copy without taking the lock.
"""
import threading
from dataclasses import asdict, dataclass, field, replace
from typing import Optional

import pandas as pd

from src.engine.holes import ClubCategory
from src.engine.skill_estimator import SkillEstimator

SHOT_COLUMNS = ['index', 'hole_id', 'distance', 'wager', 'ceiling', 'multiplier', 'manual_override']
RECORD_COLUMNS = [
    'index', 'shot_index', 'hole_id', 'estimate', 'uncertainty',
    'ceiling', 'unclamped_ceiling', 'rate_limited', 'initial',
]


@dataclass(frozen=True)
class ShotRecord:
    """One observed shot; never mutated once recorded."""
    index: int
    hole_id: int
    distance: float
    wager: float
    ceiling: float = 1.0        # P_max in effect for this shot
    multiplier: float = 0.0     # payout multiplier awarded
    manual_override: bool = False


@dataclass(frozen=True)
class CalibrationRecord:
    """Estimate and published ceiling after one update (kept as one record)."""
    index: int
    shot_index: int
    hole_id: int
    estimate: float
    uncertainty: float
    ceiling: float
    unclamped_ceiling: float
    rate_limited: bool = False
    initial: bool = False


def _bounded(items: tuple, limit: Optional[int]) -> tuple:
    if limit is not None and len(items) > limit:
        return items[-limit:]
    return items


@dataclass(frozen=True)
class ShotHistory:
    """Immutable view of a unit's shots and calibration records."""
    shots: tuple[ShotRecord, ...] = ()
    records: tuple[CalibrationRecord, ...] = ()

    def append_shot(self, shot: ShotRecord, limit: Optional[int] = None) -> 'ShotHistory':
        """New history with `shot` appended, keeping at most the last `limit` shots."""
        return replace(self, shots=_bounded(self.shots + (shot,), limit))

    def append_record(self, record: CalibrationRecord, limit: Optional[int] = None) -> 'ShotHistory':
        return replace(self, records=_bounded(self.records + (record,), limit))

    def ceilings_for(self, hole_id: int) -> list[float]:
        return [r.ceiling for r in self.records if r.hole_id == hole_id]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([asdict(s) for s in self.shots], columns=SHOT_COLUMNS)

    def records_frame(self) -> pd.DataFrame:
        return pd.DataFrame([asdict(r) for r in self.records], columns=RECORD_COLUMNS)


@dataclass(frozen=True)
class WagerAggregate:
    """Running wager total; lifetime aggregates are persisted by the caller."""
    total: float = 0.0
    count: int = 0

    @property
    def average(self) -> Optional[float]:
        return self.total / self.count if self.count else None

    def add(self, wager: float) -> 'WagerAggregate':
        return WagerAggregate(total=self.total + wager, count=self.count + 1)


@dataclass
class SkillUnit:
    """Estimator + pending batch + ceilings for one (player, category)."""
    player_id: str
    category: ClubCategory
    estimator: SkillEstimator
    lifetime_wagers: WagerAggregate = field(default_factory=WagerAggregate)
    session_wagers: WagerAggregate = field(default_factory=WagerAggregate)
    pending: list[ShotRecord] = field(default_factory=list)
    ceilings: dict[int, float] = field(default_factory=dict)
    published_sigma: dict[int, float] = field(default_factory=dict)  # estimate behind each ceiling
    history_limit: Optional[int] = None             # None keeps every shot
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)
    _history: ShotHistory = field(default_factory=ShotHistory, repr=False)
    _shot_count: int = field(default=0, repr=False)
    _record_count: int = field(default=0, repr=False)

    def snapshot(self) -> ShotHistory:
        return self._history

    @property
    def next_shot_index(self) -> int:
        return self._shot_count

    @property
    def next_record_index(self) -> int:
        return self._record_count

    def reference_average(self) -> Optional[float]:
        """Larger of the session and lifetime average wagers (None before any wager)."""
        averages = [a for a in (self.session_wagers.average, self.lifetime_wagers.average) if a is not None]
        return max(averages) if averages else None

    def add_shot(self, shot: ShotRecord) -> None:
        self._history = self._history.append_shot(shot, self.history_limit)
        self._shot_count += 1
        self.pending.append(shot)
        self.session_wagers = self.session_wagers.add(shot.wager)
        self.lifetime_wagers = self.lifetime_wagers.add(shot.wager)

    def add_record(self, record: CalibrationRecord) -> None:
        self._history = self._history.append_record(record, self.history_limit)
        self._record_count += 1
        self.ceilings[record.hole_id] = record.ceiling
        self.published_sigma[record.hole_id] = record.estimate

    def drop_oldest_pending(self, limit: int) -> list[ShotRecord]:
        """Trim the pending batch to `limit` shots; returns what was dropped."""
        overflow = len(self.pending) - limit
        if overflow <= 0:
            return []
        dropped, self.pending = self.pending[:overflow], self.pending[overflow:]
        return dropped

    def ceiling_history(self, hole_id: int) -> list[float]:
        return self._history.ceilings_for(hole_id)

    def start_session(self) -> None:
        with self.lock:
            self.session_wagers = WagerAggregate()


@dataclass
class PlayerProfile:
    """All skill units of one player."""
    player_id: str
    handicap: float
    units: dict[ClubCategory, SkillUnit] = field(default_factory=dict)

    def unit(self, category: ClubCategory) -> SkillUnit:
        return self.units[ClubCategory(category)]

    def estimator(self, category: ClubCategory) -> SkillEstimator:
        return self.unit(category).estimator

    def current_sigma(self, category: ClubCategory) -> float:
        return self.unit(category).estimator.estimate

    def lifetime_wagers(self) -> dict[ClubCategory, WagerAggregate]:
        return {cat: u.lifetime_wagers for cat, u in self.units.items()}

    def start_session(self) -> None:
        for unit in self.units.values():
            unit.start_session()


class ProfileManager:
    """Registry of player profiles."""

    def __init__(self, factory, initial_profiles: dict[str, PlayerProfile] | None = None):
        self._factory = factory
        self._profiles: dict[str, PlayerProfile] = dict(initial_profiles) if initial_profiles else {}
        self._lock = threading.Lock()

    def get_or_create(self, player_id: str, handicap: float) -> PlayerProfile:
        with self._lock:
            if player_id not in self._profiles:
                self._profiles[player_id] = self._factory(player_id, handicap)
            return self._profiles[player_id]

    def get(self, player_id: str) -> Optional[PlayerProfile]:
        return self._profiles.get(player_id)

    @property
    def all_profiles(self) -> dict[str, PlayerProfile]:
        return self._profiles
