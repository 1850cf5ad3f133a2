"""SkillStateManager Tests — units, copy-on-write history, wager aggregates."""
import pytest

from src.engine.holes import ClubCategory
from src.engine.skill_estimator import SkillEstimator
from src.engine.skill_state_manager import (
    CalibrationRecord,
    PlayerProfile,
    ProfileManager,
    ShotHistory,
    ShotRecord,
    SkillUnit,
    WagerAggregate,
)


def _unit(player_id="p1", category=ClubCategory.MID_IRON, **kwargs):
    return SkillUnit(player_id=player_id, category=category, estimator=SkillEstimator(estimate=25.0), **kwargs)


def _shot(index, distance=20.0, wager=1.0, hole_id=4):
    return ShotRecord(index=index, hole_id=hole_id, distance=distance, wager=wager)


class TestWagerAggregate:

    def test_empty_average(self):
        assert WagerAggregate().average is None

    def test_add(self):
        agg = WagerAggregate().add(5.0).add(15.0)
        assert agg.total == 20.0
        assert agg.count == 2
        assert agg.average == pytest.approx(10.0)


class TestShotHistory:

    def test_copy_on_write(self):
        unit = _unit()
        before = unit.snapshot()
        unit.add_shot(_shot(0))
        assert len(before.shots) == 0
        assert len(unit.snapshot().shots) == 1

    def test_frames(self):
        history = ShotHistory().append_shot(_shot(0, distance=12.0))
        history = history.append_record(CalibrationRecord(
            index=0, shot_index=0, hole_id=4, estimate=25.0, uncertainty=1000.0,
            ceiling=15.0, unclamped_ceiling=15.0, initial=True,
        ))
        shots = history.to_frame()
        records = history.records_frame()
        assert list(shots["distance"]) == [12.0]
        assert bool(records["initial"].iloc[0]) is True
        assert history.ceilings_for(4) == [15.0]
        assert history.ceilings_for(5) == []

    def test_append_keeps_last_shots_within_limit(self):
        history = ShotHistory()
        for i in range(7):
            history = history.append_shot(_shot(i), limit=5)
        assert [s.index for s in history.shots] == [2, 3, 4, 5, 6]

    def test_empty_frames_have_columns(self):
        history = ShotHistory()
        assert "wager" in history.to_frame().columns
        assert "shot_index" in history.records_frame().columns


class TestSkillUnit:

    def test_add_shot_updates_aggregates(self):
        unit = _unit(lifetime_wagers=WagerAggregate(total=100.0, count=4))
        unit.add_shot(_shot(0, wager=5.0))
        assert unit.session_wagers.count == 1
        assert unit.lifetime_wagers.count == 5
        assert unit.pending == [_shot(0, wager=5.0)]
        assert unit.next_shot_index == 1

    def test_reference_average_uses_larger(self):
        unit = _unit(lifetime_wagers=WagerAggregate(total=200.0, count=10))
        assert unit.reference_average() == pytest.approx(20.0)
        unit.add_shot(_shot(0, wager=2.0))
        # lifetime (202 / 11) beats the session average of 2
        assert unit.reference_average() == pytest.approx(202.0 / 11)

    def test_reference_average_empty(self):
        assert _unit().reference_average() is None

    def test_add_record_tracks_ceiling(self):
        unit = _unit()
        unit.add_record(CalibrationRecord(
            index=0, shot_index=0, hole_id=4, estimate=25.0, uncertainty=1000.0,
            ceiling=15.0, unclamped_ceiling=15.0, initial=True,
        ))
        assert unit.ceilings[4] == 15.0
        assert unit.published_sigma[4] == 25.0
        assert unit.ceiling_history(4) == [15.0]
        assert unit.next_record_index == 1

    def test_drop_oldest_pending(self):
        unit = _unit()
        for i in range(6):
            unit.add_shot(_shot(i))
        dropped = unit.drop_oldest_pending(4)
        assert [s.index for s in dropped] == [0, 1]
        assert [s.index for s in unit.pending] == [2, 3, 4, 5]
        # History keeps everything
        assert len(unit.snapshot().shots) == 6
        assert unit.drop_oldest_pending(4) == []

    def test_history_limit_keeps_indexes_running(self):
        unit = _unit(history_limit=4)
        for i in range(10):
            unit.add_shot(_shot(unit.next_shot_index))
        assert [s.index for s in unit.snapshot().shots] == [6, 7, 8, 9]
        assert unit.next_shot_index == 10
        assert unit.lifetime_wagers.count == 10

    def test_start_session(self):
        unit = _unit()
        unit.add_shot(_shot(0, wager=9.0))
        unit.start_session()
        assert unit.session_wagers.average is None
        assert unit.lifetime_wagers.average == 9.0


class TestProfiles:

    def test_profile_lookup(self):
        profile = PlayerProfile(player_id="p1", handicap=10, units={ClubCategory.WEDGE: _unit(category=ClubCategory.WEDGE)})
        assert profile.unit("wedge") is profile.units[ClubCategory.WEDGE]
        assert profile.current_sigma(ClubCategory.WEDGE) == 25.0
        assert set(profile.lifetime_wagers()) == {ClubCategory.WEDGE}

    def test_manager_get_or_create(self):
        created = []

        def factory(player_id, handicap):
            created.append(player_id)
            return PlayerProfile(player_id=player_id, handicap=handicap)

        mgr = ProfileManager(factory)
        p = mgr.get_or_create("p1", 12)
        assert mgr.get_or_create("p1", 12) is p
        assert created == ["p1"]
        assert mgr.get("p2") is None
        assert len(mgr.all_profiles) == 1
