"""
Session Replay

샷 기록 DataFrame을 순서대로 엔진에 흘려보내고
샷별 결과와 세션 합계를 수집.

Usage:
    replay = SessionReplay(engine)
    replay.process(shots_df)
    # Results:
    replay.shot_details   → [dict, ...]
    replay.summary()      → {total_wagered, total_won, realised_rtp, ...}
"""

import logging
from typing import Optional

import pandas as pd

from src.engine.errors import ContractViolation
from src.engine.fairness_engine import FairnessEngine
from src.engine.skill_state_manager import PlayerProfile

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ('player_id', 'handicap', 'hole_id', 'distance', 'wager')


class SessionReplay:
    """Replays recorded shots through one engine."""

    def __init__(self, engine: Optional[FairnessEngine] = None, log_every: int = 1000):
        self.engine = engine or FairnessEngine()
        self.log_every = log_every
        self.shot_details: list[dict] = []
        self._session_players: set[str] = set()

    def _get_profile(self, player_id: str, handicap: float) -> PlayerProfile:
        profile = self.engine.get_or_create_profile(player_id, handicap)
        if player_id not in self._session_players:
            # 세션 첫 샷: 세션 평균 초기화
            profile.start_session()
            self._session_players.add(player_id)
        return profile

    def process(self, shots_df: pd.DataFrame):
        """
        Shot DataFrame 처리.

        shots_df columns: player_id, handicap, hole_id, distance, wager
        """
        missing = [c for c in REQUIRED_COLUMNS if c not in shots_df.columns]
        if missing:
            raise ContractViolation(f"shots_df is missing columns: {missing}")

        total = len(shots_df)
        for n, (_, row) in enumerate(shots_df.iterrows(), start=1):
            player_id = str(row['player_id'])
            profile = self._get_profile(player_id, float(row['handicap']))

            distance = row['distance']
            distance = float('nan') if pd.isna(distance) else float(distance)
            result = self.engine.record_shot(profile, distance, float(row['wager']), int(row['hole_id']))

            self.shot_details.append({
                'player_id': player_id,
                'hole_id': int(row['hole_id']),
                'distance': distance,
                'wager': float(row['wager']),
                'accepted': result.accepted,
                'ceiling': result.ceiling,
                'multiplier': result.multiplier,
                'payout': result.payout,
                'high_stakes': result.high_stakes,
                'flushed': result.flushed,
                'new_ceiling': result.new_ceiling,
                'rate_limited': result.rate_limited,
                'calibration_stalled': result.calibration_stalled,
                'rejection_reason': result.rejection_reason,
            })

            if n % self.log_every == 0:
                logger.info(f"  Processed {n:,} / {total:,} shots")

        logger.info(f"  Completed {total:,} shots for {len(self._session_players):,} player(s)")

    def details_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.shot_details)

    def summary(self) -> dict:
        accepted = [d for d in self.shot_details if d['accepted']]
        total_wagered = sum(d['wager'] for d in accepted)
        total_won = sum(d['payout'] for d in accepted)
        return {
            'shots': len(self.shot_details),
            'accepted': len(accepted),
            'rejected': len(self.shot_details) - len(accepted),
            'players': len(self._session_players),
            'flushes': sum(1 for d in accepted if d['flushed']),
            'rate_limited': sum(1 for d in accepted if d['rate_limited']),
            'calibration_stalled': sum(1 for d in accepted if d['calibration_stalled']),
            'total_wagered': total_wagered,
            'total_won': total_won,
            'realised_rtp': total_won / total_wagered if total_wagered > 0 else None,
        }
