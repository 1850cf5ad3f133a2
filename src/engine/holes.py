"""
Hole catalogue and payout curve.

Each hole has its own scoring radius (d_max), RTP and decay exponent (k).

  payout(d)   = P_max * (1 - d/d_max)^k    (d <= d_max, else 0)
  breakeven   = d_max * (1 - P_max^(-1/k))
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ClubCategory(str, Enum):
    """Distance band; one skill estimate is tracked per band."""
    WEDGE = 'wedge'          # 75-125 yds
    MID_IRON = 'mid_iron'    # 150-175 yds
    LONG_IRON = 'long_iron'  # 200-250 yds

    @classmethod
    def from_distance(cls, distance_yds: int) -> 'ClubCategory':
        if distance_yds <= 130:
            return cls.WEDGE
        if distance_yds <= 185:
            return cls.MID_IRON
        return cls.LONG_IRON


def payout_multiplier(distance: float, p_max: float, d_max: float, k: float) -> float:
    if distance < 0:
        distance = 0.0
    if distance > d_max:
        return 0.0
    return p_max * (1.0 - distance / d_max) ** k


def breakeven_radius(p_max: float, d_max: float, k: float) -> float:
    """Distance at which the multiplier is exactly 1 (0 when P_max <= 1)."""
    if p_max <= 1.0:
        return 0.0
    return d_max * (1.0 - p_max ** (-1.0 / k))


@dataclass(frozen=True)
class Hole:
    """Hole configuration."""
    id: int
    distance_yds: int
    d_max_ft: float
    rtp: float
    k: float

    @property
    def category(self) -> ClubCategory:
        return ClubCategory.from_distance(self.distance_yds)

    def payout_multiplier(self, distance: float, p_max: float) -> float:
        return payout_multiplier(distance, p_max, self.d_max_ft, self.k)

    def breakeven_radius(self, p_max: float) -> float:
        return breakeven_radius(p_max, self.d_max_ft, self.k)


HOLE_CONFIGURATIONS: tuple[Hole, ...] = (
    # Wedge
    Hole(id=1, distance_yds=75, d_max_ft=17.95, rtp=0.85, k=5.0),
    Hole(id=2, distance_yds=100, d_max_ft=25.69, rtp=0.85, k=5.0),
    Hole(id=3, distance_yds=125, d_max_ft=36.71, rtp=0.85, k=5.5),
    # Mid iron
    Hole(id=4, distance_yds=150, d_max_ft=47.58, rtp=0.85, k=6.0),
    Hole(id=5, distance_yds=175, d_max_ft=59.09, rtp=0.85, k=6.0),
    # Long iron
    Hole(id=6, distance_yds=200, d_max_ft=73.58, rtp=0.85, k=6.5),
    Hole(id=7, distance_yds=225, d_max_ft=84.84, rtp=0.85, k=6.5),
    Hole(id=8, distance_yds=250, d_max_ft=101.14, rtp=0.85, k=6.5),
)

_HOLES_BY_ID = {h.id: h for h in HOLE_CONFIGURATIONS}


def get_hole_by_id(hole_id: int) -> Optional[Hole]:
    return _HOLES_BY_ID.get(hole_id)


def get_holes_by_category(category: ClubCategory) -> list[Hole]:
    return [h for h in HOLE_CONFIGURATIONS if h.category == category]
