"""
Typed records passed between pipeline stages.

Tabular data (games, team-week stats, feature vectors) travels as pandas
DataFrames; these dataclasses cover the per-game and per-week objects that
end up inside artifacts.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


def make_game_id(season: int, week: int, home_team: str, away_team: str) -> str:
    return f"{int(season)}-W{int(week):02d}-{home_team}-{away_team}"


@dataclass
class ContextBundle:
    """Per-game pre-game context, assembled fresh for each request."""

    game_id: str
    season: int
    week: int
    home_team: str
    away_team: str
    rolling_strength: dict[str, dict[str, float | None]] = field(default_factory=dict)
    qb_form: dict[str, dict[str, Any]] = field(default_factory=dict)
    injuries: dict[str, dict[str, int]] = field(default_factory=dict)
    venue: dict[str, Any] = field(default_factory=dict)
    elo: dict[str, Any] = field(default_factory=dict)
    market: dict[str, Any] = field(default_factory=dict)
    weather: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CalibrationState:
    """
    Calibration chosen for one week.

    ``source`` is "fit" when estimated on this week's training slice and
    "prior" when reused from an earlier artifact (``prior_season`` /
    ``prior_week`` then record where it came from).
    """

    type: str
    params: dict[str, Any]
    source: str = "fit"
    reason: str = ""
    prior_season: int | None = None
    prior_week: int | None = None
    hash: str = ""

    def meta(self) -> dict[str, Any]:
        out = asdict(self)
        out.pop("hash")
        return out

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PredictionRecord:
    """Published forecast for one game."""

    game_id: str
    season: int
    week: int
    home_team: str
    away_team: str
    probs: dict[str, float]
    blended: float
    calibrated: float
    forecast: bool
    natural_language: str = ""
    top_drivers: list[dict[str, Any]] = field(default_factory=list)
    actual_home_win: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
