from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from nfl_forecast.data.loaders.sources import SourceGateway
from nfl_forecast.errors import DataSourceError

log = logging.getLogger(__name__)


def _empty() -> pd.DataFrame:
    return pd.DataFrame()


@dataclass
class SeasonInputs:
    """
    Every frame a walk-forward run needs for one season.

    `schedules` and `team_weekly` may also hold the previous season's rows
    (used to seed Elo and early-season averages). Optional frames are empty
    when their source was unavailable.
    """

    season: int
    schedules: pd.DataFrame
    team_weekly: pd.DataFrame
    player_weekly: pd.DataFrame = field(default_factory=_empty)
    injuries: pd.DataFrame = field(default_factory=_empty)
    markets: pd.DataFrame = field(default_factory=_empty)
    weather: pd.DataFrame = field(default_factory=_empty)
    elo: pd.DataFrame = field(default_factory=_empty)
    qbr: pd.DataFrame = field(default_factory=_empty)
    pbp: pd.DataFrame = field(default_factory=_empty)

    @classmethod
    def load(
        cls,
        gateway: SourceGateway,
        season: int,
        include_prior_season: bool = True,
        include_pbp: bool = False,
    ) -> "SeasonInputs":
        """Fetch every dataset for `season` (plus prior-season schedules/team stats) through the gateway."""
        seasons = [season - 1, season] if include_prior_season else [season]

        schedules = gateway.fetch("schedules")
        schedules = schedules[schedules["season"].isin(seasons)].reset_index(drop=True)

        weekly_frames = []
        for s in seasons:
            if s == season:
                weekly_frames.append(gateway.fetch("team_weekly", s))
                continue
            # the prior season only seeds history, so its absence is not fatal
            try:
                weekly_frames.append(gateway.fetch("team_weekly", s))
            except DataSourceError as exc:
                log.warning("Prior-season team stats (%s) unavailable: %s", s, exc)
        frames = [f for f in weekly_frames if not f.empty]
        team_weekly = pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()

        optional: dict[str, Any] = gateway.fetch_many(
            ("player_weekly", "injuries", "markets", "weather", "elo", "qbr"), season
        )
        if include_pbp:
            optional["pbp"] = gateway.fetch("pbp", season)

        log.info(
            "Inputs for %s: %d schedule rows, %d team-week rows, optional: %s",
            season,
            len(schedules),
            len(team_weekly),
            {name: len(frame) for name, frame in optional.items()},
        )
        return cls(season=season, schedules=schedules, team_weekly=team_weekly, **optional)

    def data_sources_bundle(self) -> dict[str, Any]:
        """Row counts per dataset, grouped by required/optional, for the data_sources contract."""
        return {
            "season": self.season,
            "required": {"schedules": len(self.schedules), "team_weekly": len(self.team_weekly)},
            "optional": {
                "player_weekly": len(self.player_weekly),
                "injuries": len(self.injuries),
                "markets": len(self.markets),
                "weather": len(self.weather),
                "elo": len(self.elo),
                "qbr": len(self.qbr),
                "pbp": len(self.pbp),
            },
        }
