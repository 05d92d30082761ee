"""
Per-game pre-game context bundles.

For each game of a target week the builder assembles rolling team strength,
quarterback form, injury snapshots, venue, Elo, market and weather. Every
statistic is taken from weeks strictly before the target week (injury
reports: at or before it). Market and weather fall back to frozen neutral
templates when no pre-game capture exists for an already-played week, so a
backtest never reads lines or forecasts recorded after kickoff.
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np
import pandas as pd

from nfl_forecast.data.context.capture import game_key, index_by_game, index_schedule_feed, usable_feed_row
from nfl_forecast.data.context.injuries import InjuryIndex
from nfl_forecast.data.context.markets import NEUTRAL_MARKET, MarketContext, market_from_row
from nfl_forecast.data.context.weather import (
    INDOOR_WEATHER,
    NEUTRAL_WEATHER,
    WeatherContext,
    is_indoor,
    weather_from_row,
)
from nfl_forecast.data.feature_engineering.team_stats_pipeline import (
    TeamStatsConfig,
    add_elo_ratings,
    build_team_period_stats,
)
from nfl_forecast.data.inputs import SeasonInputs
from nfl_forecast.data.preprocessing.base_dataset import build_base_games
from nfl_forecast.records import ContextBundle
from nfl_forecast.utils.numeric import to_float

log = logging.getLogger(__name__)

STRENGTH_WINDOWS = (3, 5)
QB_WINDOW = 3


def _round(value: float | None, digits: int = 3) -> float | None:
    if value is None or not np.isfinite(value):
        return None
    return round(float(value), digits)


def rolling_strength(team_stats: pd.DataFrame, season: int, week: int, team: str) -> dict[str, float | None]:
    """
    Average yards for/against over the team's last 3 and 5 weeks before `week`.

    Net strength is for minus against. Windows with no prior weeks are None.
    """
    out: dict[str, float | None] = {}
    if team_stats.empty:
        prior = team_stats
    else:
        prior = team_stats[
            (team_stats["season"] == season) & (team_stats["team"] == team) & (team_stats["week"] < week)
        ].sort_values("week")

    for k in STRENGTH_WINDOWS:
        window = prior.tail(k)
        if window.empty:
            yds_for = yds_against = None
        else:
            yds_for = float(window["yards_for"].mean())
            yds_against = float(window["yards_against"].mean())
        net = None if yds_for is None or yds_against is None else yds_for - yds_against
        out[f"yds_for_{k}g"] = _round(yds_for)
        out[f"yds_against_{k}g"] = _round(yds_against)
        out[f"net_yds_{k}g"] = _round(net)
        out[f"games_{k}g"] = int(len(window))
    return out


def qb_form(
    player_weekly: pd.DataFrame,
    qbr: pd.DataFrame,
    season: int,
    week: int,
    team: str,
) -> dict[str, Any]:
    """Yards per attempt and sack rate of the team's primary QB over the last 3 weeks, plus latest QBR."""
    form: dict[str, Any] = {"qb": None, "ypa_3g": None, "sack_rate_3g": None, "qbr": None}

    needed = {"season", "week", "team", "position"}
    if not player_weekly.empty and needed.issubset(player_weekly.columns):
        rows = player_weekly[
            (player_weekly["season"] == season)
            & (player_weekly["team"] == team)
            & (player_weekly["week"] < week)
            & (player_weekly["position"].astype(str).str.upper() == "QB")
        ].copy()
        if not rows.empty:
            for col in ("attempts", "passing_yards", "sacks"):
                rows[col] = pd.to_numeric(rows[col], errors="coerce").fillna(0) if col in rows.columns else 0.0
            # the QB with the most attempts each week is the starter
            starters = rows.sort_values(["week", "attempts"]).drop_duplicates("week", keep="last")
            recent = starters.tail(QB_WINDOW)
            att = float(recent["attempts"].sum())
            sacks = float(recent["sacks"].sum())
            name = recent.iloc[-1].get("player_name")
            form["qb"] = name if isinstance(name, str) else None
            form["ypa_3g"] = _round(float(recent["passing_yards"].sum()) / att) if att > 0 else None
            form["sack_rate_3g"] = _round(sacks / (att + sacks)) if att + sacks > 0 else None

    if not qbr.empty and {"season", "week", "team", "qbr"}.issubset(qbr.columns):
        rows = qbr[(qbr["season"] == season) & (qbr["team"] == team) & (qbr["week"] < week)]
        if not rows.empty:
            latest = rows.sort_values("week").iloc[-1]
            form["qbr"] = _round(to_float(latest["qbr"], default=np.nan), 1)

    return form


def venue_context(game: pd.Series) -> dict[str, Any]:
    roof = game.get("roof")
    roof_text = "" if roof is None or (isinstance(roof, float) and np.isnan(roof)) else str(roof).lower()
    surface = game.get("surface")
    surface_text = "" if surface is None or (isinstance(surface, float) and np.isnan(surface)) else str(surface).lower()

    if "grass" in surface_text:
        surface_kind = "grass"
    elif surface_text:
        surface_kind = "turf"
    else:
        surface_kind = "unknown"

    return {
        "roof": roof_text or None,
        "is_dome": is_indoor(roof_text),
        "is_outdoor": any(token in roof_text for token in ("outdoor", "open")),
        "surface": surface_kind,
    }


class ContextBuilder:
    """
    Assemble :class:`ContextBundle` objects for the games of a week.

    Parameters
    ----------
    inputs:
        Frames for the season (as returned by ``SeasonInputs.load``).
    base_games:
        Game table with pre-game Elo; computed from ``inputs.schedules`` if None.
    team_stats:
        Per-week team statistics; computed from ``inputs.team_weekly`` if None.
    """

    def __init__(
        self,
        inputs: SeasonInputs,
        base_games: pd.DataFrame | None = None,
        team_stats: pd.DataFrame | None = None,
        stats_config: TeamStatsConfig | None = None,
    ) -> None:
        self.inputs = inputs
        self.stats_config = stats_config or TeamStatsConfig()
        if base_games is None:
            base_games = add_elo_ratings(build_base_games(inputs.schedules), self.stats_config)
        self.base_games = base_games
        self.team_stats = (
            team_stats if team_stats is not None else build_team_period_stats(inputs.team_weekly, base_games)
        )
        self.injuries = InjuryIndex.from_reports(inputs.injuries)
        self._markets = index_by_game(inputs.markets)
        self._weather = index_by_game(inputs.weather)
        self._elo = index_schedule_feed(inputs.elo, base_games)

    # ------------- Per-game pieces -------------

    def elo_context(self, game: pd.Series) -> dict[str, Any]:
        row = self._elo.get(game_key(game))
        if row is not None and pd.notna(row.get("home_elo")):
            return {
                "source": "ratings_feed",
                "home": _round(float(row["home_elo"]), 1),
                "away": _round(float(row["away_elo"]), 1),
                "home_prob": _round(to_float(row.get("home_elo_prob"), default=np.nan)),
            }
        home = game.get("home_elo_pre")
        away = game.get("away_elo_pre")
        if home is None or pd.isna(home):
            return {"source": "unavailable", "home": None, "away": None, "home_prob": None}
        prob = 1.0 / (1.0 + 10.0 ** (-((home + self.stats_config.elo_home_field_advantage) - away) / 400.0))
        return {"source": "internal", "home": _round(home, 1), "away": _round(away, 1), "home_prob": _round(prob)}

    def market_context(self, game: pd.Series, historical: bool) -> MarketContext:
        row = usable_feed_row(self._markets, game, historical)
        if row is not None:
            return market_from_row(row)
        if not historical and pd.notna(game.get("home_spread", np.nan)):
            # schedule closing lines are only trusted for games not yet played
            return market_from_row(game, source="schedule")
        return NEUTRAL_MARKET

    def weather_context(self, game: pd.Series, historical: bool) -> WeatherContext:
        if is_indoor(game.get("roof")):
            return INDOOR_WEATHER
        row = usable_feed_row(self._weather, game, historical)
        if row is not None:
            return weather_from_row(row)
        return NEUTRAL_WEATHER

    # ------------- Public API -------------

    def week_games(self, season: int, week: int) -> pd.DataFrame:
        games = self.base_games
        return games[(games["season"] == season) & (games["week"] == week)]

    def build_context(self, season: int, week: int) -> list[ContextBundle]:
        """One bundle per scheduled game of (season, week)."""
        games = self.week_games(season, week)
        if games.empty:
            log.warning("No scheduled games for %s week %s; empty context", season, week)
            return []

        historical = bool(games["completed"].all())
        bundles = []
        for _, game in games.iterrows():
            home, away = game["home_team"], game["away_team"]
            bundles.append(
                ContextBundle(
                    game_id=game["game_id"],
                    season=int(season),
                    week=int(week),
                    home_team=home,
                    away_team=away,
                    rolling_strength={
                        "home": rolling_strength(self.team_stats, season, week, home),
                        "away": rolling_strength(self.team_stats, season, week, away),
                    },
                    qb_form={
                        "home": qb_form(self.inputs.player_weekly, self.inputs.qbr, season, week, home),
                        "away": qb_form(self.inputs.player_weekly, self.inputs.qbr, season, week, away),
                    },
                    injuries={
                        "home": self.injuries.snapshot(season, week, home),
                        "away": self.injuries.snapshot(season, week, away),
                    },
                    venue=venue_context(game),
                    elo=self.elo_context(game),
                    market=self.market_context(game, historical).to_dict(),
                    weather=self.weather_context(game, historical).to_dict(),
                )
            )
        log.info("Built %d context bundles for %s week %s (historical=%s)", len(bundles), season, week, historical)
        return bundles
