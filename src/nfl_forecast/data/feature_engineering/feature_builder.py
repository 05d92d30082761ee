from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from nfl_forecast.data.context.capture import index_by_game, usable_feed_row
from nfl_forecast.data.context.weather import is_indoor, weather_from_row
from nfl_forecast.data.inputs import SeasonInputs
from nfl_forecast.data.preprocessing.base_dataset import build_base_games

from .pbp_features import PbpFeaturesConfig, build_team_pbp_features
from .rolling_features import RollingSpec, add_expanding_means, add_rolling_features
from .team_stats_pipeline import (
    TeamStatsConfig,
    add_elo_ratings,
    add_schedule_features,
    build_team_long,
    build_team_period_stats,
)

log = logging.getLogger(__name__)

LABEL = "win"

META_COLUMNS = ["game_id", "season", "week", "team", "opponent", "game_date", "completed"]

FEATURE_NAMES = [
    "home",
    "off_yds_s2d",
    "def_yds_s2d",
    "off_yds_roll3",
    "def_yds_roll3",
    "net_yds_roll3",
    "net_yds_roll5",
    "turnover_diff_s2d",
    "turnover_diff_roll3",
    "third_down_rate_s2d",
    "red_zone_rate_s2d",
    "win_pct_s2d",
    "point_diff_s2d",
    "rest_days",
    "rest_diff",
    "elo_pre",
    "elo_diff",
    "off_yds_s2d_minus_opp",
    "def_yds_s2d_minus_opp",
    "turnover_diff_s2d_minus_opp",
    "net_yds_roll3_minus_opp",
    "weather_impact",
    "weather_extreme",
]

PBP_FEATURE_NAMES = ["off_epa_roll3", "def_epa_allowed_roll3", "off_success_roll3"]

# Season-to-date means of per-week stats: source column -> feature name
_S2D_SOURCES = {
    "yards_for": "off_yds_s2d",
    "yards_against": "def_yds_s2d",
    "turnover_diff": "turnover_diff_s2d",
    "third_down_rate": "third_down_rate_s2d",
    "red_zone_rate": "red_zone_rate_s2d",
    "point_diff": "point_diff_s2d",
    "win_value": "win_pct_s2d",
}

# Rolling columns fall back to their season-to-date counterpart before a team has history
_ROLL_FALLBACK = {
    "off_yds_roll3": "off_yds_s2d",
    "def_yds_roll3": "def_yds_s2d",
    "turnover_diff_roll3": "turnover_diff_s2d",
}

_STAT_COLUMNS = ["yards_for", "yards_against", "net_yards", "turnover_diff", "third_down_rate", "red_zone_rate"]


@dataclass
class FeatureBuilderConfig:
    """
    Configuration for the feature builder.

    Attributes
    ----------
    use_pbp_features:
        Append rolling play-by-play EPA features (needs the pbp dataset).
    min_periods:
        Minimum prior weeks for a rolling value; below it the season-to-date
        fallback is used.
    stats_config:
        Elo / rest configuration shared with the context builder.
    """

    use_pbp_features: bool = False
    min_periods: int = 1
    stats_config: TeamStatsConfig = field(default_factory=TeamStatsConfig)
    pbp_config: PbpFeaturesConfig = field(default_factory=PbpFeaturesConfig)


class FeatureBuilder:
    """
    Build team-perspective feature vectors (two rows per scheduled game).

    Every stat-derived feature for a row in week W of season S is computed
    from that team's weeks < W of season S only (teams without history are
    seeded from their previous-season averages). Weather is a pre-game
    covariate: for games already played it is only used when the feed row
    was captured before kickoff.

    Usage
    -----
        builder = FeatureBuilder(FeatureBuilderConfig())
        features = builder.build_features(inputs, inputs.season)
        meta = builder.metadata(features)
    """

    def __init__(self, config: FeatureBuilderConfig | None = None) -> None:
        self.config = config or FeatureBuilderConfig()
        self.base_games: pd.DataFrame | None = None
        self.team_stats: pd.DataFrame | None = None

    @property
    def feature_names(self) -> list[str]:
        names = list(FEATURE_NAMES)
        if self.config.use_pbp_features:
            names += PBP_FEATURE_NAMES
        return names

    # ------------- Steps -------------

    def _team_rows(self, inputs: SeasonInputs) -> pd.DataFrame:
        base = add_elo_ratings(build_base_games(inputs.schedules), self.config.stats_config)
        stats = build_team_period_stats(inputs.team_weekly, base)
        self.base_games, self.team_stats = base, stats

        team = add_schedule_features(build_team_long(base), self.config.stats_config)
        team = team.merge(
            stats[["season", "week", "team", *_STAT_COLUMNS]],
            on=["season", "week", "team"],
            how="left",
            validate="many_to_one",
        )
        return team.reset_index(drop=True)

    def _add_history_features(self, team: pd.DataFrame) -> pd.DataFrame:
        team = add_expanding_means(team, ["team", "season"], "game_index", list(_S2D_SOURCES))
        team = team.rename(columns={f"{src}_s2d": dst for src, dst in _S2D_SOURCES.items()})

        specs = [
            RollingSpec("yards_for", windows=(3,), min_periods=self.config.min_periods, prefix="off_yds"),
            RollingSpec("yards_against", windows=(3,), min_periods=self.config.min_periods, prefix="def_yds"),
            RollingSpec("net_yards", windows=(3, 5), min_periods=self.config.min_periods, prefix="net_yds"),
            RollingSpec("turnover_diff", windows=(3,), min_periods=self.config.min_periods, prefix="turnover_diff"),
        ]
        team = add_rolling_features(team, ["team", "season"], "game_index", specs)
        return team.rename(
            columns={
                "off_yds_rolling_mean_3": "off_yds_roll3",
                "def_yds_rolling_mean_3": "def_yds_roll3",
                "net_yds_rolling_mean_3": "net_yds_roll3",
                "net_yds_rolling_mean_5": "net_yds_roll5",
                "turnover_diff_rolling_mean_3": "turnover_diff_roll3",
            }
        )

    def _seed_from_prior_season(self, team: pd.DataFrame) -> pd.DataFrame:
        """Fill missing season-to-date values with the team's previous-season averages."""
        stats = self.team_stats
        if stats is None or stats.empty:
            return team

        per_team = stats.groupby(["season", "team"])[["yards_for", "yards_against", "turnover_diff",
                                                      "third_down_rate", "red_zone_rate"]].mean()
        per_team = per_team.rename(
            columns={
                "yards_for": "off_yds_s2d",
                "yards_against": "def_yds_s2d",
                "turnover_diff": "turnover_diff_s2d",
                "third_down_rate": "third_down_rate_s2d",
                "red_zone_rate": "red_zone_rate_s2d",
            }
        ).reset_index()
        per_team["season"] = per_team["season"] + 1  # prior season seeds the next one

        seeded = team[["season", "team"]].merge(per_team, on=["season", "team"], how="left")
        for col in per_team.columns.drop(["season", "team"]):
            team[col] = team[col].fillna(pd.Series(seeded[col].to_numpy(), index=team.index))
        return team

    def _add_pbp_features(self, team: pd.DataFrame, pbp: pd.DataFrame) -> pd.DataFrame:
        weekly = build_team_pbp_features(pbp, self.config.pbp_config)
        team = team.merge(
            weekly[["season", "week", "team", "off_epa_per_play", "def_epa_per_play_allowed", "off_success_rate"]],
            on=["season", "week", "team"],
            how="left",
        )
        specs = [
            RollingSpec("off_epa_per_play", windows=(3,), prefix="off_epa"),
            RollingSpec("def_epa_per_play_allowed", windows=(3,), prefix="def_epa_allowed"),
            RollingSpec("off_success_rate", windows=(3,), prefix="off_success"),
        ]
        team = add_rolling_features(team, ["team", "season"], "game_index", specs)
        return team.rename(
            columns={
                "off_epa_rolling_mean_3": "off_epa_roll3",
                "def_epa_allowed_rolling_mean_3": "def_epa_allowed_roll3",
                "off_success_rolling_mean_3": "off_success_roll3",
            }
        )

    def _add_weather_features(self, team: pd.DataFrame, weather: pd.DataFrame) -> pd.DataFrame:
        team["weather_impact"] = 0.0
        team["weather_extreme"] = 0.0
        rows = index_by_game(weather)
        if not rows or self.base_games is None:
            return team

        values: dict[str, tuple[float, float]] = {}
        for _, game in self.base_games.iterrows():
            if is_indoor(game.get("roof")):
                continue
            row = usable_feed_row(rows, game, historical=bool(game["completed"]))
            if row is None:
                continue
            ctx = weather_from_row(row)
            values[game["game_id"]] = (ctx.impact_score, float(ctx.extreme))

        if values:
            team["weather_impact"] = team["game_id"].map(lambda g: values.get(g, (0.0, 0.0))[0])
            team["weather_extreme"] = team["game_id"].map(lambda g: values.get(g, (0.0, 0.0))[1])
        return team

    @staticmethod
    def _add_opponent_diffs(team: pd.DataFrame) -> pd.DataFrame:
        cols = ["off_yds_s2d", "def_yds_s2d", "turnover_diff_s2d", "net_yds_roll3", "rest_days"]
        opp = team[["game_id", "team", *cols]].rename(columns={"team": "opponent", **{c: f"_opp_{c}" for c in cols}})
        team = team.merge(opp, on=["game_id", "opponent"], how="left", validate="one_to_one")
        for col in cols[:-1]:
            team[f"{col}_minus_opp"] = team[col] - team[f"_opp_{col}"]
        team["rest_diff"] = team["rest_days"] - team["_opp_rest_days"]
        return team.drop(columns=[f"_opp_{c}" for c in cols])

    # ------------- Public API -------------

    def build_features(self, inputs: SeasonInputs, season: int | None = None) -> pd.DataFrame:
        """
        Build the feature frame for `season` (default ``inputs.season``).

        Earlier seasons present in `inputs` are kept: they seed week 1 and can
        join the training slice. Rows of later seasons are dropped.

        Returns
        -------
        pd.DataFrame
            META_COLUMNS + feature_names + [LABEL]; `win` is 1/0 for decided
            games and NaN for unplayed games or ties.
        """
        season = int(inputs.season if season is None else season)
        if not (inputs.schedules["season"] == season).any():
            raise ValueError(f"No scheduled games for season {season}")

        team = self._team_rows(inputs)
        team = self._add_history_features(team)
        team = self._seed_from_prior_season(team)

        for roll_col, s2d_col in _ROLL_FALLBACK.items():
            team[roll_col] = team[roll_col].fillna(team[s2d_col])
        seeded_net = team["off_yds_s2d"] - team["def_yds_s2d"]
        team["net_yds_roll3"] = team["net_yds_roll3"].fillna(seeded_net)
        team["net_yds_roll5"] = team["net_yds_roll5"].fillna(seeded_net)
        team["win_pct_s2d"] = team["win_pct_s2d"].fillna(0.5)

        if self.config.use_pbp_features:
            team = self._add_pbp_features(team, inputs.pbp)

        team = self._add_weather_features(team, inputs.weather)
        team = self._add_opponent_diffs(team)

        team["home"] = team["is_home"].astype(float)
        team["elo_pre"] = team["elo"]
        team[LABEL] = team["team_win"]

        names = self.feature_names
        features = team[META_COLUMNS + names + [LABEL]].copy()
        features[names] = features[names].apply(pd.to_numeric, errors="coerce").fillna(0.0).astype(float)
        features = features[features["season"] <= season]
        features = features.sort_values(["season", "week", "game_id", "home"], ascending=[True, True, True, False])

        log.info(
            "Built %d feature rows (%d labelled) over seasons %s",
            len(features),
            int(features[LABEL].notna().sum()),
            sorted(features["season"].unique().tolist()),
        )
        return features.reset_index(drop=True)

    def metadata(self, features: pd.DataFrame) -> dict[str, Any]:
        """Paired metadata for the feature frame (label key, required columns, coverage)."""
        return {
            "label": LABEL,
            "feature_names": self.feature_names,
            "required_columns": ["game_id", "season", "week", "team", "opponent", *self.feature_names],
            "rows": int(len(features)),
            "labelled_rows": int(features[LABEL].notna().sum()) if LABEL in features.columns else 0,
            "seasons": sorted(int(s) for s in features["season"].unique()) if len(features) else [],
            "use_pbp_features": self.config.use_pbp_features,
        }
