from __future__ import annotations

"""
Team-week statistics and team-perspective game rows.

This module assumes that:
- `base_games` is produced by
  `nfl_forecast.data.preprocessing.base_dataset.build_base_games`
  (it includes unplayed games, which carry NaN scores).
- `team_weekly` has already been normalized by the source gateway, so the
  canonical column names (team, opponent, yards_for, ...) are in place.

Nothing here looks at a game's own outcome when producing that game's
pre-game values; the rolling/expanding step downstream only reads prior rows.
"""

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from nfl_forecast.data.normalize import COLUMN_ALIASES, apply_aliases

log = logging.getLogger(__name__)

STAT_COLUMNS = (
    "yards_for",
    "yards_against",
    "pass_yards",
    "rush_yards",
    "first_downs",
    "turnovers",
    "takeaways",
    "third_down_conv",
    "third_down_att",
    "red_zone_td",
    "red_zone_att",
)

S2D_SUFFIX = "_s2d"


@dataclass
class TeamStatsConfig:
    """
    Configuration for team-level statistics and Elo.

    Attributes
    ----------
    elo_base:
        Rating assigned to a team the first time it is seen.
    elo_k:
        K-factor controlling the magnitude of Elo updates per game.
    elo_home_field_advantage:
        Elo points added to the home team's rating when computing expected results.
    elo_season_carryover:
        Fraction of a team's deviation from `elo_base` kept into the next season.
    default_rest_days:
        Rest assigned to a team's first game of a season.
    """

    elo_base: float = 1500.0
    elo_k: float = 20.0
    elo_home_field_advantage: float = 55.0
    elo_season_carryover: float = 0.75
    default_rest_days: float = 7.0


# ---------------------------------------------------------------------------
# Team-week statistics
# ---------------------------------------------------------------------------


def reconcile_cumulative(team_weekly: pd.DataFrame) -> pd.DataFrame:
    """
    Convert season-to-date statistics into per-week values.

    Two representations are recognised:
    - `<stat>_s2d` columns (used when the per-week `<stat>` column is absent);
    - an explicit boolean `cumulative` column marking rows whose stat
      columns are running totals.

    Differencing happens within each (team, season) ordered by week, so a
    bye week simply differences against the last reported week.
    """
    df = team_weekly.sort_values(["team", "season", "week"]).copy()
    keys = [df["team"], df["season"]]

    for col in [c for c in df.columns if c.endswith(S2D_SUFFIX)]:
        base = col[: -len(S2D_SUFFIX)]
        if base in df.columns:
            continue
        values = pd.to_numeric(df[col], errors="coerce")
        df[base] = values - values.groupby(keys).shift(1).fillna(0)

    # s2d-derived columns may now match aliases (e.g. off_total_yds)
    df = apply_aliases(df, COLUMN_ALIASES["team_weekly"])

    if "cumulative" in df.columns:
        flagged = df["cumulative"].astype(str).str.lower().isin(["1", "true", "yes"])
        if flagged.any():
            for col in [c for c in STAT_COLUMNS if c in df.columns]:
                values = pd.to_numeric(df[col], errors="coerce")
                per_week = values - values.groupby(keys).shift(1).fillna(0)
                df.loc[flagged, col] = per_week[flagged]
            log.debug("Differenced %d cumulative team-week rows", int(flagged.sum()))

    return df


def _attach_opponents(stats: pd.DataFrame, base_games: pd.DataFrame | None) -> pd.DataFrame:
    if "opponent" in stats.columns and stats["opponent"].notna().any():
        return stats
    if base_games is None or base_games.empty:
        stats["opponent"] = None
        return stats

    pairs = pd.concat(
        [
            base_games[["season", "week", "home_team", "away_team"]].rename(
                columns={"home_team": "team", "away_team": "opponent"}
            ),
            base_games[["season", "week", "away_team", "home_team"]].rename(
                columns={"away_team": "team", "home_team": "opponent"}
            ),
        ],
        ignore_index=True,
    ).drop_duplicates(["season", "week", "team"])
    stats = stats.drop(columns=["opponent"], errors="ignore")
    return stats.merge(pairs, on=["season", "week", "team"], how="left")


def _opponent_view(stats: pd.DataFrame, col: str) -> pd.Series:
    """Value of `col` from the opponent's row of the same week, aligned to `stats`."""
    opp = stats[["season", "week", "team", col]].rename(columns={"team": "opponent", col: "_opp_value"})
    opp = opp.drop_duplicates(["season", "week", "opponent"])
    merged = stats[["season", "week", "opponent"]].merge(opp, on=["season", "week", "opponent"], how="left")
    return pd.Series(merged["_opp_value"].to_numpy(), index=stats.index)


def build_team_period_stats(
    team_weekly: pd.DataFrame,
    base_games: pd.DataFrame | None = None,
) -> pd.DataFrame:
    """
    One row per (season, week, team) with per-week statistics.

    When allowed-yardage columns are absent, `yards_against` falls back to
    the opponent's `yards_for` of the same week. The same fallback is used
    for `takeaways` (opponent's `turnovers`).

    Returns
    -------
    pd.DataFrame
        Columns: season, week, team, opponent, yards_for, yards_against,
        net_yards, pass_yards, rush_yards, first_downs, turnovers, takeaways,
        turnover_diff, third_down_rate, red_zone_rate.
    """
    out_cols = [
        "season", "week", "team", "opponent", "yards_for", "yards_against", "net_yards",
        "pass_yards", "rush_yards", "first_downs", "turnovers", "takeaways",
        "turnover_diff", "third_down_rate", "red_zone_rate",
    ]
    if team_weekly is None or team_weekly.empty or "team" not in team_weekly.columns:
        return pd.DataFrame(columns=out_cols)

    stats = team_weekly[team_weekly["team"].notna()].copy()
    if "season_type" in stats.columns:
        stats = stats[stats["season_type"].astype(str).str.upper().isin(["REG", "NAN", "NONE"])]

    stats = reconcile_cumulative(stats)
    stats = _attach_opponents(stats.reset_index(drop=True), base_games)

    for col in STAT_COLUMNS:
        if col in stats.columns:
            stats[col] = pd.to_numeric(stats[col], errors="coerce")
        else:
            stats[col] = np.nan

    if stats["yards_for"].isna().all():
        stats["yards_for"] = stats["pass_yards"].fillna(0) + stats["rush_yards"].fillna(0)
    if stats["yards_against"].isna().all():
        stats["yards_against"] = _opponent_view(stats, "yards_for")
    if stats["takeaways"].isna().all():
        stats["takeaways"] = _opponent_view(stats, "turnovers")

    stats["net_yards"] = stats["yards_for"] - stats["yards_against"]
    stats["turnover_diff"] = stats["takeaways"] - stats["turnovers"]
    stats["third_down_rate"] = stats["third_down_conv"] / stats["third_down_att"].replace(0, np.nan)
    stats["red_zone_rate"] = stats["red_zone_td"] / stats["red_zone_att"].replace(0, np.nan)

    stats = stats.drop_duplicates(["season", "week", "team"], keep="last")
    return stats[out_cols].sort_values(["season", "week", "team"]).reset_index(drop=True)


# ---------------------------------------------------------------------------
# Elo and team-perspective game rows
# ---------------------------------------------------------------------------


def add_elo_ratings(base_games: pd.DataFrame, config: TeamStatsConfig | None = None) -> pd.DataFrame:
    """
    Add leak-free pre-game Elo ratings for home and away teams.

    Games are iterated in chronological order using `game_index`. For each
    game, home_elo_pre / away_elo_pre are the ratings BEFORE the game; the
    ratings are then updated only if the game has been played (ties count
    as half a win). At each new season ratings regress toward `elo_base`.
    """
    if config is None:
        config = TeamStatsConfig()

    df = base_games.copy()
    home_pre = np.full(len(df), np.nan)
    away_pre = np.full(len(df), np.nan)

    base_rating = float(config.elo_base)
    k = float(config.elo_k)
    hfa = float(config.elo_home_field_advantage)
    carry = float(config.elo_season_carryover)

    ratings: dict[str, float] = {}
    current_season = None
    order = np.argsort(df["game_index"].to_numpy(), kind="stable")

    for pos in order:
        row = df.iloc[pos]
        if row["season"] != current_season:
            ratings = {team: base_rating + carry * (r - base_rating) for team, r in ratings.items()}
            current_season = row["season"]

        home, away = row["home_team"], row["away_team"]
        r_home = ratings.get(home, base_rating)
        r_away = ratings.get(away, base_rating)
        home_pre[pos] = r_home
        away_pre[pos] = r_away

        if not row["completed"]:
            continue

        diff = (r_home + hfa) - r_away
        exp_home = 1.0 / (1.0 + 10.0 ** (-diff / 400.0))
        if row["home_score"] > row["away_score"]:
            s_home = 1.0
        elif row["home_score"] < row["away_score"]:
            s_home = 0.0
        else:
            s_home = 0.5

        change = k * (s_home - exp_home)
        ratings[home] = r_home + change
        ratings[away] = r_away - change

    df["home_elo_pre"] = home_pre
    df["away_elo_pre"] = away_pre
    return df


def build_team_long(base_games: pd.DataFrame) -> pd.DataFrame:
    """
    Expand one-row-per-game games into two-row-per-game team-long format.

    Adds team, opponent, is_home, points_for, points_against, point_diff,
    team_win (1/0, NaN for unplayed or tied games), tie and, when Elo has
    been computed, elo / opponent_elo / elo_diff.
    """
    common = ["season", "week", "game_id", "game_index", "game_date", "completed", "tie", "roof", "surface"]
    common = [c for c in common if c in base_games.columns]

    home = base_games[common].copy()
    home["team"] = base_games["home_team"]
    home["opponent"] = base_games["away_team"]
    home["is_home"] = 1.0
    home["points_for"] = base_games["home_score"]
    home["points_against"] = base_games["away_score"]
    home["team_win"] = base_games["home_win"]

    away = base_games[common].copy()
    away["team"] = base_games["away_team"]
    away["opponent"] = base_games["home_team"]
    away["is_home"] = 0.0
    away["points_for"] = base_games["away_score"]
    away["points_against"] = base_games["home_score"]
    away["team_win"] = 1.0 - base_games["home_win"]

    if "home_elo_pre" in base_games.columns and "away_elo_pre" in base_games.columns:
        home["elo"] = base_games["home_elo_pre"]
        home["opponent_elo"] = base_games["away_elo_pre"]
        away["elo"] = base_games["away_elo_pre"]
        away["opponent_elo"] = base_games["home_elo_pre"]

    team_df = pd.concat([home, away], ignore_index=True)
    team_df["point_diff"] = team_df["points_for"] - team_df["points_against"]
    # ties count as half a win in win-percentage features
    team_df["win_value"] = np.where(team_df["tie"], 0.5, team_df["team_win"])

    if "elo" in team_df.columns:
        team_df["elo_diff"] = team_df["elo"] - team_df["opponent_elo"]

    return team_df


def add_schedule_features(team_df: pd.DataFrame, config: TeamStatsConfig | None = None) -> pd.DataFrame:
    """
    Add rest features grouped by [team, season].

    Adds:
    - rest_days (days since the team's previous game; default for the first game)
    - games_played_season_to_date
    """
    if config is None:
        config = TeamStatsConfig()

    df = team_df.sort_values(["team", "season", "game_index"]).copy()
    group = df.groupby(["team", "season"], group_keys=False)

    dates = pd.to_datetime(df["game_date"], errors="coerce")
    rest = dates.groupby([df["team"], df["season"]]).diff().dt.days
    df["rest_days"] = rest.fillna(config.default_rest_days).astype(float)
    df["games_played_season_to_date"] = group.cumcount()

    return df
