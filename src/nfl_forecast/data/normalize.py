"""
Column normalization for every ingested dataset.

Sources disagree on column names (``gameday`` vs ``date``, ``recent_team`` vs
``team``, ``spread_home`` vs ``home_spread`` ...). Each dataset declares an
alias list per canonical column here, and :func:`normalize_frame` is applied
exactly once when the gateway loads a frame. Downstream code only ever sees
canonical names.
"""

from __future__ import annotations

import re
from typing import Iterable, Mapping, Sequence

import numpy as np
import pandas as pd

INVALID_TEAM_CODES = frozenset(
    {
        "", "-", "--", "?", "??", "???", "TBD", "TBA", "TBC", "UNK", "UNKNOWN",
        "NA", "N/A", "NONE", "NULL", "NAN", "HOME", "AWAY", "H", "A",
    }
)

# Relocated franchises mapped to current nflverse abbreviations
LEGACY_TEAM_CODES = {
    "OAK": "LV",
    "SD": "LAC",
    "STL": "LA",
    "LAR": "LA",
    "JAC": "JAX",
    "WSH": "WAS",
}

COLUMN_ALIASES: dict[str, dict[str, Sequence[str]]] = {
    "schedules": {
        "season": ("schedule_season", "year"),
        "week": ("schedule_week", "game_week"),
        "game_date": ("gameday", "date", "game_day"),
        "gametime": ("game_time", "kickoff_time"),
        "home_team": ("team_home", "home", "home_abbr"),
        "away_team": ("team_away", "away", "away_abbr"),
        "home_score": ("score_home", "home_points"),
        "away_score": ("score_away", "away_points"),
        "spread_line": ("spread",),
        "total_line": ("over_under_line", "total"),
        "game_type": ("season_type",),
        "temperature": ("temp", "weather_temperature"),
        "wind_speed": ("wind", "weather_wind_mph"),
    },
    "team_weekly": {
        "team": ("recent_team", "team_abbr", "posteam"),
        "opponent": ("opponent_team", "opp", "opp_team"),
        "yards_for": ("total_yards", "off_total_yards", "off_total_yds", "total_yds"),
        "yards_against": (
            "total_yards_allowed",
            "def_total_yards",
            "def_total_yds",
            "yards_allowed",
        ),
        "pass_yards": ("passing_yards", "off_pass_yds", "pass_yds"),
        "rush_yards": ("rushing_yards", "off_rush_yds", "rush_yds"),
        "first_downs": ("off_first_downs", "first_down"),
        "turnovers": ("off_turnovers", "giveaways"),
        "takeaways": ("def_turnovers",),
        "third_down_conv": ("third_down_converted", "third_down_conversions"),
        "third_down_att": ("third_down_attempts",),
        "red_zone_td": ("red_zone_tds", "redzone_td"),
        "red_zone_att": ("red_zone_attempts", "redzone_att"),
        "points_for": ("points", "pts_for"),
        "points_against": ("points_allowed", "pts_against"),
    },
    "player_weekly": {
        "team": ("recent_team", "team_abbr"),
        "player_id": ("gsis_id", "id"),
        "player_name": ("player_display_name", "name", "full_name"),
        "position": ("pos", "position_group"),
        "attempts": ("passing_attempts", "pass_attempts", "att"),
        "passing_yards": ("pass_yards", "pass_yds"),
        "sacks": ("sacks_suffered", "times_sacked"),
    },
    "injuries": {
        "team": ("club_code", "team_abbr"),
        "player": ("full_name", "player_name", "name", "gsis_id"),
        "position": ("pos",),
        "report_status": ("status", "game_status", "injury_status"),
        "practice_status": ("practice", "practice_participation"),
    },
    "markets": {
        "home_spread": ("spread_home", "home_spread_line", "spread"),
        "total": ("total_line", "over_under"),
        "home_moneyline": ("moneyline_home", "ml_home"),
        "away_moneyline": ("moneyline_away", "ml_away"),
        "fetched_at": ("captured_at", "timestamp", "updated_at"),
    },
    "weather": {
        "temperature": ("temp", "temperature_f", "temp_f"),
        "wind_speed": ("wind", "wind_mph"),
        "precip_prob": ("precipitation", "precip_pct", "precip_chance", "precipitation_chance"),
        "fetched_at": ("captured_at", "timestamp", "updated_at"),
    },
    "elo": {
        "game_date": ("date",),
        "home_team": ("team1",),
        "away_team": ("team2",),
        "home_elo": ("elo1_pre", "qbelo1_pre"),
        "away_elo": ("elo2_pre", "qbelo2_pre"),
        "home_elo_prob": ("elo_prob1", "qbelo_prob1"),
    },
    "qbr": {
        "week": ("game_week",),
        "team": ("team_abb", "team_abbr"),
        "qbr": ("qbr_total", "total_qbr"),
        "player_name": ("name_display", "name_short"),
    },
    "pbp": {},
}

TEAM_COLUMNS = ("team", "opponent", "home_team", "away_team")
INT_COLUMNS = ("season", "week")


def normalize_team_code(*values: object) -> str | None:
    """
    Return the first usable team abbreviation among ``values``.

    Placeholders (TBD, HOME, ...) are skipped, non-letters stripped and the
    result must be 2-5 letters. Relocated franchises map to current codes.
    """
    for value in values:
        if value is None or (isinstance(value, float) and np.isnan(value)):
            continue
        raw = str(value).strip().upper()
        if not raw or raw in INVALID_TEAM_CODES:
            continue
        letters = re.sub(r"[^A-Z]", "", raw)
        if not (2 <= len(letters) <= 5) or letters in INVALID_TEAM_CODES:
            continue
        return LEGACY_TEAM_CODES.get(letters, letters)
    return None


def apply_aliases(df: pd.DataFrame, aliases: Mapping[str, Iterable[str]]) -> pd.DataFrame:
    """Rename the first present alias to its canonical name when the canonical column is absent."""
    renames: dict[str, str] = {}
    for canonical, options in aliases.items():
        if canonical in df.columns:
            continue
        for alias in options:
            if alias in df.columns and alias not in renames:
                renames[alias] = canonical
                break
    return df.rename(columns=renames) if renames else df


def _sum_present(df: pd.DataFrame, cols: Sequence[str]) -> pd.Series | None:
    present = [c for c in cols if c in df.columns]
    if not present:
        return None
    return df[present].apply(pd.to_numeric, errors="coerce").fillna(0).sum(axis=1)


def _derive_team_weekly(df: pd.DataFrame) -> pd.DataFrame:
    if "yards_for" not in df.columns:
        total = _sum_present(df, ["pass_yards", "rush_yards"])
        if total is not None:
            df["yards_for"] = total
    if "turnovers" not in df.columns:
        total = _sum_present(
            df,
            [
                "passing_interceptions",
                "interceptions",
                "rushing_fumbles_lost",
                "receiving_fumbles_lost",
                "sack_fumbles_lost",
            ],
        )
        if total is not None:
            df["turnovers"] = total
    if "takeaways" not in df.columns:
        total = _sum_present(df, ["def_interceptions", "fumble_recovery_opp", "def_fumbles_recovered"])
        if total is not None:
            df["takeaways"] = total
    if "first_downs" not in df.columns:
        total = _sum_present(df, ["passing_first_downs", "rushing_first_downs"])
        if total is not None:
            df["first_downs"] = total
    return df


def _derive_schedules(df: pd.DataFrame) -> pd.DataFrame:
    if "game_date" in df.columns:
        df["game_date"] = pd.to_datetime(df["game_date"], errors="coerce")
    # nflverse spread_line is the home team's expected margin; store the
    # book-convention line as well (negative = home favored).
    if "spread_line" in df.columns and "home_spread" not in df.columns:
        df["home_spread"] = -pd.to_numeric(df["spread_line"], errors="coerce")
    return df


def _derive_market_like(df: pd.DataFrame) -> pd.DataFrame:
    if "fetched_at" in df.columns:
        df["fetched_at"] = pd.to_datetime(df["fetched_at"], errors="coerce", utc=True).dt.tz_localize(None)
    if "game_date" in df.columns:
        df["game_date"] = pd.to_datetime(df["game_date"], errors="coerce")
    return df


def _derive_elo(df: pd.DataFrame) -> pd.DataFrame:
    if "game_date" in df.columns:
        df["game_date"] = pd.to_datetime(df["game_date"], errors="coerce")
    return df


_DERIVERS = {
    "schedules": _derive_schedules,
    "team_weekly": _derive_team_weekly,
    "markets": _derive_market_like,
    "weather": _derive_market_like,
    "elo": _derive_elo,
}


def normalize_frame(df: pd.DataFrame, dataset: str) -> pd.DataFrame:
    """
    Map a raw frame onto canonical column names for ``dataset``.

    Also coerces ``season``/``week`` to nullable integers and team codes to
    canonical abbreviations (rows with no usable team code keep ``None``).
    """
    out = df.copy()
    out.columns = [str(c).strip() for c in out.columns]
    out = apply_aliases(out, COLUMN_ALIASES.get(dataset, {}))

    # Rows without a usable season/week cannot be placed in time
    for col in INT_COLUMNS:
        if col in out.columns:
            values = pd.to_numeric(out[col], errors="coerce")
            out = out.loc[values.notna()].copy()
            out[col] = values.loc[values.notna()].astype("int64")

    for col in TEAM_COLUMNS:
        if col in out.columns:
            out[col] = out[col].map(normalize_team_code)

    deriver = _DERIVERS.get(dataset)
    if deriver is not None:
        out = deriver(out)
    return out
