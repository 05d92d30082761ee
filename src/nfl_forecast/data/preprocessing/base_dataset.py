from __future__ import annotations

import logging
from typing import Iterable, Optional

import numpy as np
import pandas as pd

from nfl_forecast.records import make_game_id

log = logging.getLogger(__name__)

REQUIRED_SCHEDULE_COLUMNS = ["season", "week", "home_team", "away_team"]


def _validate_schedules(df: pd.DataFrame) -> None:
    """Basic validation for normalized schedule rows."""
    if df is None or len(df) == 0:
        raise ValueError("No schedule rows supplied")

    missing = [c for c in REQUIRED_SCHEDULE_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns in schedules: {missing}")


def _add_season_type_flags(df: pd.DataFrame) -> pd.DataFrame:
    """
    Add is_regular_season and is_postseason flags.

    Prefer game_type if available; otherwise fall back on week/season heuristics.
    """
    df = df.copy()

    if "game_type" in df.columns:
        gt = df["game_type"].astype(str).str.upper()
        df["is_regular_season"] = gt == "REG"
        df["is_postseason"] = gt.isin(["POST", "WC", "DIV", "CON", "SB"])
    else:
        # 18-week regular season from 2021, 17 weeks before
        last_regular = np.where(df["season"] >= 2021, 18, 17)
        df["is_postseason"] = df["week"] > last_regular
        df["is_regular_season"] = (~df["is_postseason"]) & (df["week"] >= 1)

    return df


def build_base_games(
    schedules: pd.DataFrame,
    seasons: Optional[Iterable[int]] = None,
    include_postseason: bool = False,
) -> pd.DataFrame:
    """
    Build the canonical game table from normalized schedule rows.

    Unlike a training-only table, unplayed games are kept: they are the
    forecast targets of the current week.

    Returns
    -------
    pd.DataFrame
        One row per game with:
        - identifiers: game_id, season, week
        - teams: home_team, away_team
        - outcome: home_score, away_score, completed, home_win (NaN if unplayed or tied), tie
        - venue: roof, surface (when present)
        - game_date, game_index (0..N-1 in chronological order)
    """
    _validate_schedules(schedules)
    df = schedules.copy()

    if seasons is not None:
        wanted = {int(s) for s in seasons}
        df = df[df["season"].isin(wanted)].copy()

    df = df[df["home_team"].notna() & df["away_team"].notna()].copy()
    if df.empty:
        raise ValueError(f"No schedule rows with valid team codes for seasons {seasons}")

    df = _add_season_type_flags(df)
    keep = df["is_regular_season"] | (include_postseason & df["is_postseason"])
    df = df[keep].copy()

    for col in ("home_score", "away_score"):
        df[col] = pd.to_numeric(df[col], errors="coerce") if col in df.columns else np.nan
    if "game_date" not in df.columns:
        df["game_date"] = pd.NaT
    for col in ("roof", "surface"):
        if col not in df.columns:
            df[col] = None

    df["completed"] = df["home_score"].notna() & df["away_score"].notna()
    df["tie"] = df["completed"] & (df["home_score"] == df["away_score"])
    df["home_win"] = np.where(
        df["completed"] & ~df["tie"],
        (df["home_score"] > df["away_score"]).astype(float),
        np.nan,
    )
    df["game_id"] = [
        make_game_id(s, w, h, a)
        for s, w, h, a in zip(df["season"], df["week"], df["home_team"], df["away_team"])
    ]

    duplicates = df[df.duplicated(subset=["game_id"], keep=False)]
    if not duplicates.empty:
        log.warning("Dropping %d duplicate schedule rows", len(duplicates) - duplicates["game_id"].nunique())
        df = df.drop_duplicates(subset=["game_id"], keep="last")

    df = df.sort_values(["season", "week", "game_date", "game_id"]).reset_index(drop=True)
    df["game_index"] = df.index  # 0..N-1 in time order

    return df
