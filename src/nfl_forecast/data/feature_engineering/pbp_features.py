from __future__ import annotations

from dataclasses import dataclass

import pandas as pd


@dataclass
class PbpFeaturesConfig:
    """
    Configuration for EPA / success features derived from play-by-play.

    Attributes
    ----------
    explosive_pass_yards:
        Yardage threshold for an explosive pass play.
    explosive_rush_yards:
        Yardage threshold for an explosive rush play.
    """

    explosive_pass_yards: int = 15
    explosive_rush_yards: int = 10


PBP_COLUMNS = [
    "off_epa_per_play",
    "off_success_rate",
    "off_explosive_play_rate",
    "def_epa_per_play_allowed",
    "def_success_rate_allowed",
]


def _bool_col(frame: pd.DataFrame, col: str) -> pd.Series:
    """Coerce a 0/1, float or bool column to bool; all-False if the column is missing."""
    if col not in frame.columns:
        return pd.Series(False, index=frame.index)
    s = frame[col]
    if s.dtype == bool:
        return s.fillna(False)
    return pd.to_numeric(s, errors="coerce").fillna(0).astype(bool)


def _prepare_pbp(df: pd.DataFrame, cfg: PbpFeaturesConfig) -> pd.DataFrame:
    """
    Clean and enrich raw pbp with flags we need for aggregation.
    """
    pbp = df[df["epa"].notna() & df["posteam"].notna() & df["defteam"].notna()].copy()

    play_type = pbp.get("play_type")
    pbp["is_pass"] = _bool_col(pbp, "pass") | (play_type == "pass")
    pbp["is_rush"] = _bool_col(pbp, "rush") | (play_type == "run")
    pbp["yards_gained"] = pd.to_numeric(pbp.get("yards_gained", 0), errors="coerce").fillna(0)

    pbp["is_explosive"] = (
        (pbp["is_pass"] & (pbp["yards_gained"] >= cfg.explosive_pass_yards))
        | (pbp["is_rush"] & (pbp["yards_gained"] >= cfg.explosive_rush_yards))
    )

    # Success flag (nflfastR schema has `success`; otherwise fallback)
    if "success" not in pbp.columns:
        pbp["success"] = pbp["epa"] > 0
    pbp["success"] = _bool_col(pbp, "success").astype(float)

    return pbp


def build_team_pbp_features(pbp: pd.DataFrame, config: PbpFeaturesConfig | None = None) -> pd.DataFrame:
    """
    Aggregate play-by-play into one row per (season, week, team).

    Returns a DataFrame with columns: season, week, team, plays_off, plays_def,
    off_epa_per_play, off_success_rate, off_explosive_play_rate,
    def_epa_per_play_allowed, def_success_rate_allowed. Empty when the input
    lacks the required nflfastR columns.
    """
    if config is None:
        config = PbpFeaturesConfig()

    required = {"season", "week", "posteam", "defteam", "epa"}
    if pbp is None or pbp.empty or not required.issubset(pbp.columns):
        return pd.DataFrame(columns=["season", "week", "team", "plays_off", "plays_def", *PBP_COLUMNS])

    plays = _prepare_pbp(pbp, config)
    if "season_type" in plays.columns:
        plays = plays[plays["season_type"].astype(str).str.upper() == "REG"]

    off = (
        plays.groupby(["season", "week", "posteam"])
        .agg(
            plays_off=("epa", "size"),
            off_epa_per_play=("epa", "mean"),
            off_success_rate=("success", "mean"),
            off_explosive_play_rate=("is_explosive", "mean"),
        )
        .reset_index()
        .rename(columns={"posteam": "team"})
    )
    # lower EPA allowed is better for the defense
    dfn = (
        plays.groupby(["season", "week", "defteam"])
        .agg(
            plays_def=("epa", "size"),
            def_epa_per_play_allowed=("epa", "mean"),
            def_success_rate_allowed=("success", "mean"),
        )
        .reset_index()
        .rename(columns={"defteam": "team"})
    )

    merged = off.merge(dfn, on=["season", "week", "team"], how="outer", validate="one_to_one")
    merged["plays_off"] = merged["plays_off"].fillna(0).astype(int)
    merged["plays_def"] = merged["plays_def"].fillna(0).astype(int)
    merged["off_explosive_play_rate"] = merged["off_explosive_play_rate"].astype(float)
    return merged
