from __future__ import annotations

import logging

import pandas as pd

from nfl_forecast.data.feature_engineering.feature_builder import LABEL
from nfl_forecast.errors import LeakageError

log = logging.getLogger(__name__)


def assert_no_leakage(train: pd.DataFrame, season: int, week: int) -> None:
    """Raise LeakageError if any training row is from (season, week) or later."""
    if train.empty:
        return
    late = (train["season"] > season) | ((train["season"] == season) & (train["week"] >= week))
    if late.any():
        offenders = train.loc[late, ["season", "week"]].drop_duplicates().head(5)
        raise LeakageError(
            f"Training slice for {season} week {week} contains {int(late.sum())} rows from that week or later",
            season=int(season),
            week=int(week),
            offending_periods=[tuple(int(v) for v in row) for row in offenders.itertuples(index=False)],
        )


def walk_forward_split(
    features: pd.DataFrame,
    season: int,
    week: int,
    include_prior_season: bool = False,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Split the feature frame for forecasting (season, week).

    Returns
    -------
    train:
        Labelled rows of `season` with week < `week`, plus labelled rows of
        `season - 1` when `include_prior_season` is set.
    test:
        Every row of (`season`, `week`), labelled or not.
    """
    in_season = (features["season"] == season) & (features["week"] < week)
    if include_prior_season:
        in_season |= features["season"] == season - 1
    train = features[in_season & features[LABEL].notna()].reset_index(drop=True)
    test = features[(features["season"] == season) & (features["week"] == week)].reset_index(drop=True)

    assert_no_leakage(train, season, week)
    log.debug("Split %s W%02d: %d train rows, %d test rows", season, week, len(train), len(test))
    return train, test
