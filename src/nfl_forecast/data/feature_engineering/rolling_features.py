from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

import pandas as pd


@dataclass(frozen=True)
class RollingSpec:
    """
    Leak-free rolling windows over one team-week statistic.

    Attributes
    ----------
    col:
        Team-week statistic to roll over (e.g. "net_yards").
    windows:
        Rolling window sizes, in number of weeks played.
    stats:
        Statistics to compute. Supported: "mean", "sum", "std", "min", "max".
    min_periods:
        Prior weeks required before a value is produced; NaN otherwise.
    prefix:
        Prefix used for generated feature names. If None, uses `col`.
        Output columns follow the pattern: "{prefix}_rolling_{stat}_{window}".
    """

    col: str
    windows: Sequence[int]
    stats: Sequence[str] = ("mean",)
    min_periods: int = 1
    prefix: str | None = None


_SUPPORTED_STATS = {"mean", "sum", "std", "min", "max"}


def _validate_specs(df: pd.DataFrame, specs: Iterable[RollingSpec]) -> list[RollingSpec]:
    specs = list(specs)
    if not specs:
        raise ValueError("At least one RollingSpec must be provided.")

    for spec in specs:
        if spec.col not in df.columns:
            raise KeyError(f"RollingSpec refers to missing column: {spec.col}")
        for stat in spec.stats:
            if stat not in _SUPPORTED_STATS:
                raise ValueError(
                    f"Unsupported stat '{stat}' in RollingSpec for col '{spec.col}'. "
                    f"Supported: {_SUPPORTED_STATS}"
                )
    return specs


def _check_keys(df: pd.DataFrame, group_cols: Sequence[str], time_col: str) -> None:
    if not group_cols:
        raise ValueError("group_cols must not be empty.")
    for col in group_cols:
        if col not in df.columns:
            raise KeyError(f"group_col '{col}' not found in DataFrame.")
    if time_col not in df.columns:
        raise KeyError(f"time_col '{time_col}' not found in DataFrame.")


def add_rolling_features(
    df: pd.DataFrame,
    group_cols: Sequence[str],
    time_col: str,
    specs: Sequence[RollingSpec],
) -> pd.DataFrame:
    """
    Add leak-free rolling features to a DataFrame.

    Anti-leakage guarantee
    ----------------------
    For each row, rolling statistics are computed ONLY from rows with strictly
    smaller `time_col` within the same group (group_cols). This is enforced by
    applying a 1-row shift before rolling.

    Parameters
    ----------
    df:
        Input DataFrame. Must contain group_cols + time_col + all spec.col values.
    group_cols:
        Columns defining an independent time series (e.g., ["team", "season"]).
    time_col:
        Column defining chronological order within each group (e.g., "week").
    specs:
        RollingSpec definitions describing what to compute.

    Returns
    -------
    pd.DataFrame
        Copy of `df` with new rolling feature columns appended. Original index
        order is preserved.
    """
    _check_keys(df, group_cols, time_col)
    specs = _validate_specs(df, specs)

    original_index = df.index
    result = df.sort_values(list(group_cols) + [time_col]).copy()
    grouped = result.groupby(list(group_cols), sort=False)

    for spec in specs:
        prefix = spec.prefix or spec.col
        # drop current row from every window
        shifted = grouped[spec.col].shift(1)
        shifted_groups = shifted.groupby([result[c] for c in group_cols], sort=False)

        for window in spec.windows:
            for stat in spec.stats:
                series = shifted_groups.transform(
                    lambda s, w=window, st=stat: getattr(s.rolling(w, min_periods=spec.min_periods), st)()
                )
                result[f"{prefix}_rolling_{stat}_{window}"] = series

    return result.loc[original_index]


def add_expanding_means(
    df: pd.DataFrame,
    group_cols: Sequence[str],
    time_col: str,
    cols: Sequence[str],
    suffix: str = "s2d",
) -> pd.DataFrame:
    """
    Add season-to-date means of prior rows only, named "{col}_{suffix}".

    Same anti-leakage rule as :func:`add_rolling_features`: the current row
    never contributes to its own value, so a team's first row is NaN.
    """
    _check_keys(df, group_cols, time_col)
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise KeyError(f"Expanding mean refers to missing columns: {missing}")

    original_index = df.index
    result = df.sort_values(list(group_cols) + [time_col]).copy()
    keys = [result[c] for c in group_cols]

    for col in cols:
        shifted = result.groupby(keys, sort=False)[col].shift(1)
        result[f"{col}_{suffix}"] = shifted.groupby(keys, sort=False).transform(
            lambda s: s.expanding(min_periods=1).mean()
        )

    return result.loc[original_index]
