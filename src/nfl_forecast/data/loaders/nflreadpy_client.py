from __future__ import annotations

import logging

import pandas as pd

try:
    import nflreadpy as nflr
except ImportError as e:
    raise ImportError(
        "nflreadpy is required for the library fallback loaders.\n"
        "Install with `pip install nflreadpy` or add it to pyproject.toml."
    ) from e

log = logging.getLogger(__name__)


class NflreadpyClient:
    """
    Thin wrapper around nflreadpy that returns pandas DataFrames.

    Used by the source gateway as the last candidate for nflverse datasets,
    after the direct release/mirror URLs. nflreadpy returns Polars frames;
    they are converted with ``.to_pandas()`` (needs pyarrow).
    """

    @staticmethod
    def _to_pandas(frame: object, loader: str) -> pd.DataFrame:
        try:
            return frame.to_pandas()  # type: ignore[attr-defined]
        except AttributeError as e:
            raise TypeError(
                f"nflreadpy.{loader} did not return a Polars DataFrame as expected. "
                "Check nflreadpy version and docs."
            ) from e

    def load_schedules(self, season: int | None = None) -> pd.DataFrame:
        seasons = [season] if season is not None else True
        return self._to_pandas(nflr.load_schedules(seasons=seasons), "load_schedules")

    def load_team_weekly(self, season: int) -> pd.DataFrame:
        frame = nflr.load_team_stats(seasons=[season], summary_level="week")
        return self._to_pandas(frame, "load_team_stats")

    def load_player_weekly(self, season: int) -> pd.DataFrame:
        frame = nflr.load_player_stats(seasons=[season], summary_level="week")
        return self._to_pandas(frame, "load_player_stats")

    def load_pbp(self, season: int) -> pd.DataFrame:
        return self._to_pandas(nflr.load_pbp(seasons=[season]), "load_pbp")

    def load_injuries(self, season: int) -> pd.DataFrame:
        return self._to_pandas(nflr.load_injuries(seasons=[season]), "load_injuries")
