"""
Dataset catalog: where each logical dataset can be fetched from.

Release assets are tried compressed first, then plain CSV, then legacy
mirrors, then the nflreadpy library. Feed datasets (injuries, markets,
weather) are read from the local feeds directory, with an optional URL
template taken from the environment (``NFL_FORECAST_<NAME>_URL`` containing
``{season}``).
"""

from __future__ import annotations

import os
from pathlib import Path

from nfl_forecast.config import DATA_CONFIG
from nfl_forecast.data.loaders.nflreadpy_client import NflreadpyClient
from nfl_forecast.data.loaders.sources import Candidate, DatasetSpec

NFLVERSE_RELEASES = "https://github.com/nflverse/nflverse-data/releases/download"
NFLVERSE_RAW_MAIN = "https://raw.githubusercontent.com/nflverse/nflverse-data/main"
NFLVERSE_RAW_MASTER = "https://raw.githubusercontent.com/nflverse/nflverse-data/master"
NFLDATA_GAMES = "https://raw.githubusercontent.com/nflverse/nfldata/master/data/games.csv"

REQUIRED_DATASETS = ("schedules", "team_weekly")
OPTIONAL_DATASETS = ("player_weekly", "pbp", "injuries", "markets", "weather", "elo", "qbr")


def _release_pair(tag: str, stem: str) -> list[Candidate]:
    return [
        Candidate(f"release:{stem}.csv.gz", f"{NFLVERSE_RELEASES}/{tag}/{stem}.csv.gz"),
        Candidate(f"release:{stem}.csv", f"{NFLVERSE_RELEASES}/{tag}/{stem}.csv"),
    ]


def _feed_candidates(name: str, season: int | None, feeds_dir: Path) -> list[Candidate]:
    out = [
        Candidate(f"feed:{name}_{season}.csv", str(feeds_dir / f"{name}_{season}.csv")),
        Candidate(f"feed:{name}_{season}.json", str(feeds_dir / f"{name}_{season}.json"), fmt="json"),
    ]
    template = os.environ.get(f"NFL_FORECAST_{name.upper()}_URL")
    if template:
        fmt = "json" if ".json" in template else "csv"
        out.append(Candidate(f"remote:{name}", template.format(season=season), fmt=fmt))
    return out


def default_catalog(feeds_dir: Path | None = None, client: NflreadpyClient | None = None) -> dict[str, DatasetSpec]:
    """Build the catalog of every dataset the pipeline knows about."""
    feeds = feeds_dir or DATA_CONFIG.feeds_dir
    nflr = client or NflreadpyClient()

    specs = [
        DatasetSpec(
            name="schedules",
            candidates=lambda season: [
                *_release_pair("schedules", "games"),
                Candidate("mirror:nfldata/games.csv", NFLDATA_GAMES),
            ],
            required=True,
            seasonal=False,
            min_rows=200,
            library_loader=lambda season: nflr.load_schedules(None),
        ),
        DatasetSpec(
            name="team_weekly",
            candidates=lambda season: [
                *_release_pair("stats_team", f"stats_team_week_{season}"),
                Candidate(
                    "mirror:stats_team_week",
                    f"{NFLVERSE_RAW_MAIN}/data/stats_team/stats_team_week_{season}.csv",
                ),
            ],
            required=True,
            min_rows=2,
            library_loader=nflr.load_team_weekly,
        ),
        DatasetSpec(
            name="player_weekly",
            candidates=lambda season: _release_pair("stats_player", f"stats_player_week_{season}"),
            min_rows=10,
            library_loader=nflr.load_player_weekly,
        ),
        DatasetSpec(
            name="pbp",
            candidates=lambda season: _release_pair("pbp", f"play_by_play_{season}"),
            min_rows=100,
            library_loader=nflr.load_pbp,
        ),
        DatasetSpec(
            name="injuries",
            candidates=lambda season: [
                *_feed_candidates("injuries", season, feeds),
                *_release_pair("injuries", f"injuries_{season}"),
            ],
            library_loader=nflr.load_injuries,
        ),
        DatasetSpec(
            name="markets",
            candidates=lambda season: _feed_candidates("markets", season, feeds),
        ),
        DatasetSpec(
            name="weather",
            candidates=lambda season: _feed_candidates("weather", season, feeds),
        ),
        DatasetSpec(
            name="elo",
            candidates=lambda season: [
                Candidate("mirror:elo(main)", f"{NFLVERSE_RAW_MAIN}/data/elo/elo_{season}.csv"),
                Candidate("mirror:elo(master)", f"{NFLVERSE_RAW_MASTER}/data/elo/elo_{season}.csv"),
            ],
            min_rows=10,
        ),
        DatasetSpec(
            name="qbr",
            candidates=lambda season: [
                Candidate("release:qbr_week_level.csv", f"{NFLVERSE_RELEASES}/espn_data/qbr_week_level.csv"),
            ],
            seasonal=False,
            min_rows=10,
        ),
    ]
    return {spec.name: spec for spec in specs}
