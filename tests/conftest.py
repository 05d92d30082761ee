from __future__ import annotations

import numpy as np
import pandas as pd
import pytest
import requests

from nfl_forecast.config import ModelConfig
from nfl_forecast.data.inputs import SeasonInputs
from nfl_forecast.data.normalize import normalize_frame

TEAMS = ["ARI", "BAL", "CHI", "DAL", "DEN", "GB", "KC", "MIA"]
STRENGTH = {"ARI": -2.0, "BAL": 2.5, "CHI": -1.0, "DAL": 1.5, "DEN": -1.5, "GB": 1.0, "KC": 3.0, "MIA": 0.0}


# ---------------------------------------------------------------------------
# Synthetic mini-league (8 teams, round-robin weeks)
# ---------------------------------------------------------------------------


def _pairings(week: int) -> list[tuple[str, str]]:
    """Circle-method round robin; home side alternates by week and slot."""
    n = len(TEAMS)
    rest = TEAMS[1:]
    r = (week - 1) % (n - 1)
    lineup = [TEAMS[0]] + rest[r:] + rest[:r]
    pairs = [(lineup[i], lineup[n - 1 - i]) for i in range(n // 2)]
    return [(a, b) if (week + i) % 2 else (b, a) for i, (a, b) in enumerate(pairs)]


def make_league(
    season: int = 2023,
    weeks: int = 8,
    played_weeks: int | None = None,
    seed: int = 7,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Raw (un-normalized, nflverse-style) schedules and team-week stats.

    Stronger teams gain more yards and win more often. Weeks after
    `played_weeks` are scheduled but unplayed (no scores, no team stats).
    """
    rng = np.random.default_rng(seed + season)
    played = weeks if played_weeks is None else played_weeks
    start = pd.Timestamp(f"{season}-09-10")

    schedule_rows, weekly_rows = [], []
    for week in range(1, weeks + 1):
        gameday = (start + pd.Timedelta(days=7 * (week - 1))).strftime("%Y-%m-%d")
        for home, away in _pairings(week):
            edge = STRENGTH[home] - STRENGTH[away]
            row = {
                "season": season,
                "week": week,
                "gameday": gameday,
                "home_team": home,
                "away_team": away,
                "game_type": "REG",
                "roof": "outdoors",
                "surface": "grass",
                "spread_line": round(3.0 * edge + 2.0, 1),
                "home_score": np.nan,
                "away_score": np.nan,
            }
            if week <= played:
                home_pts = int(max(0, 22 + 3 * edge + rng.integers(-7, 8)))
                away_pts = int(max(0, 20 - 3 * edge + rng.integers(-7, 8)))
                if home_pts == away_pts:
                    home_pts += 3
                row["home_score"], row["away_score"] = home_pts, away_pts

                for team, opp, sign in ((home, away, 1.0), (away, home, -1.0)):
                    yards = int(330 + 25 * sign * edge + rng.integers(-40, 41))
                    weekly_rows.append(
                        {
                            "season": season,
                            "week": week,
                            "recent_team": team,
                            "opponent_team": opp,
                            "season_type": "REG",
                            "passing_yards": round(yards * 0.62),
                            "rushing_yards": yards - round(yards * 0.62),
                            "passing_interceptions": int(rng.integers(0, 3)),
                            "sack_fumbles_lost": int(rng.integers(0, 2)),
                            "third_down_converted": int(rng.integers(3, 8)),
                            "third_down_attempts": 13,
                            "red_zone_tds": int(rng.integers(1, 4)),
                            "red_zone_attempts": 4,
                        }
                    )
            schedule_rows.append(row)

    return pd.DataFrame(schedule_rows), pd.DataFrame(weekly_rows)


def make_inputs(season: int = 2023, weeks: int = 8, played_weeks: int | None = None, **frames) -> SeasonInputs:
    """Normalized SeasonInputs for one synthetic season (frames as the gateway would return them)."""
    schedules, weekly = make_league(season, weeks, played_weeks)
    return SeasonInputs(
        season=season,
        schedules=normalize_frame(schedules, "schedules"),
        team_weekly=normalize_frame(weekly, "team_weekly"),
        **frames,
    )


@pytest.fixture
def mini_inputs() -> SeasonInputs:
    """2023 season: 8 weeks scheduled, 6 played."""
    return make_inputs(2023, weeks=8, played_weeks=6)


@pytest.fixture
def fast_model_config() -> ModelConfig:
    return ModelConfig(
        logistic_steps=400,
        bt_epochs=10,
        ann_hidden=(8,),
        ann_seeds=(1, 2),
        ann_max_iter=80,
    )


# ---------------------------------------------------------------------------
# HTTP fakes for the source gateway
# ---------------------------------------------------------------------------


class FakeResponse:
    def __init__(self, status_code: int = 200, content: bytes = b"") -> None:
        self.status_code = status_code
        self.content = content

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


class FakeSession:
    """
    Scripted stand-in for ``requests.Session``.

    `routes` maps a URL to a list of outcomes consumed in order; an outcome
    is a FakeResponse or an exception instance to raise. The last outcome
    repeats once the list is exhausted. Unknown URLs answer 404.
    """

    def __init__(self, routes: dict[str, list] | None = None) -> None:
        self.routes = {url: list(outcomes) for url, outcomes in (routes or {}).items()}
        self.calls: list[str] = []

    def get(self, url: str, headers=None, timeout=None):
        self.calls.append(url)
        outcomes = self.routes.get(url)
        if not outcomes:
            return FakeResponse(404)
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def no_sleep():
    waits: list[float] = []
    return waits.append, waits
