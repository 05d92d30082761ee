from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

import numpy as np

from nfl_forecast.utils.numeric import sigmoid

log = logging.getLogger(__name__)


@dataclass
class BradleyTerryRatings:
    """
    Pairwise strength ratings with a home-field term.

    P(home wins) = sigmoid(r_home + h - r_away). Ratings are learned by
    repeated passes over the games in chronological order, nudging both
    teams after each outcome (a logistic-link gradient step with L2
    shrinkage toward 0). Teams never seen in training rate 0.
    """

    epochs: int = 30
    lr: float = 0.05
    l2: float = 1e-3
    ratings: dict[str, float] = field(default_factory=dict)
    home_advantage: float = 0.0

    def fit(self, home: Sequence[str], away: Sequence[str], home_win: Sequence[float]) -> "BradleyTerryRatings":
        y = np.asarray(home_win, dtype=float)
        if len(y) == 0:
            raise ValueError("Cannot fit ratings without games.")

        ratings: dict[str, float] = {t: 0.0 for t in list(home) + list(away)}
        h = 0.0
        for _ in range(self.epochs):
            for team_h, team_a, outcome in zip(home, away, y):
                p = float(sigmoid(ratings[team_h] + h - ratings[team_a]))
                g = outcome - p
                ratings[team_h] += self.lr * (g - self.l2 * ratings[team_h])
                ratings[team_a] += self.lr * (-g - self.l2 * ratings[team_a])
                h += self.lr * 0.1 * g

        self.ratings = ratings
        self.home_advantage = h
        log.debug("Ratings fitted for %d teams (home advantage %.3f)", len(ratings), h)
        return self

    def predict_home(self, home: Sequence[str], away: Sequence[str]) -> np.ndarray:
        diffs = [self.ratings.get(h, 0.0) + self.home_advantage - self.ratings.get(a, 0.0) for h, a in zip(home, away)]
        return sigmoid(np.asarray(diffs, dtype=float))

    def to_dict(self) -> dict[str, Any]:
        return {
            "ratings": {team: round(float(r), 6) for team, r in sorted(self.ratings.items())},
            "home_advantage": float(self.home_advantage),
            "epochs": self.epochs,
        }
