"""
Betting-market transforms and the neutral market template.

Spreads are stored in book convention: ``home_spread`` is negative when the
home team is favored. The expected home margin is therefore ``-home_spread``.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any

import pandas as pd

# Points of expected margin per logistic unit
SPREAD_SCALE = 7.0


def american_odds_to_prob(odds: float | int | None) -> float | None:
    """
    Convert American moneyline odds to implied probability (including vig).

    Returns None for NaN / missing odds.
    """
    if odds is None or pd.isna(odds):
        return None
    odds = float(odds)
    if odds == 0:
        return None
    if odds < 0:
        return -odds / (-odds + 100.0)
    return 100.0 / (odds + 100.0)


def spread_to_prob(home_spread: float | None, scale: float = SPREAD_SCALE) -> float | None:
    """Home win probability implied by a book-convention spread: 1 / (1 + e^(-m/scale)), m = -spread."""
    if home_spread is None or pd.isna(home_spread):
        return None
    margin = -float(home_spread)
    return 1.0 / (1.0 + math.exp(-margin / scale))


def remove_vig(p_home: float | None, p_away: float | None) -> tuple[float | None, float | None]:
    """Normalize a pair of implied probabilities so they sum to one."""
    if p_home is None or p_away is None:
        return None, None
    total = p_home + p_away
    if total <= 0:
        return None, None
    return p_home / total, p_away / total


@dataclass(frozen=True)
class MarketContext:
    source: str
    home_spread: float | None = None
    total: float | None = None
    home_moneyline: float | None = None
    away_moneyline: float | None = None
    implied_home_prob_spread: float | None = None
    implied_home_prob_ml: float | None = None
    implied_away_prob_ml: float | None = None
    fair_home_prob: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


NEUTRAL_MARKET = MarketContext(source="neutral_template")


def _num(value: Any) -> float | None:
    if value is None or pd.isna(value):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def market_from_row(row: pd.Series | dict[str, Any], source: str = "feed") -> MarketContext:
    """Derive implied probabilities from a normalized market row (raw lines are kept)."""
    get = row.get
    spread = _num(get("home_spread"))
    ml_home = _num(get("home_moneyline"))
    ml_away = _num(get("away_moneyline"))
    p_home = american_odds_to_prob(ml_home)
    p_away = american_odds_to_prob(ml_away)
    fair_home, _ = remove_vig(p_home, p_away)
    return MarketContext(
        source=source,
        home_spread=spread,
        total=_num(get("total")),
        home_moneyline=ml_home,
        away_moneyline=ml_away,
        implied_home_prob_spread=spread_to_prob(spread),
        implied_home_prob_ml=p_home,
        implied_away_prob_ml=p_away,
        fair_home_prob=fair_home,
    )
