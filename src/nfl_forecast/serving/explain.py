"""
Plain-language explanations for published forecasts.

The summary quotes the per-model probabilities, then how the team's
season-to-date profile compares with the training-slice average, home
field, and any rest edge of two days or more. Drivers are the features with
the largest absolute logistic contribution (weight times standardized value).
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

import numpy as np

from nfl_forecast.models.logistic import LogisticGD

# (feature, lower is better, label)
DEVIATION_FEATURES = (
    ("turnover_diff_s2d", False, "Turnover differential"),
    ("off_yds_s2d", False, "Offensive total yards"),
    ("def_yds_s2d", True, "Yards allowed"),
)

REST_EDGE_DAYS = 2


def _pct(p: float) -> str:
    return f"{p * 100:.1f}%"


def natural_language(
    row: Mapping[str, Any],
    probs: Mapping[str, float],
    means: Mapping[str, float],
) -> str:
    """
    Parameters
    ----------
    row:
        The home team's feature row.
    probs:
        P(home wins) for ``logistic``, ``tree`` and ``hybrid`` (the blend).
    means:
        Training-slice feature means.
    """
    head = f"Logistic: {_pct(probs['logistic'])}. Tree: {_pct(probs['tree'])}. Hybrid: {_pct(probs['hybrid'])}."
    lines = [head]
    for key, low_is_good, label in DEVIATION_FEATURES:
        value, mean = row.get(key), means.get(key)
        if value is None or mean is None or not (np.isfinite(value) and np.isfinite(mean)):
            continue
        diff = float(value) - float(mean)
        direction = "higher" if diff >= 0 else "lower"
        good = diff < 0 if low_is_good else diff > 0
        lines.append(
            f"{label} is {direction} than league average by {abs(diff):.1f} ({'good' if good else 'needs attention'})."
        )
    if row.get("home"):
        lines.append("Home-field advantage applies.")
    rest = row.get("rest_diff")
    if rest is not None and np.isfinite(rest) and abs(rest) >= REST_EDGE_DAYS:
        lines.append(f"Rest edge: {'+' if rest >= 0 else ''}{rest:g} day(s).")
    return " ".join(lines)


def top_drivers(
    model: LogisticGD | None,
    x_scaled: np.ndarray,
    feature_names: Sequence[str],
    k: int = 3,
) -> list[dict[str, Any]]:
    """The k features pushing the logistic logit hardest, either way."""
    if model is None or model.weights.size == 0 or not np.any(model.weights):
        return []
    contrib = model.contributions(x_scaled)
    order = np.argsort(-np.abs(contrib), kind="stable")[:k]
    return [
        {
            "feature": feature_names[i],
            "contribution": round(float(contrib[i]), 4),
            "direction": "toward home" if contrib[i] >= 0 else "toward away",
        }
        for i in order
    ]
