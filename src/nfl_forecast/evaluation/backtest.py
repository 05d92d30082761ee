"""
Walk-forward backtest aggregation over weekly diagnostics.

Each week's diagnostics carry per-model metrics on that week's decided
games. Early weeks train on very few rows, so the first `burn_in` weeks of a
run are excluded from the aggregate.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Sequence

log = logging.getLogger(__name__)

DERIVED_OUTPUTS = ("blended", "calibrated")


def aggregate(weekly: Iterable[dict[str, Any]], burn_in: int = 4) -> dict[str, Any]:
    """
    Game-weighted mean log-loss / brier / accuracy per model across weeks.

    Parameters
    ----------
    weekly:
        Diagnostics documents in week order.
    burn_in:
        Number of leading weeks to ignore.
    """
    docs = sorted(weekly, key=lambda d: (d["season"], d["week"]))[burn_in:]
    totals: dict[str, dict[str, float]] = {}
    for doc in docs:
        for model, metrics in doc.get("metrics", {}).items():
            n = metrics.get("n") or 0
            if not n or metrics.get("log_loss") is None:
                continue
            acc = totals.setdefault(model, {"n": 0, "log_loss": 0.0, "brier": 0.0, "accuracy": 0.0})
            acc["n"] += n
            acc["log_loss"] += metrics["log_loss"] * n
            acc["brier"] += metrics["brier"] * n
            acc["accuracy"] += metrics["accuracy"] * n

    models = {
        name: {
            "n": int(acc["n"]),
            "log_loss": acc["log_loss"] / acc["n"],
            "brier": acc["brier"] / acc["n"],
            "accuracy": acc["accuracy"] / acc["n"],
        }
        for name, acc in totals.items()
    }
    return {"weeks": [int(d["week"]) for d in docs], "burn_in": burn_in, "models": models}


def blend_non_inferiority(
    summary: dict[str, Any],
    components: Sequence[str] | None = None,
    blended: str = "blended",
    tolerance: float = 0.01,
) -> dict[str, Any]:
    """
    Check that the blend's aggregate log-loss is within `tolerance` of the best component.

    Passes when blended <= min(component log-loss) * (1 + tolerance). By
    default every individual model in the summary is a component; the blend
    and its calibrated output are not. Returns ``passed=None`` when there is
    nothing to compare.
    """
    models = summary.get("models", {})
    if components is None:
        components = [name for name in models if name not in DERIVED_OUTPUTS]
    scores = {name: models[name]["log_loss"] for name in components if name in models}
    if blended not in models or not scores:
        return {"passed": None, "reason": "insufficient backtest data"}

    best_name = min(scores, key=scores.get)
    limit = scores[best_name] * (1.0 + tolerance)
    value = models[blended]["log_loss"]
    passed = value <= limit
    if not passed:
        log.warning("Blend log-loss %.4f exceeds %.4f (best component %s)", value, limit, best_name)
    return {
        "passed": bool(passed),
        "blended_log_loss": value,
        "best_component": best_name,
        "best_log_loss": scores[best_name],
        "limit": limit,
    }
