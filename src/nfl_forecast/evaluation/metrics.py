from __future__ import annotations

from typing import Any

import numpy as np
from sklearn.metrics import roc_auc_score

from nfl_forecast.utils.numeric import EPS


def _arrays(labels: Any, probs: Any) -> tuple[np.ndarray, np.ndarray]:
    y = np.asarray(labels, dtype=float)
    p = np.asarray(probs, dtype=float)
    if y.shape != p.shape:
        raise ValueError(f"labels and probs differ in shape: {y.shape} vs {p.shape}")
    return y, p


def log_loss(labels: Any, probs: Any, eps: float = EPS) -> float:
    """Mean binary log-loss with probabilities clipped to [eps, 1 - eps]."""
    y, p = _arrays(labels, probs)
    if y.size == 0:
        return float("nan")
    p = np.clip(p, eps, 1.0 - eps)
    return float(-np.mean(y * np.log(p) + (1.0 - y) * np.log(1.0 - p)))


def brier(labels: Any, probs: Any) -> float:
    y, p = _arrays(labels, probs)
    if y.size == 0:
        return float("nan")
    return float(np.mean((p - y) ** 2))


def accuracy(labels: Any, probs: Any, threshold: float = 0.5) -> float:
    y, p = _arrays(labels, probs)
    if y.size == 0:
        return float("nan")
    return float(np.mean((p >= threshold).astype(float) == y))


def auc(labels: Any, probs: Any) -> float | None:
    """ROC AUC, or None when only one class is present."""
    y, p = _arrays(labels, probs)
    if y.size == 0 or np.unique(y).size < 2:
        return None
    return float(roc_auc_score(y, p))


def calibration_bins(labels: Any, probs: Any, n_bins: int = 10) -> list[dict[str, Any]]:
    """Reliability table: per equal-width probability bin, count, mean prediction and observed rate."""
    y, p = _arrays(labels, probs)
    edges = np.linspace(0.0, 1.0, n_bins + 1)
    idx = np.clip(np.digitize(p, edges[1:-1], right=False), 0, n_bins - 1)
    bins = []
    for b in range(n_bins):
        mask = idx == b
        n = int(mask.sum())
        bins.append(
            {
                "lower": float(edges[b]),
                "upper": float(edges[b + 1]),
                "count": n,
                "mean_pred": float(p[mask].mean()) if n else None,
                "observed": float(y[mask].mean()) if n else None,
            }
        )
    return bins


def summarize(labels: Any, probs: Any) -> dict[str, Any]:
    """All scalar metrics for one probability vector."""
    y, p = _arrays(labels, probs)
    return {
        "n": int(y.size),
        "log_loss": log_loss(y, p) if y.size else None,
        "brier": brier(y, p) if y.size else None,
        "accuracy": accuracy(y, p) if y.size else None,
        "auc": auc(y, p),
    }
