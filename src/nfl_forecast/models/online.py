from __future__ import annotations

import logging
from typing import Any

import numpy as np
from sklearn.linear_model import SGDClassifier
from sklearn.preprocessing import StandardScaler

log = logging.getLogger(__name__)


class IncrementalLogistic:
    """
    Secondary logistic model updated week by week with ``partial_fit``.

    Unlike the per-week ensemble it keeps state across weeks of a run: each
    week only the newly labelled rows (those not seen in an earlier update)
    are fed in. Its probabilities are reported alongside the ensemble but
    never blended.
    """

    def __init__(self, alpha: float = 1e-3, random_state: int = 0) -> None:
        self.model = SGDClassifier(loss="log_loss", alpha=alpha, random_state=random_state)
        self.scaler = StandardScaler()
        self.seen_weeks: set[tuple[int, int]] = set()
        self.fitted = False

    def update(self, X: np.ndarray, y: np.ndarray, weeks: list[tuple[int, int]]) -> int:
        """Feed rows whose (season, week) was not used before; returns how many rows were used."""
        X = np.asarray(X, dtype=float)
        y = np.asarray(y, dtype=int)
        mask = np.array([wk not in self.seen_weeks for wk in weeks], dtype=bool)
        if not mask.any():
            return 0
        # running mean/variance, so the scale also evolves week by week
        self.scaler.partial_fit(X[mask])
        self.model.partial_fit(self.scaler.transform(X[mask]), y[mask], classes=np.array([0, 1]))
        self.seen_weeks.update(wk for wk, m in zip(weeks, mask) if m)
        self.fitted = True
        return int(mask.sum())

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        X = np.asarray(X, dtype=float)
        if not self.fitted:
            return np.full(len(X), 0.5)
        return self.model.predict_proba(self.scaler.transform(X))[:, 1]

    def to_dict(self) -> dict[str, Any]:
        if not self.fitted:
            return {"fitted": False}
        return {
            "fitted": True,
            "weights": [float(v) for v in self.model.coef_.ravel()],
            "intercept": float(self.model.intercept_[0]),
            "weeks_seen": len(self.seen_weeks),
        }
