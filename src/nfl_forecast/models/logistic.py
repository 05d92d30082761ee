from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from nfl_forecast.utils.numeric import sigmoid

log = logging.getLogger(__name__)


@dataclass
class LogisticGD:
    """
    Logistic regression fitted by full-batch gradient descent with L2.

    Expects standardized features. The step count is fixed so a week's fit
    is deterministic and bounded. When the training labels contain a single
    class the model degenerates to a prior-only intercept with zero weights.
    """

    steps: int = 3500
    lr: float = 4e-3
    l2: float = 2e-4
    weights: np.ndarray = field(default_factory=lambda: np.zeros(0))
    intercept: float = 0.0
    prior_only: bool = False

    def fit(self, X: np.ndarray, y: np.ndarray) -> "LogisticGD":
        X = np.asarray(X, dtype=float)
        y = np.asarray(y, dtype=float)
        n, d = X.shape
        if n == 0:
            raise ValueError("Cannot fit logistic regression on an empty training slice.")

        self.weights = np.zeros(d)
        rate = float(y.mean())
        if np.unique(y).size < 2:
            self.intercept = float(np.log((rate + 1e-9) / (1.0 - rate + 1e-9)))
            self.prior_only = True
            log.debug("Single-class training slice; prior-only intercept %.3f", self.intercept)
            return self

        w = np.zeros(d)
        b = 0.0
        for _ in range(self.steps):
            err = sigmoid(X @ w + b) - y
            grad_w = X.T @ err / n + self.l2 * w
            grad_b = float(err.mean())
            w -= self.lr * grad_w
            b -= self.lr * grad_b

        self.weights = w
        self.intercept = b
        self.prior_only = False
        return self

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        X = np.asarray(X, dtype=float)
        if self.weights.size == 0:
            return sigmoid(np.full(len(X), self.intercept))
        return sigmoid(X @ self.weights + self.intercept)

    def contributions(self, x: np.ndarray) -> np.ndarray:
        """Per-feature additive contribution (weight times standardized value) to the logit."""
        return np.asarray(x, dtype=float) * self.weights

    def to_dict(self) -> dict[str, Any]:
        return {
            "weights": [float(v) for v in self.weights],
            "intercept": float(self.intercept),
            "prior_only": self.prior_only,
            "steps": self.steps,
            "lr": self.lr,
            "l2": self.l2,
        }
