from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import Any, Sequence

import numpy as np
from sklearn.exceptions import ConvergenceWarning
from sklearn.neural_network import MLPClassifier

from nfl_forecast.errors import ModelTrainingError

log = logging.getLogger(__name__)


@dataclass
class NetworkCommittee:
    """
    Small feed-forward network trained once per seed; predictions are the
    mean over the committee.

    Training stops after a fixed iteration budget, so sklearn's convergence
    warnings are expected and silenced.
    """

    hidden: Sequence[int] = (32, 16)
    seeds: Sequence[int] = (11, 23, 37)
    max_iter: int = 300
    alpha: float = 1e-3
    members: list[MLPClassifier] = field(default_factory=list)

    def fit(self, X: np.ndarray, y: np.ndarray) -> "NetworkCommittee":
        X = np.asarray(X, dtype=float)
        y = np.asarray(y, dtype=int)
        if np.unique(y).size < 2:
            raise ModelTrainingError("network needs both outcomes in the training slice", rows=int(len(y)))

        self.members = []
        for seed in self.seeds:
            net = MLPClassifier(
                hidden_layer_sizes=tuple(self.hidden),
                activation="tanh",
                alpha=self.alpha,
                max_iter=self.max_iter,
                random_state=int(seed),
            )
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", category=ConvergenceWarning)
                net.fit(X, y)
            self.members.append(net)
        return self

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        X = np.asarray(X, dtype=float)
        if not self.members:
            return np.full(len(X), 0.5)
        stacked = np.vstack([net.predict_proba(X)[:, 1] for net in self.members])
        return stacked.mean(axis=0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "architecture": list(self.hidden),
            "activation": "tanh",
            "seeds": [int(s) for s in self.seeds],
            "members": [
                {
                    "coefs": [layer.tolist() for layer in net.coefs_],
                    "intercepts": [layer.tolist() for layer in net.intercepts_],
                }
                for net in self.members
            ],
        }
