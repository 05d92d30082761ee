"""
Blend-weight selection on the training slice.

The weight grid is walked in increasing order and only a strictly lower
log-loss replaces the incumbent, so ties resolve to the smallest weight.
"""

from __future__ import annotations

import logging
from itertools import product
from typing import Mapping

import numpy as np

from nfl_forecast.evaluation.metrics import log_loss

log = logging.getLogger(__name__)


def weight_grid(step: float = 0.05) -> np.ndarray:
    n = int(round(1.0 / step))
    return np.round(np.linspace(0.0, 1.0, n + 1), 10)


def blend(probs_a: np.ndarray, probs_b: np.ndarray, weight: float) -> np.ndarray:
    """weight * a + (1 - weight) * b."""
    return weight * np.asarray(probs_a, dtype=float) + (1.0 - weight) * np.asarray(probs_b, dtype=float)


def choose_weight(labels: np.ndarray, probs_a: np.ndarray, probs_b: np.ndarray, step: float = 0.05) -> float:
    """
    Weight on model A minimizing training log-loss of the two-model blend.

    Returns 0.5 when there are no labels to score against.
    """
    labels = np.asarray(labels, dtype=float)
    if labels.size == 0:
        log.warning("No training labels for blend selection; using equal weights")
        return 0.5

    best_w = 0.0
    best_loss = float("inf")
    for w in weight_grid(step):
        loss = log_loss(labels, blend(probs_a, probs_b, w))
        if loss < best_loss:
            best_loss = loss
            best_w = float(w)
    return best_w


def choose_weights(labels: np.ndarray, probs: Mapping[str, np.ndarray], step: float = 0.05) -> dict[str, float]:
    """
    Simplex-grid generalization of :func:`choose_weight` to k models.

    Weight vectors are visited in lexicographic order of the grid, so ties
    resolve to the first vector seen.
    """
    names = list(probs)
    if len(names) == 1:
        return {names[0]: 1.0}
    labels = np.asarray(labels, dtype=float)
    if labels.size == 0:
        return {name: 1.0 / len(names) for name in names}

    n = int(round(1.0 / step))
    stacked = np.vstack([np.asarray(probs[name], dtype=float) for name in names])
    best: tuple[float, ...] = tuple([1.0 / len(names)] * len(names))
    best_loss = float("inf")
    for head in product(range(n + 1), repeat=len(names) - 1):
        rest = n - sum(head)
        if rest < 0:
            continue
        weights = np.array([*head, rest], dtype=float) / n
        loss = log_loss(labels, weights @ stacked)
        if loss < best_loss:
            best_loss = loss
            best = tuple(float(w) for w in weights)
    return dict(zip(names, best))
