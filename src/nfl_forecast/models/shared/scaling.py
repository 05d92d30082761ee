from __future__ import annotations

from typing import Any

import numpy as np
from sklearn.preprocessing import StandardScaler


def fit_scaler(X: np.ndarray) -> StandardScaler:
    """
    Fit a StandardScaler on the training slice only.

    Zero-variance columns get scale 1 (sklearn's behaviour), so constant
    features standardize to 0 instead of dividing by zero.
    """
    scaler = StandardScaler()
    scaler.fit(np.asarray(X, dtype=float))
    return scaler


def scaler_to_dict(scaler: StandardScaler) -> dict[str, Any]:
    return {
        "mean": [float(v) for v in scaler.mean_],
        "scale": [float(v) for v in scaler.scale_],
    }

