from __future__ import annotations

import hashlib
import json
import math
from typing import Any

import numpy as np

EPS = 1e-12


def to_float(value: Any, default: float = 0.0) -> float:
    """Coerce scalars (including numeric strings and NaN) to a finite float."""
    if value is None:
        return default
    try:
        out = float(value)
    except (TypeError, ValueError):
        return default
    return out if math.isfinite(out) else default


def clip_probs(probs: Any) -> np.ndarray:
    arr = np.asarray(probs, dtype=float)
    arr = np.where(np.isfinite(arr), arr, 0.5)
    return np.clip(arr, 0.0, 1.0)


def sigmoid(z: Any) -> np.ndarray:
    z = np.clip(np.asarray(z, dtype=float), -500.0, 500.0)
    return 1.0 / (1.0 + np.exp(-z))


def logit(p: Any) -> np.ndarray:
    p = np.clip(np.asarray(p, dtype=float), EPS, 1.0 - EPS)
    return np.log(p / (1.0 - p))


def stable_hash(payload: Any) -> str:
    """sha256 over canonical (sorted-key) JSON."""
    text = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
