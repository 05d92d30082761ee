"""
Probability calibration with an ordered fallback chain.

Strategies are tried in order and each either returns a fitted calibrator
or :class:`NotApplicable`:

1. Platt scaling on the logit (needs non-degenerate training labels/probs);
2. reuse of a previously persisted calibration (earlier week of the same
   season, then earlier seasons);
3. isotonic regression (PAV) on the available pairs;
4. shrinkage toward the league home-win prior (always applicable).

Every calibrated output is clipped to [0, 1]; the chosen state is hashed so
artifacts can be compared across runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, NamedTuple, Protocol, Sequence

import numpy as np
from sklearn.isotonic import IsotonicRegression

from nfl_forecast.config import CALIBRATION_CONFIG, CalibrationConfig
from nfl_forecast.records import CalibrationState
from nfl_forecast.utils.numeric import clip_probs, logit, sigmoid, stable_hash

log = logging.getLogger(__name__)

PriorLookup = Callable[[int, int], "dict[str, Any] | None"]


class NotApplicable(NamedTuple):
    strategy: str
    reason: str


class Calibrator(Protocol):
    kind: str

    def apply(self, probs: Any) -> np.ndarray: ...

    def params(self) -> dict[str, Any]: ...


@dataclass(frozen=True)
class PlattCalibrator:
    beta: float
    kind: str = "platt"

    def apply(self, probs: Any) -> np.ndarray:
        return clip_probs(sigmoid(logit(clip_probs(probs)) + self.beta))

    def params(self) -> dict[str, Any]:
        return {"beta": float(self.beta)}


@dataclass(frozen=True)
class IsotonicCalibrator:
    xs: tuple[float, ...]
    ys: tuple[float, ...]
    kind: str = "isotonic"

    def apply(self, probs: Any) -> np.ndarray:
        p = clip_probs(probs)
        if not self.xs:
            return p
        # linear interpolation between break points, end values outside the range
        return clip_probs(np.interp(p, np.asarray(self.xs), np.asarray(self.ys)))

    def params(self) -> dict[str, Any]:
        return {"points": [{"prob": float(x), "calibrated": float(y)} for x, y in zip(self.xs, self.ys)]}


@dataclass(frozen=True)
class LeaguePriorCalibrator:
    weight: float
    prior: float
    kind: str = "league_prior"

    def apply(self, probs: Any) -> np.ndarray:
        return clip_probs(self.weight * clip_probs(probs) + (1.0 - self.weight) * self.prior)

    def params(self) -> dict[str, Any]:
        return {"lambda": float(self.weight), "prior": float(self.prior)}


@dataclass
class CalibrationResult:
    calibrator: Calibrator
    state: CalibrationState

    def apply(self, probs: Any) -> np.ndarray:
        return self.calibrator.apply(probs)


# ---------------------------------------------------------------------------
# Fitting helpers
# ---------------------------------------------------------------------------


def degeneracy_reason(
    labels: Any,
    probs: Any | None = None,
    config: CalibrationConfig = CALIBRATION_CONFIG,
) -> str | None:
    """Why the sample cannot support Platt scaling, or None if it can."""
    y = np.asarray(labels, dtype=float)
    if y.size < config.min_labels:
        return f"fewer than {config.min_labels} labels"
    if np.unique(y).size < 2:
        return "single class"
    if float(np.var(y)) < config.variance_floor:
        return "label variance below floor"
    if probs is not None:
        p = np.asarray(probs, dtype=float)
        if p.size == y.size and float(np.var(p)) < config.variance_floor:
            return "probability variance below floor"
    return None


def fit_platt_beta(probs: Any, labels: Any, max_iter: int = 200, tol: float = 1e-6) -> float:
    """
    Fit the logit shift beta in sigmoid(logit(p) + beta) by Newton's method.

    Non-finite results collapse to 0 (identity).
    """
    z = logit(clip_probs(probs))
    y = np.asarray(labels, dtype=float)
    beta = 0.0
    for _ in range(max_iter):
        q = sigmoid(z + beta)
        grad = float(np.sum(q - y))
        if abs(grad) < tol:
            break
        hess = max(float(np.sum(q * (1.0 - q))), 1e-6)
        beta -= grad / hess
    return beta if np.isfinite(beta) else 0.0


def fit_isotonic(probs: Any, labels: Any, floor: float = 0.001, ceiling: float = 0.999) -> IsotonicCalibrator:
    """PAV fit with fitted values clamped to [floor, ceiling]; break points are kept for persistence."""
    iso = IsotonicRegression(y_min=floor, y_max=ceiling, out_of_bounds="clip", increasing=True)
    iso.fit(np.asarray(probs, dtype=float), np.asarray(labels, dtype=float))
    xs = tuple(float(x) for x in iso.X_thresholds_)
    ys = tuple(float(np.clip(y, floor, ceiling)) for y in iso.y_thresholds_)
    return IsotonicCalibrator(xs=xs, ys=ys)


def calibrator_from_payload(payload: dict[str, Any]) -> Calibrator | None:
    """
    Rebuild a calibrator from a persisted calibration block.

    Accepts a Platt ``beta`` or an isotonic point table (keys prob/x and
    calibrated/y). Anything else is not reusable.
    """
    if not isinstance(payload, dict):
        return None
    params = payload.get("params", payload)
    beta = params.get("beta")
    if beta is not None and np.isfinite(float(beta)):
        return PlattCalibrator(beta=float(beta))

    points = params.get("points")
    if isinstance(points, list) and points:
        pairs = []
        for point in points:
            x = point.get("prob", point.get("x"))
            y = point.get("calibrated", point.get("y"))
            if x is None or y is None:
                continue
            pairs.append((float(x), float(y)))
        if pairs:
            pairs.sort()
            return IsotonicCalibrator(xs=tuple(p[0] for p in pairs), ys=tuple(p[1] for p in pairs))
    return None


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class PlattStrategy:
    name = "platt"

    def attempt(self, probs: np.ndarray, labels: np.ndarray, engine: "CalibrationEngine", season: int, week: int):
        reason = degeneracy_reason(labels, probs, engine.config)
        if reason is not None:
            return NotApplicable(self.name, reason)
        beta = fit_platt_beta(probs, labels, engine.config.platt_max_iter, engine.config.platt_tol)
        return PlattCalibrator(beta=beta), CalibrationState(type="platt", params={"beta": beta}, source="fit")


class PriorArtifactStrategy:
    name = "prior_artifact"

    def attempt(self, probs: np.ndarray, labels: np.ndarray, engine: "CalibrationEngine", season: int, week: int):
        if engine.prior_lookup is None:
            return NotApplicable(self.name, "no artifact store configured")
        found = engine.prior_lookup(season, week)
        if not found:
            return NotApplicable(self.name, "no persisted calibration found")
        calibrator = calibrator_from_payload(found)
        if calibrator is None:
            return NotApplicable(self.name, f"persisted calibration of type {found.get('type')!r} not reusable")
        state = CalibrationState(
            type=calibrator.kind,
            params=calibrator.params(),
            source="prior",
            prior_season=found.get("season"),
            prior_week=found.get("week"),
        )
        return calibrator, state


class IsotonicStrategy:
    name = "isotonic"

    def attempt(self, probs: np.ndarray, labels: np.ndarray, engine: "CalibrationEngine", season: int, week: int):
        if labels.size == 0 or probs.size != labels.size:
            return NotApplicable(self.name, "no (prob, label) pairs")
        calibrator = fit_isotonic(probs, labels, engine.config.isotonic_floor, engine.config.isotonic_ceiling)
        return calibrator, CalibrationState(type="isotonic", params=calibrator.params(), source="fit")


class LeaguePriorStrategy:
    name = "league_prior"

    def attempt(self, probs: np.ndarray, labels: np.ndarray, engine: "CalibrationEngine", season: int, week: int):
        cfg = engine.config
        calibrator = LeaguePriorCalibrator(weight=cfg.league_lambda, prior=cfg.league_prior)
        return calibrator, CalibrationState(type="league_prior", params=calibrator.params(), source="fit")


DEFAULT_STRATEGIES = (PlattStrategy(), PriorArtifactStrategy(), IsotonicStrategy(), LeaguePriorStrategy())


class CalibrationEngine:
    """
    Resolve the calibration for one week by walking the strategy chain.

    Parameters
    ----------
    config:
        Calibration constants.
    prior_lookup:
        ``(season, week) -> dict | None`` returning the most recent persisted
        calibration strictly before (season, week), e.g.
        ``ArtifactStore.find_prior_calibration``.
    strategies:
        Override the chain (tests); the last strategy must always apply.
    """

    def __init__(
        self,
        config: CalibrationConfig | None = None,
        prior_lookup: PriorLookup | None = None,
        strategies: Sequence[Any] | None = None,
    ) -> None:
        self.config = config or CALIBRATION_CONFIG
        self.prior_lookup = prior_lookup
        self.strategies = tuple(strategies) if strategies is not None else DEFAULT_STRATEGIES

    def resolve(self, probs: Any, labels: Any, season: int, week: int) -> CalibrationResult:
        p = clip_probs(probs) if np.size(probs) else np.zeros(0)
        y = np.asarray(labels, dtype=float)

        skipped: list[str] = []
        for strategy in self.strategies:
            outcome = strategy.attempt(p, y, self, season, week)
            if isinstance(outcome, NotApplicable):
                skipped.append(f"{outcome.strategy}: {outcome.reason}")
                continue
            calibrator, state = outcome
            state.reason = "; ".join(skipped)
            state.hash = stable_hash(state.meta())
            if skipped:
                log.info("Calibration %s W%02d: %s (skipped %s)", season, week, state.type, state.reason)
            return CalibrationResult(calibrator=calibrator, state=state)

        raise RuntimeError("Calibration chain exhausted; the last strategy must always apply.")
