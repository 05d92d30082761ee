"""
Per-week ensemble training.

Each estimator is trained on the same standardized training slice and
scored on both the training rows (for blend selection and calibration) and
the forecast rows. A failing estimator never takes the week down: it is
replaced by a neutral 0.5 and recorded in ``flags``.

All probabilities here are team-perspective (one per feature row);
:func:`game_level` collapses a home/away pair into P(home wins).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

import numpy as np
import pandas as pd
from sklearn.preprocessing import StandardScaler

from nfl_forecast.config import MODEL_CONFIG, ModelConfig
from nfl_forecast.data.feature_engineering.feature_builder import LABEL
from nfl_forecast.models.logistic import LogisticGD
from nfl_forecast.models.network import NetworkCommittee
from nfl_forecast.models.online import IncrementalLogistic
from nfl_forecast.models.rating import BradleyTerryRatings
from nfl_forecast.models.shared.scaling import fit_scaler, scaler_to_dict
from nfl_forecast.models.tree import FrequencyTree
from nfl_forecast.utils.numeric import clip_probs

log = logging.getLogger(__name__)

MODEL_NAMES = ("logistic", "tree", "bt", "ann")
ONLINE_MODEL = "online"

FitPredict = Callable[[], "tuple[Any, np.ndarray, np.ndarray]"]


def game_level(rows: pd.DataFrame, probs: Any) -> pd.Series:
    """
    P(home wins) per game_id from team-perspective probabilities.

    p_home = (p(home row) + 1 - p(away row)) / 2; a game with only its home
    row falls back to that row.
    """
    frame = pd.DataFrame(
        {"game_id": rows["game_id"].to_numpy(), "home": rows["home"].to_numpy(), "p": clip_probs(probs)}
    )
    home = frame[frame["home"] == 1].drop_duplicates("game_id").set_index("game_id")["p"]
    away = frame[frame["home"] == 0].drop_duplicates("game_id").set_index("game_id")["p"]
    combined = (home + 1.0 - away.reindex(home.index)) / 2.0
    return combined.fillna(home)


def _home_away(rows: pd.DataFrame) -> tuple[list[str], list[str]]:
    is_home = rows["home"].to_numpy() == 1
    team = rows["team"].to_numpy()
    opp = rows["opponent"].to_numpy()
    return list(np.where(is_home, team, opp)), list(np.where(is_home, opp, team))


def _bt_row_probs(bt: BradleyTerryRatings, rows: pd.DataFrame) -> np.ndarray:
    """Team-perspective BT probabilities: P(home) on home rows, 1 - P(home) on away rows."""
    if rows.empty:
        return np.zeros(0)
    home, away = _home_away(rows)
    p_home = bt.predict_home(home, away)
    return np.where(rows["home"].to_numpy() == 1, p_home, 1.0 - p_home)


@dataclass
class WeekModels:
    """
    Everything trained for one week.

    Attributes
    ----------
    train_probs, test_probs:
        Team-perspective probabilities per model on the training and forecast
        rows (0.5 for a flagged model).
    flags:
        ``{"model": name, "error": message}`` for every estimator that failed.
    X_test:
        Standardized forecast rows, used for driver attribution.
    train_means:
        Unscaled feature means of the training slice.
    """

    feature_names: list[str]
    scaler: StandardScaler
    models: dict[str, Any]
    train_probs: dict[str, np.ndarray]
    test_probs: dict[str, np.ndarray]
    flags: list[dict[str, str]] = field(default_factory=list)
    X_test: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))
    train_means: dict[str, float] = field(default_factory=dict)

    @property
    def logistic(self) -> LogisticGD | None:
        return self.models.get("logistic")

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"scaler": scaler_to_dict(self.scaler)}
        for name in (*MODEL_NAMES, ONLINE_MODEL):
            model = self.models.get(name)
            out[name] = model.to_dict() if model is not None else None
        return out


class ModelEnsemble:
    """
    Train the per-week estimators.

    The logistic, tree and network models are refitted from scratch every
    week. The incremental logistic model keeps its state across calls on
    the same ensemble instance (one instance per walk-forward run).
    """

    def __init__(self, config: ModelConfig | None = None) -> None:
        self.config = config or MODEL_CONFIG
        self.online = IncrementalLogistic() if self.config.use_online_logistic else None

    def _guarded(self, name: str, fit_predict: FitPredict, n_train: int, n_test: int, flags: list[dict[str, str]]):
        try:
            model, p_train, p_test = fit_predict()
        except Exception as exc:  # noqa: BLE001 - one estimator must not abort the week
            log.warning("Model %s failed: %s: %s; using neutral 0.5", name, type(exc).__name__, exc)
            flags.append({"model": name, "error": f"{type(exc).__name__}: {exc}"})
            return None, np.full(n_train, 0.5), np.full(n_test, 0.5)
        return model, clip_probs(p_train), clip_probs(p_test)

    def fit_predict(self, train: pd.DataFrame, test: pd.DataFrame, feature_names: list[str]) -> WeekModels:
        """
        Fit every estimator on `train` and score `train` and `test`.

        Parameters
        ----------
        train:
            Labelled feature rows strictly before the forecast week.
        test:
            Feature rows of the forecast week.
        feature_names:
            Ordered feature columns.
        """
        if train.empty:
            raise ValueError("Cannot train the ensemble on an empty training slice.")
        cfg = self.config

        X_train_raw = train[feature_names].to_numpy(dtype=float)
        X_test_raw = test[feature_names].to_numpy(dtype=float) if len(test) else np.zeros((0, len(feature_names)))
        y_train = train[LABEL].to_numpy(dtype=float)

        scaler = fit_scaler(X_train_raw)
        X_train = scaler.transform(X_train_raw)
        X_test = scaler.transform(X_test_raw) if len(X_test_raw) else X_test_raw

        n_train, n_test = len(X_train), len(X_test)
        flags: list[dict[str, str]] = []
        models: dict[str, Any] = {}
        train_probs: dict[str, np.ndarray] = {}
        test_probs: dict[str, np.ndarray] = {}

        def fit_logistic():
            model = LogisticGD(steps=cfg.logistic_steps, lr=cfg.logistic_lr, l2=cfg.logistic_l2).fit(X_train, y_train)
            return model, model.predict_proba(X_train), model.predict_proba(X_test)

        def fit_tree():
            model = FrequencyTree(
                max_depth=cfg.tree_max_depth, min_samples_split=cfg.tree_min_samples_split
            ).fit(X_train, y_train)
            return model, model.predict_proba(X_train), model.predict_proba(X_test)

        def fit_bt():
            home_rows = train[train["home"] == 1]
            home, away = _home_away(home_rows)
            model = BradleyTerryRatings(epochs=cfg.bt_epochs, lr=cfg.bt_lr, l2=cfg.bt_l2).fit(
                home, away, home_rows[LABEL].to_numpy(dtype=float)
            )
            return model, _bt_row_probs(model, train), _bt_row_probs(model, test)

        def fit_ann():
            model = NetworkCommittee(
                hidden=cfg.ann_hidden, seeds=cfg.ann_seeds, max_iter=cfg.ann_max_iter, alpha=cfg.ann_alpha
            ).fit(X_train, y_train)
            return model, model.predict_proba(X_train), model.predict_proba(X_test)

        steps = {"logistic": fit_logistic, "tree": fit_tree, "bt": fit_bt, "ann": fit_ann}
        for name in MODEL_NAMES:
            models[name], train_probs[name], test_probs[name] = self._guarded(
                name, steps[name], n_train, n_test, flags
            )

        if self.online is not None:
            online = self.online

            def fit_online():
                weeks = list(zip(train["season"].astype(int), train["week"].astype(int)))
                used = online.update(X_train_raw, y_train, weeks)
                log.debug("Incremental logistic consumed %d new rows", used)
                return online, online.predict_proba(X_train_raw), online.predict_proba(X_test_raw)

            models[ONLINE_MODEL], train_probs[ONLINE_MODEL], test_probs[ONLINE_MODEL] = self._guarded(
                ONLINE_MODEL, fit_online, n_train, n_test, flags
            )

        return WeekModels(
            feature_names=list(feature_names),
            scaler=scaler,
            models=models,
            train_probs=train_probs,
            test_probs=test_probs,
            flags=flags,
            X_test=X_test,
            train_means={name: float(v) for name, v in zip(feature_names, X_train_raw.mean(axis=0))},
        )
