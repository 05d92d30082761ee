"""
Walk-forward weekly training and publication.

For a season the trainer loads every input once, builds the feature frame
once, then walks the weeks strictly in order. Each week:

    split -> ensemble -> blend -> calibrate -> predictions + explanations
          -> context -> diagnostics -> validate -> write

Nothing for a week is written until every stage of that week has succeeded.

Usage
-----
    trainer = WalkForwardTrainer()
    results = trainer.run(2024, start_week=2, end_week=10)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd

from nfl_forecast.artifacts.validator import SchemaValidator
from nfl_forecast.artifacts.writer import REUSABLE_CALIBRATIONS, ArtifactStore, ArtifactWriter, artifact_name
from nfl_forecast.config import (
    CALIBRATION_CONFIG,
    DATA_CONFIG,
    MODEL_CONFIG,
    CalibrationConfig,
    ModelConfig,
    WalkForwardConfig,
)
from nfl_forecast.data.context.context_builder import ContextBuilder
from nfl_forecast.data.feature_engineering.feature_builder import LABEL, FeatureBuilder, FeatureBuilderConfig
from nfl_forecast.data.inputs import SeasonInputs
from nfl_forecast.data.loaders.sources import SourceGateway
from nfl_forecast.evaluation import backtest
from nfl_forecast.evaluation.metrics import summarize
from nfl_forecast.evaluation.splits import walk_forward_split
from nfl_forecast.models.ensemble import ModelEnsemble, WeekModels, game_level
from nfl_forecast.models.shared.blend import choose_weight, choose_weights
from nfl_forecast.models.shared.calibration import CalibrationEngine, CalibrationResult
from nfl_forecast.records import PredictionRecord
from nfl_forecast.serving.explain import natural_language, top_drivers

log = logging.getLogger(__name__)


@dataclass
class WeekResult:
    season: int
    week: int
    predictions: list[PredictionRecord]
    artifacts: dict[str, Any]
    calibration: CalibrationResult
    weights: dict[str, float]
    train_rows: int
    written: dict[str, Any] = field(default_factory=dict)


def select_blend(train_probs: dict[str, np.ndarray], labels: np.ndarray, models: tuple[str, ...], step: float):
    """Blend weights over `models` chosen on the training slice."""
    if len(models) == 2:
        a, b = models
        w = choose_weight(labels, train_probs[a], train_probs[b], step)
        return {a: w, b: round(1.0 - w, 10)}
    return choose_weights(labels, {name: train_probs[name] for name in models}, step)


def apply_blend(probs: dict[str, np.ndarray], weights: dict[str, float]) -> np.ndarray:
    return sum(w * np.asarray(probs[name], dtype=float) for name, w in weights.items())


class WalkForwardTrainer:
    """
    Parameters
    ----------
    gateway:
        Source gateway used by :meth:`load_inputs`; built lazily if None.
    config:
        Week range and run switches.
    writer / store:
        Artifact output and prior-calibration lookup; both default to the
        configured artifacts directory.
    """

    def __init__(
        self,
        gateway: SourceGateway | None = None,
        config: WalkForwardConfig | None = None,
        model_config: ModelConfig | None = None,
        calibration_config: CalibrationConfig | None = None,
        writer: ArtifactWriter | None = None,
        store: ArtifactStore | None = None,
    ) -> None:
        self.gateway = gateway
        self.config = config or WalkForwardConfig()
        self.model_config = model_config or MODEL_CONFIG
        self.calibration_config = calibration_config or CALIBRATION_CONFIG
        self.validator = writer.validator if writer is not None else SchemaValidator()
        self.writer = writer or ArtifactWriter(DATA_CONFIG.artifacts_dir, self.validator, self.config.overwrite)
        self.store = store or ArtifactStore(self.writer.root, self.calibration_config.prior_lookback_seasons)
        # calibrations chosen earlier in this run, for runs that do not write artifacts
        self._run_calibrations: dict[tuple[int, int], dict[str, Any]] = {}

    # ------------- Inputs -------------

    def load_inputs(self, season: int) -> SeasonInputs:
        if self.gateway is None:
            self.gateway = SourceGateway()
        return SeasonInputs.load(
            self.gateway, season, include_prior_season=True, include_pbp=self.config.use_pbp_features
        )

    def prior_calibration(self, season: int, week: int) -> dict[str, Any] | None:
        earlier = [key for key in self._run_calibrations if key < (season, week)]
        if earlier:
            return self._run_calibrations[max(earlier)]
        return self.store.find_prior_calibration(season, week)

    # ------------- One week -------------

    def _predictions(
        self,
        test: pd.DataFrame,
        models: WeekModels,
        blended: np.ndarray,
        calibrated: np.ndarray,
    ) -> list[PredictionRecord]:
        per_model = {name: game_level(test, p) for name, p in models.test_probs.items()}
        blended_g = game_level(test, blended)
        calibrated_g = game_level(test, calibrated)

        home_rows = test[test["home"] == 1].drop_duplicates("game_id")
        records = []
        for idx, row in home_rows.iterrows():
            gid = row["game_id"]
            probs = {name: round(float(series[gid]), 4) for name, series in per_model.items()}
            text = natural_language(
                row.to_dict(),
                {"logistic": probs.get("logistic", 0.5), "tree": probs.get("tree", 0.5), "hybrid": float(blended_g[gid])},
                models.train_means,
            )
            label = row[LABEL]
            records.append(
                PredictionRecord(
                    game_id=gid,
                    season=int(row["season"]),
                    week=int(row["week"]),
                    home_team=row["team"],
                    away_team=row["opponent"],
                    probs=probs,
                    blended=round(float(blended_g[gid]), 4),
                    calibrated=round(float(calibrated_g[gid]), 4),
                    forecast=not bool(row["completed"]),
                    natural_language=text,
                    top_drivers=top_drivers(models.logistic, models.X_test[idx], models.feature_names),
                    actual_home_win=None if pd.isna(label) else int(label),
                )
            )
        return records

    @staticmethod
    def _metrics(records: list[PredictionRecord]) -> dict[str, dict[str, Any]]:
        decided = [r for r in records if r.actual_home_win is not None]
        if not decided:
            return {}
        y = np.array([r.actual_home_win for r in decided], dtype=float)
        out = {name: summarize(y, [r.probs[name] for r in decided]) for name in decided[0].probs}
        out["blended"] = summarize(y, [r.blended for r in decided])
        out["calibrated"] = summarize(y, [r.calibrated for r in decided])
        return out

    def run_week(
        self,
        features: pd.DataFrame,
        season: int,
        week: int,
        ensemble: ModelEnsemble,
        feature_names: list[str],
        context_builder: ContextBuilder | None = None,
    ) -> WeekResult | None:
        """Train, blend, calibrate and assemble the artifacts of one week; None when the week is skipped."""
        train, test = walk_forward_split(features, season, week, self.config.include_prior_season)
        if train.empty:
            log.info("%s W%02d: no labelled training rows; skipped", season, week)
            return None
        if test.empty:
            log.info("%s W%02d: no scheduled games; skipped", season, week)
            return None

        y_train = train[LABEL].to_numpy(dtype=float)
        log.info(
            "%s W%02d: train rows=%d pos=%d neg=%d, games=%d",
            season, week, len(train), int(y_train.sum()), int(len(y_train) - y_train.sum()), len(test) // 2,
        )

        models = ensemble.fit_predict(train, test, feature_names)

        cfg = self.model_config
        weights = select_blend(models.train_probs, y_train, tuple(cfg.blend_models), cfg.blend_step)
        engine = CalibrationEngine(self.calibration_config, prior_lookup=self.prior_calibration)
        calibration = engine.resolve(apply_blend(models.train_probs, weights), y_train, season, week)
        blended_test = apply_blend(models.test_probs, weights)
        calibrated_test = calibration.apply(blended_test)

        predictions = self._predictions(test, models, blended_test, calibrated_test)
        calibration_doc = calibration.state.to_dict()
        blend_doc = {"models": list(weights), "weights": weights, "step": cfg.blend_step}

        artifacts: dict[str, Any] = {
            "predictions": {
                "season": int(season),
                "week": int(week),
                "predictions": [p.to_dict() for p in predictions],
            },
            "model": {
                "season": int(season),
                "week": int(week),
                "feature_names": models.feature_names,
                "train_rows": int(len(train)),
                **models.to_dict(),
                "blend": blend_doc,
                "calibration": calibration_doc,
                "flags": models.flags,
            },
            "diagnostics": {
                "season": int(season),
                "week": int(week),
                "train_rows": int(len(train)),
                "test_rows": int(len(test)),
                "labelled_games": sum(p.actual_home_win is not None for p in predictions),
                "metrics": self._metrics(predictions),
                "calibration": calibration_doc,
                "blend": blend_doc,
                "flags": models.flags,
            },
        }
        if context_builder is not None:
            bundles = context_builder.build_context(season, week)
            games = context_builder.week_games(season, week)
            artifacts["context"] = {
                "season": int(season),
                "week": int(week),
                "historical": bool(len(games)) and bool(games["completed"].all()),
                "games": [b.to_dict() for b in bundles],
            }

        # critical contracts raise here, before anything is written
        for kind, payload in artifacts.items():
            self.validator.validate(kind, payload)

        if calibration.state.type in REUSABLE_CALIBRATIONS:
            self._run_calibrations[(season, week)] = {**calibration_doc, "season": season, "week": week}
        return WeekResult(
            season=season,
            week=week,
            predictions=predictions,
            artifacts=artifacts,
            calibration=calibration,
            weights=weights,
            train_rows=int(len(train)),
        )

    # ------------- Season -------------

    def week_range(self, features: pd.DataFrame, season: int, start_week: int | None, end_week: int | None) -> range:
        """Weeks to run: from `start_week` to `end_week`, capped at one week past the last decided week."""
        in_season = features[features["season"] == season]
        if in_season.empty:
            return range(0)
        last_scheduled = int(in_season["week"].max())
        decided = in_season.loc[in_season[LABEL].notna(), "week"]
        cap = min(last_scheduled, int(decided.max()) + 1) if len(decided) else min(last_scheduled, 1)
        start = start_week if start_week is not None else self.config.start_week
        end = end_week if end_week is not None else (self.config.end_week or cap)
        return range(int(start), int(min(end, last_scheduled)) + 1)

    def run(
        self,
        season: int,
        start_week: int | None = None,
        end_week: int | None = None,
        inputs: SeasonInputs | None = None,
    ) -> list[WeekResult]:
        inputs = inputs or self.load_inputs(season)
        self.validator.validate("data_sources", inputs.data_sources_bundle())

        builder = FeatureBuilder(FeatureBuilderConfig(use_pbp_features=self.config.use_pbp_features))
        features = builder.build_features(inputs, season)
        meta = builder.metadata(features)
        self.validator.validate("features_meta", meta)
        self.validator.validate("features_frame", features, meta=meta)

        context_builder = None
        if self.config.build_context:
            context_builder = ContextBuilder(inputs, base_games=builder.base_games, team_stats=builder.team_stats)

        if self.config.write_artifacts:
            self.writer.write_season(season, "data_sources", inputs.data_sources_bundle())
            self.writer.write_season(season, "features_meta", meta)

        ensemble = ModelEnsemble(self.model_config)
        index: dict[str, Any] = {"season": int(season), "weeks": []}
        summary: dict[str, Any] = {
            "season": int(season),
            "built_through_week": None,
            "feature_names": builder.feature_names,
            "weeks": [],
        }
        diagnostics: list[dict[str, Any]] = []
        results: list[WeekResult] = []

        for week in self.week_range(features, season, start_week, end_week):
            result = self.run_week(features, season, week, ensemble, builder.feature_names, context_builder)
            if result is None:
                continue
            results.append(result)
            diagnostics.append(result.artifacts["diagnostics"])

            metrics = result.artifacts["diagnostics"]["metrics"].get("calibrated", {})
            summary["weeks"].append(
                {
                    "week": int(week),
                    "train_rows": result.train_rows,
                    "games": len(result.predictions),
                    "forecast_games": sum(p.forecast for p in result.predictions),
                    "blend_weights": result.weights,
                    "calibration_type": result.calibration.state.type,
                    "log_loss": metrics.get("log_loss"),
                }
            )
            summary["built_through_week"] = int(week)
            summary["backtest"] = self._backtest(diagnostics)

            if self.config.write_artifacts:
                result.written = self.writer.write_week(season, week, result.artifacts)
                index["weeks"].append(
                    {
                        "week": int(week),
                        "predictions_file": artifact_name("predictions", season, week),
                        "model_file": artifact_name("model", season, week),
                        "context_file": artifact_name("context", season, week) if "context" in result.written else None,
                        "diagnostics_file": (
                            artifact_name("diagnostics", season, week) if "diagnostics" in result.written else None
                        ),
                    }
                )
                self.writer.write_season(season, "season_index", index)
                self.writer.write_season(season, "season_summary", summary)

        if self.config.write_artifacts and results:
            self.writer.write_current(season, results[-1].week)

        log.info("Season %s: %d weeks trained", season, len(results))
        return results

    def _backtest(self, diagnostics: list[dict[str, Any]]) -> dict[str, Any]:
        agg = backtest.aggregate(diagnostics, burn_in=self.config.backtest_burn_in)
        agg["non_inferiority"] = backtest.blend_non_inferiority(agg)
        return agg
