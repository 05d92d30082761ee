import json

import numpy as np
import pandas as pd
import pytest

from nfl_forecast.artifacts.writer import ArtifactStore, ArtifactWriter
from nfl_forecast.config import WalkForwardConfig
from nfl_forecast.data.feature_engineering.feature_builder import FEATURE_NAMES, LABEL, FeatureBuilder
from nfl_forecast.errors import ArtifactWriteError, LeakageError
from nfl_forecast.evaluation.backtest import aggregate, blend_non_inferiority
from nfl_forecast.evaluation.metrics import brier, calibration_bins, log_loss, summarize
from nfl_forecast.evaluation.splits import assert_no_leakage, walk_forward_split
from nfl_forecast.models.logistic import LogisticGD
from nfl_forecast.serving.explain import natural_language, top_drivers
from nfl_forecast.serving.pipeline import WalkForwardTrainer, apply_blend, select_blend


def _make_trainer(tmp_path, fast_model_config, **config):
    writer = ArtifactWriter(tmp_path)
    return WalkForwardTrainer(
        config=WalkForwardConfig(**config),
        model_config=fast_model_config,
        writer=writer,
        store=ArtifactStore(tmp_path),
    )


def _make_diag(week, logistic, tree, blended, n=4):
    def m(ll):
        return {"n": n, "log_loss": ll, "brier": ll / 3, "accuracy": 0.5}

    return {"season": 2023, "week": week, "metrics": {"logistic": m(logistic), "tree": m(tree), "blended": m(blended)}}


# ---------------------------------------------------------------------------
# Splits
# ---------------------------------------------------------------------------


def test_split_trains_on_prior_weeks_only(mini_inputs):
    features = FeatureBuilder().build_features(mini_inputs)
    train, test = walk_forward_split(features, 2023, 4)

    assert set(train["week"]) == {1, 2, 3}
    assert set(test["week"]) == {4}
    assert len(test) == 8
    assert train[LABEL].notna().all()


def test_split_excludes_unlabelled_rows(mini_inputs):
    features = FeatureBuilder().build_features(mini_inputs)
    train, test = walk_forward_split(features, 2023, 8)

    assert train["week"].max() == 6
    assert test[LABEL].isna().all()


def test_leakage_guard_names_offending_weeks():
    train = pd.DataFrame({"season": [2023, 2023, 2023], "week": [1, 5, 6]})

    assert_no_leakage(train[train["week"] < 5], 2023, 5)
    with pytest.raises(LeakageError) as excinfo:
        assert_no_leakage(train, 2023, 5)
    assert excinfo.value.context["offending_periods"] == [(2023, 5), (2023, 6)]


# ---------------------------------------------------------------------------
# Metrics / backtest
# ---------------------------------------------------------------------------


def test_metrics_basics():
    y = np.array([1.0, 0.0])
    assert log_loss(y, [0.5, 0.5]) == pytest.approx(np.log(2))
    assert brier(y, [1.0, 0.0]) == 0.0
    assert summarize(y, [0.8, 0.3])["accuracy"] == 1.0
    assert summarize([1.0, 1.0], [0.8, 0.3])["auc"] is None
    bins = calibration_bins(y, [0.95, 0.05], n_bins=10)
    assert bins[9]["count"] == 1 and bins[0]["observed"] == 0.0


def test_backtest_skips_burn_in_and_weights_by_games():
    weekly = [_make_diag(w, 0.70, 0.72, 0.69) for w in range(2, 6)]
    weekly.append(_make_diag(6, 0.50, 0.60, 0.52, n=8))
    summary = aggregate(weekly, burn_in=2)

    assert summary["weeks"] == [4, 5, 6]
    assert summary["models"]["logistic"]["n"] == 16
    assert summary["models"]["logistic"]["log_loss"] == pytest.approx((0.70 * 8 + 0.50 * 8) / 16)


def test_blend_non_inferiority():
    summary = aggregate([_make_diag(5, 0.60, 0.65, 0.605)], burn_in=0)
    check = blend_non_inferiority(summary)
    assert check["passed"] is True
    assert check["best_component"] == "logistic"

    worse = aggregate([_make_diag(5, 0.60, 0.65, 0.62)], burn_in=0)
    assert blend_non_inferiority(worse)["passed"] is False
    assert blend_non_inferiority({"models": {}})["passed"] is None


def test_non_inferiority_compares_against_every_individual_model():
    doc = _make_diag(5, 0.60, 0.65, 0.605)
    doc["metrics"]["bt"] = {"n": 4, "log_loss": 0.50, "brier": 0.17, "accuracy": 0.75}
    doc["metrics"]["calibrated"] = {"n": 4, "log_loss": 0.40, "brier": 0.13, "accuracy": 0.75}
    summary = aggregate([doc], burn_in=0)

    check = blend_non_inferiority(summary)
    assert check["passed"] is False
    assert check["best_component"] == "bt"
    assert blend_non_inferiority(summary, components=("logistic", "tree"))["passed"] is True


# ---------------------------------------------------------------------------
# Explanations
# ---------------------------------------------------------------------------


def test_natural_language_summary():
    row = {"home": 1.0, "turnover_diff_s2d": 1.0, "off_yds_s2d": 300.0, "def_yds_s2d": 310.0, "rest_diff": 3.0}
    means = {"turnover_diff_s2d": 0.0, "off_yds_s2d": 330.0, "def_yds_s2d": 330.0}
    text = natural_language(row, {"logistic": 0.612, "tree": 0.5, "hybrid": 0.58}, means)

    assert text.startswith("Logistic: 61.2%. Tree: 50.0%. Hybrid: 58.0%.")
    assert "Turnover differential is higher than league average by 1.0 (good)." in text
    assert "Offensive total yards is lower than league average by 30.0 (needs attention)." in text
    assert "Yards allowed is lower than league average by 20.0 (good)." in text
    assert "Home-field advantage applies." in text
    assert text.endswith("Rest edge: +3 day(s).")


def test_small_rest_gap_is_not_mentioned():
    text = natural_language({"home": 0.0, "rest_diff": 1.0}, {"logistic": 0.4, "tree": 0.4, "hybrid": 0.4}, {})
    assert "Rest edge" not in text
    assert "Home-field" not in text


def test_top_drivers_rank_by_absolute_contribution():
    model = LogisticGD()
    model.weights = np.array([0.5, -2.0, 0.1])
    drivers = top_drivers(model, np.array([1.0, 1.0, 1.0]), ["a", "b", "c"], k=2)

    assert [d["feature"] for d in drivers] == ["b", "a"]
    assert drivers[0]["direction"] == "toward away"
    assert top_drivers(None, np.zeros(3), ["a", "b", "c"]) == []


# ---------------------------------------------------------------------------
# Blend helpers
# ---------------------------------------------------------------------------


def test_select_blend_two_and_three_models():
    labels = np.array([1.0, 0.0, 1.0, 0.0])
    probs = {"logistic": np.array([0.9, 0.1, 0.8, 0.2]), "tree": np.full(4, 0.5), "bt": np.full(4, 0.5)}

    two = select_blend(probs, labels, ("logistic", "tree"), 0.05)
    assert two == {"logistic": 1.0, "tree": 0.0}
    three = select_blend(probs, labels, ("logistic", "tree", "bt"), 0.25)
    assert sum(three.values()) == pytest.approx(1.0)
    np.testing.assert_allclose(apply_blend(probs, two), probs["logistic"])


# ---------------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------------


def test_walk_forward_season_end_to_end(mini_inputs, fast_model_config, tmp_path):
    trainer = _make_trainer(tmp_path, fast_model_config)
    results = trainer.run(2023, inputs=mini_inputs)

    # weeks 2..6 are backtests, week 7 is the first unplayed week
    assert [r.week for r in results] == [2, 3, 4, 5, 6, 7]
    for result in results:
        assert len(result.predictions) == 4
        for pred in result.predictions:
            assert 0.0 <= pred.blended <= 1.0
            assert 0.0 <= pred.calibrated <= 1.0
            assert all(0.0 <= p <= 1.0 for p in pred.probs.values())
            assert pred.natural_language.startswith("Logistic:")
        assert sum(result.weights.values()) == pytest.approx(1.0)

    last = results[-1]
    assert all(p.forecast for p in last.predictions)
    assert all(p.actual_home_win is None for p in last.predictions)
    assert not any(p.forecast for p in results[0].predictions)

    names = {p.name for p in tmp_path.iterdir()}
    for kind in ("predictions", "model", "context", "diagnostics"):
        assert f"{kind}_2023_W07.json" in names
    assert {"season_index_2023.json", "season_summary_2023.json", "features_meta_2023.json",
            "data_sources_2023.json"} <= names

    index = json.loads((tmp_path / "season_index_2023.json").read_text())
    assert [w["week"] for w in index["weeks"]] == [2, 3, 4, 5, 6, 7]
    summary = json.loads((tmp_path / "season_summary_2023.json").read_text())
    assert summary["built_through_week"] == 7
    assert summary["feature_names"] == FEATURE_NAMES
    assert "non_inferiority" in summary["backtest"]

    model_doc = json.loads((tmp_path / "model_2023_W07.json").read_text())
    assert model_doc["train_rows"] == 48
    assert len(model_doc["calibration"]["hash"]) == 64

    for kind in ("predictions", "model", "context"):
        current = json.loads((tmp_path / f"{kind}_current.json").read_text())
        assert current == json.loads((tmp_path / f"{kind}_2023_W07.json").read_text())


def test_rerun_refuses_to_overwrite_weekly_artifacts(mini_inputs, fast_model_config, tmp_path):
    _make_trainer(tmp_path, fast_model_config, build_context=False).run(2023, 2, 2, inputs=mini_inputs)
    with pytest.raises(ArtifactWriteError):
        _make_trainer(tmp_path, fast_model_config, build_context=False).run(2023, 2, 2, inputs=mini_inputs)


def test_dry_run_keeps_calibrations_in_memory(mini_inputs, fast_model_config, tmp_path):
    trainer = _make_trainer(tmp_path, fast_model_config, write_artifacts=False, build_context=False)
    results = trainer.run(2023, 2, 4, inputs=mini_inputs)

    assert [r.week for r in results] == [2, 3, 4]
    assert list(tmp_path.iterdir()) == []
    assert all(r.written == {} for r in results)
    reusable = [r for r in results if r.calibration.state.type in ("platt", "isotonic")]
    if reusable:
        assert trainer.prior_calibration(2023, 5)["week"] == reusable[-1].week


def test_week_range_caps_at_first_unplayed_week(mini_inputs, fast_model_config, tmp_path):
    trainer = _make_trainer(tmp_path, fast_model_config)
    features = FeatureBuilder().build_features(mini_inputs)

    assert list(trainer.week_range(features, 2023, None, None)) == [2, 3, 4, 5, 6, 7]
    assert list(trainer.week_range(features, 2023, 3, 20)) == [3, 4, 5, 6, 7, 8]
    assert list(trainer.week_range(features, 2022, None, None)) == []
