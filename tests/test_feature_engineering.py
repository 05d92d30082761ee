import numpy as np
import pandas as pd
import pytest

from conftest import make_inputs, make_league
from nfl_forecast.data.feature_engineering.feature_builder import (
    FEATURE_NAMES,
    LABEL,
    PBP_FEATURE_NAMES,
    FeatureBuilder,
    FeatureBuilderConfig,
)
from nfl_forecast.data.feature_engineering.pbp_features import build_team_pbp_features
from nfl_forecast.data.feature_engineering.rolling_features import (
    RollingSpec,
    add_expanding_means,
    add_rolling_features,
)
from nfl_forecast.data.feature_engineering.team_stats_pipeline import (
    add_elo_ratings,
    build_team_long,
    build_team_period_stats,
    reconcile_cumulative,
)
from nfl_forecast.data.inputs import SeasonInputs
from nfl_forecast.data.normalize import normalize_frame
from nfl_forecast.data.preprocessing.base_dataset import build_base_games


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_team_series(values, team="KC", season=2023) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "team": [team] * len(values),
            "season": [season] * len(values),
            "week": list(range(1, len(values) + 1)),
            "value": values,
        }
    )


def _make_schedule(rows) -> pd.DataFrame:
    """rows: (week, home, away, home_score, away_score)"""
    df = pd.DataFrame(rows, columns=["week", "home_team", "away_team", "home_score", "away_score"])
    df["season"] = 2023
    df["game_date"] = pd.to_datetime("2023-09-10") + pd.to_timedelta((df["week"] - 1) * 7, unit="D")
    df["game_type"] = "REG"
    return df


# ---------------------------------------------------------------------------
# Rolling / expanding
# ---------------------------------------------------------------------------


def test_rolling_features_use_only_prior_rows():
    df = _make_team_series([10.0, 20.0, 30.0, 40.0])
    out = add_rolling_features(df, ["team", "season"], "week", [RollingSpec("value", windows=(2,))])

    col = out["value_rolling_mean_2"].tolist()
    assert np.isnan(col[0])
    assert col[1:] == [10.0, 15.0, 25.0]


def test_rolling_features_reset_per_group_and_preserve_index():
    df = pd.concat([_make_team_series([1.0, 3.0], team="A"), _make_team_series([100.0, 300.0], team="B")])
    df.index = [7, 3, 9, 1]
    out = add_rolling_features(df, ["team", "season"], "week", [RollingSpec("value", windows=(3,), stats=("sum",))])

    assert list(out.index) == [7, 3, 9, 1]
    assert out.loc[3, "value_rolling_sum_3"] == 1.0
    assert out.loc[1, "value_rolling_sum_3"] == 100.0


def test_rolling_spec_rejects_unknown_stat():
    with pytest.raises(ValueError):
        add_rolling_features(_make_team_series([1.0]), ["team"], "week", [RollingSpec("value", (2,), stats=("median",))])


def test_expanding_means_exclude_current_row():
    out = add_expanding_means(_make_team_series([10.0, 20.0, 60.0]), ["team", "season"], "week", ["value"])
    col = out["value_s2d"].tolist()
    assert np.isnan(col[0])
    assert col[1:] == [10.0, 15.0]


# ---------------------------------------------------------------------------
# Team-week statistics
# ---------------------------------------------------------------------------


def test_cumulative_columns_are_differenced():
    weekly = pd.DataFrame(
        {
            "season": [2023] * 3,
            "week": [1, 2, 3],
            "team": ["KC"] * 3,
            "opponent": ["DET", "JAX", "CHI"],
            "yards_for_s2d": [300, 650, 1000],
        }
    )
    stats = build_team_period_stats(weekly)
    assert stats["yards_for"].tolist() == [300, 350, 350]


def test_cumulative_flag_rows_are_differenced():
    weekly = pd.DataFrame(
        {
            "season": [2023] * 3,
            "week": [1, 2, 3],
            "team": ["KC"] * 3,
            "turnovers": [1, 3, 3],
            "cumulative": [True, True, True],
        }
    )
    out = reconcile_cumulative(weekly)
    assert out["turnovers"].tolist() == [1, 2, 0]


def test_yards_against_falls_back_to_opponent_offense():
    weekly = pd.DataFrame(
        {
            "season": [2023, 2023],
            "week": [1, 1],
            "team": ["KC", "DET"],
            "opponent": ["DET", "KC"],
            "yards_for": [400, 320],
            "turnovers": [1, 2],
        }
    )
    stats = build_team_period_stats(weekly).set_index("team")

    assert stats.loc["KC", "yards_against"] == 320
    assert stats.loc["KC", "net_yards"] == 80
    assert stats.loc["KC", "takeaways"] == 2
    assert stats.loc["KC", "turnover_diff"] == 1


def test_opponent_attached_from_schedule_when_missing():
    base = build_base_games(_make_schedule([(1, "KC", "DET", 21, 20)]))
    weekly = pd.DataFrame({"season": [2023, 2023], "week": [1, 1], "team": ["KC", "DET"], "yards_for": [350, 300]})

    stats = build_team_period_stats(weekly, base).set_index("team")

    assert stats.loc["DET", "opponent"] == "KC"
    assert stats.loc["DET", "yards_against"] == 350


def test_elo_is_pre_game_and_ties_count_half():
    base = build_base_games(
        _make_schedule(
            [
                (1, "KC", "DET", 30, 10),
                (2, "KC", "DET", 17, 17),
                (3, "DET", "KC", np.nan, np.nan),
            ]
        )
    )
    games = add_elo_ratings(base)

    assert games.loc[0, "home_elo_pre"] == 1500.0
    assert games.loc[1, "home_elo_pre"] > 1500.0
    # a tie with a home-favoured expectation costs the home side rating
    assert games.loc[2, "away_elo_pre"] < games.loc[1, "home_elo_pre"]

    long = build_team_long(games)
    tie_rows = long[long["week"] == 2]
    assert tie_rows["win_value"].tolist() == [0.5, 0.5]
    assert tie_rows["team_win"].isna().all()


# ---------------------------------------------------------------------------
# Feature builder
# ---------------------------------------------------------------------------


def test_feature_frame_has_two_rows_per_game(mini_inputs):
    features = FeatureBuilder().build_features(mini_inputs)

    assert len(features) == 2 * 8 * 4
    assert features.groupby("game_id").size().eq(2).all()
    assert features.groupby("game_id")["home"].sum().eq(1.0).all()
    assert list(features.columns[-len(FEATURE_NAMES) - 1 : -1]) == FEATURE_NAMES
    assert features[FEATURE_NAMES].notna().all().all()

    # unplayed weeks carry no label
    assert features.loc[features["week"] > 6, LABEL].isna().all()
    assert features.loc[features["week"] <= 6, LABEL].notna().all()


def test_first_week_has_neutral_history(mini_inputs):
    features = FeatureBuilder().build_features(mini_inputs)
    week1 = features[features["week"] == 1]

    assert (week1["win_pct_s2d"] == 0.5).all()
    assert (week1["off_yds_s2d"] == 0.0).all()
    assert (week1["elo_pre"] == 1500.0).all()


def test_rolling_net_yards_of_fifty_through_feature_builder():
    schedules, weekly = make_league(2023, weeks=5, played_weeks=4)
    weekly["passing_yards"] = 200
    weekly["rushing_yards"] = np.where(weekly["recent_team"] == "KC", 150, 100)
    inputs = SeasonInputs(
        season=2023,
        schedules=normalize_frame(schedules, "schedules"),
        team_weekly=normalize_frame(weekly, "team_weekly"),
    )

    features = FeatureBuilder().build_features(inputs, 2023)
    kc = features[features["team"] == "KC"].set_index("week")

    # no earlier weeks and no prior season: neutral zero
    assert kc.loc[1, "net_yds_roll3"] == 0.0
    for week in (2, 3, 4, 5):
        assert kc.loc[week, "net_yds_roll3"] == pytest.approx(50.0)
        assert kc.loc[week, "net_yds_roll5"] == pytest.approx(50.0)
    opponents = features[(features["opponent"] == "KC") & (features["week"] >= 2)]
    assert np.allclose(opponents["net_yds_roll3"], -50.0)


def test_build_features_season_argument(mini_inputs):
    prior_sched, prior_weekly = make_league(2022, weeks=3)
    cur_sched, cur_weekly = make_league(2023, weeks=3, played_weeks=1)
    inputs = SeasonInputs(
        season=2023,
        schedules=normalize_frame(pd.concat([prior_sched, cur_sched]), "schedules"),
        team_weekly=normalize_frame(pd.concat([prior_weekly, cur_weekly]), "team_weekly"),
    )

    assert set(FeatureBuilder().build_features(inputs)["season"]) == {2022, 2023}
    assert set(FeatureBuilder().build_features(inputs, 2022)["season"]) == {2022}
    with pytest.raises(ValueError):
        FeatureBuilder().build_features(mini_inputs, 2019)


def test_features_do_not_see_current_or_future_weeks(mini_inputs):
    baseline = FeatureBuilder().build_features(mini_inputs)

    # rewrite week 5 outcomes and statistics completely
    schedules = mini_inputs.schedules.copy()
    wk5 = schedules["week"] == 5
    schedules.loc[wk5, ["home_score", "away_score"]] = schedules.loc[wk5, ["away_score", "home_score"]].to_numpy() + [0, 50]
    weekly = mini_inputs.team_weekly.copy()
    weekly.loc[weekly["week"] == 5, "yards_for"] = 900
    changed = FeatureBuilder().build_features(SeasonInputs(season=2023, schedules=schedules, team_weekly=weekly))

    cols = ["game_id", "team", *FEATURE_NAMES]
    early_a = baseline.loc[baseline["week"] <= 5, cols].reset_index(drop=True)
    early_b = changed.loc[changed["week"] <= 5, cols].reset_index(drop=True)
    pd.testing.assert_frame_equal(early_a, early_b)

    late_a = baseline.loc[baseline["week"] == 6, "off_yds_s2d"].to_numpy()
    late_b = changed.loc[changed["week"] == 6, "off_yds_s2d"].to_numpy()
    assert not np.allclose(late_a, late_b)


def test_prior_season_seeds_week_one():
    prior_sched, prior_weekly = make_league(2022, weeks=6)
    cur_sched, cur_weekly = make_league(2023, weeks=4, played_weeks=2)
    inputs = SeasonInputs(
        season=2023,
        schedules=normalize_frame(pd.concat([prior_sched, cur_sched]), "schedules"),
        team_weekly=normalize_frame(pd.concat([prior_weekly, cur_weekly]), "team_weekly"),
    )

    features = FeatureBuilder().build_features(inputs)
    week1 = features[(features["season"] == 2023) & (features["week"] == 1)]

    assert (week1["off_yds_s2d"] > 0).all()
    # Elo carries over (regressed) from the prior season
    assert week1["elo_pre"].nunique() > 1


def test_metadata_pairs_label_and_columns(mini_inputs):
    builder = FeatureBuilder()
    features = builder.build_features(mini_inputs)
    meta = builder.metadata(features)

    assert meta["label"] == LABEL
    assert meta["feature_names"] == FEATURE_NAMES
    assert meta["rows"] == len(features)
    assert meta["labelled_rows"] == 2 * 6 * 4
    assert set(meta["required_columns"]).issubset(features.columns)


def test_weather_feed_used_only_when_captured_before_kickoff():
    weather = normalize_frame(
        pd.DataFrame(
            {
                "season": [2023, 2023],
                "week": [3, 8],
                "home_team": [None, None],
                "away_team": [None, None],
                "temp": [20.0, 20.0],
                "wind": [30.0, 30.0],
                "fetched_at": ["2023-10-30", "2023-10-20"],
            }
        ),
        "weather",
    )
    inputs = make_inputs(2023, weeks=8, played_weeks=6)
    games = inputs.schedules
    for i, week in enumerate((3, 8)):
        game = games[games["week"] == week].iloc[0]
        weather.loc[i, ["home_team", "away_team"]] = [game["home_team"], game["away_team"]]
    inputs.weather = weather

    features = FeatureBuilder().build_features(inputs)

    # week 3 was played before the capture time: ignored
    assert (features.loc[features["week"] == 3, "weather_impact"] == 0.0).all()
    # week 8 is unplayed: the forecast is used
    wk8 = features[features["week"] == 8]
    assert (wk8["weather_extreme"] == 1.0).sum() == 2
    assert wk8["weather_impact"].max() > 0.5


# ---------------------------------------------------------------------------
# Play-by-play features
# ---------------------------------------------------------------------------


def _make_pbp(games: pd.DataFrame) -> pd.DataFrame:
    """One offensive play per side per game: home offense +0.1 EPA, away offense -0.1."""
    rows = []
    for _, g in games.iterrows():
        rows.append({"season": g["season"], "week": g["week"], "posteam": g["home_team"],
                     "defteam": g["away_team"], "epa": 0.1, "play_type": "pass", "yards_gained": 20})
        rows.append({"season": g["season"], "week": g["week"], "posteam": g["away_team"],
                     "defteam": g["home_team"], "epa": -0.1, "play_type": "run", "yards_gained": 2})
    return pd.DataFrame(rows)


def test_team_pbp_aggregates_offense_and_defense():
    pbp = pd.DataFrame(
        {
            "season": [2023] * 3,
            "week": [1] * 3,
            "posteam": ["KC", "KC", "DEN"],
            "defteam": ["DEN", "DEN", "KC"],
            "epa": [0.5, -0.1, 0.2],
            "play_type": ["pass", "run", "run"],
            "yards_gained": [25, 3, 12],
        }
    )
    out = build_team_pbp_features(pbp).set_index("team")

    assert out.loc["KC", "plays_off"] == 2
    assert out.loc["KC", "off_epa_per_play"] == pytest.approx(0.2)
    assert out.loc["KC", "off_success_rate"] == pytest.approx(0.5)
    assert out.loc["KC", "off_explosive_play_rate"] == pytest.approx(0.5)
    assert out.loc["KC", "def_epa_per_play_allowed"] == pytest.approx(0.2)
    assert out.loc["DEN", "off_explosive_play_rate"] == pytest.approx(1.0)


def test_feature_builder_appends_pbp_features(mini_inputs):
    schedules = mini_inputs.schedules
    mini_inputs.pbp = _make_pbp(schedules[schedules["week"] == 1])
    builder = FeatureBuilder(FeatureBuilderConfig(use_pbp_features=True))
    features = builder.build_features(mini_inputs)

    assert builder.feature_names == FEATURE_NAMES + PBP_FEATURE_NAMES
    week2 = features[features["week"] == 2]
    assert set(week2["off_epa_roll3"].round(6)) == {0.1, -0.1}
    assert (features.loc[features["week"] == 1, "off_epa_roll3"] == 0.0).all()
