import gzip
import logging

import pandas as pd
import pytest
import requests

from conftest import FakeResponse, FakeSession
from nfl_forecast.config import SourceConfig
from nfl_forecast.data.inputs import SeasonInputs
from nfl_forecast.data.loaders.sources import (
    Candidate,
    DatasetSpec,
    FetchCache,
    SourceGateway,
    decode_payload,
    parse_payload,
)
from nfl_forecast.errors import DataSourceError

CSV = b"season,week,recent_team,opponent_team,passing_yards,rushing_yards\n" \
      b"2023,1,KC,DET,250,100\n2023,1,DET,KC,300,80\n2023,2,KC,JAX,220,140\n"


def _spec(name="team_weekly", urls=("https://a/x.csv.gz", "https://b/x.csv", "https://c/x.csv"), **kwargs):
    return DatasetSpec(
        name=name,
        candidates=lambda season: [Candidate(f"cand{i}", url) for i, url in enumerate(urls)],
        **kwargs,
    )


def _gateway(session, *specs, retries=3):
    waits = []
    gateway = SourceGateway(
        catalog={s.name: s for s in specs},
        config=SourceConfig(max_retries=retries, backoff_initial=0.5, backoff_factor=2.0, jitter=0.0),
        session=session,
        cache=FetchCache(),
        sleep=waits.append,
    )
    return gateway, waits


# ---------------------------------------------------------------------------
# Payload decoding
# ---------------------------------------------------------------------------


def test_decode_payload_detects_gzip_by_magic_bytes():
    assert decode_payload(gzip.compress(CSV)) == CSV
    assert decode_payload(CSV) == CSV


def test_parse_payload_json_wrapped_rows():
    frame = parse_payload(b'{"rows": [{"season": 2023, "week": 1}, {"season": 2023, "week": 2}]}', "json")
    assert list(frame["week"]) == [1, 2]


# ---------------------------------------------------------------------------
# Candidate fallback
# ---------------------------------------------------------------------------


def test_two_soft_misses_then_gzip_success(caplog):
    session = FakeSession(
        {
            "https://a/x.csv.gz": [FakeResponse(404)],
            "https://b/x.csv": [FakeResponse(404)],
            "https://c/x.csv": [FakeResponse(200, gzip.compress(CSV))],
        }
    )
    gateway, waits = _gateway(session, _spec(required=True))

    with caplog.at_level(logging.INFO, logger="nfl_forecast.data.loaders.sources"):
        frame = gateway.fetch("team_weekly", 2023)

    assert len(frame) == 3
    # normalized on load
    assert {"team", "opponent", "yards_for"}.issubset(frame.columns)
    assert frame.loc[frame["team"] == "KC", "yards_for"].tolist() == [350, 360]

    soft_misses = [r for r in caplog.records if "soft miss" in r.getMessage()]
    successes = [r for r in caplog.records if "loaded 3 rows from cand2" in r.getMessage()]
    assert len(soft_misses) == 2
    assert len(successes) == 1
    assert waits == []  # 404s are never retried

    reasons = [a["reason"] for a in gateway.attempts[("team_weekly", 2023)]]
    assert reasons == ["not_found", "not_found", "ok"]


def test_transient_errors_are_retried_with_backoff():
    session = FakeSession(
        {
            "https://a/x.csv.gz": [
                requests.ConnectionError("reset"),
                FakeResponse(503),
                FakeResponse(200, CSV),
            ],
        }
    )
    gateway, waits = _gateway(session, _spec(required=True))

    frame = gateway.fetch("team_weekly", 2023)

    assert len(frame) == 3
    assert session.calls.count("https://a/x.csv.gz") == 3
    assert waits == [0.5, 1.0]


def test_exhausted_retries_move_to_next_candidate(caplog):
    session = FakeSession(
        {
            "https://a/x.csv.gz": [requests.Timeout("slow")],
            "https://b/x.csv": [FakeResponse(200, CSV)],
        }
    )
    gateway, waits = _gateway(session, _spec(required=True), retries=2)

    with caplog.at_level(logging.ERROR, logger="nfl_forecast.data.loaders.sources"):
        frame = gateway.fetch("team_weekly", 2023)

    assert len(frame) == 3
    assert session.calls.count("https://a/x.csv.gz") == 2
    assert any("All 2 attempts failed" in r.getMessage() for r in caplog.records)


def test_sanity_floor_rejects_tiny_frames():
    session = FakeSession(
        {
            "https://a/x.csv.gz": [FakeResponse(200, b"season,week\n2023,1\n")],
            "https://b/x.csv": [FakeResponse(200, CSV)],
        }
    )
    gateway, _ = _gateway(session, _spec(required=True, min_rows=2))

    assert len(gateway.fetch("team_weekly", 2023)) == 3
    assert gateway.attempts[("team_weekly", 2023)][0]["reason"] == "too_small"


def test_required_dataset_raises_structured_error():
    gateway, _ = _gateway(FakeSession(), _spec(required=True))

    with pytest.raises(DataSourceError) as excinfo:
        gateway.fetch("team_weekly", 2023)

    err = excinfo.value
    assert err.dataset == "team_weekly"
    assert err.season == 2023
    assert len(err.context["attempts"]) == 3
    assert err.to_dict()["error"] == "DataSourceError"


def test_optional_dataset_degrades_to_empty(caplog):
    gateway, _ = _gateway(FakeSession(), _spec(name="markets"))

    with caplog.at_level(logging.WARNING):
        frame = gateway.fetch("markets", 2023)

    assert frame.empty
    assert any("continuing without it" in r.getMessage() for r in caplog.records)


def test_library_fallback_after_all_urls_miss():
    lib_frame = pd.DataFrame({"season": [2023, 2023], "week": [1, 1], "team": ["KC", "DET"]})
    spec = _spec(required=True, library_loader=lambda season: lib_frame)
    gateway, _ = _gateway(FakeSession(), spec)

    frame = gateway.fetch("team_weekly", 2023)

    assert list(frame["team"]) == ["KC", "DET"]
    assert gateway.attempts[("team_weekly", 2023)][-1]["label"] == "library"


# ---------------------------------------------------------------------------
# Cache and non-seasonal datasets
# ---------------------------------------------------------------------------


def test_results_are_memoized_per_dataset_and_season():
    session = FakeSession({"https://a/x.csv.gz": [FakeResponse(200, CSV)]})
    gateway, _ = _gateway(session, _spec(required=True))

    gateway.fetch("team_weekly", 2023)
    gateway.fetch("team_weekly", 2023)

    assert session.calls == ["https://a/x.csv.gz"]
    assert ("team_weekly", 2023) in gateway.cache

    gateway.cache.clear()
    gateway.fetch("team_weekly", 2023)
    assert len(session.calls) == 2


def test_non_seasonal_dataset_fetched_once_and_filtered():
    games = b"season,week,home_team,away_team\n2022,1,KC,ARI\n2023,1,KC,DET\n2023,2,DET,SEA\n"
    session = FakeSession({"https://a/games.csv": [FakeResponse(200, games)]})
    spec = _spec(name="schedules", urls=("https://a/games.csv",), required=True, seasonal=False)
    gateway, _ = _gateway(session, spec)

    assert len(gateway.fetch("schedules", 2023)) == 2
    assert len(gateway.fetch("schedules", 2022)) == 1
    assert gateway.available_seasons("schedules") == [2022, 2023]
    assert session.calls == ["https://a/games.csv"]


def test_local_file_candidates(tmp_path):
    path = tmp_path / "markets_2023.csv"
    path.write_text("season,week,home_team,away_team,spread_home\n2023,1,KC,DET,-6.5\n")
    spec = DatasetSpec(
        name="markets",
        candidates=lambda season: [
            Candidate("missing", str(tmp_path / "nope.csv")),
            Candidate("feed", str(path)),
        ],
    )
    gateway, _ = _gateway(FakeSession(), spec)

    frame = gateway.fetch("markets", 2023)

    assert frame.loc[0, "home_spread"] == -6.5
    assert [a["reason"] for a in gateway.attempts[("markets", 2023)]] == ["not_found", "ok"]


# ---------------------------------------------------------------------------
# Season inputs
# ---------------------------------------------------------------------------


class _StubGateway:
    """Serves canned frames; the prior season's team stats are missing."""

    def __init__(self):
        self.requested = []

    def fetch(self, dataset, season=None):
        self.requested.append((dataset, season))
        if dataset == "schedules":
            return pd.DataFrame({"season": [2022, 2023, 2023], "week": [1, 1, 2]})
        if dataset == "team_weekly":
            if season == 2022:
                raise DataSourceError("team_weekly", season=2022)
            return pd.DataFrame({"season": [2023], "week": [1], "team": ["KC"]})
        return pd.DataFrame()

    def fetch_many(self, datasets, season):
        return {name: self.fetch(name, season) for name in datasets}


def test_season_inputs_tolerate_missing_prior_season_stats(caplog):
    gateway = _StubGateway()

    with caplog.at_level(logging.WARNING):
        inputs = SeasonInputs.load(gateway, 2023)

    assert len(inputs.schedules) == 3
    assert len(inputs.team_weekly) == 1
    assert inputs.markets.empty
    assert ("pbp", 2023) not in gateway.requested
    assert any("Prior-season team stats" in r.getMessage() for r in caplog.records)

    bundle = inputs.data_sources_bundle()
    assert bundle["required"] == {"schedules": 3, "team_weekly": 1}
    assert bundle["optional"]["markets"] == 0
