"""
Resilient dataset fetching with ordered candidate fallback.

A dataset is described by a :class:`DatasetSpec`: an ordered list of
candidate locations (release assets, mirrors, local feed files) plus an
optional library loader tried last. :class:`SourceGateway` walks the
candidates in order; each attempt yields either a DataFrame or a
:class:`CandidateMiss`, and the first DataFrame that clears the dataset's
sanity floor wins.

Failure policy
--------------
- HTTP 404: soft miss, logged, next candidate (never retried).
- Connection errors, timeouts, other HTTP errors: retried with exponential
  backoff plus jitter; once exhausted, logged at ERROR and the gateway moves
  on to the next candidate.
- All candidates missed: required datasets raise ``DataSourceError``;
  optional datasets return an empty DataFrame and log a warning.
"""

from __future__ import annotations

import gzip
import io
import json
import logging
import random
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, NamedTuple
from urllib.parse import urlparse

import pandas as pd
import requests

from nfl_forecast.config import SOURCE_CONFIG, SourceConfig
from nfl_forecast.data.normalize import normalize_frame
from nfl_forecast.errors import DataSourceError

log = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"


@dataclass(frozen=True)
class Candidate:
    """One location a dataset may be loaded from (http(s) URL, file:// URL or local path)."""

    label: str
    url: str
    fmt: str = "csv"


class CandidateMiss(NamedTuple):
    """Result of a candidate that produced no usable frame."""

    label: str
    reason: str  # "not_found" | "error" | "too_small" | "unparseable"
    detail: str = ""


@dataclass(frozen=True)
class DatasetSpec:
    """
    How to obtain one logical dataset.

    Attributes
    ----------
    name:
        Canonical dataset name; also selects the column alias table.
    candidates:
        Callable returning ordered candidates for a season (``None`` for
        datasets published as a single multi-season file).
    required:
        If True, exhausting every candidate raises ``DataSourceError``.
    seasonal:
        True when the source is split per season. Non-seasonal datasets are
        fetched once and filtered by season on request.
    min_rows:
        Sanity floor; a parsed frame with fewer rows counts as a miss.
    library_loader:
        Optional last-resort loader (e.g. nflreadpy) taking the season.
    """

    name: str
    candidates: Callable[[int | None], list[Candidate]]
    required: bool = False
    seasonal: bool = True
    min_rows: int = 1
    library_loader: Callable[[int | None], pd.DataFrame] | None = None


@dataclass
class FetchCache:
    """Process-lifetime memo of fetched frames keyed by ``(dataset, season)``."""

    _frames: dict[tuple[str, int | None], pd.DataFrame] = field(default_factory=dict)

    def get(self, dataset: str, season: int | None) -> pd.DataFrame | None:
        return self._frames.get((dataset, season))

    def put(self, dataset: str, season: int | None, frame: pd.DataFrame) -> None:
        self._frames[(dataset, season)] = frame

    def __contains__(self, key: tuple[str, int | None]) -> bool:
        return key in self._frames

    def __len__(self) -> int:
        return len(self._frames)

    def clear(self) -> None:
        self._frames.clear()


def _is_remote(url: str) -> bool:
    return urlparse(url).scheme in ("http", "https")


def _local_path(url: str) -> Path:
    parsed = urlparse(url)
    if parsed.scheme == "file":
        return Path(parsed.path)
    return Path(url)


def decode_payload(payload: bytes) -> bytes:
    """Gunzip when the gzip magic bytes are present, whatever the URL suffix says."""
    if payload[:2] == GZIP_MAGIC:
        return gzip.decompress(payload)
    return payload


def parse_payload(payload: bytes, fmt: str) -> pd.DataFrame:
    """Parse decoded bytes as CSV or JSON (a list of rows or an object holding one)."""
    if fmt == "json":
        data = json.loads(payload.decode("utf-8"))
        if isinstance(data, Mapping):
            for key in ("rows", "data", "items", "games"):
                if isinstance(data.get(key), list):
                    data = data[key]
                    break
            else:
                data = [data]
        return pd.DataFrame(list(data))
    return pd.read_csv(io.BytesIO(payload), low_memory=False)


class SourceGateway:
    """
    Fetch datasets through ordered candidates with retry, memoization and
    column normalization.

    Parameters
    ----------
    catalog:
        Mapping of dataset name to :class:`DatasetSpec`. Defaults to the
        nflverse/feeds catalog in :mod:`nfl_forecast.data.loaders.catalog`.
    config:
        Retry/timeout policy.
    session:
        ``requests.Session`` (or any object with a compatible ``get``).
    cache:
        Explicit cache object; pass a shared one to reuse fetches across
        gateways, or a fresh one to isolate tests.
    sleep, rng:
        Injection points so tests do not actually wait.
    """

    def __init__(
        self,
        catalog: Mapping[str, DatasetSpec] | None = None,
        config: SourceConfig | None = None,
        session: Any | None = None,
        cache: FetchCache | None = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        if catalog is None:
            from nfl_forecast.data.loaders.catalog import default_catalog

            catalog = default_catalog()
        self.catalog = dict(catalog)
        self.config = config or SOURCE_CONFIG
        self.session = session if session is not None else requests.Session()
        self.cache = cache if cache is not None else FetchCache()
        self._sleep = sleep
        self._rng = rng or random.Random()
        # Per-(dataset, season) attempt log of the most recent uncached fetch
        self.attempts: dict[tuple[str, int | None], list[dict[str, Any]]] = {}

    # ------------- Public API -------------

    def fetch(self, dataset: str, season: int | None = None) -> pd.DataFrame:
        """
        Return the normalized frame for ``dataset`` (and ``season``).

        Missing optional datasets yield an empty DataFrame.
        """
        spec = self._spec(dataset)
        if spec.seasonal and season is None:
            raise ValueError(f"Dataset '{dataset}' is seasonal; a season is required.")

        key_season = season if spec.seasonal else None
        frame = self.cache.get(dataset, key_season)
        if frame is None:
            frame = self._resolve(spec, key_season)
            self.cache.put(dataset, key_season, frame)

        if not spec.seasonal and season is not None and "season" in frame.columns:
            return frame.loc[frame["season"] == season].reset_index(drop=True)
        return frame

    def fetch_many(self, datasets: Iterable[str], season: int) -> dict[str, pd.DataFrame]:
        """Fetch several datasets for one season, sequentially."""
        return {name: self.fetch(name, season) for name in datasets}

    def available_seasons(self, dataset: str) -> list[int]:
        """Seasons present in a non-seasonal dataset (e.g. the schedule file)."""
        spec = self._spec(dataset)
        if spec.seasonal:
            raise ValueError(f"Dataset '{dataset}' is split per season; no combined file to inspect.")
        frame = self.fetch(dataset)
        if frame.empty or "season" not in frame.columns:
            return []
        return sorted(int(s) for s in frame["season"].dropna().unique())

    # ------------- Candidate resolution -------------

    def _spec(self, dataset: str) -> DatasetSpec:
        try:
            return self.catalog[dataset]
        except KeyError:
            raise KeyError(f"Unknown dataset '{dataset}'. Known: {sorted(self.catalog)}") from None

    def _resolve(self, spec: DatasetSpec, season: int | None) -> pd.DataFrame:
        attempts: list[dict[str, Any]] = []
        self.attempts[(spec.name, season)] = attempts

        for candidate in spec.candidates(season):
            result = self._try_candidate(spec, candidate)
            if isinstance(result, CandidateMiss):
                attempts.append(result._asdict())
                continue
            attempts.append({"label": candidate.label, "reason": "ok", "detail": f"{len(result)} rows"})
            log.info(
                "%s (%s): loaded %d rows from %s",
                spec.name, season if season is not None else "all", len(result), candidate.label,
            )
            return normalize_frame(result, spec.name)

        if spec.library_loader is not None:
            result = self._try_library(spec, season)
            if isinstance(result, CandidateMiss):
                attempts.append(result._asdict())
            else:
                attempts.append({"label": "library", "reason": "ok", "detail": f"{len(result)} rows"})
                log.info("%s (%s): loaded %d rows via library fallback", spec.name, season, len(result))
                return normalize_frame(result, spec.name)

        last = attempts[-1]["detail"] if attempts else "no candidates"
        if spec.required:
            log.error("%s (%s): every candidate failed; required dataset unavailable", spec.name, season)
            raise DataSourceError(spec.name, season=season, attempts=attempts, last_error=last)

        log.warning("%s (%s): unavailable from all candidates; continuing without it", spec.name, season)
        return pd.DataFrame()

    def _try_candidate(self, spec: DatasetSpec, candidate: Candidate) -> pd.DataFrame | CandidateMiss:
        payload = self._download(candidate)
        if isinstance(payload, CandidateMiss):
            return payload

        try:
            frame = parse_payload(decode_payload(payload), candidate.fmt)
        except (ValueError, UnicodeDecodeError, OSError, pd.errors.ParserError) as exc:
            log.warning("%s: could not parse %s (%s)", spec.name, candidate.label, exc)
            return CandidateMiss(candidate.label, "unparseable", str(exc))

        return self._check_floor(spec, candidate.label, frame)

    def _try_library(self, spec: DatasetSpec, season: int | None) -> pd.DataFrame | CandidateMiss:
        try:
            frame = spec.library_loader(season)  # type: ignore[misc]
        except Exception as exc:  # library internals raise arbitrary errors
            log.error("%s (%s): library fallback failed: %s", spec.name, season, exc)
            return CandidateMiss("library", "error", str(exc))
        return self._check_floor(spec, "library", frame)

    def _check_floor(self, spec: DatasetSpec, label: str, frame: pd.DataFrame) -> pd.DataFrame | CandidateMiss:
        if frame is None or len(frame) < spec.min_rows:
            n = 0 if frame is None else len(frame)
            log.warning("%s: %s returned %d rows (< %d); treating as miss", spec.name, label, n, spec.min_rows)
            return CandidateMiss(label, "too_small", f"{n} rows")
        return frame

    # ------------- Transport -------------

    def _download(self, candidate: Candidate) -> bytes | CandidateMiss:
        if not _is_remote(candidate.url):
            path = _local_path(candidate.url)
            if not path.exists():
                log.debug("%s: no local file at %s", candidate.label, path)
                return CandidateMiss(candidate.label, "not_found", str(path))
            return path.read_bytes()
        return self._get_with_retry(candidate)

    def _headers(self, url: str) -> dict[str, str]:
        headers = {"User-Agent": self.config.user_agent}
        if self.config.github_token and urlparse(url).netloc.endswith("api.github.com"):
            headers["Authorization"] = f"Bearer {self.config.github_token}"
        return headers

    def _get_with_retry(self, candidate: Candidate) -> bytes | CandidateMiss:
        """
        GET a URL with exponential backoff retry.

        A 404 returns a soft miss immediately; anything else is retried
        ``max_retries`` times before giving up on this candidate.
        """
        cfg = self.config
        delay = cfg.backoff_initial
        last_error = "no attempts made"

        for attempt in range(1, cfg.max_retries + 1):
            try:
                resp = self.session.get(
                    candidate.url, headers=self._headers(candidate.url), timeout=cfg.timeout
                )
                if resp.status_code == 404:
                    log.info("%s: 404 at %s (soft miss)", candidate.label, candidate.url)
                    return CandidateMiss(candidate.label, "not_found", "HTTP 404")
                resp.raise_for_status()
                return resp.content
            except requests.RequestException as exc:
                last_error = str(exc)

            if attempt < cfg.max_retries:
                wait = delay + self._rng.uniform(0.0, cfg.jitter)
                log.warning(
                    "Attempt %d/%d failed for %s: %s (retrying in %.2fs)",
                    attempt, cfg.max_retries, candidate.url, last_error, wait,
                )
                self._sleep(wait)
                delay *= cfg.backoff_factor
            else:
                log.error("All %d attempts failed for %s: %s", cfg.max_retries, candidate.url, last_error)

        return CandidateMiss(candidate.label, "error", last_error)
