from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Mapping

import numpy as np

from nfl_forecast.config import CALIBRATION_CONFIG, DATA_CONFIG
from nfl_forecast.errors import ArtifactWriteError

from .validator import SchemaValidator

log = logging.getLogger(__name__)

SEASON_KINDS = ("season_index", "season_summary", "features_meta", "data_sources")
REUSABLE_CALIBRATIONS = ("platt", "isotonic")
CURRENT_KINDS = ("predictions", "model", "context")


def current_name(kind: str) -> str:
    return f"{kind}_current.json"


def artifact_name(kind: str, season: int, week: int | None = None) -> str:
    if week is None:
        return f"{kind}_{int(season)}.json"
    return f"{kind}_{int(season)}_W{int(week):02d}.json"


def to_jsonable(value: Any) -> Any:
    """Recursively replace non-finite floats with None; JSON has no NaN."""
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, (float, np.floating)):
        return float(value) if np.isfinite(value) else None
    return value


def _json_default(value: Any) -> Any:
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        return float(value)
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, Path):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class ArtifactWriter:
    """
    Validate-then-write for the JSON artifacts.

    Weekly artifacts are written once: an existing file is never replaced
    unless the writer was created with ``overwrite=True``. Season-level files
    (index, summary) are rebuilt after every week and always replaced.
    Writes go to a temp file in the target directory and are moved into place.
    """

    def __init__(
        self,
        root: Path | str | None = None,
        validator: SchemaValidator | None = None,
        overwrite: bool = False,
    ) -> None:
        self.root = Path(root) if root is not None else DATA_CONFIG.artifacts_dir
        self.validator = validator or SchemaValidator()
        self.overwrite = overwrite

    def path_for(self, kind: str, season: int, week: int | None = None) -> Path:
        return self.root / artifact_name(kind, season, week)

    def _atomic_write(self, path: Path, payload: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(to_jsonable(payload), fh, indent=2, default=_json_default, allow_nan=False)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def write(self, kind: str, season: int, payload: Any, week: int | None = None) -> Path | None:
        """Validate and write one artifact; None when a non-critical artifact fails validation."""
        if not self.validator.validate(kind, payload):
            return None
        path = self.path_for(kind, season, week)
        if week is not None and path.exists() and not self.overwrite:
            raise ArtifactWriteError(f"Refusing to overwrite existing artifact {path.name}", path=str(path))
        self._atomic_write(path, payload)
        log.info("Wrote %s", path)
        return path

    def write_week(self, season: int, week: int, artifacts: Mapping[str, Any]) -> dict[str, Path]:
        """
        Write every weekly artifact of (season, week), or none of them.

        All payloads are validated and existing files checked before the first
        byte is written. Non-critical artifacts that fail validation are
        dropped; the rest are still written.
        """
        accepted = {kind: payload for kind, payload in artifacts.items() if self.validator.validate(kind, payload)}

        if not self.overwrite:
            existing = [self.path_for(k, season, week).name for k in accepted if self.path_for(k, season, week).exists()]
            if existing:
                raise ArtifactWriteError(
                    f"Refusing to overwrite {len(existing)} existing artifact(s) for {season} week {week}",
                    season=int(season),
                    week=int(week),
                    existing=existing,
                )

        written: dict[str, Path] = {}
        for kind, payload in accepted.items():
            path = self.path_for(kind, season, week)
            self._atomic_write(path, payload)
            written[kind] = path
        log.info("Wrote %d artifacts for %s week %s to %s", len(written), season, week, self.root)
        return written

    def write_season(self, season: int, kind: str, payload: Any) -> Path | None:
        if kind not in SEASON_KINDS:
            raise ValueError(f"'{kind}' is not a season-level artifact")
        if not self.validator.validate(kind, payload):
            return None
        path = self.path_for(kind, season)
        self._atomic_write(path, payload)
        return path

    def write_current(self, season: int, week: int, kinds: tuple[str, ...] = CURRENT_KINDS) -> dict[str, Path]:
        """
        Repoint the `{kind}_current.json` aliases at the files of (season, week).

        Each alias is a copy of the weekly file, replaced atomically. Kinds with
        no weekly file (e.g. a dropped context snapshot) keep their old alias.
        """
        written: dict[str, Path] = {}
        for kind in kinds:
            source = self.path_for(kind, season, week)
            if not source.exists():
                log.warning("No %s artifact for %s week %s; %s left unchanged", kind, season, week, current_name(kind))
                continue
            with source.open("r", encoding="utf-8") as fh:
                payload = json.load(fh)
            path = self.root / current_name(kind)
            self._atomic_write(path, payload)
            written[kind] = path
        log.info("Current artifacts now point at %s week %s", season, week)
        return written


class ArtifactStore:
    """Read access to previously written artifacts."""

    def __init__(self, root: Path | str | None = None, lookback_seasons: int | None = None) -> None:
        self.root = Path(root) if root is not None else DATA_CONFIG.artifacts_dir
        self.lookback_seasons = (
            lookback_seasons if lookback_seasons is not None else CALIBRATION_CONFIG.prior_lookback_seasons
        )

    def load(self, kind: str, season: int, week: int | None = None) -> Any | None:
        path = self.root / artifact_name(kind, season, week)
        if not path.exists():
            return None
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)

    def model_weeks(self, season: int) -> list[int]:
        weeks = []
        for path in self.root.glob(f"model_{int(season)}_W*.json"):
            suffix = path.stem.rsplit("_W", 1)[-1]
            if suffix.isdigit():
                weeks.append(int(suffix))
        return sorted(weeks)

    def find_prior_calibration(self, season: int, week: int) -> dict[str, Any] | None:
        """
        Most recent reusable calibration strictly before (season, week).

        Earlier weeks of the same season are searched newest first, then the
        previous seasons (up to `lookback_seasons`). Only Platt and isotonic
        calibrations are reusable.
        """
        if not self.root.exists():
            return None
        for s in range(int(season), int(season) - self.lookback_seasons - 1, -1):
            weeks = [w for w in self.model_weeks(s) if s < season or w < week]
            for w in sorted(weeks, reverse=True):
                try:
                    doc = self.load("model", s, w)
                except (OSError, json.JSONDecodeError) as exc:
                    log.warning("Unreadable model artifact %s W%02d: %s", s, w, exc)
                    continue
                calibration = (doc or {}).get("calibration") or {}
                if calibration.get("type") in REUSABLE_CALIBRATIONS:
                    return {
                        "type": calibration["type"],
                        "params": calibration.get("params", {}),
                        "season": s,
                        "week": w,
                        "hash": calibration.get("hash"),
                    }
        return None
