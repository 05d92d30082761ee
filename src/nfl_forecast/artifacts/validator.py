"""
Artifact contract checks.

Every artifact is validated before it is written. Declared artifacts are
checked against the pydantic models in :mod:`schemas`; the feature frame,
its metadata and the data-sources bundle get procedural checks.

Critical contracts raise :class:`SchemaValidationError`. Non-critical ones
(diagnostics, context snapshots) log a warning and return False so the
caller can skip that single artifact and carry on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

import pandas as pd
from pydantic import BaseModel, ValidationError

from nfl_forecast.errors import SchemaValidationError

from . import schemas

log = logging.getLogger(__name__)

Check = Callable[[Any], "list[str]"]


@dataclass(frozen=True)
class Contract:
    name: str
    check: Check
    critical: bool = True


def pydantic_check(model: type[BaseModel]) -> Check:
    def check(payload: Any) -> list[str]:
        try:
            model.model_validate(payload)
        except ValidationError as exc:
            return [f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}" for err in exc.errors()]
        return []

    return check


def check_features_meta(meta: Any) -> list[str]:
    if not isinstance(meta, dict):
        return [f"expected a mapping, got {type(meta).__name__}"]
    problems = []
    label = meta.get("label")
    if not isinstance(label, str) or not label:
        problems.append("label: missing or empty")
    names = meta.get("feature_names")
    if not isinstance(names, list) or not names or not all(isinstance(n, str) for n in names):
        problems.append("feature_names: expected a non-empty list of strings")
    elif len(set(names)) != len(names):
        problems.append("feature_names: duplicates")
    required = meta.get("required_columns", [])
    if not isinstance(required, list):
        problems.append("required_columns: expected a list")
    return problems


def check_features_frame(frame: Any, meta: dict[str, Any] | None) -> list[str]:
    """Rows must exist and carry the paired metadata's label and required columns."""
    if meta is None:
        return ["no features_meta paired with this frame"]
    meta_problems = check_features_meta(meta)
    if meta_problems:
        return [f"features_meta {p}" for p in meta_problems]

    if isinstance(frame, pd.DataFrame):
        columns = set(frame.columns)
        n_rows = len(frame)
    elif isinstance(frame, list):
        n_rows = len(frame)
        columns = set.intersection(*(set(row) for row in frame)) if frame else set()
    else:
        return [f"expected a DataFrame or list of rows, got {type(frame).__name__}"]

    if n_rows == 0:
        return ["frame has no rows"]
    problems = []
    label = meta["label"]
    if label not in columns:
        problems.append(f"label column '{label}' missing")
    missing = [c for c in [*meta.get("required_columns", []), *meta["feature_names"]] if c not in columns]
    if missing:
        problems.append(f"required columns missing: {sorted(set(missing))}")
    return problems


def check_data_sources(bundle: Any) -> list[str]:
    if not isinstance(bundle, dict):
        return [f"expected a mapping, got {type(bundle).__name__}"]
    problems = []
    if not isinstance(bundle.get("season"), int):
        problems.append("season: expected an integer")
    required = bundle.get("required")
    if not isinstance(required, dict) or not required:
        problems.append("required: expected a non-empty mapping of dataset -> rows")
    else:
        problems += [f"required dataset '{name}' is empty" for name, rows in required.items() if not rows]
    optional = bundle.get("optional", {})
    if not isinstance(optional, dict):
        problems.append("optional: expected a mapping")
    else:
        problems += [f"optional dataset '{name}': bad row count {rows!r}" for name, rows in optional.items()
                     if not isinstance(rows, int) or rows < 0]
    return problems


class SchemaValidator:
    """
    Registry of artifact contracts.

    ``features_frame`` is checked against the most recently validated
    ``features_meta`` unless a meta is passed explicitly.
    """

    def __init__(self) -> None:
        self._contracts: dict[str, Contract] = {}
        self._features_meta: dict[str, Any] | None = None

        self.register("predictions", pydantic_check(schemas.PredictionsArtifact))
        self.register("model", pydantic_check(schemas.ModelArtifact))
        self.register("season_index", pydantic_check(schemas.SeasonIndex))
        self.register("season_summary", pydantic_check(schemas.SeasonSummary))
        self.register("context", pydantic_check(schemas.ContextArtifact), critical=False)
        self.register("diagnostics", pydantic_check(schemas.DiagnosticsArtifact), critical=False)
        self.register("features_meta", check_features_meta)
        self.register("data_sources", check_data_sources)

    def register(self, name: str, check: Check, critical: bool = True) -> None:
        self._contracts[name] = Contract(name=name, check=check, critical=critical)

    def is_critical(self, name: str) -> bool:
        return name == "features_frame" or self._contracts[name].critical

    def validate(self, name: str, payload: Any, meta: dict[str, Any] | None = None) -> bool:
        if name == "features_frame":
            problems = check_features_frame(payload, meta if meta is not None else self._features_meta)
            critical = True
        else:
            contract = self._contracts.get(name)
            if contract is None:
                raise KeyError(f"No contract registered for artifact '{name}'")
            problems = contract.check(payload)
            critical = contract.critical

        if not problems:
            if name == "features_meta":
                self._features_meta = payload
            return True
        if critical:
            raise SchemaValidationError(name, problems)
        log.warning("Artifact %s failed validation (non-critical, skipped): %s", name, "; ".join(problems[:5]))
        return False
