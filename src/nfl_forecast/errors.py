"""
Exception hierarchy for the forecasting pipeline.

Every error carries a ``context`` dict so callers (and the run script) can
log a structured record instead of parsing messages.
"""

from __future__ import annotations

from typing import Any


class ForecastError(Exception):
    """Base class for all pipeline errors."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {"error": type(self).__name__, "message": self.message, **self.context}


class DataSourceError(ForecastError):
    """A required dataset could not be fetched from any candidate source."""

    def __init__(
        self,
        dataset: str,
        season: int | None = None,
        attempts: list[dict[str, Any]] | None = None,
        last_error: str | None = None,
    ) -> None:
        where = f" for season {season}" if season is not None else ""
        super().__init__(
            f"Required dataset '{dataset}' unavailable{where}",
            dataset=dataset,
            season=season,
            attempts=attempts or [],
            last_error=last_error,
        )
        self.dataset = dataset
        self.season = season


class SchemaValidationError(ForecastError):
    """An artifact failed its declared contract and must not be written."""

    def __init__(self, artifact: str, problems: list[str]) -> None:
        preview = "; ".join(problems[:5])
        super().__init__(
            f"Artifact '{artifact}' failed validation: {preview}",
            artifact=artifact,
            problems=list(problems),
        )
        self.artifact = artifact
        self.problems = list(problems)


class ModelTrainingError(ForecastError):
    """A single estimator could not be fitted for the requested week."""


class LeakageError(ForecastError):
    """A training slice contains rows from the forecast week or later."""


class ArtifactWriteError(ForecastError):
    """An artifact could not be written (e.g. it already exists)."""
