"""
Declared contracts for the JSON artifacts.

Probabilities are bounded to [0, 1] at the model level so a NaN or an
out-of-range value can never reach disk.
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

Probability = Annotated[float, Field(ge=0.0, le=1.0)]


class ModelFlag(BaseModel):
    model: str
    error: str


class PredictionOut(BaseModel):
    """One published game forecast."""
    game_id: str
    season: int
    week: int = Field(ge=1)
    home_team: str = Field(min_length=1)
    away_team: str = Field(min_length=1)
    probs: Dict[str, float]
    blended: Probability
    calibrated: Probability
    forecast: bool
    natural_language: str = ""
    top_drivers: List[Dict[str, Any]] = []
    actual_home_win: Optional[int] = None

    @field_validator("probs")
    @classmethod
    def _probs_bounded(cls, value: Dict[str, float]) -> Dict[str, float]:
        bad = {k: v for k, v in value.items() if not 0.0 <= v <= 1.0}
        if bad:
            raise ValueError(f"model probabilities outside [0, 1]: {bad}")
        return value


class PredictionsArtifact(BaseModel):
    season: int
    week: int = Field(ge=1)
    predictions: List[PredictionOut]


class CalibrationOut(BaseModel):
    type: str
    params: Dict[str, Any]
    source: str
    reason: str = ""
    prior_season: Optional[int] = None
    prior_week: Optional[int] = None
    hash: str = Field(min_length=64, max_length=64)


class BlendOut(BaseModel):
    models: List[str] = Field(min_length=1)
    weights: Dict[str, float]
    step: float = Field(gt=0.0, le=1.0)

    @field_validator("weights")
    @classmethod
    def _weights_on_simplex(cls, value: Dict[str, float]) -> Dict[str, float]:
        if any(w < 0.0 or w > 1.0 for w in value.values()):
            raise ValueError("blend weights must lie in [0, 1]")
        if abs(sum(value.values()) - 1.0) > 1e-6:
            raise ValueError(f"blend weights must sum to 1, got {sum(value.values()):.6f}")
        return value


class ModelArtifact(BaseModel):
    """Everything fitted for one week."""
    season: int
    week: int = Field(ge=1)
    feature_names: List[str] = Field(min_length=1)
    train_rows: int = Field(ge=1)
    scaler: Dict[str, List[float]]
    logistic: Optional[Dict[str, Any]]
    tree: Optional[Dict[str, Any]]
    bt: Optional[Dict[str, Any]]
    ann: Optional[Dict[str, Any]]
    online: Optional[Dict[str, Any]] = None
    blend: BlendOut
    calibration: CalibrationOut
    flags: List[ModelFlag] = []


class ContextArtifact(BaseModel):
    season: int
    week: int = Field(ge=1)
    historical: bool
    games: List[Dict[str, Any]]


class DiagnosticsArtifact(BaseModel):
    season: int
    week: int = Field(ge=1)
    train_rows: int
    test_rows: int
    labelled_games: int
    metrics: Dict[str, Dict[str, Any]]
    calibration: CalibrationOut
    blend: BlendOut
    flags: List[ModelFlag] = []


class SeasonIndexEntry(BaseModel):
    week: int = Field(ge=1)
    predictions_file: str
    model_file: str
    context_file: Optional[str] = None
    diagnostics_file: Optional[str] = None


class SeasonIndex(BaseModel):
    season: int
    weeks: List[SeasonIndexEntry]


class SeasonSummaryWeek(BaseModel):
    week: int = Field(ge=1)
    train_rows: int
    games: int
    forecast_games: int
    blend_weights: Dict[str, float]
    calibration_type: str
    log_loss: Optional[float] = None


class SeasonSummary(BaseModel):
    season: int
    built_through_week: Optional[int] = None
    feature_names: List[str]
    weeks: List[SeasonSummaryWeek]
    backtest: Optional[Dict[str, Any]] = None
