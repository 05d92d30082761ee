from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

# Base directory for the project (repo root)
PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class DataConfig:
    """Data storage paths and defaults."""

    cache_dir: Path = PROJECT_ROOT / "data" / "cache"
    # Local drop-in directory for feed datasets (injuries, markets, weather)
    feeds_dir: Path = PROJECT_ROOT / "data" / "feeds"
    artifacts_dir: Path = PROJECT_ROOT / "artifacts"
    default_season: int = 2024

    @classmethod
    def from_env(cls) -> "DataConfig":
        base = cls()
        feeds = os.environ.get("NFL_FORECAST_FEEDS_DIR")
        artifacts = os.environ.get("NFL_FORECAST_ARTIFACTS_DIR")
        return cls(
            cache_dir=base.cache_dir,
            feeds_dir=Path(feeds) if feeds else base.feeds_dir,
            artifacts_dir=Path(artifacts) if artifacts else base.artifacts_dir,
            default_season=_env_int("SEASON", base.default_season),
        )


@dataclass(frozen=True)
class SourceConfig:
    """
    Retry / timeout policy for remote dataset fetches.

    Attributes
    ----------
    max_retries:
        Attempts per candidate for transient failures (a 404 is never retried).
    backoff_initial:
        First retry delay in seconds; multiplied by `backoff_factor` each retry.
    jitter:
        Upper bound (seconds) of the uniform random jitter added to each delay.
    """

    max_retries: int = 3
    backoff_initial: float = 0.5
    backoff_factor: float = 2.0
    jitter: float = 0.25
    timeout: float = 30.0
    user_agent: str = "nfl-forecast/0.1 (+https://github.com/nflverse)"
    github_token: Optional[str] = None

    @classmethod
    def from_env(cls) -> "SourceConfig":
        base = cls()
        backoff_ms = _env_float("DATA_RETRY_BACKOFF_MS", base.backoff_initial * 1000.0)
        return cls(
            max_retries=max(1, _env_int("DATA_RETRY_ATTEMPTS", base.max_retries)),
            backoff_initial=max(0.0, backoff_ms / 1000.0),
            backoff_factor=base.backoff_factor,
            jitter=base.jitter,
            timeout=base.timeout,
            user_agent=base.user_agent,
            github_token=os.environ.get("GITHUB_TOKEN") or None,
        )


@dataclass(frozen=True)
class ModelConfig:
    """Hyper-parameters for the per-week estimator ensemble."""

    # Gradient-descent logistic regression
    logistic_steps: int = 3500
    logistic_lr: float = 4e-3
    logistic_l2: float = 2e-4

    # CART tree
    tree_max_depth: int = 4
    tree_min_samples_split: int = 20

    # Pairwise (Bradley-Terry) ratings
    bt_epochs: int = 30
    bt_lr: float = 0.05
    bt_l2: float = 1e-3

    # Feed-forward network committee
    ann_hidden: Tuple[int, ...] = (32, 16)
    ann_seeds: Tuple[int, ...] = (11, 23, 37, 41, 59)
    ann_max_iter: int = 300
    ann_alpha: float = 1e-3

    # Incremental logistic (reported, never blended)
    use_online_logistic: bool = True

    # Blending
    blend_step: float = 0.05
    blend_models: Tuple[str, ...] = ("logistic", "tree")


@dataclass(frozen=True)
class CalibrationConfig:
    """Constants for the calibration fallback chain."""

    league_prior: float = 0.56
    league_lambda: float = 0.85
    platt_max_iter: int = 200
    platt_tol: float = 1e-6
    variance_floor: float = 1e-6
    min_labels: int = 3
    isotonic_floor: float = 0.001
    isotonic_ceiling: float = 0.999
    prior_lookback_seasons: int = 3


@dataclass(frozen=True)
class LogConfig:
    """Logging and results paths."""

    logs_dir: Path = PROJECT_ROOT / "logs"
    level: str = "INFO"
    log_to_file: bool = False
    fmt: str = "%(asctime)s  %(levelname)-8s  %(message)s"
    datefmt: str = "%H:%M:%S"

    @classmethod
    def from_env(cls) -> "LogConfig":
        base = cls()
        return cls(
            logs_dir=base.logs_dir,
            level=os.environ.get("NFL_FORECAST_LOG_LEVEL", base.level).upper(),
            log_to_file=os.environ.get("NFL_FORECAST_LOG_FILE", "") not in ("", "0", "false"),
        )


@dataclass(frozen=True)
class WalkForwardConfig:
    """
    Controls the week loop of a walk-forward run.

    Attributes
    ----------
    start_week:
        First week to forecast. Week 1 has no same-season history, so the
        default starts at 2.
    end_week:
        Last week to forecast. If None, one week past the last decided
        week (capped at the last scheduled week).
    include_prior_season:
        Add the previous season's labelled rows to every training slice.
    use_pbp_features:
        Append play-by-play EPA features (requires the pbp dataset).
    overwrite:
        Allow re-writing per-week artifacts that already exist.
    """

    start_week: int = 2
    end_week: Optional[int] = None
    include_prior_season: bool = False
    use_pbp_features: bool = False
    build_context: bool = True
    write_artifacts: bool = True
    overwrite: bool = False
    backtest_burn_in: int = 4


# Global config instances
DATA_CONFIG = DataConfig.from_env()
SOURCE_CONFIG = SourceConfig.from_env()
MODEL_CONFIG = ModelConfig()
CALIBRATION_CONFIG = CalibrationConfig()
LOG_CONFIG = LogConfig.from_env()
