from __future__ import annotations

import logging
from datetime import datetime

from nfl_forecast.config import LOG_CONFIG, LogConfig


def configure_logging(config: LogConfig | None = None) -> logging.Logger:
    """
    Configure the root logger for script entry points.

    Library modules never call this; they only do
    ``log = logging.getLogger(__name__)``.
    """
    if config is None:
        config = LOG_CONFIG

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if config.log_to_file:
        config.logs_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        handlers.append(logging.FileHandler(config.logs_dir / f"walk_forward_{stamp}.log"))

    logging.basicConfig(
        level=getattr(logging, config.level, logging.INFO),
        format=config.fmt,
        datefmt=config.datefmt,
        handlers=handlers,
        force=True,
    )
    return logging.getLogger("nfl_forecast")
