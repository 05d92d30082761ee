"""
Walk-forward training run for one season.

Loads the season's inputs through the source gateway, trains every week in
order and writes the weekly artifacts plus the season index and summary.

Example:
    python run_walk_forward.py --season 2024 --start-week 2 --end-week 10
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

# Ensure src/ is on sys.path
PROJECT_ROOT = Path(__file__).resolve().parent
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from nfl_forecast.artifacts.writer import ArtifactWriter  # noqa: E402
from nfl_forecast.config import DataConfig, LogConfig, SourceConfig, WalkForwardConfig  # noqa: E402
from nfl_forecast.data.loaders.catalog import default_catalog  # noqa: E402
from nfl_forecast.data.loaders.sources import SourceGateway  # noqa: E402
from nfl_forecast.errors import ForecastError  # noqa: E402
from nfl_forecast.serving.pipeline import WalkForwardTrainer  # noqa: E402
from nfl_forecast.utils.log import configure_logging  # noqa: E402

log = logging.getLogger("nfl_forecast.run")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    data_config = DataConfig.from_env()
    parser = argparse.ArgumentParser(description="Walk-forward weekly NFL forecasts")
    parser.add_argument("--season", type=int, default=data_config.default_season)
    parser.add_argument("--start-week", type=int, default=None)
    parser.add_argument("--end-week", type=int, default=None)
    parser.add_argument("--artifacts-dir", type=Path, default=data_config.artifacts_dir)
    parser.add_argument("--include-prior-season", action="store_true", help="train on last season's games too")
    parser.add_argument("--pbp", action="store_true", help="add play-by-play EPA features")
    parser.add_argument("--no-context", action="store_true", help="skip context bundles")
    parser.add_argument("--dry-run", action="store_true", help="train but write nothing")
    parser.add_argument("--overwrite", action="store_true", help="replace existing weekly artifacts")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(LogConfig.from_env())
    data_config = DataConfig.from_env()

    run_config = replace(
        WalkForwardConfig(),
        include_prior_season=args.include_prior_season,
        use_pbp_features=args.pbp,
        build_context=not args.no_context,
        write_artifacts=not args.dry_run,
        overwrite=args.overwrite,
    )
    gateway = SourceGateway(catalog=default_catalog(data_config.feeds_dir), config=SourceConfig.from_env())
    trainer = WalkForwardTrainer(
        gateway=gateway,
        config=run_config,
        writer=ArtifactWriter(args.artifacts_dir, overwrite=args.overwrite),
    )

    try:
        results = trainer.run(args.season, start_week=args.start_week, end_week=args.end_week)
    except ForecastError as exc:
        log.error("Run failed: %s", exc.to_dict())
        return 1

    if not results:
        log.warning("No weeks trained for season %s", args.season)
        return 0
    last = results[-1]
    log.info(
        "Done: %d weeks, latest W%02d (%d games, calibration=%s)",
        len(results),
        last.week,
        len(last.predictions),
        last.calibration.state.type,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
