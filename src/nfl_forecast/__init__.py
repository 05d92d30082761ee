"""
nfl_forecast

Walk-forward weekly NFL game forecasting.

Structure:
- data: source gateway, normalization, context bundles, feature engineering
- models: per-week estimators, blending and calibration
- evaluation: walk-forward splits, metrics, backtest aggregation
- artifacts: contracts, validation and JSON artifact output
- serving: the weekly walk-forward trainer and explanations
- utils: logging setup and numeric helpers
"""

__all__ = ["config", "errors", "records"]
