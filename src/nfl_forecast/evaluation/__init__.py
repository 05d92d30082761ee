"""Walk-forward splits, probability metrics and backtest aggregation."""
