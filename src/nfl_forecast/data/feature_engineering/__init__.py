"""
Feature engineering for the walk-forward models.

Responsibilities
----------------
- Reconcile per-week and season-to-date team statistics.
- Build team-game long format (two rows per game: one per team).
- Add schedule/rest features and leak-free pre-game Elo.
- Add leak-free rolling & expanding features grouped by [team, season].
- Add opponent differentials and pre-game weather covariates.

Usage example
-------------
    from nfl_forecast.data.feature_engineering.feature_builder import FeatureBuilder

    builder = FeatureBuilder()
    features = builder.build_features(inputs, inputs.season)
"""

# Intentionally keep this file light to avoid circular imports.
# Import concrete modules where you need them.
