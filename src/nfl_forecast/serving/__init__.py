"""
Weekly publication.

``pipeline.WalkForwardTrainer`` runs the weeks of a season in order and
writes predictions, model, context and diagnostics artifacts;
``explain`` produces the natural-language summaries and top drivers.
"""

__all__: list[str] = []
