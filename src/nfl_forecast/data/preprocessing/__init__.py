"""Game-level preprocessing of the schedules table."""
