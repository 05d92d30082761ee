"""Data access: source gateway, column normalization, pre-game context and features."""
