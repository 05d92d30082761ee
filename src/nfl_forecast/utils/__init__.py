"""Shared helpers (logging setup, numeric guards)."""
