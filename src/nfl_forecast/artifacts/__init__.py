"""Artifact contracts, validation and JSON output."""
