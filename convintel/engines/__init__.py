"""Deterministic rule engines over stored contact records."""
