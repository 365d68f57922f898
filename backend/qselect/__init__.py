"""Deterministic question selection and anti-repetition service."""

__version__ = "1.0.0"
