"""Flaky-aware build orchestration core."""

__version__ = "0.1.0"
