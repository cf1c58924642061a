"""Adaptive multi-strategy request routing and anti-detection engine."""

__version__ = "1.0.0"
