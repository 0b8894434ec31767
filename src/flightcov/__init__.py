"""Aerial-survey overlap and ground-sample-distance analysis."""

__version__ = "0.3.0"
