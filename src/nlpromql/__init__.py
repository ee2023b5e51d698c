"""Resolve natural-language query tokens into scored Prometheus context."""

__version__ = "0.1.0"
