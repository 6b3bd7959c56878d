"""Pocket Guardian: motion-triggered emergency alerting."""

__version__ = "0.1.0"
