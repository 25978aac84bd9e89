# API routes package

from . import custom_metrics, stats

__all__ = [
    "custom_metrics",
    "stats",
]
