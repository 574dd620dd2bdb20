"""Route group exports."""

from . import fleet, health, metrics, pricing, rides, stream

__all__ = ["fleet", "health", "metrics", "pricing", "rides", "stream"]
