"""Aggregated PMDP departure boards with an adaptive file cache."""

__version__ = "0.1.0"
