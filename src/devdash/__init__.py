"""Stale-while-revalidate dashboard core for per-device panels."""

__version__ = "0.1.0"
