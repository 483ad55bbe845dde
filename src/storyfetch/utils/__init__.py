"""Utility modules for storyfetch."""

from .query import chunk, stable_key, stringify_params

__all__ = ["chunk", "stable_key", "stringify_params"]
