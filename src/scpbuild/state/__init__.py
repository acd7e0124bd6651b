"""Persisted build state for scpbuild."""

from .build_state import BuildStateError, BuildStateStore

__all__ = [
    "BuildStateStore",
    "BuildStateError",
]
