"""Core helpers shared by the board store and the sync layer."""

from .async_utils import run_sync

__all__ = ["run_sync"]
