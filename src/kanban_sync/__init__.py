"""Offline-first board state synchronization core."""

__version__ = "0.1.0"
