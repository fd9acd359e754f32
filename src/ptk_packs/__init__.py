"""Patrol Toolkit resort packs."""

__version__ = "0.1.0"
