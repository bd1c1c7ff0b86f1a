"""Staged infrastructure change orchestration with approval gates."""

__version__ = "0.1.0"
