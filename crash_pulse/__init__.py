"""Crash Pulse - collision and census reconciliation for NYC census tracts."""

__version__ = "0.1.0"
