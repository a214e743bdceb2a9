"""Cadence CLI - recurring job scheduler with bounded concurrency."""

__app_name__ = "cadence"
__version__ = "0.1.0"
