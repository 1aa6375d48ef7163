"""Capacity controller for multi-cluster release rollouts."""

from capacity_controller.__version__ import __version__

__all__ = ["__version__"]
