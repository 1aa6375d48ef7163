"""Logging configuration for capacity_controller."""

from capacity_controller.logging.config import configure_logging, get_logger

__all__ = ["configure_logging", "get_logger"]
