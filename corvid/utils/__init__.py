"""Utility modules for corvid."""

from corvid.utils.logging import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
