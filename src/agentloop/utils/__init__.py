"""Shared utilities."""

from .logging import get_log_path, get_logger, resolve_level, setup_logging

__all__ = ["setup_logging", "resolve_level", "get_logger", "get_log_path"]
