"""Utility functions and helpers."""

from src.utils.logging_config import setup_logging

__all__ = ["setup_logging"]
