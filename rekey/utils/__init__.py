"""Utilities for rekey."""

from .files import FileManager
from .logging import setup_logging

__all__ = ["FileManager", "setup_logging"]
