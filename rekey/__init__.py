"""rekey - secret lifecycle management for self-hosted database platform instances."""

__version__ = "0.1.0"
__author__ = "rekey maintainers"
