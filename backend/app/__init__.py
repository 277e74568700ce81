"""Glide to database synchronization service."""

from app import logging_config  # noqa: F401  registers the TRACE level

__version__ = "0.1.0"
