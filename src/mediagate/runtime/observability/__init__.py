"""Observability: logging configuration."""

from .logging import JsonFormatter, configure_logging, reset_logging

__all__ = ["JsonFormatter", "configure_logging", "reset_logging"]
