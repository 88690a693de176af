"""Monitoring package for logging."""

from driver_assignments.monitoring.logger import configure_logger
from driver_assignments.monitoring.logger import log_http_exchange

__all__ = [
    "configure_logger",
    "log_http_exchange",
]
