"""driver_assignments."""

from .monitoring.logger import configure_logger

# Configure logger with default settings (just console logging)
# File logging can be enabled by calling configure_logger with Settings values
configure_logger()
