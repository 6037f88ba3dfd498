"""
Logging setup for the sync engine.
"""
import logging


def setup_logging(service_name: str = "jobsync", log_level: str = "INFO") -> logging.Logger:
    """
    Configure the package logger once.

    Module loggers (``logging.getLogger(__name__)``) propagate to it.

    Args:
        service_name: Name of the service for log identification
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(service_name)
    logger.setLevel(getattr(logging, log_level.upper()))

    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            f'%(asctime)s - {service_name} - %(name)s - %(levelname)s - %(message)s'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
