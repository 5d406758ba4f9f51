"""
Core utilities shared across the monitor.
"""

from .database import PostgresConfig, PostgresConnection
from .errors import (
    ClassificationError,
    ConfigurationError,
    DeliveryFailure,
    MonitorError,
    SchedulerBusyError,
    StorageError,
    TransientFetchError,
)
from .logger import setup_logging
from .retry import HttpClient, fetch_with_retry

__all__ = [
    "PostgresConfig",
    "PostgresConnection",
    "setup_logging",
    "HttpClient",
    "fetch_with_retry",
    "MonitorError",
    "TransientFetchError",
    "StorageError",
    "ClassificationError",
    "DeliveryFailure",
    "ConfigurationError",
    "SchedulerBusyError",
]
