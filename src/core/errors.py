"""
Exception hierarchy shared by the sampler, the detector and the notifier.
"""


class MonitorError(Exception):
    """Base class for all CCU monitor errors"""


class TransientFetchError(MonitorError):
    """A single network/site fetch failed and may succeed on retry"""

    def __init__(self, message: str, url: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class StorageError(MonitorError):
    """Read or write against the catalog/ledger failed"""


class ClassificationError(MonitorError):
    """The classifier could not read the baseline window for a game"""


class DeliveryFailure(MonitorError):
    """The external messaging channel rejected or failed to send a message"""


class ConfigurationError(MonitorError):
    """Malformed or missing required settings (fatal at startup)"""


class SchedulerBusyError(MonitorError):
    """A sampling run is already active"""
