"""Exception types raised by the monitor components."""


class MonitorError(Exception):
    """Base class for heartbeat monitor failures."""


class ConfigurationError(MonitorError):
    """A required startup setting is missing or invalid. Fatal."""


class FetchError(MonitorError):
    """The log store query failed or returned an unexpected shape."""


class InventoryError(MonitorError):
    """The cloud inventory lookup failed during a cache refresh."""


class EmitError(MonitorError):
    """The metrics sink rejected or never received the batch."""
