"""Errors raised by the query-log monitor."""


class ToggleError(Exception):
    """Base class for failures of a logging toggle."""


class ConfigPersistError(ToggleError):
    """Raised when the proxy configuration could not be written."""


class ServiceOperationError(ToggleError):
    """Raised when install/start/restart of the proxy failed or did not converge."""


class FileAccessError(ToggleError):
    """Raised when the query log file is missing or unreadable."""


class BusyError(ToggleError):
    """Raised when a toggle is requested while another one is in flight."""
