# exceptions.py


class IPScanError(Exception):
    """Base class for all errors raised by the scanner core."""


class ValidationError(IPScanError, ValueError):
    """Malformed address, mask or prefix length."""


class NoInterfaceFound(IPScanError):
    """No usable network interface could be selected for a scan."""

    def __init__(self, message: str = "No suitable network interface found"):
        super().__init__(message)


class ScanCancelled(IPScanError):
    """The cancellation event was set while a sweep was running."""

    def __init__(self, message: str = "Scan was cancelled"):
        super().__init__(message)


class StorageError(IPScanError):
    """The device inventory could not be written to its backing store."""


class ConfigurationError(IPScanError):
    """Settings failed validation."""
