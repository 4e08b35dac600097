"""Domain-specific errors for wifiprov."""


class ProvisioningError(Exception):
    """Base error for wifiprov."""


class InvalidStateError(ProvisioningError):
    """Raised when a session operation is requested out of order."""


class UnknownDeviceError(ProvisioningError):
    """Raised when a device identifier was never discovered in this scan."""


class InvalidInputError(ProvisioningError):
    """Raised when credentials fail validation before any write is issued."""


class DeviceSelectionError(ProvisioningError):
    """Raised when a device hint cannot resolve a single target."""


class SessionTimeoutError(ProvisioningError):
    """Raised when a blocking client call saw no session progress in time."""


class ProfileValidationError(ProvisioningError):
    """Raised when a profile file does not conform to schema or semantics."""


class ProfileLoadError(ProvisioningError):
    """Raised when loading profile sources fails."""


class TransportError(ProvisioningError):
    """Base transport error."""


class TransportUnavailableError(TransportError):
    """Raised when the BLE backend cannot be used on this host."""
