"""
Exception types for the device trust core.

Signature checks never raise: a failed verification is a boolean result.
"""


class DeviceTrustError(Exception):
    """Base class for all device trust errors."""
    pass


class KeyNotInitialized(DeviceTrustError):
    """Raised when identity key material is used before it was generated or loaded."""
    pass


class InvalidArgument(DeviceTrustError, ValueError):
    """Raised when an operation receives an argument it cannot accept."""
    pass


class CanonicalEncodingError(InvalidArgument):
    """Raised when a value cannot be represented in canonical JSON."""
    pass


class InvalidState(DeviceTrustError):
    """Raised when a verification session operation is not allowed in its current state."""
    pass


class TransportFailure(DeviceTrustError):
    """Raised by a session coordinator when a message could not be delivered."""
    pass


class SecretStorageError(DeviceTrustError):
    """Raised when persisted key material cannot be read or written."""
    pass
