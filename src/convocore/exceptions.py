# src/convocore/exceptions.py
"""
Custom exceptions for the ConvoCore library.

This module defines a hierarchy of exception classes so that applications
can tell apart bad session references, schema violations on custom values,
missing provider wiring and transport failures during generation.
"""

from typing import Optional


class ConvoCoreError(Exception):
    """Base class for all ConvoCore specific errors."""
    def __init__(self, message: str = "An unspecified error occurred in ConvoCore."):
        super().__init__(message)


class ConfigError(ConvoCoreError):
    """Raised for errors related to configuration loading or validation."""
    def __init__(self, message: str = "Configuration error."):
        super().__init__(message)


class InvalidSessionReference(ConvoCoreError):
    """
    Raised when an operation requires a session but the given (or currently
    selected) session id does not exist.
    """
    def __init__(self, session_id: Optional[str] = None, message: str = "Invalid session reference."):
        self.session_id = session_id
        super().__init__(f"{message} Session ID: '{session_id}'")


class InvalidArgumentType(ConvoCoreError):
    """Raised when a setter receives a value of the wrong semantic type."""
    def __init__(self, field: str = "value", expected: str = "unknown", actual: str = "unknown"):
        self.field = field
        self.expected = expected
        self.actual = actual
        super().__init__(f"Invalid type for '{field}': expected {expected}, got {actual}.")


class CustomValueError(ConvoCoreError):
    """Base class for errors on caller-defined custom values."""
    def __init__(self, name: str = "", message: str = "Invalid custom value."):
        self.name = name
        super().__init__(message)


class CustomValueTypeConflict(CustomValueError):
    """Raised when a custom value is set with a type different from the one first recorded."""
    def __init__(self, name: str, recorded_type: str, new_type: str):
        self.recorded_type = recorded_type
        self.new_type = new_type
        super().__init__(name, f"Invalid custom value type! {name}: {recorded_type} != {new_type}")


class CustomValueNameConflict(CustomValueError):
    """Raised when a custom value name collides with a built-in session field or its event."""
    def __init__(self, name: str):
        super().__init__(name, f"The value name '{name}' is already used by a session field.")


class CustomValueNotRegistered(CustomValueError):
    """Raised when resetting or erasing a custom value that was never set."""
    def __init__(self, name: str):
        super().__init__(name, f"Custom value '{name}' is not registered in this session.")


class MalformedModelDescriptor(ConvoCoreError):
    """Raised when something other than a mapping or ModelDescriptor is inserted into the model catalog."""
    def __init__(self, message: str = "Model data must be a valid object."):
        super().__init__(message)


class InternalChannelUnavailable(ConvoCoreError):
    """Raised when the internal notification channel is requested a second time."""
    def __init__(self, message: str = "Access denied: the internal channel can only be acquired once."):
        super().__init__(message)


class ProviderError(ConvoCoreError):
    """Base class for errors raised around a provider adapter."""
    def __init__(self, provider_name: str = "Unknown", message: str = "Provider error."):
        self.provider_name = provider_name
        super().__init__(f"Error with provider '{provider_name}': {message}")


class ProviderNotConfigured(ProviderError):
    """Raised when a network-bound operation is invoked before a provider was registered."""
    def __init__(self, operation: str = "unknown"):
        self.operation = operation
        super().__init__("none", f"No provider configured for operation '{operation}'.")


class TransportFailure(ProviderError):
    """
    Raised when the network transport fails (rejected request, non-success
    status, broken stream). Terminates the whole generation call.
    """
    def __init__(self, provider_name: str = "Unknown", message: str = "Transport failure.", status: Optional[int] = None):
        self.status = status
        super().__init__(provider_name, message)


class StreamDecodeFailure(ConvoCoreError):
    """
    Describes a stream fragment that could not be decoded even after repair.
    The stream aggregator logs and skips these; they are never raised out
    of a streaming call.
    """
    def __init__(self, raw_chunk: str = "", repaired: str = "", index: int = -1):
        self.raw_chunk = raw_chunk
        self.repaired = repaired
        self.index = index
        super().__init__(f"Could not decode stream fragment #{index}.")
