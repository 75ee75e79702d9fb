# src/flat_file_source/exceptions.py

"""
Shared custom exceptions for the S3 flat file source.

Keeping every exception in one module lets the clients, the pipeline and the
entry points raise and catch the same types without importing each other.

Exception Hierarchy:
- FlatFileSourceError (base)
  - RetryableError (transient, a later run may succeed)
    - S3ThrottlingError
    - S3TimeoutError
    - S3FetchError
  - NonRetryableError (rerunning will not help)
    - S3ObjectNotFoundError
    - S3AccessDeniedError
    - ConfigurationError
    - InvalidOverridesError
    - PayloadEncodingError
"""

from typing import Any, Dict, Optional


class FlatFileSourceError(Exception):
    """Base exception for all flat file source errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.context = dict(context) if context else {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "error_message": self.message,
            "context": self.context,
            "retryable": isinstance(self, RetryableError),
        }


class RetryableError(FlatFileSourceError):
    """Base class for errors that may clear up on a later attempt."""

    pass


class NonRetryableError(FlatFileSourceError):
    """Base class for errors that will not clear up on their own."""

    pass


# === S3-Related Errors ===


class S3Error(FlatFileSourceError):
    """Base class for object store errors."""

    pass


class S3ObjectNotFoundError(S3Error, NonRetryableError):
    """Raised when the requested object does not exist."""

    def __init__(self, bucket: str, key: str, **kwargs):
        message = f"S3 object not found: s3://{bucket}/{key}"
        context = {"bucket": bucket, "key": key}
        context.update(kwargs.pop("context", {}))
        super().__init__(
            message, error_code="S3_OBJECT_NOT_FOUND", context=context, **kwargs
        )


class S3AccessDeniedError(S3Error, NonRetryableError):
    """Raised when access to the object is denied."""

    def __init__(self, bucket: str, key: str, **kwargs):
        message = f"Access denied to S3 object: s3://{bucket}/{key}"
        context = {"bucket": bucket, "key": key}
        context.update(kwargs.pop("context", {}))
        super().__init__(
            message, error_code="S3_ACCESS_DENIED", context=context, **kwargs
        )


class S3ThrottlingError(S3Error, RetryableError):
    """Raised when object store requests are being throttled."""

    def __init__(self, operation: str, **kwargs):
        message = f"S3 operation throttled: {operation}"
        context = {"operation": operation}
        context.update(kwargs.pop("context", {}))
        super().__init__(message, error_code="S3_THROTTLING", context=context, **kwargs)


class S3TimeoutError(S3Error, RetryableError):
    """Raised when an object store request times out or cannot connect."""

    def __init__(self, operation: str, **kwargs):
        message = f"S3 operation timed out or could not connect: {operation}"
        context = {}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        # Our keys win over caller-provided ones.
        context.update({"operation": operation})
        kwargs.setdefault("error_code", "S3_TIMEOUT")
        super().__init__(message, context=context, **kwargs)


class S3FetchError(S3Error, RetryableError):
    """Raised for any other failure while querying or fetching the object."""

    def __init__(self, operation: str, reason: str, **kwargs):
        message = f"S3 {operation} failed: {reason}"
        context = {"operation": operation, "reason": reason}
        context.update(kwargs.pop("context", {}))
        kwargs.setdefault("error_code", "S3_FETCH_FAILED")
        super().__init__(message, context=context, **kwargs)


# === Configuration Errors ===


class ConfigurationError(NonRetryableError):
    """Raised when there's an error in the application configuration."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code="CONFIGURATION_ERROR", **kwargs)


class InvalidOverridesError(NonRetryableError):
    """Raised when the CloudEvent overrides cannot be parsed."""

    def __init__(self, raw: str, reason: str, **kwargs):
        message = f"Unparseable CloudEvents overrides {raw}: {reason}"
        context = {"raw": raw, "reason": reason}
        super().__init__(
            message, error_code="INVALID_CE_OVERRIDES", context=context, **kwargs
        )


# === Delivery Errors ===


class PayloadEncodingError(NonRetryableError):
    """Raised when a batch cannot be serialized into an event payload."""

    def __init__(self, event_id: str, reason: str, **kwargs):
        message = f"Failed to encode payload for event {event_id}: {reason}"
        context = {"event_id": event_id, "reason": reason}
        super().__init__(
            message, error_code="PAYLOAD_ENCODING_FAILED", context=context, **kwargs
        )


# === Utility Functions ===


def is_retryable_error(error: Exception) -> bool:
    """Check if an error is retryable."""
    return isinstance(error, RetryableError)


def get_error_context(error: Exception) -> Dict[str, Any]:
    """Extract error context for logging."""
    if isinstance(error, FlatFileSourceError):
        return error.to_dict()
    else:
        return {
            "error_type": error.__class__.__name__,
            "error_message": str(error),
            "retryable": False,  # Unknown errors default to non-retryable
        }
