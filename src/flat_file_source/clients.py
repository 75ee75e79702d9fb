# src/flat_file_source/clients.py

"""
Client wrappers for the two external collaborators of the pipeline.

`S3Client` wraps a raw boto3 S3 client and exposes only what the pipeline
needs: the object's size and a byte range of its body as a stream. botocore
errors are mapped onto the typed exceptions in `exceptions`.

`CloudEventsClient` delivers one CloudEvent to the sink over HTTP in binary
content mode, retrying transient failures with exponential backoff, and
reports a plain acknowledged / not-acknowledged outcome.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, BinaryIO, NoReturn, cast

import boto3
import requests
import tenacity
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from .config import AppConfig
from .exceptions import (
    S3AccessDeniedError,
    S3FetchError,
    S3ObjectNotFoundError,
    S3ThrottlingError,
    S3TimeoutError,
)
from .schemas import CloudEvent

if TYPE_CHECKING:
    from mypy_boto3_s3.client import S3Client as S3ClientType

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "NoSuchBucket", "404", "NotFound"}
_ACCESS_DENIED_CODES = {"AccessDenied", "403", "Forbidden"}
_THROTTLING_CODES = {
    "Throttling",
    "ThrottlingException",
    "RequestLimitExceeded",
    "SlowDown",
    "503",
}
_TIMEOUT_CODES = {"RequestTimeout", "RequestTimeoutException"}

# Statuses the CloudEvents HTTP protocol treats as worth another attempt.
RETRYABLE_STATUS_CODES = frozenset({404, 413, 425, 429, 502, 503, 504})


def build_s3_client(config: AppConfig) -> "S3Client":
    """
    Creates a boto3 S3 client from configuration and wraps it.

    A custom endpoint implies an S3-compatible store, which gets path-style
    addressing.
    """
    boto_config = BotoConfig(
        connect_timeout=config.s3_operation_timeout_seconds,
        read_timeout=config.s3_operation_timeout_seconds,
        retries={"max_attempts": 3, "mode": "standard"},
        s3={"addressing_style": "path" if config.endpoint_url else "auto"},
    )
    kwargs = {}
    if config.has_static_credentials:
        kwargs["aws_access_key_id"] = config.access_key
        kwargs["aws_secret_access_key"] = config.secret_key

    boto_client = boto3.client(
        "s3",
        region_name=config.region,
        endpoint_url=config.endpoint_url,
        config=boto_config,
        **kwargs,
    )
    logger.debug(
        "S3 client created",
        extra={
            "region": config.region,
            "endpoint_url": config.endpoint_url,
            "static_credentials": config.has_static_credentials,
        },
    )
    return S3Client(s3_client=boto_client)


class S3Client:
    """
    A wrapper for S3 client operations, focused on ranged streaming reads.
    """

    def __init__(self, s3_client: "S3ClientType"):
        """
        Initializes the S3Client.

        Args:
            s3_client: A typed boto3 S3 client.
        """
        self._client = s3_client

    def get_object_size(self, bucket: str, key: str) -> int:
        """Returns the object's length in bytes."""
        try:
            response = self._client.head_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            _raise_s3_error(e, "HeadObject", bucket, key)
        return int(response["ContentLength"])

    def get_range_stream(self, bucket: str, key: str, start: int, end: int) -> BinaryIO:
        """
        Retrieves bytes ``[start, end)`` of an object as a file-like stream.
        """
        byte_range = f"bytes={start}-{end - 1}"
        try:
            response = self._client.get_object(Bucket=bucket, Key=key, Range=byte_range)
        except (ClientError, BotoCoreError) as e:
            _raise_s3_error(e, "GetObject", bucket, key, byte_range=byte_range)
        return cast(BinaryIO, response["Body"])


def _raise_s3_error(
    error: Exception,
    operation: str,
    bucket: str,
    key: str,
    byte_range: str | None = None,
) -> NoReturn:
    """Maps a botocore error onto our exception types and raises it."""
    context = {"bucket": bucket, "key": key}
    if byte_range:
        context["range"] = byte_range

    if isinstance(error, ClientError):
        error_code = str(error.response.get("Error", {}).get("Code", ""))
        error_message = error.response.get("Error", {}).get("Message", str(error))
        context.update({"aws_error_code": error_code, "aws_error_message": error_message})

        if error_code in _NOT_FOUND_CODES:
            raise S3ObjectNotFoundError(bucket=bucket, key=key, context=context) from error
        elif error_code in _ACCESS_DENIED_CODES:
            raise S3AccessDeniedError(bucket=bucket, key=key, context=context) from error
        elif error_code in _THROTTLING_CODES:
            raise S3ThrottlingError(operation, context=context) from error
        elif error_code in _TIMEOUT_CODES:
            raise S3TimeoutError(operation, context=context) from error
        else:
            # For other client errors, wrap in a generic fetch error
            raise S3FetchError(
                operation, error_message, error_code="S3_CLIENT_ERROR", context=context
            ) from error

    if isinstance(error, (ReadTimeoutError, ConnectTimeoutError)):
        context["timeout_error"] = str(error)
        raise S3TimeoutError(operation, error_code="S3_READ_TIMEOUT", context=context) from error
    if isinstance(error, EndpointConnectionError):
        context["connection_error"] = str(error)
        raise S3TimeoutError(
            operation, error_code="S3_CONNECTION_ERROR", context=context
        ) from error
    raise S3FetchError(operation, str(error), context=context) from error


# --- CloudEvents delivery ---


@dataclass(frozen=True, slots=True)
class DeliveryContext:
    """Target and retry policy applied to every send."""

    target_url: str
    retries: int = 3
    retry_interval_seconds: float = 1.0
    timeout_seconds: float = 30.0

    @property
    def max_attempts(self) -> int:
        return self.retries + 1


class _RetryableDeliveryError(Exception):
    """Internal signal that a send attempt may be repeated."""

    def __init__(self, reason: str, status_code: int | None = None):
        super().__init__(reason)
        self.status_code = status_code


class CloudEventsClient:
    """
    Sends CloudEvents to an HTTP sink in binary content mode.
    """

    def __init__(self, session: requests.Session | None = None):
        self._session = session or requests.Session()

    def send(self, event: CloudEvent, context: DeliveryContext) -> bool:
        """
        Delivers one event, applying the context's retry count and
        exponential backoff. Returns True when the sink acknowledged it.
        """
        headers = event.binary_headers()
        body = event.body()

        def before_sleep_handler(retry_state: tenacity.RetryCallState) -> None:
            """Log retry attempts."""
            exception = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "Delivery attempt %d/%d for event %s failed: %s. Retrying in %.1fs...",
                retry_state.attempt_number,
                context.max_attempts,
                event.id,
                exception,
                retry_state.next_action.sleep if retry_state.next_action else 0,
            )

        retrying = tenacity.Retrying(
            stop=tenacity.stop_after_attempt(context.max_attempts),
            wait=tenacity.wait_exponential(multiplier=context.retry_interval_seconds),
            retry=tenacity.retry_if_exception_type(_RetryableDeliveryError),
            before_sleep=before_sleep_handler,
            reraise=True,
        )
        try:
            status_code = retrying(self._post, headers, body, context)
        except _RetryableDeliveryError as e:
            logger.error(
                "All delivery attempts failed",
                extra={
                    "event_id": event.id,
                    "attempts": context.max_attempts,
                    "status_code": e.status_code,
                    "reason": str(e),
                },
            )
            return False
        except requests.RequestException as e:
            logger.error(
                "Delivery failed with a non-retryable request error",
                extra={"event_id": event.id, "reason": f"{type(e).__name__}: {e}"},
            )
            return False

        if 200 <= status_code < 300:
            logger.debug(
                "Event acknowledged",
                extra={"event_id": event.id, "status_code": status_code},
            )
            return True

        logger.error(
            "Event rejected by sink",
            extra={"event_id": event.id, "status_code": status_code},
        )
        return False

    def _post(self, headers: dict[str, str], body: bytes, context: DeliveryContext) -> int:
        try:
            response = self._session.post(
                context.target_url,
                headers=headers,
                data=body,
                timeout=context.timeout_seconds,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise _RetryableDeliveryError(f"{type(e).__name__}: {e}") from e

        if response.status_code in RETRYABLE_STATUS_CODES:
            raise _RetryableDeliveryError(
                f"sink returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return response.status_code
