# src/flat_file_source/sources.py

"""
Event sources and the driver that runs them.

An event source is set up in three steps, always in the same order: build
the delivery context, build the transport, then generate and deliver events.
`source_events` is the only caller of these steps.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

from .clients import CloudEventsClient, DeliveryContext, S3Client, build_s3_client
from .config import AppConfig
from .core import Result, run_pipeline
from .schemas import CloudEventOverrides

logger = logging.getLogger(__name__)


class EventSource(ABC):
    """Lifecycle shared by every source that feeds events to a sink."""

    @abstractmethod
    def set_context(self) -> None:
        """Prepare the delivery target and retry policy."""

    @abstractmethod
    def construct_client(self) -> None:
        """Create the client used to deliver events."""

    @abstractmethod
    def generate_events(self) -> Any:
        """Produce and deliver events, returning a summary of the run."""


def source_events(source: EventSource) -> Any:
    """Runs a source's lifecycle in order and returns what it generated."""
    source.set_context()
    source.construct_client()
    return source.generate_events()


class S3FlatFileSource(EventSource):
    """
    Streams one line-delimited S3 object to the sink, one event per batch of lines.
    """

    def __init__(
        self,
        config: AppConfig,
        s3_client: S3Client | None = None,
        transport: CloudEventsClient | None = None,
    ):
        self.config = config
        self._s3_client = s3_client
        self._transport = transport
        self._context: DeliveryContext | None = None

    @property
    def context(self) -> DeliveryContext | None:
        return self._context

    def set_context(self) -> None:
        self._context = DeliveryContext(
            target_url=self.config.sink_url,
            retries=self.config.retry_count,
            retry_interval_seconds=self.config.retry_interval_seconds,
            timeout_seconds=self.config.sink_timeout_seconds,
        )

    def construct_client(self) -> None:
        if self._transport is None:
            self._transport = CloudEventsClient()

    def generate_events(self) -> Result:
        if self._context is None or self._transport is None:
            raise RuntimeError(
                "set_context() and construct_client() must run before generate_events()"
            )

        overrides = None
        if self.config.ce_overrides:
            overrides = CloudEventOverrides.from_json(self.config.ce_overrides)
            logger.debug(
                "Loaded CloudEvent overrides",
                extra={"extensions": sorted(overrides.extensions)},
            )

        if self._s3_client is None:
            self._s3_client = build_s3_client(self.config)

        logger.info(
            "Starting flat file transfer",
            extra={
                "bucket": self.config.bucket,
                "key": self.config.key,
                "chunk_size_mb": self.config.chunk_size_mb,
                "dump_count": self.config.dump_count,
                "sink": self.config.sink_url,
            },
        )
        return run_pipeline(
            self._s3_client,
            self.config.bucket,
            self.config.key,
            transport=self._transport,
            context=self._context,
            chunk_size=self.config.chunk_size,
            dump_count=self.config.dump_count,
            overrides=overrides,
            max_consecutive_read_errors=self.config.max_consecutive_read_errors,
        )
