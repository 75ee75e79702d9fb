"""
Shared fixtures for unit tests.
"""

from __future__ import annotations

import dataclasses
import io
import logging
import os
import types
import uuid
from unittest.mock import MagicMock

import pytest

from flat_file_source.clients import DeliveryContext
from flat_file_source.config import AppConfig


@pytest.fixture(scope="session", autouse=True)
def _env_vars():
    """
    Ensures a deterministic environment for every test run.
    Overwrite *only* the variables needed by the entry points.
    """
    original = os.environ.copy()
    os.environ.setdefault("K_SINK", "http://sink.test.local")
    os.environ.setdefault("S3_BUCKET", "newbucket")
    os.environ.setdefault("S3_FILE_NAME", "t1.txt")
    os.environ.setdefault("S3_REGION", "eu-central-1")
    os.environ.setdefault("POWERTOOLS_SERVICE_NAME", "flat-file-source-test")
    os.environ.setdefault("POWERTOOLS_TRACE_DISABLED", "true")
    os.environ.setdefault("POWERTOOLS_LOG_LEVEL", "INFO")
    yield
    os.environ.clear()
    os.environ.update(original)


class RecordingTransport:
    """Stand-in for the HTTP transport that records every event it is given."""

    def __init__(self, outcomes: list[bool] | None = None):
        self.events = []
        self.contexts = []
        self._outcomes = list(outcomes or [])

    def send(self, event, context) -> bool:
        self.events.append(event)
        self.contexts.append(context)
        if self._outcomes:
            return self._outcomes.pop(0)
        return True

    @property
    def payloads(self) -> list[str]:
        return [event.data.data for event in self.events]

    @property
    def ids(self) -> list[str]:
        return [event.id for event in self.events]


@pytest.fixture
def make_transport():
    """Factory for a RecordingTransport; pass the ack outcome of each send in order."""
    return RecordingTransport


@pytest.fixture
def make_s3_client():
    """
    Factory for a mocked S3Client serving *content* from memory.

    Every range request is recorded in ``requested_ranges``.
    """

    def _factory(content: bytes) -> MagicMock:
        client = MagicMock()
        client.requested_ranges = []
        client.get_object_size.return_value = len(content)

        def _get_range_stream(bucket, key, start, end):
            client.requested_ranges.append((start, end))
            return io.BytesIO(content[start:end])

        client.get_range_stream.side_effect = _get_range_stream
        return client

    return _factory


@pytest.fixture
def delivery_context() -> DeliveryContext:
    return DeliveryContext(
        target_url="http://sink.test.local",
        retries=0,
        retry_interval_seconds=0,
        timeout_seconds=5,
    )


@pytest.fixture
def app_config() -> AppConfig:
    """A valid configuration that tests can tweak with dataclasses.replace."""
    return AppConfig(
        sink_url="http://sink.test.local",
        bucket="newbucket",
        key="t1.txt",
        ce_overrides=None,
        dump_count=5,
        retry_count=0,
        retry_interval_seconds=0,
        sink_timeout_seconds=5,
        region="eu-central-1",
        endpoint_url=None,
        access_key=None,
        secret_key=None,
        chunk_size=100,
        s3_operation_timeout_seconds=5,
        max_consecutive_read_errors=3,
        service_name="flat-file-source-test",
        log_level="INFO",
    )


@pytest.fixture
def replace_config(app_config):
    def _replace(**changes) -> AppConfig:
        return dataclasses.replace(app_config, **changes)

    return _replace


@pytest.fixture
def lambda_context():
    """A *very* small stand-in for the LambdaContext object."""
    return types.SimpleNamespace(
        function_name="flat-file-source",
        memory_limit_in_mb=256,
        aws_request_id="req-" + uuid.uuid4().hex,
        invoked_function_arn="arn:aws:lambda:eu-central-1:000000000000:function:flat-file-source",
        get_remaining_time_in_millis=lambda: 30000,
    )


@pytest.fixture
def pipeline_logs(caplog, monkeypatch):
    """
    Captures WARNING and above from the pipeline logger. The app module stops
    package loggers from propagating once imported, so the capture handler is
    attached to the logger directly and propagation is switched off for the
    test either way.
    """
    core_logger = logging.getLogger("flat_file_source.core")
    monkeypatch.setattr(core_logger, "propagate", False)
    core_logger.addHandler(caplog.handler)
    caplog.set_level(logging.WARNING, logger="flat_file_source.core")
    yield caplog
    core_logger.removeHandler(caplog.handler)
