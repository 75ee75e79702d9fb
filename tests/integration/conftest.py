"""
Fixtures for the end-to-end tests, which run the real S3Client against an
in-process S3 (moto) and capture events instead of posting them.
"""

from __future__ import annotations

import boto3
import pytest
from moto import mock_aws

from flat_file_source.config import AppConfig

BUCKET = "newbucket"
REGION = "us-east-1"


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake credentials so nothing can reach a real account."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", REGION)


@pytest.fixture
def s3_bucket(aws_credentials):
    """Yields a boto3 client with an empty bucket inside a moto mock."""
    with mock_aws():
        client = boto3.client("s3", region_name=REGION)
        client.create_bucket(Bucket=BUCKET)
        yield client


class CapturingTransport:
    """Transport double that acknowledges every event and keeps it."""

    def __init__(self):
        self.events = []

    def send(self, event, context) -> bool:
        self.events.append(event)
        return True


@pytest.fixture
def transport() -> CapturingTransport:
    return CapturingTransport()


@pytest.fixture
def make_config():
    def _make(key: str, dump_count: int, chunk_size: int = 100) -> AppConfig:
        return AppConfig(
            sink_url="http://sink.test.local",
            bucket=BUCKET,
            key=key,
            ce_overrides=None,
            dump_count=dump_count,
            retry_count=0,
            retry_interval_seconds=0,
            sink_timeout_seconds=5,
            region=REGION,
            endpoint_url=None,
            access_key=None,
            secret_key=None,
            chunk_size=chunk_size,
            s3_operation_timeout_seconds=5,
            max_consecutive_read_errors=3,
            service_name="flat-file-source-e2e",
            log_level="INFO",
        )

    return _make
