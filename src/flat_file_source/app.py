"""
Entry points for the S3 flat file source.

This module is responsible for:
1.  Initializing and configuring AWS Lambda Powertools (Logger, Tracer and
    Metrics) and routing the package's own loggers through the same Logger.
2.  Building the S3 flat file source from the environment configuration.
3.  Running one transfer per invocation and reporting its counters.

`handler` is the AWS Lambda entry point; `main` runs the same transfer as a
one-shot container job.
"""

import sys
from typing import Any

from aws_lambda_powertools import Logger, Metrics, Tracer
from aws_lambda_powertools.logging.utils import copy_config_to_registered_loggers
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.typing import LambdaContext

from .config import get_config
from .core import Result
from .exceptions import FlatFileSourceError, get_error_context
from .sources import S3FlatFileSource, source_events

# --- Global & Reusable Components ---
CONFIG = get_config()

logger = Logger(service=CONFIG.service_name, level=CONFIG.log_level)
copy_config_to_registered_loggers(source_logger=logger, include={"flat_file_source"})
tracer = Tracer(service=CONFIG.service_name)
metrics = Metrics(
    namespace="FlatFileSource",
    service=CONFIG.service_name,
)


def _run_transfer() -> Result:
    source = S3FlatFileSource(CONFIG)
    try:
        return source_events(source)
    except FlatFileSourceError as e:
        logger.error(
            f"Unrecoverable error, aborting transfer: {e}", extra=get_error_context(e)
        )
        raise


@logger.inject_lambda_context()
@tracer.capture_lambda_handler
@metrics.log_metrics(capture_cold_start_metric=True)
def handler(event: dict, context: LambdaContext) -> dict[str, Any]:
    """Main Lambda handler: transfers the configured object and returns the counters."""
    metrics.add_dimension("bucket", CONFIG.bucket)
    try:
        result = _run_transfer()
    except FlatFileSourceError:
        metrics.add_metric(name="UnrecoverableRuns", unit=MetricUnit.Count, value=1)
        raise

    metrics.add_metric(name="LinesSent", unit=MetricUnit.Count, value=result.sent_count)
    metrics.add_metric(
        name="ProcessingErrors", unit=MetricUnit.Count, value=result.error_count
    )
    if result.error_count:
        logger.warning("Transfer finished with errors", extra=result.to_dict())
    else:
        logger.info("Transfer finished", extra=result.to_dict())
    return result.to_dict()


def main() -> int:
    """Console entry point. Exits non-zero when any error was counted."""
    try:
        result = _run_transfer()
    except FlatFileSourceError:
        return 2
    logger.info("Transfer finished", extra=result.to_dict())
    return 1 if result.error_count else 0


if __name__ == "__main__":
    sys.exit(main())
