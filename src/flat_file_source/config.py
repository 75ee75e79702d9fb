import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = ["AppConfig", "ConfigurationError", "get_config"]


def _positive_int(name: str, default: str) -> int:
    value = int(os.getenv(name, default))
    if value <= 0:
        raise ValueError(f"{name} must be a positive integer.")
    return value


def _non_negative_int(name: str, default: str) -> int:
    value = int(os.getenv(name, default))
    if value < 0:
        raise ValueError(f"{name} must be a non-negative integer.")
    return value


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Application configuration loaded from environment variables."""

    # --- Required Variables ---
    sink_url: str
    bucket: str
    key: str

    # --- Optional Sink Variables with Defaults ---
    ce_overrides: str | None
    dump_count: int
    retry_count: int
    retry_interval_seconds: float
    sink_timeout_seconds: int

    # --- Optional Object Store Variables ---
    region: str | None
    endpoint_url: str | None
    access_key: str | None
    secret_key: str | None
    chunk_size: int
    s3_operation_timeout_seconds: int

    # --- Error Handling / Runtime ---
    max_consecutive_read_errors: int
    service_name: str
    log_level: str

    # --- Derived Properties ---
    @property
    def has_static_credentials(self) -> bool:
        return bool(self.access_key and self.secret_key)

    @property
    def chunk_size_mb(self) -> float:
        return round(self.chunk_size / 1_048_576, 2)

    @classmethod
    def load_from_env(cls) -> "AppConfig":
        """
        Loads configuration from environment variables, performing validation and type casting.
        Fails fast with a ConfigurationError if anything is invalid.
        """
        try:
            # --- Handle required string variables ---
            sink_url = os.environ["K_SINK"]
            bucket = os.environ["S3_BUCKET"]
            key = os.environ["S3_FILE_NAME"]
            if not sink_url.strip():
                raise ValueError("K_SINK must not be empty.")

            # --- Sink behaviour ---
            ce_overrides = os.getenv("K_CE_OVERRIDES") or None
            dump_count = _positive_int("SINK_DUMP_COUNT", "100")
            retry_count = _non_negative_int("SINK_RETRY_COUNT", "3")

            retry_interval_seconds = float(os.getenv("SINK_RETRY_INTERVAL", "1"))
            if retry_interval_seconds < 0:
                raise ValueError("SINK_RETRY_INTERVAL must not be negative.")

            sink_timeout_seconds = _positive_int("SINK_TIMEOUT_SECONDS", "30")

            # --- Object store connection ---
            region = os.getenv("S3_REGION") or None
            endpoint_url = os.getenv("S3_URL") or None
            access_key = os.getenv("S3_ACCESS_KEY") or None
            secret_key = os.getenv("S3_SECRET_KEY") or None
            if bool(access_key) != bool(secret_key):
                raise ValueError(
                    "S3_ACCESS_KEY and S3_SECRET_KEY must be set together."
                )

            chunk_size = _positive_int("DOWNLOAD_CHUNK_SIZE", "500000000")
            s3_operation_timeout_seconds = _positive_int(
                "S3_OPERATION_TIMEOUT_SECONDS", "30"
            )

            max_consecutive_read_errors = _positive_int(
                "MAX_CONSECUTIVE_READ_ERRORS", "3"
            )

            service_name = os.getenv("SERVICE_NAME", "s3-flat-file-source")

            # --- Handle special-case variables like log level ---
            log_level = os.getenv("LOG_LEVEL", "INFO").upper()
            allowed_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
            if log_level not in allowed_log_levels:
                raise ValueError(
                    f"LOG_LEVEL must be one of {allowed_log_levels}, not '{log_level}'"
                )

        except KeyError as e:
            raise ConfigurationError(
                f"Missing required environment variable: {e.args[0]}"
            ) from e
        except (ValueError, TypeError) as e:
            raise ConfigurationError(
                f"Invalid value for an environment variable: {e}"
            ) from e

        return cls(
            sink_url=sink_url,
            bucket=bucket,
            key=key,
            ce_overrides=ce_overrides,
            dump_count=dump_count,
            retry_count=retry_count,
            retry_interval_seconds=retry_interval_seconds,
            sink_timeout_seconds=sink_timeout_seconds,
            region=region,
            endpoint_url=endpoint_url,
            access_key=access_key,
            secret_key=secret_key,
            chunk_size=chunk_size,
            s3_operation_timeout_seconds=s3_operation_timeout_seconds,
            max_consecutive_read_errors=max_consecutive_read_errors,
            service_name=service_name,
            log_level=log_level,
        )


# --- Singleton Factory Function (Lazy-loaded and Cached) ---
@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """
    Loads the application configuration from environment variables.
    The result is cached, so the environment is only read on the first call.
    """
    logger.info("Loading application configuration from environment...")
    return AppConfig.load_from_env()
