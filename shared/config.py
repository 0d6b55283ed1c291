"""Configuration management."""

import os
from typing import Iterable

from shared.errors import ConfigurationError


class Config:
    """Centralized configuration from environment variables."""

    # AWS Configuration
    AWS_REGION = os.environ.get("AWS_REGION", "us-east-1")
    AWS_CLOUDFRONT_DISTRIBUTION_ID = os.environ.get("AWS_CLOUDFRONT_DISTRIBUTION_ID")

    # Queue Configuration
    SQS_CACHE_INVALIDATION_QUEUE_URL = os.environ.get("SQS_CACHE_INVALIDATION_QUEUE_URL")
    SQS_DEAD_LETTER_QUEUE_URL = os.environ.get("SQS_DEAD_LETTER_QUEUE_URL")
    # Must exceed MAX_BATCH_WINDOW_SECONDS + PROVIDER_TIMEOUT_SECONDS
    VISIBILITY_TIMEOUT_SECONDS = int(os.environ.get("VISIBILITY_TIMEOUT_SECONDS", "60"))

    # Batching Configuration
    MAX_BATCH_SIZE = int(os.environ.get("MAX_BATCH_SIZE", "100"))  # paths per CreateInvalidation
    MAX_BATCH_WINDOW_SECONDS = float(os.environ.get("MAX_BATCH_WINDOW_SECONDS", "5"))
    MAX_REDELIVERIES = int(os.environ.get("MAX_REDELIVERIES", "5"))

    # Provider Configuration
    PROVIDER_TIMEOUT_SECONDS = float(os.environ.get("PROVIDER_TIMEOUT_SECONDS", "10"))
    BACKOFF_BASE_SECONDS = int(os.environ.get("BACKOFF_BASE_SECONDS", "2"))
    BACKOFF_MAX_SECONDS = int(os.environ.get("BACKOFF_MAX_SECONDS", "300"))
    MAX_IN_FLIGHT_INVALIDATIONS = int(os.environ.get("MAX_IN_FLIGHT_INVALIDATIONS", "0"))  # 0 disables

    # Path Configuration
    MAX_PATH_LENGTH = int(os.environ.get("MAX_PATH_LENGTH", "4000"))  # bytes

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    @classmethod
    def validate(cls, required: Iterable[str] = ("AWS_CLOUDFRONT_DISTRIBUTION_ID",)) -> bool:
        """Validate required configuration is set."""
        missing = [var for var in required if not getattr(cls, var, None)]

        if missing:
            raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")

        if cls.MAX_BATCH_SIZE < 1:
            raise ConfigurationError("MAX_BATCH_SIZE must be at least 1")

        return True
