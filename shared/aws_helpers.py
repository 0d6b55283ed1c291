"""AWS service helpers for CloudFront and SQS."""

import json
import re
import uuid
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import quote

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from shared.errors import (
    CDNInvalidationError,
    ConfigurationError,
    InvalidPathsError,
    ProviderTimeoutError,
    QueueUnavailableError,
    RateLimitedError,
)
from shared.logger import StructuredLogger

THROTTLING_ERROR_CODES = {
    "Throttling",
    "ThrottlingException",
    "TooManyRequestsException",
    "TooManyInvalidationsInProgress",
}
INVALID_PATHS_ERROR_CODES = {"InvalidArgument", "BatchTooLarge"}

# Characters CloudFront accepts unencoded in an invalidation path
_PATH_SAFE_CHARACTERS = "/*!$&'()+,;=:@"

# Paths are matched against error messages only as whole tokens
_MESSAGE_TOKEN_SEPARATORS = re.compile(r"[\s,:'\"]+")

# SQS hard limits
SQS_MAX_MESSAGES_PER_CALL = 10
SQS_MAX_WAIT_SECONDS = 20
SQS_MAX_VISIBILITY_TIMEOUT = 43200


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


class CloudFrontHelper:
    """CloudFront operations."""

    def __init__(self, region_name: str = "us-east-1", timeout_seconds: float = 10):
        self.client = boto3.client(
            "cloudfront",
            region_name=region_name,
            config=BotoConfig(
                connect_timeout=timeout_seconds,
                read_timeout=timeout_seconds,
                retries={"max_attempts": 2, "mode": "standard"},
            ),
        )

    def create_invalidation(self, distribution_id: str, paths: Iterable[str]) -> str:
        """
        Invalidate CloudFront cache for given paths in a single call.

        Raises:
            RateLimitedError: throttled, or too many invalidations in progress
            ProviderTimeoutError: the call timed out or the endpoint is unreachable
            InvalidPathsError: CloudFront rejected the path set
            CDNInvalidationError: any other CloudFront failure
        """
        paths = list(paths)
        items = [quote(path, safe=_PATH_SAFE_CHARACTERS) for path in paths]

        StructuredLogger.info(
            "Creating CloudFront invalidation",
            distribution_id=distribution_id,
            paths_count=len(items),
        )

        try:
            response = self.client.create_invalidation(
                DistributionId=distribution_id,
                InvalidationBatch={
                    "Paths": {"Quantity": len(items), "Items": items},
                    "CallerReference": str(uuid.uuid4()),
                },
            )
        except ClientError as e:
            code = _error_code(e)
            if code in THROTTLING_ERROR_CODES:
                raise RateLimitedError(f"CloudFront throttled invalidation ({code})") from e
            if code in INVALID_PATHS_ERROR_CODES:
                raise InvalidPathsError(
                    f"CloudFront rejected invalidation paths ({code}): {str(e)}",
                    failed_paths=self._attribute_failed_paths(str(e), paths, items),
                ) from e
            raise CDNInvalidationError(f"Error invalidating CloudFront: {str(e)}") from e
        except (ReadTimeoutError, ConnectTimeoutError, EndpointConnectionError) as e:
            raise ProviderTimeoutError(f"CloudFront call timed out: {str(e)}") from e
        except BotoCoreError as e:
            raise CDNInvalidationError(f"Error invalidating CloudFront: {str(e)}") from e

        invalidation_id = response["Invalidation"]["Id"]
        StructuredLogger.info(
            "CloudFront invalidation created", invalidation_id=invalidation_id, distribution_id=distribution_id
        )
        return invalidation_id

    @staticmethod
    def _attribute_failed_paths(error_message: str, paths: List[str], items: List[str]) -> List[str]:
        """Paths named as whole tokens in the error message, or all of them when none is named."""
        tokens = set(_MESSAGE_TOKEN_SEPARATORS.split(error_message))
        named = [path for path, item in zip(paths, items) if path in tokens or item in tokens]
        return named or paths

    def count_in_progress(self, distribution_id: str) -> int:
        """Count invalidations still in progress for a distribution."""
        try:
            count = 0
            paginator = self.client.get_paginator("list_invalidations")
            for page in paginator.paginate(DistributionId=distribution_id):
                for item in page.get("InvalidationList", {}).get("Items", []):
                    if item.get("Status") == "InProgress":
                        count += 1
            return count
        except ClientError as e:
            if _error_code(e) in THROTTLING_ERROR_CODES:
                raise RateLimitedError(f"CloudFront throttled list_invalidations: {str(e)}") from e
            raise CDNInvalidationError(f"Error listing CloudFront invalidations: {str(e)}") from e
        except BotoCoreError as e:
            raise CDNInvalidationError(f"Error listing CloudFront invalidations: {str(e)}") from e


class SQSHelper:
    """SQS operations."""

    def __init__(self, region_name: str = "us-east-1"):
        self.client = boto3.client("sqs", region_name=region_name)

    def send_message(
        self,
        queue_url: str,
        message_body: Dict,
        attributes: Optional[Dict[str, str]] = None,
    ) -> str:
        """Send message to SQS queue."""
        try:
            if not queue_url:
                raise ConfigurationError("SQS queue URL not provided")

            kwargs: Dict[str, Any] = {"QueueUrl": queue_url, "MessageBody": json.dumps(message_body)}
            if attributes:
                kwargs["MessageAttributes"] = {
                    name: {"DataType": "String", "StringValue": value} for name, value in attributes.items()
                }

            response = self.client.send_message(**kwargs)

            message_id = response["MessageId"]
            StructuredLogger.debug("SQS message sent", message_id=message_id, queue_url=queue_url)
            return message_id
        except (ClientError, BotoCoreError) as e:
            raise QueueUnavailableError(f"Error sending SQS message: {str(e)}") from e

    def send_raw_message(self, queue_url: str, body: str, attributes: Dict[str, str]) -> str:
        """Send an already serialized body, e.g. when forwarding to a dead-letter queue."""
        try:
            response = self.client.send_message(
                QueueUrl=queue_url,
                MessageBody=body,
                MessageAttributes={
                    name: {"DataType": "String", "StringValue": value} for name, value in attributes.items()
                },
            )
            return response["MessageId"]
        except (ClientError, BotoCoreError) as e:
            raise QueueUnavailableError(f"Error sending SQS message: {str(e)}") from e

    def receive_messages(
        self,
        queue_url: str,
        max_messages: int,
        wait_seconds: int,
        visibility_timeout: int,
    ) -> List[Dict[str, Any]]:
        """Single ReceiveMessage call, returns raw SQS message dicts."""
        try:
            response = self.client.receive_message(
                QueueUrl=queue_url,
                MaxNumberOfMessages=max(1, min(max_messages, SQS_MAX_MESSAGES_PER_CALL)),
                WaitTimeSeconds=max(0, min(wait_seconds, SQS_MAX_WAIT_SECONDS)),
                VisibilityTimeout=visibility_timeout,
                AttributeNames=["All"],
                MessageAttributeNames=["All"],
            )
            return response.get("Messages", [])
        except (ClientError, BotoCoreError) as e:
            raise QueueUnavailableError(f"Error receiving SQS messages: {str(e)}") from e

    def delete_message(self, queue_url: str, receipt_handle: str) -> None:
        """Delete message from SQS queue."""
        try:
            self.client.delete_message(QueueUrl=queue_url, ReceiptHandle=receipt_handle)
            StructuredLogger.debug("SQS message deleted", queue_url=queue_url)
        except (ClientError, BotoCoreError) as e:
            raise QueueUnavailableError(f"Error deleting SQS message: {str(e)}") from e

    def delete_messages(self, queue_url: str, receipt_handles: List[str]) -> List[str]:
        """
        Delete messages in chunks of ten.

        Returns:
            Receipt handles SQS failed to delete
        """
        failed: List[str] = []
        for start in range(0, len(receipt_handles), SQS_MAX_MESSAGES_PER_CALL):
            chunk = receipt_handles[start : start + SQS_MAX_MESSAGES_PER_CALL]
            entries: List[Tuple[str, str]] = [(str(index), handle) for index, handle in enumerate(chunk)]
            try:
                response = self.client.delete_message_batch(
                    QueueUrl=queue_url,
                    Entries=[{"Id": entry_id, "ReceiptHandle": handle} for entry_id, handle in entries],
                )
            except (ClientError, BotoCoreError) as e:
                raise QueueUnavailableError(f"Error deleting SQS messages: {str(e)}") from e

            failed_ids = {entry["Id"] for entry in response.get("Failed", [])}
            failed.extend(handle for entry_id, handle in entries if entry_id in failed_ids)

        return failed

    def change_visibility(self, queue_url: str, receipt_handle: str, timeout_seconds: int) -> None:
        """Change how long a leased message stays invisible."""
        try:
            self.client.change_message_visibility(
                QueueUrl=queue_url,
                ReceiptHandle=receipt_handle,
                VisibilityTimeout=max(0, min(timeout_seconds, SQS_MAX_VISIBILITY_TIMEOUT)),
            )
        except (ClientError, BotoCoreError) as e:
            raise QueueUnavailableError(f"Error changing SQS message visibility: {str(e)}") from e
