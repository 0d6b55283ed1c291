"""Invalidation queue - SQS work queue plus its dead-letter queue."""

import math
import time
from typing import Dict, List, Optional

from shared.aws_helpers import SQSHelper
from shared.config import Config
from shared.errors import ConfigurationError
from shared.logger import StructuredLogger
from shared.models import QueueMessage


class InvalidationQueue:
    """
    Durable at-least-once channel of pending path invalidations.

    A received message is leased for ``visibility_timeout`` seconds; unless it
    is acknowledged or dead-lettered before then, SQS redelivers it.
    """

    def __init__(
        self,
        queue_url: str = None,
        dead_letter_queue_url: str = None,
        visibility_timeout: int = None,
        region_name: str = None,
        sqs: SQSHelper = None,
    ):
        self.queue_url = queue_url or Config.SQS_CACHE_INVALIDATION_QUEUE_URL
        self.dead_letter_queue_url = dead_letter_queue_url or Config.SQS_DEAD_LETTER_QUEUE_URL
        self.visibility_timeout = visibility_timeout or Config.VISIBILITY_TIMEOUT_SECONDS

        if not self.queue_url:
            raise ConfigurationError("SQS queue URL not configured")

        self.sqs = sqs or SQSHelper(region_name or Config.AWS_REGION)

    def enqueue(self, body: Dict, attributes: Optional[Dict[str, str]] = None) -> str:
        """Enqueue one request and return its delivery id."""
        return self.sqs.send_message(self.queue_url, body, attributes)

    def receive(self, max_messages: int, wait_seconds: float) -> List[QueueMessage]:
        """
        Lease up to ``max_messages`` messages.

        Long-polls for at most ``wait_seconds`` until the first message shows
        up, then drains whatever else is immediately available, ten per call.
        """
        messages: List[QueueMessage] = []
        # SQS long polls in whole seconds, so a fractional wait overshoots by under a second
        wait = math.ceil(max(wait_seconds, 0))

        while len(messages) < max_messages:
            raw_messages = self.sqs.receive_messages(
                self.queue_url,
                max_messages=max_messages - len(messages),
                wait_seconds=wait if not messages else 0,
                visibility_timeout=self.visibility_timeout,
            )
            messages.extend(self._to_queue_message(raw) for raw in raw_messages)

            if not raw_messages:
                break

        return messages

    @staticmethod
    def _to_queue_message(raw: Dict) -> QueueMessage:
        attributes = raw.get("Attributes", {})
        return QueueMessage(
            message_id=raw["MessageId"],
            receipt_handle=raw["ReceiptHandle"],
            body=raw.get("Body", ""),
            receive_count=int(attributes.get("ApproximateReceiveCount", "1")),
        )

    def acknowledge(self, messages: List[QueueMessage]) -> List[QueueMessage]:
        """
        Remove messages from the queue.

        Returns:
            Messages SQS failed to delete; they will be redelivered
        """
        if not messages:
            return []

        failed_handles = set(self.sqs.delete_messages(self.queue_url, [m.receipt_handle for m in messages]))
        return [message for message in messages if message.receipt_handle in failed_handles]

    def release(self, message: QueueMessage, delay_seconds: int) -> None:
        """Return a leased message to the queue, visible again after ``delay_seconds``."""
        self.sqs.change_visibility(self.queue_url, message.receipt_handle, delay_seconds)

    def dead_letter(self, message: QueueMessage, reason: str) -> None:
        """Move a message to the dead-letter queue."""
        if not self.dead_letter_queue_url:
            raise ConfigurationError("SQS dead-letter queue URL not configured")

        self.sqs.send_raw_message(
            self.dead_letter_queue_url,
            message.body,
            {
                "reason": reason,
                "source_message_id": message.message_id,
                "receive_count": str(message.receive_count),
                "dead_lettered_at": str(int(time.time())),
            },
        )
        self.sqs.delete_message(self.queue_url, message.receipt_handle)

        StructuredLogger.warning(
            "Message dead-lettered",
            delivery_id=message.message_id,
            reason=reason,
            receive_count=message.receive_count,
        )
