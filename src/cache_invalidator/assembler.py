"""Batch Assembler - drains the invalidation queue into deduplicated batches."""

import json
import threading
import time
from typing import Callable, Iterable, Iterator, List, Optional

from shared.config import Config
from shared.errors import PathValidationError, QueueUnavailableError
from shared.logger import StructuredLogger
from shared.models import INVALID_MESSAGE, Batch, InvalidationRequest, QueueMessage
from shared.paths import validate_path
from shared.queue import InvalidationQueue


class BatchAssembler:
    """
    Close batches on a dual size/time trigger.

    A batch closes when it holds ``max_batch_size`` distinct paths or when
    ``max_batch_window`` seconds have passed since its first request arrived,
    whichever comes first. Pending work lives in the queue, so an assembler can
    be stopped and restarted at any point without losing requests.
    """

    def __init__(
        self,
        queue: InvalidationQueue,
        max_batch_size: int = None,
        max_batch_window: float = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.queue = queue
        self.max_batch_size = max_batch_size or Config.MAX_BATCH_SIZE
        self.max_batch_window = max_batch_window or Config.MAX_BATCH_WINDOW_SECONDS
        self.clock = clock

    def batches(self, stop_event: threading.Event = None) -> Iterator[Batch]:
        """Yield closed batches until ``stop_event`` is set."""
        stop_event = stop_event or threading.Event()

        while not stop_event.is_set():
            batch = self.assemble()
            if batch:
                yield batch

    def assemble(self) -> Optional[Batch]:
        """
        Run one batch cycle.

        Returns:
            The closed batch, or None if the window passed without valid work
        """
        batch = Batch()

        while len(batch) < self.max_batch_size:
            if batch.opened_at is None:
                wait = self.max_batch_window
            else:
                wait = self.max_batch_window - (self.clock() - batch.opened_at)
                if wait <= 0:
                    break

            messages = self.queue.receive(max_messages=self.max_batch_size - len(batch), wait_seconds=wait)

            if not messages and batch.opened_at is None:
                return None

            for message in messages:
                request = self.parse(message)
                if request is None:
                    continue
                if batch.opened_at is None:
                    batch.opened_at = self.clock()
                batch.add(request)

        if batch:
            StructuredLogger.info(
                "Batch closed",
                paths_count=len(batch),
                members_count=len(batch.members),
                size_triggered=len(batch) >= self.max_batch_size,
            )
            return batch

        return None

    def from_messages(
        self, messages: Iterable[QueueMessage], undeliverable: List[QueueMessage] = None
    ) -> List[Batch]:
        """
        Build batches from messages that were already delivered together.

        A delivery holding more distinct paths than ``max_batch_size`` is split
        into several batches. Repeats of a path join the batch that already
        holds it.

        Args:
            messages: Delivered queue messages
            undeliverable: Collects invalid messages that could not be dead-lettered
        """
        batches = [Batch(opened_at=self.clock())]

        for message in messages:
            request = self.parse(message, undeliverable)
            if request is None:
                continue
            batch = next((b for b in batches if request.path in b.entries), batches[-1])
            if request.path not in batch.entries and len(batch) >= self.max_batch_size:
                batch = Batch(opened_at=self.clock())
                batches.append(batch)
            batch.add(request)

        return [batch for batch in batches if batch]

    def parse(self, message: QueueMessage, undeliverable: List[QueueMessage] = None) -> Optional[InvalidationRequest]:
        """
        Turn a queue message into a request.

        Corrupt or foreign messages are dead-lettered on the spot; they would
        fail the same way on every redelivery. Paths in the queue are already
        normalized, so they are checked again without percent-decoding.
        """
        try:
            body = json.loads(message.body)
            if not isinstance(body, dict):
                raise ValueError("Message body is not a JSON object")

            return InvalidationRequest(
                path=validate_path(body.get("path"), decode=False),
                received_at=float(body.get("received_at") or time.time()),
                message=message,
                request_id=body.get("request_id"),
            )
        except (ValueError, TypeError, PathValidationError) as e:
            StructuredLogger.warning("Invalid queue message", exception=e, delivery_id=message.message_id)
            try:
                self.queue.dead_letter(message, INVALID_MESSAGE)
            except QueueUnavailableError as dlq_error:
                StructuredLogger.error(
                    "Failed to dead-letter invalid message",
                    exception=dlq_error,
                    delivery_id=message.message_id,
                )
                if undeliverable is not None:
                    undeliverable.append(message)
            return None
