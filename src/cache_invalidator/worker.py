"""Long-running polling consumer for the cache invalidation queue."""

import signal
import threading
from typing import Optional

from shared.config import Config
from shared.errors import InvalidationPipelineError
from shared.logger import StructuredLogger
from shared.queue import InvalidationQueue
from src.cache_invalidator.assembler import BatchAssembler
from src.cache_invalidator.executor import InvalidationExecutor

REQUIRED_CONFIG = (
    "AWS_CLOUDFRONT_DISTRIBUTION_ID",
    "SQS_CACHE_INVALIDATION_QUEUE_URL",
    "SQS_DEAD_LETTER_QUEUE_URL",
)


class InvalidationWorker:
    """Feed assembled batches to the executor until stopped."""

    def __init__(
        self,
        assembler: BatchAssembler,
        executor: InvalidationExecutor,
        stop_event: threading.Event = None,
        error_backoff_seconds: float = 5,
    ):
        self.assembler = assembler
        self.executor = executor
        self.stop_event = stop_event or threading.Event()
        self.error_backoff_seconds = error_backoff_seconds
        self.batches_processed = 0

    def run(self) -> None:
        StructuredLogger.info(
            "Cache invalidation worker started",
            max_batch_size=self.assembler.max_batch_size,
            max_batch_window=self.assembler.max_batch_window,
        )

        while not self.stop_event.is_set():
            try:
                for batch in self.assembler.batches(self.stop_event):
                    self.executor.execute(batch)
                    self.batches_processed += 1
            except InvalidationPipelineError as e:
                # Leased messages come back once their visibility timeout expires
                StructuredLogger.error("Cache invalidation worker error", exception=e)
                self.stop_event.wait(self.error_backoff_seconds)

        StructuredLogger.info("Cache invalidation worker stopped", batches_processed=self.batches_processed)

    def stop(self, *_args) -> None:
        self.stop_event.set()


def build_worker(stop_event: Optional[threading.Event] = None) -> InvalidationWorker:
    """Wire a worker from environment configuration."""
    Config.validate(REQUIRED_CONFIG)

    queue = InvalidationQueue()
    return InvalidationWorker(
        assembler=BatchAssembler(queue),
        executor=InvalidationExecutor(queue),
        stop_event=stop_event,
    )


def main() -> None:
    """Start the worker, stopping cleanly on SIGINT/SIGTERM."""
    worker = build_worker()
    signal.signal(signal.SIGTERM, worker.stop)
    signal.signal(signal.SIGINT, worker.stop)
    worker.run()


if __name__ == "__main__":
    main()
