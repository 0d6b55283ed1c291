"""Invalidation Executor - submits batches to CloudFront and settles their messages."""

from typing import List

from shared.aws_helpers import CloudFrontHelper
from shared.config import Config
from shared.errors import (
    CDNInvalidationError,
    ConfigurationError,
    InvalidPathsError,
    QueueUnavailableError,
    RateLimitedError,
)
from shared.logger import StructuredLogger
from shared.models import (
    PERMANENT_PATH_ERROR,
    REDELIVERY_EXHAUSTED,
    Batch,
    ExecutionReport,
    InvalidationOutcome,
    InvalidationRequest,
)
from shared.queue import InvalidationQueue


class InvalidationExecutor:
    """Invalidate CloudFront cache for a closed batch and acknowledge its messages."""

    def __init__(
        self,
        queue: InvalidationQueue,
        provider: CloudFrontHelper = None,
        distribution_id: str = None,
        max_redeliveries: int = None,
        max_in_flight: int = None,
        backoff_base: int = None,
        backoff_max: int = None,
    ):
        self.queue = queue
        self.provider = provider or CloudFrontHelper(Config.AWS_REGION, Config.PROVIDER_TIMEOUT_SECONDS)
        self.distribution_id = distribution_id or Config.AWS_CLOUDFRONT_DISTRIBUTION_ID
        self.max_redeliveries = Config.MAX_REDELIVERIES if max_redeliveries is None else max_redeliveries
        self.max_in_flight = Config.MAX_IN_FLIGHT_INVALIDATIONS if max_in_flight is None else max_in_flight
        self.backoff_base = Config.BACKOFF_BASE_SECONDS if backoff_base is None else backoff_base
        self.backoff_max = Config.BACKOFF_MAX_SECONDS if backoff_max is None else backoff_max

        if not self.distribution_id:
            raise ConfigurationError("CloudFront distribution ID not configured")

    def execute(self, batch: Batch) -> ExecutionReport:
        """
        Submit a batch and settle every member message.

        Accepted paths are acknowledged, rejected paths are dead-lettered and
        paths hit by a transient failure are released with backoff.
        """
        report = ExecutionReport()

        self._dead_letter_exhausted(batch, report)
        if not batch:
            return report

        StructuredLogger.info(
            "Invalidating CloudFront cache",
            distribution_id=self.distribution_id,
            paths_count=len(batch),
            request_ids=[r.request_id for r in batch.members if r.request_id],
        )

        outcome = InvalidationOutcome()
        try:
            self._admit()
        except CDNInvalidationError as e:
            outcome.provider_error = e
            outcome.deferred_paths.update(batch.paths)
        else:
            self._submit(batch.paths, outcome)

        report.invalidation_ids.extend(outcome.invalidation_ids)
        self._acknowledge(list(batch.requests_for(outcome.accepted_paths)), report)
        self._dead_letter(list(batch.requests_for(outcome.failed_paths)), PERMANENT_PATH_ERROR, report)
        self._release(list(batch.requests_for(outcome.deferred_paths)), report)

        if outcome.provider_error:
            StructuredLogger.warning(
                "Cache invalidation deferred",
                exception=outcome.provider_error,
                distribution_id=self.distribution_id,
                deferred_count=len(outcome.deferred_paths),
            )

        StructuredLogger.info(
            "Cache invalidation completed",
            distribution_id=self.distribution_id,
            invalidation_ids=outcome.invalidation_ids,
            acknowledged=len(report.acknowledged),
            released=len(report.released),
            dead_lettered=len(report.dead_lettered),
            failed=len(report.failed),
        )
        return report

    def _admit(self) -> None:
        """Refuse to add invalidations while the distribution is saturated."""
        if self.max_in_flight <= 0:
            return

        in_progress = self.provider.count_in_progress(self.distribution_id)
        if in_progress >= self.max_in_flight:
            raise RateLimitedError(
                f"{in_progress} invalidations in progress for {self.distribution_id} (limit {self.max_in_flight})"
            )

    def _submit(self, paths: List[str], outcome: InvalidationOutcome) -> None:
        """
        Create an invalidation for ``paths``, isolating rejected paths.

        When CloudFront rejects the call without naming a strict subset of the
        paths, the set is split in half and each half is resubmitted.
        """
        if outcome.provider_error is not None:
            # Don't keep hammering a throttled distribution while bisecting
            outcome.deferred_paths.update(paths)
            return

        try:
            invalidation_id = self.provider.create_invalidation(self.distribution_id, paths)
        except InvalidPathsError as e:
            failed = e.failed_paths.intersection(paths)
            remaining = [path for path in paths if path not in failed]

            if failed and remaining:
                outcome.failed_paths.update(failed)
                if e.invalidation_id:
                    outcome.invalidation_ids.append(e.invalidation_id)
                    outcome.accepted_paths.update(remaining)
                else:
                    self._submit(remaining, outcome)
            elif len(paths) == 1:
                outcome.failed_paths.update(paths)
            else:
                middle = len(paths) // 2
                self._submit(paths[:middle], outcome)
                self._submit(paths[middle:], outcome)
        except CDNInvalidationError as e:
            outcome.provider_error = e
            outcome.deferred_paths.update(paths)
        else:
            outcome.invalidation_ids.append(invalidation_id)
            outcome.accepted_paths.update(paths)

    def _dead_letter_exhausted(self, batch: Batch, report: ExecutionReport) -> None:
        exhausted = [r for r in batch.members if r.redeliveries > self.max_redeliveries]
        for request in exhausted:
            batch.discard(request)
        self._dead_letter(exhausted, REDELIVERY_EXHAUSTED, report)

    def _acknowledge(self, requests: List[InvalidationRequest], report: ExecutionReport) -> None:
        if not requests:
            return

        try:
            failed = {m.receipt_handle for m in self.queue.acknowledge([r.message for r in requests])}
        except QueueUnavailableError as e:
            StructuredLogger.error("Failed to acknowledge messages", exception=e, count=len(requests))
            return

        for request in requests:
            if request.message.receipt_handle in failed:
                StructuredLogger.warning("Message not acknowledged", delivery_id=request.delivery_id)
            else:
                report.acknowledged.append(request.delivery_id)

    def _dead_letter(self, requests: List[InvalidationRequest], reason: str, report: ExecutionReport) -> None:
        for request in requests:
            try:
                self.queue.dead_letter(request.message, reason)
                report.dead_lettered.append(request.delivery_id)
            except QueueUnavailableError as e:
                StructuredLogger.error(
                    "Failed to dead-letter message",
                    exception=e,
                    delivery_id=request.delivery_id,
                    reason=reason,
                )
                report.failed.append(request.delivery_id)

    def _release(self, requests: List[InvalidationRequest], report: ExecutionReport) -> None:
        for request in requests:
            delay = self.backoff_delay(request.redeliveries)
            try:
                self.queue.release(request.message, delay)
            except QueueUnavailableError as e:
                # the lease still expires on its own
                StructuredLogger.warning("Failed to delay redelivery", exception=e, delivery_id=request.delivery_id)
            report.released.append(request.delivery_id)

    def backoff_delay(self, redeliveries: int) -> int:
        """Exponential backoff in seconds for the next delivery of a message."""
        return min(self.backoff_max, self.backoff_base * (2 ** redeliveries))
