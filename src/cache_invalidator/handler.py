"""Lambda handler for cache invalidation (SQS event source)."""

from typing import Any, Dict, List

from shared.config import Config
from shared.errors import InvalidationPipelineError
from shared.logger import StructuredLogger
from shared.models import ExecutionReport, QueueMessage
from shared.queue import InvalidationQueue
from src.cache_invalidator.assembler import BatchAssembler
from src.cache_invalidator.executor import InvalidationExecutor
from src.cache_invalidator.worker import REQUIRED_CONFIG


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Invalidate one SQS-delivered batch of paths.

    The event source delivers up to MAX_BATCH_SIZE records per invocation
    after at most MAX_BATCH_WINDOW_SECONDS. Expected SQS message body:
    {
        "path": "/storage/v1/object/public/*",
        "received_at": 1700000000.0,
        "request_id": "..."
    }

    Messages released for a later retry, and invalid messages that could not
    be dead-lettered, are reported as batch item failures so the event source
    leaves them on the queue.
    """
    request_id = getattr(context, "aws_request_id", None) or getattr(context, "request_id", None)
    records = event.get("Records", [])
    messages = [_to_queue_message(record) for record in records]

    try:
        StructuredLogger.info("Cache invalidator lambda invoked", request_id=request_id, records=len(records))

        Config.validate(REQUIRED_CONFIG)

        queue = InvalidationQueue()
        undeliverable = []
        batches = BatchAssembler(queue).from_messages(messages, undeliverable)

        executor = InvalidationExecutor(queue)
        report = ExecutionReport()
        for batch in batches:
            report.merge(executor.execute(batch))

        StructuredLogger.info(
            "Cache invalidation succeeded",
            request_id=request_id,
            batches=len(batches),
            invalidation_ids=report.invalidation_ids,
            released=len(report.released),
            failed=len(report.failed) + len(undeliverable),
        )

        retry = report.released + report.failed + [message.message_id for message in undeliverable]
        return {"batchItemFailures": [{"itemIdentifier": delivery_id} for delivery_id in retry]}

    except InvalidationPipelineError as e:
        StructuredLogger.error("Cache invalidation error", exception=e, request_id=request_id)
        return {"batchItemFailures": _all_items(messages)}
    except Exception as e:
        StructuredLogger.error("Unexpected error in cache invalidator", exception=e, request_id=request_id)
        return {"batchItemFailures": _all_items(messages)}


def _to_queue_message(record: Dict[str, Any]) -> QueueMessage:
    return QueueMessage(
        message_id=record["messageId"],
        receipt_handle=record["receiptHandle"],
        body=record.get("body", ""),
        receive_count=int(record.get("attributes", {}).get("ApproximateReceiveCount", "1")),
    )


def _all_items(messages: List[QueueMessage]) -> List[Dict[str, str]]:
    return [{"itemIdentifier": message.message_id} for message in messages]
