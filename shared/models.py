"""
Data models passed between the queue adapter, the batch assembler and the
invalidation executor.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set

# Dead-letter reasons, recorded as a message attribute on the dead-letter queue
INVALID_MESSAGE = "invalid_message"
PERMANENT_PATH_ERROR = "permanent_path_error"
REDELIVERY_EXHAUSTED = "redelivery_exhausted"


@dataclass
class QueueMessage:
    """A single leased SQS message."""

    message_id: str
    receipt_handle: str
    body: str
    receive_count: int = 1


@dataclass
class InvalidationRequest:
    """One caller-submitted path, as read back from the queue."""

    path: str
    received_at: float
    message: QueueMessage
    request_id: Optional[str] = None

    @property
    def delivery_id(self) -> str:
        return self.message.message_id

    @property
    def redeliveries(self) -> int:
        return max(self.message.receive_count - 1, 0)


@dataclass
class Batch:
    """
    Deduplicated set of paths submitted together in one provider call.

    ``entries`` maps each distinct path to every request that asked for it, so
    all of their messages can be acknowledged or dead-lettered together.
    """

    entries: Dict[str, List[InvalidationRequest]] = field(default_factory=dict)
    opened_at: Optional[float] = None

    def add(self, request: InvalidationRequest) -> None:
        self.entries.setdefault(request.path, []).append(request)

    def discard(self, request: InvalidationRequest) -> None:
        remaining = [r for r in self.entries.get(request.path, []) if r is not request]
        if remaining:
            self.entries[request.path] = remaining
        else:
            self.entries.pop(request.path, None)

    @property
    def paths(self) -> List[str]:
        return list(self.entries)

    @property
    def members(self) -> List[InvalidationRequest]:
        return [request for requests in self.entries.values() for request in requests]

    def requests_for(self, paths) -> Iterator[InvalidationRequest]:
        for path in paths:
            yield from self.entries.get(path, [])

    def __len__(self) -> int:
        return len(self.entries)

    def __bool__(self) -> bool:
        return bool(self.entries)


@dataclass
class InvalidationOutcome:
    """Result of submitting a batch's paths to CloudFront."""

    invalidation_ids: List[str] = field(default_factory=list)
    accepted_paths: Set[str] = field(default_factory=set)
    failed_paths: Set[str] = field(default_factory=set)
    deferred_paths: Set[str] = field(default_factory=set)
    provider_error: Optional[Exception] = None


@dataclass
class ExecutionReport:
    """Final disposition of every message in a batch, by delivery id."""

    acknowledged: List[str] = field(default_factory=list)
    released: List[str] = field(default_factory=list)
    dead_lettered: List[str] = field(default_factory=list)
    invalidation_ids: List[str] = field(default_factory=list)
    # dead-letter attempts that failed; the message is still on the queue
    failed: List[str] = field(default_factory=list)

    def merge(self, other: "ExecutionReport") -> None:
        self.acknowledged.extend(other.acknowledged)
        self.released.extend(other.released)
        self.dead_lettered.extend(other.dead_lettered)
        self.invalidation_ids.extend(other.invalidation_ids)
        self.failed.extend(other.failed)
