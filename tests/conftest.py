import itertools
import json
import os

import pytest

from shared.errors import InvalidPathsError
from shared.models import QueueMessage

os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("AWS_SECURITY_TOKEN", "testing")
os.environ.setdefault("AWS_SESSION_TOKEN", "testing")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeQueue:
    """In-memory lease/acknowledge queue driven by a FakeClock."""

    def __init__(self, clock: FakeClock, visibility_timeout: float = 60):
        self.clock = clock
        self.visibility_timeout = visibility_timeout
        self.messages = {}
        self.acknowledged = []
        self.dead_letters = []
        self.releases = []
        self.receive_calls = []
        self._ids = itertools.count(1)
        self._handles = itertools.count(1)

    def enqueue(self, body, attributes=None) -> str:
        message_id = f"msg-{next(self._ids)}"
        raw = body if isinstance(body, str) else json.dumps(body)
        self.messages[message_id] = {"body": raw, "visible_at": self.clock(), "receive_count": 0, "handle": None}
        return message_id

    def enqueue_path(self, path: str, request_id: str = None) -> str:
        return self.enqueue({"path": path, "received_at": self.clock(), "request_id": request_id})

    def _lease(self, max_messages):
        leased = []
        for message_id, state in self.messages.items():
            if len(leased) >= max_messages:
                break
            if state["visible_at"] <= self.clock():
                state["visible_at"] = self.clock() + self.visibility_timeout
                state["receive_count"] += 1
                state["handle"] = f"handle-{next(self._handles)}"
                leased.append(
                    QueueMessage(
                        message_id=message_id,
                        receipt_handle=state["handle"],
                        body=state["body"],
                        receive_count=state["receive_count"],
                    )
                )
        return leased

    def receive(self, max_messages, wait_seconds):
        self.receive_calls.append((max_messages, wait_seconds))
        leased = self._lease(max_messages)
        if not leased:
            self.clock.advance(wait_seconds)
            leased = self._lease(max_messages)
        return leased

    def _current(self, message):
        state = self.messages.get(message.message_id)
        return state is not None and state["handle"] == message.receipt_handle

    def acknowledge(self, messages):
        failed = []
        for message in messages:
            if self._current(message):
                del self.messages[message.message_id]
                self.acknowledged.append(message.message_id)
            else:
                failed.append(message)
        return failed

    def release(self, message, delay_seconds):
        self.releases.append((message.message_id, delay_seconds))
        if self._current(message):
            self.messages[message.message_id]["visible_at"] = self.clock() + delay_seconds

    def dead_letter(self, message, reason):
        self.messages.pop(message.message_id, None)
        self.dead_letters.append((message.message_id, reason))

    @property
    def pending(self):
        return len(self.messages)


class FakeProvider:
    """
    CloudFront stand-in. ``rejected`` paths fail the whole call the way
    CloudFront does; ``attribute`` controls whether the error names them.
    """

    def __init__(self, rejected=(), attribute=True, partial_accept=False, failures=None, in_progress=0):
        self.rejected = set(rejected)
        self.attribute = attribute
        self.partial_accept = partial_accept
        self.failures = list(failures or [])
        self.in_progress = in_progress
        self.calls = []
        self._ids = itertools.count(1)

    def create_invalidation(self, distribution_id, paths):
        paths = list(paths)
        self.calls.append(paths)

        if self.failures:
            raise self.failures.pop(0)

        bad = self.rejected.intersection(paths)
        if bad:
            if self.partial_accept:
                raise InvalidPathsError("rejected", failed_paths=bad, invalidation_id=f"I{next(self._ids)}")
            raise InvalidPathsError("rejected", failed_paths=bad if self.attribute else paths)

        return f"I{next(self._ids)}"

    def count_in_progress(self, distribution_id):
        return self.in_progress


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_queue(clock):
    return FakeQueue(clock)


@pytest.fixture
def provider():
    return FakeProvider()
