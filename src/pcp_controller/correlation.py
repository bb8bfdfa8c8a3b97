"""
Request/response correlation.

ResponseCollector keeps a table of in-flight requests keyed by request id and
routes every inbound message to the request(s) it belongs to, keyed by sender.
Each request has its own notification event; wait_for_completion re-checks
the completion predicate after every wake and once more at the deadline.

All of this runs on one event loop: the connection's receive path is the only
writer, and waiters read between awaits, so no lock is needed.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Iterable, Optional

from pcp_controller.errors import TimeoutError
from pcp_controller.models.envelope import BROKER_ERROR_TYPES, InboundMessage

logger = logging.getLogger(__name__)


class CompletionPolicy(str, Enum):
    ALL_TARGETS = "all_targets"
    ANY_ONE = "any_one"


class InFlightRequest:
    """One outstanding request: its targets, the replies so far and its deadline."""

    def __init__(
        self,
        request_id: str,
        targets: Iterable[str],
        timeout: float,
        policy: CompletionPolicy = CompletionPolicy.ALL_TARGETS,
        correlation_id: Optional[str] = None,
    ):
        self.request_id = request_id
        self.correlation_id = correlation_id
        self.ordered_targets = tuple(dict.fromkeys(targets))
        if not self.ordered_targets:
            raise ValueError("An in-flight request needs at least one target")
        self.targets = frozenset(self.ordered_targets)
        self.policy = policy
        self.responses: dict[str, InboundMessage] = {}
        self.broker_errors: list[dict[str, Any]] = []
        self.started_at = time.monotonic()
        self.deadline = self.started_at + timeout
        self._changed = asyncio.Event()

    def __repr__(self) -> str:
        return (f"InFlightRequest(id={self.request_id!r}, received={len(self.responses)}"
                f"/{len(self.targets)}, policy={self.policy.value})")

    @property
    def missing(self) -> list[str]:
        return [t for t in self.ordered_targets if t not in self.responses]

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at

    def is_complete(self) -> bool:
        if self.policy is CompletionPolicy.ANY_ONE:
            return len(self.responses) >= 1
        return self.responses.keys() == self.targets

    def accepts(self, message: InboundMessage) -> bool:
        """Whether an inbound message is a reply to this request."""
        if message.sender not in self.targets:
            return False
        if message.in_reply_to:
            return message.in_reply_to == self.request_id
        token = message.transaction_id
        if token is not None:
            return token == self.correlation_id
        return self.correlation_id is None

    def record(self, message: InboundMessage) -> bool:
        """Store a reply (last write wins). Returns False once the request is complete."""
        if self.is_complete():
            return False
        self.responses[message.sender] = message
        self._changed.set()
        return True

    async def wait_changed(self, timeout: float) -> bool:
        self._changed.clear()
        try:
            await asyncio.wait_for(self._changed.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True


class ResponseCollector:
    def __init__(self) -> None:
        self._requests: dict[str, InFlightRequest] = {}

    def __len__(self) -> int:
        return len(self._requests)

    def register(self, request: InFlightRequest) -> None:
        self._requests[request.request_id] = request

    def unregister(self, request: InFlightRequest) -> None:
        self._requests.pop(request.request_id, None)

    def dispatch(self, message: InboundMessage) -> None:
        """Inbound handler: route a message to every in-flight request it answers."""
        if message.message_type in BROKER_ERROR_TYPES:
            self._broker_error(message)
            return

        matched = False
        for request in list(self._requests.values()):
            if request.accepts(message):
                matched = True
                if request.record(message):
                    logger.debug("%s: reply from %s (%s)", request.request_id, message.sender,
                                 message.message_type.value)
        if not matched:
            logger.debug("Unsolicited %s from %s", message.message_type.value, message.sender)

    def _broker_error(self, message: InboundMessage) -> None:
        data = message.data if isinstance(message.data, dict) else {}
        kind = message.message_type.value.rsplit("/", 1)[-1]
        description = data.get("description", "")
        referenced = message.in_reply_to or data.get("id")
        request = self._requests.get(referenced) if referenced else None
        if request is None:
            logger.warning("Broker %s: %s", kind, description)
            return
        request.broker_errors.append({"type": kind, "description": description})
        logger.warning("Broker reported %s for request %s: %s", kind, referenced, description)


async def wait_for_completion(request: InFlightRequest) -> dict[str, InboundMessage]:
    """Wait until the request's predicate holds or its deadline passes.

    Wakes can come from replies that did not complete the request, so the
    predicate is re-evaluated after each one. At the deadline the predicate is
    checked exactly once more before giving up.
    """
    while not request.is_complete():
        remaining = request.deadline - time.monotonic()
        if remaining <= 0:
            break
        await request.wait_changed(remaining)

    if request.is_complete():
        return dict(request.responses)

    missing = request.missing
    raise TimeoutError(
        f"No reply from {len(missing)} of {len(request.targets)} target(s) after "
        f"{request.elapsed:.1f}s: {', '.join(missing)}",
        targets=list(request.ordered_targets),
        missing=missing,
        responses=dict(request.responses),
        elapsed=request.elapsed,
        details={"broker_errors": list(request.broker_errors)} if request.broker_errors else None,
    )
