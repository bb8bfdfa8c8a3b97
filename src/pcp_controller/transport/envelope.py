"""
Envelope construction and parsing.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from pcp_controller.errors import ProtocolError
from pcp_controller.models.envelope import Envelope, InboundMessage, MessageType


def build_envelope(
    message_type: MessageType,
    targets: Iterable[str],
    data: Any,
    ttl: float,
    correlated: bool = False,
    sender: Optional[str] = None,
) -> Envelope:
    """Build an outbound envelope expiring ttl seconds from now.

    Duplicate targets are collapsed, preserving order. When correlated is set
    a fresh correlation id is attached for matching asynchronous replies.
    """
    ordered = list(dict.fromkeys(targets))
    if not ordered:
        raise ValueError("An envelope needs at least one target")
    if ttl <= 0:
        raise ValueError(f"ttl must be positive, got {ttl}")
    return Envelope(
        id=str(uuid.uuid4()),
        message_type=MessageType(message_type),
        targets=ordered,
        expires=datetime.now(timezone.utc) + timedelta(seconds=ttl),
        sender=sender,
        correlation_id=str(uuid.uuid4()) if correlated else None,
        data=data,
    )


def serialize_envelope(envelope: Envelope) -> dict[str, Any]:
    """Wire form: correlation ids travel inside data, not on the envelope."""
    wire = envelope.model_dump(mode="json", exclude={"correlation_id"}, exclude_none=True)
    wire["data"] = envelope.data
    return wire


def parse_message(raw: Any) -> InboundMessage:
    """Parse an inbound wire dict. Raises ProtocolError on malformed or unknown messages."""
    if not isinstance(raw, dict):
        raise ProtocolError(f"Inbound frame is not an object: {type(raw).__name__}")
    try:
        return InboundMessage.model_validate(raw)
    except ValidationError as e:
        raise ProtocolError(
            f"Malformed inbound message of type {raw.get('message_type')!r}",
            details={"raw": raw, "errors": e.errors()},
        )
