"""
PCP envelope and payload models.

Message types form a closed set; each carries its own payload schema that is
validated when a message is consumed.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from pcp_controller.errors import ProtocolError

SERVER_IDENTITY = "pcp:///server"

_PCP = "http://puppetlabs.com/"


class MessageType(str, Enum):
    ASSOCIATE_REQUEST = _PCP + "associate_request"
    ASSOCIATE_RESPONSE = _PCP + "associate_response"
    INVENTORY_REQUEST = _PCP + "inventory_request"
    INVENTORY_RESPONSE = _PCP + "inventory_response"
    RPC_BLOCKING_REQUEST = _PCP + "rpc_blocking_request"
    RPC_NON_BLOCKING_REQUEST = _PCP + "rpc_non_blocking_request"
    RPC_PROVISIONAL_RESPONSE = _PCP + "rpc_provisional_response"
    RPC_BLOCKING_RESPONSE = _PCP + "rpc_blocking_response"
    RPC_NON_BLOCKING_RESPONSE = _PCP + "rpc_non_blocking_response"
    RPC_ERROR_MESSAGE = _PCP + "rpc_error_message"
    ERROR_MESSAGE = _PCP + "error_message"
    TTL_EXPIRED = _PCP + "ttl_expired"


# Replies the broker sends on behalf of a request it could not deliver
BROKER_ERROR_TYPES = {MessageType.ERROR_MESSAGE, MessageType.TTL_EXPIRED}


class Envelope(BaseModel):
    id: str
    message_type: MessageType
    targets: list[str]
    expires: datetime
    sender: Optional[str] = None
    in_reply_to: Optional[str] = None
    correlation_id: Optional[str] = None
    data: Optional[Any] = None


# Payload variants

class InventoryRequestData(BaseModel):
    query: list[str]


class InventoryResponseData(BaseModel):
    uris: list[str]


class RpcRequestData(BaseModel):
    transaction_id: str
    module: str
    action: str
    params: Optional[Any] = None
    notify_outcome: Optional[bool] = None


class ProvisionalResponseData(BaseModel):
    transaction_id: str


class StatusQueryResults(BaseModel):
    """status/query action results"""
    status: str = ""
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    environment: Optional[str] = None


class RpcResponseData(BaseModel):
    transaction_id: Optional[str] = None
    results: dict[str, Any]


class AssociateResponseData(BaseModel):
    id: str = ""
    success: bool
    reason: Optional[str] = None


class ErrorMessageData(BaseModel):
    id: Optional[str] = None
    description: str = ""


P = TypeVar("P", bound=BaseModel)


class InboundMessage(BaseModel):
    sender: str
    message_type: MessageType
    id: str = ""
    in_reply_to: Optional[str] = None
    data: Optional[Any] = None

    @property
    def transaction_id(self) -> Optional[str]:
        if isinstance(self.data, dict):
            value = self.data.get("transaction_id")
            return value if isinstance(value, str) else None
        return None

    def payload(self, model: Type[P]) -> P:
        """Validate data against a payload variant. Raises ProtocolError on mismatch."""
        try:
            return model.model_validate(self.data)
        except ValidationError as e:
            raise ProtocolError(
                f"{self.message_type.value} from {self.sender} is not a valid {model.__name__}",
                details={"sender": self.sender, "data": self.data, "errors": e.errors()},
            )

