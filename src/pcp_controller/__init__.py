"""
pcp-controller: PCP controller client for Python.

Fan requests out to PCP agents through a broker and collect every agent's
reply under per-message and per-operation deadlines.
"""

from pcp_controller.client import AsyncController, Controller
from pcp_controller.config import ControllerSettings, Credentials, load_settings
from pcp_controller.correlation import CompletionPolicy, InFlightRequest, ResponseCollector, wait_for_completion
from pcp_controller.errors import (
    PCPControllerError,
    ConnectionError,
    TimeoutError,
    ProtocolError,
    ActionError,
)
from pcp_controller.models.envelope import Envelope, InboundMessage, MessageType
from pcp_controller.models.transaction import BrokerState, Transaction, TransactionStatus
from pcp_controller.polling import poll_until
from pcp_controller.transport.envelope import build_envelope

__version__ = "0.1.0"
__all__ = [
    "AsyncController",
    "Controller",
    "ControllerSettings",
    "Credentials",
    "load_settings",
    "CompletionPolicy",
    "InFlightRequest",
    "ResponseCollector",
    "wait_for_completion",
    "PCPControllerError",
    "ConnectionError",
    "TimeoutError",
    "ProtocolError",
    "ActionError",
    "Envelope",
    "InboundMessage",
    "MessageType",
    "BrokerState",
    "Transaction",
    "TransactionStatus",
    "poll_until",
    "build_envelope",
]
