"""
Non-blocking action tracking.

start() sends rpc_non_blocking_request and collects one provisional response
(with its transaction id) per target. wait_for_outcome() then polls the
agent's status/query action for that transaction until the action reports a
final status or the retry budget runs out.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import TYPE_CHECKING, Any, Iterable, Optional, Union

from pydantic import ValidationError

from pcp_controller.errors import ConnectionError, PCPControllerError, ProtocolError, TimeoutError
from pcp_controller.models.envelope import (
    MessageType,
    ProvisionalResponseData,
    RpcResponseData,
    StatusQueryResults,
)
from pcp_controller.models.transaction import Transaction, TransactionStatus
from pcp_controller.polling import poll_until
from pcp_controller.rpc import DEFAULT_ACTION, DEFAULT_MODULE

if TYPE_CHECKING:
    from pcp_controller.client import AsyncController

logger = logging.getLogger(__name__)

STATUS_MODULE = "status"
STATUS_ACTION = "query"


class ActionTracker:
    def __init__(self, controller: AsyncController):
        self._controller = controller

    async def start(
        self,
        targets: Iterable[str],
        module: str = DEFAULT_MODULE,
        action: str = DEFAULT_ACTION,
        params: Optional[Any] = None,
    ) -> dict[str, Transaction]:
        """Start an action on every target and return one PENDING transaction per target."""
        targets = list(dict.fromkeys(targets))
        acks = await self._controller.rpc.non_blocking_request(
            targets, module, action, params,
            timeout=self._controller.settings.provisional_expiry_seconds,
        )
        transactions: dict[str, Transaction] = {}
        for target in targets:
            message = acks[target]
            if message.message_type is not MessageType.RPC_PROVISIONAL_RESPONSE:
                raise ProtocolError(
                    f"{target} answered the non-blocking {module} {action} request with "
                    f"{message.message_type.value} instead of a provisional response",
                    details={"target": target, "message_type": message.message_type.value, "data": message.data},
                )
            ack = message.payload(ProvisionalResponseData)
            transactions[target] = Transaction(id=ack.transaction_id, target=target)
            logger.info("%s accepted %s %s as transaction %s", target, module, action, ack.transaction_id)
        return transactions

    async def query_status(self, transaction: Transaction) -> StatusQueryResults:
        """One status/query round trip for a transaction."""
        responses = await self._controller.rpc.blocking_request(
            [transaction.target], STATUS_MODULE, STATUS_ACTION, {"transaction_id": transaction.id},
        )
        message = responses[transaction.target]
        if not isinstance(message.data, dict) or "results" not in message.data:
            raise ProtocolError(
                f"Response to status query for {transaction.id} was an error: {message.data}",
                details={"target": transaction.target, "message_type": message.message_type.value,
                         "data": message.data},
            )
        results = message.payload(RpcResponseData).results
        try:
            return StatusQueryResults.model_validate(results)
        except ValidationError as e:
            raise ProtocolError(f"Malformed status query results: {results}", details={"errors": e.errors()})

    async def wait_for_outcome(
        self,
        transaction: Transaction,
        max_retries: Optional[int] = None,
        interval: Optional[float] = None,
    ) -> Transaction:
        """Poll status/query until the transaction has a final status.

        Results without stdout are not ready yet. An 'unknown' status is
        tolerated a few times (the action may not have started); after that it
        is accepted as the final status. Any other status with output present
        is final, whatever its value. Raises TimeoutError when the retry
        budget is spent first.
        """
        settings = self._controller.settings
        if max_retries is None:
            max_retries = settings.status_query_retries
        if interval is None:
            interval = settings.status_query_interval
        tolerance = settings.unknown_status_tolerance
        unknown_seen = 0
        started = time.monotonic()

        async def finished() -> bool:
            nonlocal unknown_seen
            transaction.attempts += 1
            results = await self.query_status(transaction)
            if not results.stdout:
                return False
            status = TransactionStatus.parse(results.status)
            transaction.status = status
            transaction.raw_status = results.status
            if status is TransactionStatus.UNKNOWN and unknown_seen < tolerance:
                unknown_seen += 1
                logger.debug("%s: status unknown (%d/%d)", transaction.id, unknown_seen, tolerance)
                return False
            transaction.outcome = _parse_outcome(transaction, results)
            return True

        done = await poll_until(
            finished, interval, max_retries,
            sleep=self._controller.sleep, description=f"outcome of {transaction.id}",
        )
        transaction.elapsed = time.monotonic() - started
        if not done:
            raise TimeoutError(
                f"Transaction {transaction.id} on {transaction.target} reported no outcome after "
                f"{transaction.attempts} attempts and {transaction.elapsed:.1f} seconds",
                targets=[transaction.target],
                missing=[transaction.target],
                elapsed=transaction.elapsed,
                details={"transaction_id": transaction.id, "attempts": transaction.attempts,
                         "status": transaction.status.value},
            )
        logger.info("%s on %s finished: %s", transaction.id, transaction.target, transaction.raw_status)
        return transaction

    async def wait_for_outcomes(
        self,
        transactions: Union[dict[str, Transaction], Iterable[Transaction]],
        max_retries: Optional[int] = None,
        interval: Optional[float] = None,
    ) -> dict[str, Union[Transaction, PCPControllerError]]:
        """Track every transaction concurrently; each target gets its own result or error."""
        items = list(transactions.values()) if isinstance(transactions, dict) else list(transactions)
        results = await asyncio.gather(
            *(self.wait_for_outcome(tx, max_retries, interval) for tx in items),
            return_exceptions=True,
        )
        outcomes: dict[str, Union[Transaction, PCPControllerError]] = {}
        for tx, result in zip(items, results):
            if isinstance(result, ConnectionError) or not isinstance(result, (Transaction, PCPControllerError)):
                raise result
            outcomes[tx.target] = result
        return outcomes

    async def run(
        self,
        targets: Iterable[str],
        module: str = DEFAULT_MODULE,
        action: str = DEFAULT_ACTION,
        params: Optional[Any] = None,
        max_retries: Optional[int] = None,
        interval: Optional[float] = None,
    ) -> dict[str, Union[Transaction, PCPControllerError]]:
        """start() followed by wait_for_outcomes()."""
        transactions = await self.start(targets, module, action, params)
        return await self.wait_for_outcomes(transactions, max_retries, interval)


def _parse_outcome(transaction: Transaction, results: StatusQueryResults) -> dict[str, Any]:
    try:
        outcome = json.loads(results.stdout or "")
    except json.JSONDecodeError:
        raise ProtocolError(
            f"Output of transaction {transaction.id} on {transaction.target} is not JSON",
            details={"stdout": results.stdout},
        )
    if not isinstance(outcome, dict):
        outcome = {"output": outcome}
    if results.environment and "environment" not in outcome:
        outcome["environment"] = results.environment
    return outcome
