"""
Transaction and broker state models.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel

from pcp_controller.errors import ActionError


class TransactionStatus(str, Enum):
    PENDING = "running"
    UNKNOWN = "unknown"
    SUCCESS = "success"
    FAILURE = "failure"
    OTHER = "other"

    @property
    def terminal(self) -> bool:
        return self in (TransactionStatus.SUCCESS, TransactionStatus.FAILURE, TransactionStatus.OTHER)

    @classmethod
    def parse(cls, value: str) -> "TransactionStatus":
        """Map an agent's status string; anything unrecognised is OTHER."""
        try:
            return cls(value.lower())
        except ValueError:
            return cls.OTHER


class BrokerState(str, Enum):
    UNKNOWN = "unknown"
    STARTING = "starting"
    RUNNING = "running"
    ERROR = "error"


class Transaction(BaseModel):
    """One asynchronous action on one target."""
    id: str
    target: str
    status: TransactionStatus = TransactionStatus.PENDING
    raw_status: Optional[str] = None
    outcome: Optional[dict[str, Any]] = None
    attempts: int = 0
    elapsed: float = 0.0

    @property
    def finished(self) -> bool:
        return self.outcome is not None

    def _fail(self, message: str) -> ActionError:
        return ActionError(f"Action {self.id} on {self.target} {message}", transaction=self, outcome=self.outcome)

    def raise_for_status(
        self,
        expected_environment: Optional[str] = None,
        expected_result: Optional[str] = None,
    ) -> None:
        """Raise ActionError unless the action finished with SUCCESS.

        expected_environment and expected_result are compared with the
        outcome's "environment" and "status" keys when given.
        """
        if self.status is not TransactionStatus.SUCCESS:
            raise self._fail(f"finished with status {self.raw_status or self.status.value!r}")
        outcome = self.outcome or {}
        if expected_environment is not None and outcome.get("environment") != expected_environment:
            raise self._fail(f"ran in environment {outcome.get('environment')!r}, expected {expected_environment!r}")
        if expected_result is not None and outcome.get("status") != expected_result:
            raise self._fail(f"reported result {outcome.get('status')!r}, expected {expected_result!r}")
