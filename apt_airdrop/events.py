"""Lifecycle events emitted while a batch of transfers is processed."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class EventKind(Enum):
    EXECUTED = "TransactionExecuted"
    SEND_FAILED = "TransactionSendFailed"
    EXECUTION_FAILED = "TransactionExecutionFailed"
    FINISHED = "ExecutionFinish"


@dataclass(frozen=True)
class LifecycleEvent:
    """Outcome of one transaction in the batch, or the end of the batch."""

    kind: EventKind
    message: str
    sequence_number: Optional[int] = None
    transaction_hash: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def is_failure(self) -> bool:
        return self.kind in (EventKind.SEND_FAILED, EventKind.EXECUTION_FAILED)


def executed_event(sequence_number: int, transaction_hash: str) -> LifecycleEvent:
    return LifecycleEvent(
        kind=EventKind.EXECUTED,
        message=(
            f"transaction {transaction_hash} "
            f"(sequence number {sequence_number}) committed to chain"
        ),
        sequence_number=sequence_number,
        transaction_hash=transaction_hash,
    )


def send_failed_event(
    sequence_number: Optional[int], error: BaseException
) -> LifecycleEvent:
    """The transaction never reached the mempool (build or submit failed)."""
    if sequence_number is None:
        message = f"transaction not submitted: {error}"
    else:
        message = (
            f"failed to submit transaction with sequence number "
            f"{sequence_number}: {error}"
        )
    return LifecycleEvent(
        kind=EventKind.SEND_FAILED,
        message=message,
        sequence_number=sequence_number,
        error=error,
    )


def execution_failed_event(
    sequence_number: int, transaction_hash: str, error: BaseException
) -> LifecycleEvent:
    """The transaction was accepted but did not commit successfully."""
    return LifecycleEvent(
        kind=EventKind.EXECUTION_FAILED,
        message=(
            f"transaction {transaction_hash} "
            f"(sequence number {sequence_number}) failed: {error}"
        ),
        sequence_number=sequence_number,
        transaction_hash=transaction_hash,
        error=error,
    )


def finished_event(processed: int) -> LifecycleEvent:
    return LifecycleEvent(
        kind=EventKind.FINISHED,
        message=f"execute {processed} transactions finished",
    )
