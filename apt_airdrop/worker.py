"""
Batch submission through the Aptos SDK transaction worker.

The SDK's TransactionWorker reserves sequence numbers for the sender, keeps
a bounded number of transactions in flight and submits them. It only reports
whether each submission was accepted, so this module waits for every
accepted transaction to commit before reporting it as executed. It also
builds and signs the transactions handed to the worker, so a build failure
is reported instead of silently stopping the worker.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, AsyncIterator, Optional, Protocol, Sequence

from aptos_sdk.account import Account
from aptos_sdk.async_client import RestClient
from aptos_sdk.transaction_worker import TransactionWorker
from aptos_sdk.transactions import SignedTransaction, TransactionPayload

from apt_airdrop.events import (
    LifecycleEvent,
    executed_event,
    execution_failed_event,
    finished_event,
    send_failed_event,
)

if TYPE_CHECKING:
    from apt_airdrop.batch import TransferIntent


log = logging.getLogger(__name__)


class BatchSubmitter(Protocol):
    """Anything that can push a batch of transfers and report on them."""

    def submit(
        self, sender: Account, intents: Sequence["TransferIntent"]
    ) -> AsyncIterator[LifecycleEvent]:
        ...


class SigningQueue:
    """
    Transaction generator for the worker.

    Payloads are signed in push order with the sequence number the worker
    hands out. The worker's submit task dies if the generator raises, so the
    first failure is recorded and ``failed`` is set for the consumer.
    """

    def __init__(self, client: RestClient):
        self._client = client
        self._payloads: asyncio.Queue = asyncio.Queue()
        self.built = 0
        self.failed = asyncio.Event()
        self.failure: Optional[tuple[int, Exception]] = None

    def push(self, payload: TransactionPayload) -> None:
        self._payloads.put_nowait(payload)

    async def next(self, sender: Account, sequence_number: int) -> SignedTransaction:
        payload = await self._payloads.get()
        try:
            signed = await self._client.create_bcs_signed_transaction(
                sender, payload, sequence_number=sequence_number
            )
        except Exception as e:
            self.failure = (sequence_number, e)
            self.failed.set()
            raise
        self.built += 1
        return signed


class WorkerBatchSubmitter:
    """BatchSubmitter backed by aptos_sdk's TransactionWorker."""

    def __init__(self, rest_client: RestClient):
        self._client = rest_client

    async def submit(
        self, sender: Account, intents: Sequence["TransferIntent"]
    ) -> AsyncIterator[LifecycleEvent]:
        """
        Submit every intent from ``sender`` and yield one event per
        transaction, then a FINISHED event.

        Accepted submissions are reported once they commit (EXECUTED) or
        fail on chain (EXECUTION_FAILED). Rejected submissions, and intents
        that could not be built, are SEND_FAILED. Per-transaction events
        arrive in resolution order, which need not match intent order.
        FINISHED comes only after every transaction has resolved.
        """
        if not intents:
            yield finished_event(0)
            return

        queue = SigningQueue(self._client)
        worker = TransactionWorker(sender, self._client, queue.next)
        worker.start()
        log.debug("Transaction worker started for %s", sender.address())

        confirmations: list[asyncio.Task] = []
        processed = 0
        try:
            for intent in intents:
                queue.push(intent.to_payload())

            while processed < len(intents):
                if queue.failed.is_set() and processed >= queue.built:
                    break

                result = await self._next_processed(worker, queue)
                if result is None:
                    continue
                processed += 1

                sequence_number, txn_hash, error = result
                if error is not None or txn_hash is None:
                    yield send_failed_event(sequence_number, error)
                else:
                    confirmations.append(
                        asyncio.create_task(self._confirm(sequence_number, txn_hash))
                    )

                for task in [t for t in confirmations if t.done()]:
                    confirmations.remove(task)
                    yield task.result()

            if processed < len(intents):
                failed_sequence, build_error = queue.failure
                yield send_failed_event(failed_sequence, build_error)
                for _ in range(len(intents) - processed - 1):
                    yield send_failed_event(
                        None, RuntimeError("worker stopped after a build failure")
                    )

            for task in asyncio.as_completed(confirmations):
                yield await task
            confirmations = []

            yield finished_event(len(intents))
        finally:
            for task in confirmations:
                task.cancel()
            worker.stop()
            log.debug("Transaction worker stopped")

    async def _next_processed(self, worker: TransactionWorker, queue: SigningQueue):
        """Next submission result, or None if a build failure came first."""
        if queue.failed.is_set():
            # everything built before the failure still gets a result
            return await worker.next_processed_transaction()

        next_result = asyncio.ensure_future(worker.next_processed_transaction())
        build_failure = asyncio.ensure_future(queue.failed.wait())
        done, _ = await asyncio.wait(
            {next_result, build_failure}, return_when=asyncio.FIRST_COMPLETED
        )
        build_failure.cancel()
        if next_result in done:
            return next_result.result()
        next_result.cancel()
        return None

    async def _confirm(self, sequence_number: int, txn_hash: str) -> LifecycleEvent:
        try:
            await self._client.wait_for_transaction(txn_hash)
        except Exception as e:
            # failed execution or timed out waiting for it
            return execution_failed_event(sequence_number, txn_hash, e)
        return executed_event(sequence_number, txn_hash)
