import asyncio

from aptos_sdk.account import Account
from aptos_sdk.account_address import AccountAddress
from aptos_sdk.async_client import ClientConfig
from aptos_sdk.transaction_worker import TransactionWorker

from apt_airdrop import worker as worker_module
from apt_airdrop.batch import build_intents
from apt_airdrop.events import (
    EventKind,
    executed_event,
    execution_failed_event,
    send_failed_event,
)
from apt_airdrop.worker import WorkerBatchSubmitter

from conftest import ADDR_A, ADDR_B, TEST_KEY


class ChainClient:
    """
    REST client double for running the SDK TransactionWorker.

    Transaction hashes are ``0x<sequence number>``. Failures are configured
    per sequence number for building and submitting, and per hash for
    execution.
    """

    def __init__(self, build_errors=None, submit_errors=None, execution_errors=None):
        self.client_config = ClientConfig()
        self.build_errors = build_errors or {}
        self.submit_errors = submit_errors or {}
        self.execution_errors = execution_errors or {}
        self.submitted = []
        self.waited = []

    async def account_sequence_number(self, address, ledger_version=None):
        return 0

    async def create_bcs_signed_transaction(self, sender, payload, sequence_number=None):
        if sequence_number in self.build_errors:
            raise self.build_errors[sequence_number]
        return ("signed", sequence_number)

    async def submit_bcs_transaction(self, signed):
        _, sequence_number = signed
        if sequence_number in self.submit_errors:
            raise self.submit_errors[sequence_number]
        self.submitted.append(sequence_number)
        return f"0x{sequence_number}"

    async def wait_for_transaction(self, txn_hash):
        await asyncio.sleep(0)
        self.waited.append(txn_hash)
        if txn_hash in self.execution_errors:
            raise self.execution_errors[txn_hash]


def intents(count=2):
    addresses = [AccountAddress.from_str(ADDR_A), AccountAddress.from_str(ADDR_B)]
    return build_intents([addresses[i % 2] for i in range(count)])


def run_batch(client, count=2):
    sender = Account.load_key(TEST_KEY)

    async def collect():
        stream = WorkerBatchSubmitter(client).submit(sender, intents(count))
        return [event async for event in stream]

    return asyncio.run(asyncio.wait_for(collect(), timeout=5))


def by_sequence(events):
    return {e.sequence_number: e for e in events if e.kind is not EventKind.FINISHED}


class TestEventMessages:
    def test_executed(self):
        event = executed_event(3, "0xabc")
        assert event.kind is EventKind.EXECUTED
        assert "0xabc" in event.message
        assert not event.is_failure

    def test_send_failed(self):
        event = send_failed_event(4, RuntimeError("SEQUENCE_NUMBER_TOO_OLD"))
        assert event.kind is EventKind.SEND_FAILED
        assert "SEQUENCE_NUMBER_TOO_OLD" in event.message
        assert event.is_failure

    def test_send_failed_without_sequence_number(self):
        event = send_failed_event(None, RuntimeError("stopped"))
        assert event.message == "transaction not submitted: stopped"

    def test_execution_failed(self):
        event = execution_failed_event(5, "0xdef", AssertionError("OUT_OF_GAS"))
        assert event.kind is EventKind.EXECUTION_FAILED
        assert event.transaction_hash == "0xdef"
        assert event.is_failure


class TestWorkerBatchSubmitter:
    def test_all_executed_after_commit(self):
        client = ChainClient()

        events = run_batch(client)

        assert [e.kind for e in events[:-1]] == [EventKind.EXECUTED, EventKind.EXECUTED]
        assert events[-1].kind is EventKind.FINISHED
        assert events[-1].message == "execute 2 transactions finished"
        assert sorted(client.waited) == ["0x0", "0x1"]

    def test_failed_on_chain(self):
        client = ChainClient(execution_errors={"0x0": AssertionError("OUT_OF_GAS")})

        events = run_batch(client)

        results = by_sequence(events)
        assert results[0].kind is EventKind.EXECUTION_FAILED
        assert "OUT_OF_GAS" in results[0].message
        assert results[1].kind is EventKind.EXECUTED
        assert events[-1].kind is EventKind.FINISHED

    def test_rejected_submission(self):
        client = ChainClient(submit_errors={1: RuntimeError("SEQUENCE_NUMBER_TOO_OLD")})

        events = run_batch(client)

        results = by_sequence(events)
        assert results[0].kind is EventKind.EXECUTED
        assert results[1].kind is EventKind.SEND_FAILED
        assert client.waited == ["0x0"]
        assert events[-1].kind is EventKind.FINISHED

    def test_build_failure_reports_remaining_intents(self):
        client = ChainClient(build_errors={1: RuntimeError("chain id lookup failed")})

        events = run_batch(client, count=3)

        kinds = [e.kind for e in events]
        assert kinds.count(EventKind.EXECUTED) == 1
        assert kinds.count(EventKind.SEND_FAILED) == 2
        assert kinds[-1] is EventKind.FINISHED
        failed = [e for e in events if e.kind is EventKind.SEND_FAILED]
        assert failed[0].sequence_number == 1
        assert "chain id lookup failed" in failed[0].message
        assert client.submitted == [0]

    def test_build_failure_on_first_transaction(self):
        client = ChainClient(build_errors={0: RuntimeError("gas price lookup failed")})

        events = run_batch(client)

        assert [e.kind for e in events] == [
            EventKind.SEND_FAILED,
            EventKind.SEND_FAILED,
            EventKind.FINISHED,
        ]
        assert client.submitted == []

    def test_empty_batch_only_finishes(self):
        events = run_batch(ChainClient(), count=0)

        assert [e.kind for e in events] == [EventKind.FINISHED]

    def test_closing_stream_stops_worker(self, monkeypatch):
        stopped = []

        class RecordingWorker(TransactionWorker):
            def stop(self):
                super().stop()
                stopped.append(self)

        monkeypatch.setattr(worker_module, "TransactionWorker", RecordingWorker)
        sender = Account.load_key(TEST_KEY)

        async def first_then_close():
            stream = WorkerBatchSubmitter(ChainClient()).submit(sender, intents())
            event = await stream.__anext__()
            await stream.aclose()
            return event

        event = asyncio.run(asyncio.wait_for(first_then_close(), timeout=5))

        assert event.kind is EventKind.EXECUTED
        assert len(stopped) == 1
