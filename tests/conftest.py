from __future__ import annotations

import pytest

from apt_airdrop.config import Settings
from apt_airdrop.events import EventKind, LifecycleEvent, finished_event


TEST_KEY = "0x" + "11" * 32

ADDR_A = "0x1f8c8ca3cdce70a9bf9cadcb8976ff28b26935a456d5e2004730809e85070f62"
ADDR_B = "0xc515ea4268a4c22789b7c8fab2051d9cd828487795206a96c00f10dac8fe7d19"


class FakeRestClient:
    """Stands in for aptos_sdk.async_client.RestClient."""

    def __init__(self, balance: int = 10 * 100_000_000, sequence_number: int = 7):
        self.balance = balance
        self.sequence_number = sequence_number
        self.balance_calls = []
        self.sequence_calls = []
        self.closed = False

    async def account_balance(self, address):
        self.balance_calls.append(address)
        return self.balance

    async def account_sequence_number(self, address):
        self.sequence_calls.append(address)
        return self.sequence_number

    async def close(self):
        self.closed = True


class FakeSubmitter:
    """Records submissions and replays a fixed list of events."""

    def __init__(self, events: list[LifecycleEvent] | None = None):
        self.events = events
        self.calls = []
        self.yielded = 0
        self.closed = False

    async def submit(self, sender, intents):
        self.calls.append((sender, list(intents)))
        events = self.events
        if events is None:
            events = [
                LifecycleEvent(EventKind.EXECUTED, f"txn {i} committed")
                for i in range(len(intents))
            ] + [finished_event(len(intents))]
        try:
            for event in events:
                self.yielded += 1
                yield event
        finally:
            self.closed = True


@pytest.fixture
def settings() -> Settings:
    return Settings(admin_private_key=TEST_KEY)


@pytest.fixture
def fake_client() -> FakeRestClient:
    return FakeRestClient()


@pytest.fixture
def address_file(tmp_path):
    path = tmp_path / "addresses.csv"
    path.write_text(f"{ADDR_A}\n\n   \n{ADDR_B}\n")
    return path
