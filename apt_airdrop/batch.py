"""
Core distribution logic for APT Airdrop.

Every recipient listed in the address file gets the same fixed amount of APT
from the admin account. All transfers go out as one batch through the Aptos
SDK's transaction worker, which handles sequencing and submission; this
module loads the recipients, builds the transfer payloads and follows the
batch's lifecycle events until it finishes.

Supports:
- Newline-delimited address files (no header, blank lines ignored)
- Fixed-amount 0x1::aptos_account::transfer payloads
- Per-transaction logging of executed / failed transfers
- Dry-run mode with a balance check
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional, Sequence

from aptos_sdk.account_address import AccountAddress
from aptos_sdk.async_client import RestClient
from aptos_sdk.bcs import Serializer
from aptos_sdk.transactions import (
    EntryFunction,
    TransactionArgument,
    TransactionPayload,
)

from apt_airdrop.config import AirdropError, Settings
from apt_airdrop.events import EventKind, LifecycleEvent
from apt_airdrop.worker import BatchSubmitter, WorkerBatchSubmitter


log = logging.getLogger(__name__)

OCTAS_PER_APT = 100_000_000

# Amount of APT sent to every recipient, in octas (0.4 APT)
TRANSFER_AMOUNT_OCTAS = 40_000_000

TRANSFER_FUNCTION = "0x1::aptos_account::transfer"

ADDRESS_FILE_NAME = "addresses.csv"


def default_address_file(package_dir: Path = Path(__file__).resolve().parent) -> Path:
    """
    addresses.csv at the project root when running from a checkout,
    otherwise in the current working directory (installed package).
    """
    project_root = package_dir.parent
    if (project_root / "pyproject.toml").exists():
        return project_root / ADDRESS_FILE_NAME
    return Path.cwd() / ADDRESS_FILE_NAME


DEFAULT_ADDRESS_FILE = default_address_file()


class AddressFileError(AirdropError):
    """The address file is missing or cannot be read."""


class AddressParseError(AirdropError):
    """A non-blank line in the address file is not a valid account address."""

    def __init__(self, line_number: int, text: str, reason: str = ""):
        self.line_number = line_number
        self.text = text
        detail = f": {reason}" if reason else ""
        super().__init__(f"Line {line_number}: invalid address '{text}'{detail}")


class BatchIncompleteError(AirdropError):
    """The event stream ended without a FINISHED event."""


def octas_to_apt(octas: int) -> float:
    return octas / OCTAS_PER_APT


def parse_address(text: str, line_number: int = 0) -> AccountAddress:
    """Parse one trimmed address. The 0x prefix and leading zeros are optional."""
    try:
        return AccountAddress.from_str_relaxed(text)
    except (RuntimeError, ValueError) as e:
        raise AddressParseError(line_number, text, str(e)) from e


async def load_addresses(filepath: str | Path) -> list[AccountAddress]:
    """
    Load recipient addresses from a newline-delimited file.

    Expected format (no header, one address per line):
        0x1f8c8ca3cdce70a9bf9cadcb8976ff28b26935a456d5e2004730809e85070f62
        0xc515ea4268a4c22789b7c8fab2051d9cd828487795206a96c00f10dac8fe7d19

    Lines are trimmed and blank lines skipped. Order is kept and duplicates
    are not removed. Reads happen in a worker thread so the event loop is
    yielded between lines.
    """
    filepath = Path(filepath)
    try:
        f = await asyncio.to_thread(open, filepath, "r", encoding="utf-8-sig")
    except OSError as e:
        raise AddressFileError(f"Cannot open address file {filepath}: {e}") from e

    addresses = []
    with f:
        line_number = 0
        while True:
            try:
                line = await asyncio.to_thread(f.readline)
            except (OSError, UnicodeDecodeError) as e:
                raise AddressFileError(
                    f"Cannot read address file {filepath}: {e}"
                ) from e
            if not line:
                break

            line_number += 1
            text = line.strip()
            if not text:
                continue
            addresses.append(parse_address(text, line_number))

    log.debug("Loaded %d addresses from %s", len(addresses), filepath)
    return addresses


@dataclass(frozen=True)
class TransferIntent:
    """One fixed-amount transfer to one recipient."""

    recipient: AccountAddress
    amount: int  # in octas
    function: str = TRANSFER_FUNCTION

    def to_payload(self) -> TransactionPayload:
        """Entry-function payload understood by the SDK transaction worker."""
        module, function = self.function.rsplit("::", 1)
        return TransactionPayload(
            EntryFunction.natural(
                module,
                function,
                [],
                [
                    TransactionArgument(self.recipient, Serializer.struct),
                    TransactionArgument(self.amount, Serializer.u64),
                ],
            )
        )


def build_intents(
    addresses: Sequence[AccountAddress], amount: int = TRANSFER_AMOUNT_OCTAS
) -> list[TransferIntent]:
    """One intent per address, in address order."""
    return [TransferIntent(recipient=address, amount=amount) for address in addresses]


@dataclass
class DistributionSummary:
    """Result of a distribution run."""

    recipient_count: int
    amount: int  # per recipient, in octas
    sender: str = ""
    sender_balance: Optional[int] = None
    executed: int = 0
    send_failed: int = 0
    execution_failed: int = 0
    sequence_number: Optional[int] = None
    dry_run: bool = False

    @property
    def total_amount(self) -> int:
        return self.amount * self.recipient_count

    @property
    def failed(self) -> int:
        return self.send_failed + self.execution_failed

    @property
    def has_failures(self) -> bool:
        return self.failed > 0

    @property
    def balance_sufficient(self) -> Optional[bool]:
        if self.sender_balance is None:
            return None
        return self.sender_balance >= self.total_amount

    def summary(self) -> str:
        """Human-readable summary of the run."""
        if self.dry_run:
            title = "DRY RUN"
        else:
            title = "FINISHED WITH FAILURES" if self.has_failures else "SUCCESS"
        lines = [
            f"=== APT Airdrop — {title} ===",
            f"Sender: {self.sender}",
            f"Recipients: {self.recipient_count}",
            f"Amount per recipient: {self.amount} octas "
            f"({octas_to_apt(self.amount):.8f} APT)",
            f"Total amount: {self.total_amount} octas "
            f"({octas_to_apt(self.total_amount):.8f} APT)",
        ]
        if self.sender_balance is not None:
            lines.append(f"Sender balance: {self.sender_balance} octas")
        if self.dry_run:
            status = "SUFFICIENT" if self.balance_sufficient else "INSUFFICIENT"
            lines.append(f"Balance: {status} (network fees not included)")
            return "\n".join(lines)

        lines.append(f"Executed: {self.executed}")
        if self.has_failures:
            lines.append(f"Send failed: {self.send_failed}")
            lines.append(f"Execution failed: {self.execution_failed}")
        if self.sequence_number is not None:
            lines.append(f"Final sequence number: {self.sequence_number}")
        return "\n".join(lines)


class LifecycleController:
    """
    Consumes the batch's event stream.

    Executed and failed transactions are logged and counted; failures do not
    stop the run. On FINISHED the sender's sequence number is fetched once,
    the stream is closed and the summary is returned to the caller.
    """

    def __init__(
        self, client: RestClient, sender: AccountAddress, summary: DistributionSummary
    ):
        self._client = client
        self._sender = sender
        self.summary = summary

    async def consume(self, events: AsyncIterator[LifecycleEvent]) -> DistributionSummary:
        try:
            async for event in events:
                if event.kind is EventKind.EXECUTED:
                    self.summary.executed += 1
                    log.info("TransactionExecuted: %s", event.message)
                elif event.kind is EventKind.SEND_FAILED:
                    self.summary.send_failed += 1
                    log.warning("TransactionSendFailed: %s", event.message)
                elif event.kind is EventKind.EXECUTION_FAILED:
                    self.summary.execution_failed += 1
                    log.warning("TransactionExecutionFailed: %s", event.message)
                elif event.kind is EventKind.FINISHED:
                    log.info(event.message)
                    return await self._finish()
        finally:
            # stop listening; closes the worker behind the stream
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                await aclose()

        raise BatchIncompleteError(
            "Batch event stream ended before the batch finished "
            f"({self.summary.executed} executed, {self.summary.failed} failed)"
        )

    async def _finish(self) -> DistributionSummary:
        sequence_number = await self._client.account_sequence_number(self._sender)
        log.info("sender account's sequence number is %s", sequence_number)
        self.summary.sequence_number = sequence_number
        return self.summary


async def distribute(
    settings: Settings,
    address_file: str | Path = DEFAULT_ADDRESS_FILE,
    dry_run: bool = False,
    submitter: Optional[BatchSubmitter] = None,
    client: Optional[RestClient] = None,
) -> DistributionSummary:
    """
    Send TRANSFER_AMOUNT_OCTAS to every address in ``address_file``.

    Parameters:
        settings: Resolved configuration (admin key, network).
        address_file: Newline-delimited recipient list.
        dry_run: Stop after the balance check, without submitting anything.
        submitter: Batch submitter; defaults to the SDK transaction worker.
        client: REST client; defaults to one built from ``settings`` and
            closed before returning.

    Returns:
        DistributionSummary once the batch has finished. Individual
        transaction failures are counted in the summary, not raised.
    """
    sender = settings.admin_account()
    sender_address = sender.address()

    owns_client = client is None
    if client is None:
        client = settings.rest_client()

    try:
        balance = await client.account_balance(sender_address)
        log.info("sender (%s) APT balance: %s octas", sender_address, balance)

        addresses = await load_addresses(address_file)
        intents = build_intents(addresses)

        summary = DistributionSummary(
            recipient_count=len(intents),
            amount=TRANSFER_AMOUNT_OCTAS,
            sender=str(sender_address),
            sender_balance=balance,
            dry_run=dry_run,
        )
        if dry_run:
            log.info(
                "[DRY RUN] would transfer %s octas to %d addresses",
                TRANSFER_AMOUNT_OCTAS,
                len(intents),
            )
            return summary

        log.info(
            "transferring %s octas to %d addresses...",
            TRANSFER_AMOUNT_OCTAS,
            len(intents),
        )
        if submitter is None:
            submitter = WorkerBatchSubmitter(client)

        controller = LifecycleController(client, sender_address, summary)
        return await controller.consume(submitter.submit(sender, intents))
    finally:
        if owns_client:
            await client.close()
