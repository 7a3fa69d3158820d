#!/usr/bin/env python3
"""
APT Airdrop — CLI for batch APT reward distribution on Aptos.

Usage:
    apt-airdrop distribute [--file <path>] [--network <net>] [--dry-run] [--yes] [--strict]
    apt-airdrop validate [--file <path>]
    apt-airdrop generate-template [--output <path>] [--count <n>]

The admin key is read from ADMIN_PRIVATE_KEY (a .env file is honoured).

Examples:
    # Send the reward to every address in addresses.csv (testnet)
    apt-airdrop distribute --network testnet

    # Check balance and recipient count without sending anything
    apt-airdrop distribute --dry-run

    # Validate an address list offline
    apt-airdrop validate --file addresses.csv

    # Generate a template address file
    apt-airdrop generate-template --output addresses.csv --count 5
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections import Counter
from pathlib import Path

from aptos_sdk.account import Account

from apt_airdrop import __version__
from apt_airdrop.batch import (
    DEFAULT_ADDRESS_FILE,
    TRANSFER_AMOUNT_OCTAS,
    distribute,
    load_addresses,
    octas_to_apt,
)
from apt_airdrop.config import AirdropError, Network, load_settings


BANNER = r"""
    _   ___ _____     _   _        _
   /_\ | _ \_   _|   /_\ (_)_ _ __| |_ _ ___ _ __
  / _ \|  _/ | |    / _ \| | '_/ _` | '_/ _ \ '_ \
 /_/ \_\_|   |_|   /_/ \_\_|_| \__,_|_| \___/ .__/
                                            |_|
  Batch APT rewards for Aptos
"""


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        stream=sys.stdout,
        format="%(message)s",
    )
    # SDK HTTP traffic is noise at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def cmd_distribute(args: argparse.Namespace) -> int:
    """Execute the batch distribution."""
    print(BANNER)

    # Resolve the key first: nothing is read or sent without it
    try:
        settings = load_settings(network=args.network)
    except AirdropError as e:
        print(f"Error: {e}")
        return 1

    print(f"Network: {settings.network.value} ({settings.node_url})")
    print(f"Address file: {args.file}")
    print(
        f"Amount per recipient: {TRANSFER_AMOUNT_OCTAS} octas "
        f"({octas_to_apt(TRANSFER_AMOUNT_OCTAS):.8f} APT)"
    )
    print()

    if not args.dry_run and not args.yes:
        response = input("Proceed with the distribution? [y/N]: ")
        if response.lower() not in ("y", "yes"):
            print("Aborted.")
            return 0

    try:
        summary = asyncio.run(
            distribute(settings, address_file=args.file, dry_run=args.dry_run)
        )
    except AirdropError as e:
        print(f"Error: {e}")
        return 1

    print()
    print(summary.summary())

    if summary.has_failures:
        print(f"\nWARNING: {summary.failed}/{summary.recipient_count} transfers failed!")
        if args.strict:
            return 1
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate an address file without touching the network."""
    print(BANNER)

    try:
        addresses = asyncio.run(load_addresses(args.file))
    except AirdropError as e:
        print(f"✗ {e}")
        return 1

    print(f"Loaded {len(addresses)} addresses from {args.file}")
    total = TRANSFER_AMOUNT_OCTAS * len(addresses)
    print(f"\n✓ All {len(addresses)} addresses are valid")
    print(f"  Total amount: {total} octas ({octas_to_apt(total):.8f} APT)")

    # Each duplicate gets its own transfer; only warn
    counts = Counter(str(a) for a in addresses)
    duplicates = {addr: n for addr, n in counts.items() if n > 1}
    if duplicates:
        print(
            f"\n! {len(duplicates)} addresses appear more than once "
            "and will receive multiple transfers:"
        )
        for addr, n in duplicates.items():
            print(f"  {addr} ×{n}")

    if addresses:
        print("\nPreview (first 5):")
        for a in addresses[:5]:
            print(f"  {a}")
        if len(addresses) > 5:
            print(f"  ... and {len(addresses) - 5} more")

    return 0


def cmd_generate_template(args: argparse.Namespace) -> int:
    """Generate a template address file."""
    print(BANNER)

    output = Path(args.output)
    # Fresh random accounts; replace them with the real recipients
    with open(output, "w", newline="") as f:
        for _ in range(args.count):
            f.write(f"{Account.generate().address()}\n")

    print(f"Generated template with {args.count} addresses: {output}")
    print("\nReplace them with your actual recipient addresses,")
    print(f"then run: apt-airdrop validate --file {output}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="apt-airdrop",
        description="APT Airdrop — Batch APT rewards for the Aptos network",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", action="version", version=f"apt-airdrop {__version__}"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Distribute command
    distribute_parser = subparsers.add_parser(
        "distribute", help="Send the reward to every address in the file"
    )
    distribute_parser.add_argument(
        "--file", "-f", default=str(DEFAULT_ADDRESS_FILE),
        help=f"Path to address list. Default: {DEFAULT_ADDRESS_FILE.name}"
    )
    distribute_parser.add_argument(
        "--network", "-n", choices=[n.value for n in Network], default=None,
        help="Aptos network. Default: $APTOS_NETWORK or testnet"
    )
    distribute_parser.add_argument(
        "--dry-run", action="store_true",
        help="Check balance and recipients without sending"
    )
    distribute_parser.add_argument(
        "--yes", "-y", action="store_true",
        help="Skip confirmation prompt"
    )
    distribute_parser.add_argument(
        "--strict", action="store_true",
        help="Exit with status 1 if any individual transfer failed"
    )

    # Validate command
    validate_parser = subparsers.add_parser(
        "validate", help="Validate an address list"
    )
    validate_parser.add_argument(
        "--file", "-f", default=str(DEFAULT_ADDRESS_FILE), help="Path to address list"
    )

    # Generate template command
    template_parser = subparsers.add_parser(
        "generate-template", help="Generate a template address file"
    )
    template_parser.add_argument(
        "--output", "-o", default="addresses.csv", help="Output file path"
    )
    template_parser.add_argument(
        "--count", "-c", type=int, default=5, help="Number of sample addresses"
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    setup_logging(args.verbose)

    commands = {
        "distribute": cmd_distribute,
        "validate": cmd_validate,
        "generate-template": cmd_generate_template,
    }

    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
