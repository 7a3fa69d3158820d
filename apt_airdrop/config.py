"""
Runtime configuration for APT Airdrop.

Everything comes from the process environment (a local ``.env`` file is
loaded first, without overriding variables that are already set):

    ADMIN_PRIVATE_KEY   required, hex-encoded ed25519 private key
    APTOS_NETWORK       optional, one of testnet/mainnet/devnet/local (default: testnet)
    APTOS_NODE_URL      optional, overrides the fullnode URL of the network
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional

from aptos_sdk.account import Account
from aptos_sdk.async_client import RestClient
from dotenv import load_dotenv


PRIVATE_KEY_ENV = "ADMIN_PRIVATE_KEY"
NETWORK_ENV = "APTOS_NETWORK"
NODE_URL_ENV = "APTOS_NODE_URL"

# AIP-80 prefix some wallets export keys with
_AIP80_PREFIX = "ed25519-priv-"
_HEX_KEY = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")


class AirdropError(Exception):
    """Base class for errors that abort a distribution run."""


class ConfigurationError(AirdropError):
    """Missing or invalid configuration. Raised before any I/O."""


class Network(Enum):
    """Aptos networks and their public fullnode endpoints."""

    TESTNET = "testnet"
    MAINNET = "mainnet"
    DEVNET = "devnet"
    LOCAL = "local"

    @property
    def node_url(self) -> str:
        if self is Network.LOCAL:
            return "http://127.0.0.1:8080/v1"
        return f"https://api.{self.value}.aptoslabs.com/v1"

    @classmethod
    def parse(cls, value: str) -> "Network":
        try:
            return cls(value.strip().lower())
        except ValueError:
            choices = ", ".join(n.value for n in cls)
            raise ConfigurationError(
                f"Unknown network '{value}' (expected one of: {choices})"
            ) from None


@dataclass(frozen=True)
class Settings:
    """Resolved configuration for one run."""

    admin_private_key: str = field(repr=False)
    network: Network = Network.TESTNET
    node_url_override: Optional[str] = None

    @property
    def node_url(self) -> str:
        return self.node_url_override or self.network.node_url

    def admin_account(self) -> Account:
        """Derive the admin (sender) account from the private key."""
        try:
            return Account.load_key(self.admin_private_key)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(
                f"{PRIVATE_KEY_ENV} is not a valid ed25519 private key: {e}"
            ) from e

    def rest_client(self) -> RestClient:
        """Build a REST client for the configured fullnode. Caller closes it."""
        return RestClient(self.node_url)


def normalize_private_key(value: Optional[str]) -> str:
    """
    Validate a hex private key and return it as ``0x``-prefixed hex.

    Accepts bare hex, ``0x`` hex and the AIP-80 ``ed25519-priv-0x...`` form.
    """
    if value is None or not value.strip():
        raise ConfigurationError(f"{PRIVATE_KEY_ENV} is not defined")

    key = value.strip()
    if key.startswith(_AIP80_PREFIX):
        key = key[len(_AIP80_PREFIX):]
    if not _HEX_KEY.match(key):
        raise ConfigurationError(
            f"{PRIVATE_KEY_ENV} is not a valid hex-encoded private key"
        )
    if not key.startswith("0x"):
        key = "0x" + key
    return key.lower()


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    network: Optional[str] = None,
) -> Settings:
    """
    Resolve settings from the environment.

    Parameters:
        environ: Mapping to read from. Defaults to ``os.environ`` after
            loading ``.env``; pass a dict in tests to skip both.
        network: Explicit network name, takes precedence over APTOS_NETWORK.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    private_key = normalize_private_key(environ.get(PRIVATE_KEY_ENV))

    network_name = network or environ.get(NETWORK_ENV) or Network.TESTNET.value
    node_url = (environ.get(NODE_URL_ENV) or "").strip() or None

    return Settings(
        admin_private_key=private_key,
        network=Network.parse(network_name),
        node_url_override=node_url,
    )
