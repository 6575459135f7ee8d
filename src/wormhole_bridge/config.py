#!/usr/bin/env python3
"""Configuration management for the Wormhole bridge relayer.

This module provides type-safe configuration dataclasses with validation.
Configuration is loaded once at process start from environment variables
and is read-only afterwards; every component receives the pieces it needs
at construction time.
"""

import logging
import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import ClassVar, Mapping
from urllib.parse import urlparse

from .chains import (
    CHAIN_ID_ETHEREUM,
    CHAIN_ID_SEPOLIA,
    CHAIN_ID_SOLANA,
    CHAIN_ID_SUI,
    chain_name,
    to_chain_id,
)
from .models import UniversalAddress

# Get logger for this module
logger = logging.getLogger(__name__)


WORMHOLE_RPC_HOSTS: dict[str, tuple[str, ...]] = {
    "Mainnet": (
        "https://wormhole-v2-mainnet-api.certus.one",
        "https://api.wormholescan.io",
    ),
    "Testnet": (
        "https://wormhole-v2-testnet-api.certus.one",
        "https://api.testnet.wormholescan.io",
    ),
    "Devnet": (
        "http://localhost:7071",
    ),
}

WORMHOLESCAN_API_URLS: dict[str, str] = {
    "Mainnet": "https://api.wormholescan.io",
    "Testnet": "https://api.testnet.wormholescan.io",
    "Devnet": "http://localhost:7071",
}

# Core bridge contract / program / state object per (environment, chain)
CORE_BRIDGE_ADDRESSES: dict[tuple[str, int], str] = {
    ("Mainnet", CHAIN_ID_ETHEREUM): "0x98f3c9e6E3fAce36bAAd05FE09d375Ef1464288B",
    ("Mainnet", CHAIN_ID_SOLANA): "worm2ZoG2kUd4vFXhvjh93UUH596ayRfgQ2MgjNMTth",
    ("Mainnet", CHAIN_ID_SUI): "0xaeab97f96cf9877fee2883315d459552b2b921edc16d7ceac6eab944dd88919c",
    ("Testnet", CHAIN_ID_SEPOLIA): "0x4a8bc80Ed5a4067f1CCf107057b8270E0cC11A78",
    ("Testnet", CHAIN_ID_SOLANA): "3u8hJUVTA4jH1wYAyUur7FFZVQ8H635K3tSHHF4ssjQ5",
    ("Testnet", CHAIN_ID_SUI): "0x31358d198147da50db32eda2562951d53973a0c0ad5ed738e9b17d88b213d790",
}


def _validate_url(url: str, label: str, schemes: tuple[str, ...] = ("http", "https")) -> None:
    if not url:
        raise ValueError(f"{label} is required")
    parsed = urlparse(url)
    if parsed.scheme not in schemes or not parsed.netloc:
        raise ValueError(
            f"Invalid {label}: {url}. Expected scheme {', '.join(schemes)}"
        )


def _redact_url(url: str) -> str:
    """Hide path and query, which often carry provider API keys."""
    parsed = urlparse(url)
    if parsed.path.strip("/") or parsed.query:
        return f"{parsed.scheme}://{parsed.netloc}/***"
    return url


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded retry policy for idempotent network steps.

    Attributes:
        max_attempts: Number of full passes over the hosts
        initial_delay: Seconds to wait after the first failed attempt
        backoff_multiplier: Growth factor of the delay per attempt
        per_request_timeout: Timeout for a single HTTP request in seconds
        max_delay: Upper bound of any single delay in seconds
    """

    max_attempts: int = 5
    initial_delay: float = 2.0
    backoff_multiplier: float = 1.5
    per_request_timeout: float = 10.0
    max_delay: float = 60.0

    def __post_init__(self) -> None:
        """Validate retry policy."""
        if self.max_attempts <= 0:
            raise ValueError(f"Max attempts must be positive, got {self.max_attempts}")
        if self.max_attempts > 100:
            raise ValueError(f"Max attempts too high (max 100), got {self.max_attempts}")
        if self.initial_delay < 0:
            raise ValueError(f"Initial delay must be non-negative, got {self.initial_delay}")
        if self.backoff_multiplier < 1:
            raise ValueError(f"Backoff multiplier must be >= 1, got {self.backoff_multiplier}")
        if self.per_request_timeout <= 0:
            raise ValueError(f"Request timeout must be positive, got {self.per_request_timeout}")
        if self.per_request_timeout > 120:
            raise ValueError(f"Request timeout too long (max 120s), got {self.per_request_timeout}")
        if self.max_delay < self.initial_delay:
            raise ValueError(
                f"Max delay ({self.max_delay}) must be >= initial delay ({self.initial_delay})"
            )


def backoff_delay(attempt: int, policy: RetryPolicy) -> float:
    """
    Delay to sleep after a failed ``attempt`` (1-based).

    Pure function of its inputs:
    ``min(initial_delay * backoff_multiplier ** (attempt - 1), max_delay)``.
    """
    if attempt < 1:
        raise ValueError(f"Attempt numbers start at 1, got {attempt}")
    delay = policy.initial_delay * policy.backoff_multiplier ** (attempt - 1)
    return min(delay, policy.max_delay)


@dataclass(frozen=True, slots=True)
class GuardianConfig:
    """Guardian RPC endpoints for one Wormhole environment.

    Attributes:
        network: Wormhole environment (Mainnet, Testnet, Devnet)
        rpc_hosts: Ordered guardian RPC hosts, tried in order
    """

    network: str
    rpc_hosts: tuple[str, ...] = ()

    SUPPORTED_NETWORKS: ClassVar[set[str]] = {"Mainnet", "Testnet", "Devnet"}

    def __post_init__(self) -> None:
        """Validate guardian configuration."""
        if self.network not in self.SUPPORTED_NETWORKS:
            raise ValueError(
                f"Unsupported Wormhole network: {self.network}. "
                f"Supported networks: {', '.join(sorted(self.SUPPORTED_NETWORKS))}"
            )

        hosts = tuple(host.rstrip("/") for host in self.rpc_hosts) or WORMHOLE_RPC_HOSTS[self.network]
        for host in hosts:
            _validate_url(host, "guardian RPC host")
        if len(set(hosts)) != len(hosts):
            raise ValueError(f"Duplicate guardian RPC hosts: {', '.join(hosts)}")

        object.__setattr__(self, "rpc_hosts", hosts)

    @property
    def wormholescan_url(self) -> str:
        return WORMHOLESCAN_API_URLS[self.network]


@dataclass(frozen=True, slots=True)
class ChainConfig:
    """Connection settings for one chain backend.

    Each chain carries its own network name; Solana devnet and Sui testnet
    can both be paired with the Wormhole Testnet guardians.

    Attributes:
        chain_id: Protocol chain id
        network: Chain-native network (mainnet, testnet, devnet, localnet)
        rpc_url: Node RPC endpoint
        emitter_address: Emitter to attribute messages to when the receipt
            does not carry it (Solana)
        core_bridge_address: Wormhole core bridge on this chain
    """

    chain_id: int
    network: str
    rpc_url: str
    emitter_address: UniversalAddress | None = None
    core_bridge_address: str | None = None

    SUPPORTED_NETWORKS: ClassVar[set[str]] = {"mainnet", "testnet", "devnet", "localnet"}

    def __post_init__(self) -> None:
        """Validate chain configuration."""
        object.__setattr__(self, "chain_id", to_chain_id(self.chain_id))

        if self.network not in self.SUPPORTED_NETWORKS:
            raise ValueError(
                f"Unsupported network for {chain_name(self.chain_id)}: {self.network}. "
                f"Supported networks: {', '.join(sorted(self.SUPPORTED_NETWORKS))}"
            )
        _validate_url(
            self.rpc_url,
            f"{chain_name(self.chain_id)} RPC URL",
            schemes=("http", "https", "ws", "wss"),
        )

    @property
    def name(self) -> str:
        return chain_name(self.chain_id)


@dataclass(frozen=True, slots=True)
class BridgeConfig:
    """Main configuration for the bridge relayer.

    Attributes:
        guardians: Guardian RPC configuration
        fetch_policy: Retry policy for attestation polling
        receipt_policy: Retry policy for waiting on source receipts
        chains: Chain backends keyed by protocol chain id
    """

    guardians: GuardianConfig
    fetch_policy: RetryPolicy = field(default_factory=RetryPolicy)
    receipt_policy: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(max_attempts=10, initial_delay=3.0, backoff_multiplier=1.0)
    )
    chains: Mapping[int, ChainConfig] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate bridge configuration."""
        object.__setattr__(self, "chains", MappingProxyType(dict(self.chains)))
        for chain_id, chain in self.chains.items():
            if chain.chain_id != chain_id:
                raise ValueError(
                    f"Chain config for {chain.name} registered under id {chain_id}"
                )

    def chain(self, identifier: str | int) -> ChainConfig:
        """Return the configuration for a chain, by name or id."""
        chain_id = to_chain_id(identifier)
        try:
            return self.chains[chain_id]
        except KeyError:
            raise ValueError(f"Chain {chain_name(chain_id)} is not configured") from None

    def core_bridge_address(self, chain_id: int) -> str | None:
        """Configured core bridge, falling back to the known deployment."""
        configured = self.chains.get(chain_id)
        if configured and configured.core_bridge_address:
            return configured.core_bridge_address
        return CORE_BRIDGE_ADDRESSES.get((self.guardians.network, chain_id))

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "BridgeConfig":
        """Load configuration from environment variables.

        Variables:
            WORMHOLE_NETWORK: Mainnet, Testnet or Devnet (default: Testnet)
            GUARDIAN_RPC_HOSTS: Comma-separated hosts (default: built-in list)
            FETCH_MAX_ATTEMPTS, FETCH_INITIAL_DELAY, FETCH_BACKOFF_MULTIPLIER,
            FETCH_REQUEST_TIMEOUT: Attestation retry policy
            RECEIPT_MAX_ATTEMPTS, RECEIPT_DELAY: Source receipt retry policy
            BRIDGE_CHAINS: Comma-separated chain names to configure
            <CHAIN>_RPC_URL, <CHAIN>_NETWORK: Required per configured chain
            <CHAIN>_EMITTER_ADDRESS, <CHAIN>_CORE_BRIDGE_ADDRESS: Optional

        Returns:
            BridgeConfig instance with loaded values

        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        env = os.environ if environ is None else environ

        network = env.get("WORMHOLE_NETWORK", "Testnet")
        hosts = tuple(h.strip() for h in env.get("GUARDIAN_RPC_HOSTS", "").split(",") if h.strip())
        guardians = GuardianConfig(network=network, rpc_hosts=hosts)

        try:
            fetch_policy = RetryPolicy(
                max_attempts=int(env.get("FETCH_MAX_ATTEMPTS", "5")),
                initial_delay=float(env.get("FETCH_INITIAL_DELAY", "2.0")),
                backoff_multiplier=float(env.get("FETCH_BACKOFF_MULTIPLIER", "1.5")),
                per_request_timeout=float(env.get("FETCH_REQUEST_TIMEOUT", "10.0")),
            )
            receipt_policy = RetryPolicy(
                max_attempts=int(env.get("RECEIPT_MAX_ATTEMPTS", "10")),
                initial_delay=float(env.get("RECEIPT_DELAY", "3.0")),
                backoff_multiplier=1.0,
            )
        except ValueError as e:
            raise ValueError(f"Invalid retry settings: {e}") from None

        chains: dict[int, ChainConfig] = {}
        for name in (n.strip() for n in env.get("BRIDGE_CHAINS", "").split(",")):
            if not name:
                continue
            chain_id = to_chain_id(name)
            prefix = chain_name(chain_id).upper()

            rpc_url = env.get(f"{prefix}_RPC_URL", "")
            if not rpc_url:
                raise ValueError(
                    f"{prefix}_RPC_URL environment variable is required "
                    f"when {chain_name(chain_id)} is listed in BRIDGE_CHAINS"
                )
            chain_network = env.get(f"{prefix}_NETWORK", "")
            if not chain_network:
                raise ValueError(
                    f"{prefix}_NETWORK environment variable is required. "
                    "Each chain must name its own network (e.g. devnet, testnet)"
                )

            emitter = env.get(f"{prefix}_EMITTER_ADDRESS")
            chains[chain_id] = ChainConfig(
                chain_id=chain_id,
                network=chain_network,
                rpc_url=rpc_url,
                emitter_address=UniversalAddress.from_native(emitter, chain_id) if emitter else None,
                core_bridge_address=env.get(f"{prefix}_CORE_BRIDGE_ADDRESS") or None,
            )

        return cls(
            guardians=guardians,
            fetch_policy=fetch_policy,
            receipt_policy=receipt_policy,
            chains=chains,
        )

    def log_config(self) -> None:
        """Log the configuration in a readable format for debugging."""
        logger.info("=" * 60)
        logger.info("Wormhole Bridge Configuration")
        logger.info("=" * 60)

        logger.info(f"Guardians ({self.guardians.network}):")
        for host in self.guardians.rpc_hosts:
            logger.info(f"  {host}")

        logger.info("Attestation Polling:")
        logger.info(f"  Max Attempts: {self.fetch_policy.max_attempts}")
        logger.info(f"  Initial Delay: {self.fetch_policy.initial_delay} seconds")
        logger.info(f"  Backoff Multiplier: {self.fetch_policy.backoff_multiplier}")
        logger.info(f"  Request Timeout: {self.fetch_policy.per_request_timeout} seconds")

        logger.info("Receipt Polling:")
        logger.info(f"  Max Attempts: {self.receipt_policy.max_attempts}")
        logger.info(f"  Delay: {self.receipt_policy.initial_delay} seconds")

        for chain in self.chains.values():
            logger.info(f"Chain {chain.name} ({chain.chain_id}):")
            logger.info(f"  Network: {chain.network}")
            logger.info(f"  RPC URL: {_redact_url(chain.rpc_url)}")
            if chain.emitter_address:
                logger.info(f"  Emitter: {chain.emitter_address}")
            if core := self.core_bridge_address(chain.chain_id):
                logger.info(f"  Core Bridge: {core}")

        logger.info("=" * 60)
