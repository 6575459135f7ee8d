#!/usr/bin/env python3
"""Message coordinate extraction for the bridge pipeline.

This module finds the core bridge publish event in a finalized chain
receipt and decodes it into MessageCoordinates. Each chain platform has its
own matcher; extraction never touches the network, so calling it twice on
the same receipt gives the same answer.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Mapping

from hexbytes import HexBytes
from web3 import Web3

from .chains import chain_name, chain_platform
from .errors import MalformedEventError
from .models import ChainReceipt, MessageCoordinates, UniversalAddress

if TYPE_CHECKING:
    from .config import BridgeConfig

# Get logger for this module
logger = logging.getLogger(__name__)

EVM_LOG_EVENT = "evm.log"
LOG_MESSAGE_PUBLISHED = "LogMessagePublished(address,uint64,uint32,bytes,uint8)"
LOG_MESSAGE_PUBLISHED_TOPIC = bytes(Web3.keccak(text=LOG_MESSAGE_PUBLISHED))

SUI_PUBLISH_EVENT_SUFFIX = "::publish_message::WormholeMessage"
GENERIC_PUBLISH_EVENT = "bridge.Published"

# "Sequence: 12345" (core bridge) or "sequence=12345"
_SOLANA_SEQUENCE_PATTERN = re.compile(r"\bsequence(?::\s*|=)(\S*)", re.IGNORECASE)


def _parse_sequence(value: Any, source: str) -> int:
    match value:
        case bool():
            raise MalformedEventError(f"Invalid sequence in {source}: {value!r}")
        case int() as sequence:
            pass
        case str() as text if text.strip().isdigit():
            sequence = int(text.strip())
        case _:
            raise MalformedEventError(f"Invalid sequence in {source}: {value!r}")
    if sequence >= 2**64:
        raise MalformedEventError(f"Sequence exceeds uint64 in {source}: {sequence}")
    return sequence


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return bytes(HexBytes(value))


class CoordinateMatcher(ABC):
    """Finds bridge-publish messages in one platform's receipts."""

    @abstractmethod
    def match(self, receipt: ChainReceipt) -> list[tuple[UniversalAddress, int]]:
        """
        Return (emitter, sequence) for every publish event in the receipt.

        Raises:
            MalformedEventError: If a publish event is present but undecodable
        """


class EvmLogMatcher(CoordinateMatcher):
    """Matches LogMessagePublished logs emitted by the EVM core bridge.

    Topic 1 is the indexed sender (the emitter) and the first ABI word of
    the data is the uint64 sequence.
    """

    def __init__(self, core_bridge_address: str | None = None) -> None:
        self.core_bridge_address = (
            Web3.to_checksum_address(core_bridge_address) if core_bridge_address else None
        )

    def match(self, receipt: ChainReceipt) -> list[tuple[UniversalAddress, int]]:
        found = []
        for index, event in enumerate(receipt.events):
            if event.event_type != EVM_LOG_EVENT:
                continue

            topics = event.data.get("topics", [])
            try:
                if not topics or _to_bytes(topics[0]) != LOG_MESSAGE_PUBLISHED_TOPIC:
                    continue
            except ValueError:
                continue

            source = f"log {index} of {receipt.tx_id}"
            address = event.data.get("address")
            if self.core_bridge_address and address:
                try:
                    checksummed = Web3.to_checksum_address(address)
                except (ValueError, TypeError) as e:
                    raise MalformedEventError(f"Invalid contract address in {source}: {e}") from None
                if checksummed != self.core_bridge_address:
                    logger.debug(f"Ignoring LogMessagePublished from non-core contract {address}")
                    continue

            try:
                if len(topics) < 2:
                    raise MalformedEventError(f"Missing sender topic in {source}")
                emitter = UniversalAddress(_to_bytes(topics[1]))
                data = _to_bytes(event.data.get("data", b""))
            except ValueError as e:
                raise MalformedEventError(f"Undecodable {source}: {e}") from None

            if len(data) < 32:
                raise MalformedEventError(f"Data too short for sequence in {source}: {len(data)} bytes")
            sequence = _parse_sequence(int.from_bytes(data[:32], "big"), source)
            found.append((emitter, sequence))
        return found


class SolanaLogMatcher(CoordinateMatcher):
    """Matches ``Sequence: N`` lines in Solana program logs.

    Program logs do not include the emitter, so it comes from configuration.
    """

    def __init__(self, emitter_address: UniversalAddress) -> None:
        if emitter_address is None:
            raise ValueError("Solana matcher requires a configured emitter address")
        self.emitter_address = emitter_address

    def match(self, receipt: ChainReceipt) -> list[tuple[UniversalAddress, int]]:
        found = []
        for line in receipt.logs:
            if m := _SOLANA_SEQUENCE_PATTERN.search(line):
                sequence = _parse_sequence(m.group(1), f"log line {line!r} of {receipt.tx_id}")
                found.append((self.emitter_address, sequence))
        return found


class SuiEventMatcher(CoordinateMatcher):
    """Matches Wormhole publish events emitted on Sui."""

    EMITTER_FIELDS = ("sender", "emitter")

    def is_publish_event(self, event_type: str) -> bool:
        return event_type == GENERIC_PUBLISH_EVENT or event_type.endswith(SUI_PUBLISH_EVENT_SUFFIX)

    def match(self, receipt: ChainReceipt) -> list[tuple[UniversalAddress, int]]:
        found = []
        for index, event in enumerate(receipt.events):
            if not self.is_publish_event(event.event_type):
                continue

            source = f"event {index} ({event.event_type}) of {receipt.tx_id}"
            raw_emitter = next(
                (event.data[name] for name in self.EMITTER_FIELDS if event.data.get(name)), None
            )
            if not isinstance(raw_emitter, str):
                raise MalformedEventError(f"Missing emitter in {source}")
            try:
                emitter = UniversalAddress.from_hex(raw_emitter)
            except ValueError as e:
                raise MalformedEventError(f"Invalid emitter in {source}: {e}") from None

            sequence = _parse_sequence(event.data.get("sequence"), source)
            found.append((emitter, sequence))
        return found


class MessageCoordinateExtractor:
    """Derives MessageCoordinates from chain receipts."""

    def __init__(self, matchers: Mapping[int, CoordinateMatcher]) -> None:
        """
        Initialize the extractor.

        Args:
            matchers: Matcher per protocol chain id
        """
        self.matchers: dict[int, CoordinateMatcher] = dict(matchers)

    @classmethod
    def from_config(cls, config: "BridgeConfig") -> "MessageCoordinateExtractor":
        """Build matchers for every configured chain."""
        matchers: dict[int, CoordinateMatcher] = {}
        for chain_id, chain in config.chains.items():
            match chain_platform(chain_id):
                case "evm":
                    matchers[chain_id] = EvmLogMatcher(config.core_bridge_address(chain_id))
                case "solana":
                    if chain.emitter_address is None:
                        raise ValueError(
                            f"{chain.name} needs an emitter address to attribute program logs"
                        )
                    matchers[chain_id] = SolanaLogMatcher(chain.emitter_address)
                case "sui":
                    matchers[chain_id] = SuiEventMatcher()
                case platform:
                    logger.warning(f"No coordinate matcher for {chain.name} ({platform})")
        return cls(matchers)

    def extract_all(self, receipt: ChainReceipt) -> list[MessageCoordinates]:
        """
        Extract coordinates for every bridge message in a receipt.

        Args:
            receipt: Finalized receipt of the source transaction

        Returns:
            Coordinates in emission order (empty if none were published)

        Raises:
            MalformedEventError: If a publish event is present but undecodable,
                or no matcher is registered for the receipt's chain
        """
        matcher = self.matchers.get(receipt.chain_id)
        if matcher is None:
            raise MalformedEventError(f"No coordinate matcher registered for chain {receipt.chain_id}")

        return [
            MessageCoordinates(
                emitter_chain=receipt.chain_id,
                emitter_address=emitter,
                sequence=sequence,
            )
            for emitter, sequence in matcher.match(receipt)
        ]

    def extract(self, receipt: ChainReceipt) -> MessageCoordinates | None:
        """
        Extract the coordinates of the first bridge message in a receipt.

        Returns:
            MessageCoordinates, or None when the receipt has no publish event

        Raises:
            MalformedEventError: If a publish event is present but undecodable
        """
        messages = self.extract_all(receipt)
        if not messages:
            logger.debug(f"No bridge publish event in {chain_name(receipt.chain_id)} tx {receipt.tx_id}")
            return None
        if len(messages) > 1:
            logger.info(
                f"Transaction {receipt.tx_id} published {len(messages)} messages, using the first"
            )
        return messages[0]
