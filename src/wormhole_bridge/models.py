"""
Shared data models for the bridge pipeline.

This module contains the immutable value types exchanged between the
extractor, the attestation fetcher, the signer adapters and the
orchestrator, plus the one mutable record the orchestrator owns per
transfer (BridgeReceipt).
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

import base58
from web3 import Web3

from .chains import (
    PLATFORM_SOLANA,
    chain_name,
    chain_platform,
    is_registered,
)
from .errors import ReceiptFieldConflictError

UINT64_MAX = 2**64 - 1


@dataclass(frozen=True, slots=True)
class UniversalAddress:
    """A 32-byte address that identifies an account on any chain."""

    value: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.value, (bytes, bytearray)):
            raise ValueError(f"Universal address must be bytes, got {type(self.value).__name__}")
        if len(self.value) != 32:
            raise ValueError(f"Universal address must be 32 bytes, got {len(self.value)}")
        object.__setattr__(self, "value", bytes(self.value))

    @classmethod
    def from_hex(cls, address: str) -> "UniversalAddress":
        """Parse a hex address, left-padding shorter values (e.g. 20-byte EVM)."""
        text = address.removeprefix("0x").removeprefix("0X")
        if len(text) > 64:
            raise ValueError(f"Hex address longer than 32 bytes: {address}")
        if len(text) % 2:
            text = "0" + text
        try:
            raw = bytes.fromhex(text)
        except ValueError:
            raise ValueError(f"Invalid hex address: {address}") from None
        return cls(raw.rjust(32, b"\0"))

    @classmethod
    def from_native(cls, address: str, chain_id: int) -> "UniversalAddress":
        """Re-encode a chain-native address according to the chain's platform."""
        if chain_platform(chain_id) == PLATFORM_SOLANA:
            try:
                raw = base58.b58decode(address)
            except ValueError:
                raise ValueError(f"Invalid base58 address: {address}") from None
            if len(raw) != 32:
                raise ValueError(
                    f"Invalid Solana address length after decode: {len(raw)} bytes"
                )
            return cls(raw)
        return cls.from_hex(address)

    def hex(self) -> str:
        """64 lowercase hex characters, no prefix."""
        return self.value.hex()

    def to_evm_address(self) -> str:
        """Checksummed 20-byte EVM address (the upper 12 bytes must be zero)."""
        if any(self.value[:12]):
            raise ValueError(f"Universal address {self.hex()} is not an EVM address")
        return Web3.to_checksum_address(self.value[12:])

    def to_base58(self) -> str:
        return base58.b58encode(self.value).decode()

    def __str__(self) -> str:
        return "0x" + self.hex()


@dataclass(frozen=True, slots=True)
class MessageCoordinates:
    """Lookup key for a VAA: (emitterChain, emitterAddress, sequence)."""

    emitter_chain: int
    emitter_address: UniversalAddress
    sequence: int

    def __post_init__(self) -> None:
        if not is_registered(self.emitter_chain):
            raise ValueError(f"Unknown emitter chain id: {self.emitter_chain}")
        if not 0 <= self.sequence <= UINT64_MAX:
            raise ValueError(f"Sequence out of uint64 range: {self.sequence}")

    def __str__(self) -> str:
        return f"{self.emitter_chain}/{self.emitter_address.hex()}/{self.sequence}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "emitter_chain": self.emitter_chain,
            "emitter_address": self.emitter_address.hex(),
            "sequence": str(self.sequence),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MessageCoordinates":
        return cls(
            emitter_chain=int(data["emitter_chain"]),
            emitter_address=UniversalAddress.from_hex(data["emitter_address"]),
            sequence=int(data["sequence"]),
        )


@dataclass(frozen=True, slots=True)
class GuardianSignature:
    """One guardian's signature over the VAA body hash."""

    guardian_index: int
    signature: bytes

    def __post_init__(self) -> None:
        if not 0 <= self.guardian_index <= 0xFF:
            raise ValueError(f"Guardian index out of range: {self.guardian_index}")
        if len(self.signature) != 65:
            raise ValueError(f"Guardian signature must be 65 bytes, got {len(self.signature)}")


@dataclass(frozen=True, slots=True)
class SignedAttestation:
    """A decoded VAA (Verified Action Approval).

    ``hash`` is the double keccak256 of the body (timestamp..payload) and does
    not depend on the signatures. Build instances with VaaCodec.decode or
    VaaCodec.build so that the hash is always consistent with the body.
    """

    version: int
    guardian_set_index: int
    signatures: tuple[GuardianSignature, ...]
    timestamp: int
    nonce: int
    emitter_chain: int
    emitter_address: UniversalAddress
    sequence: int
    consistency_level: int
    payload: bytes
    hash: bytes

    @property
    def coordinates(self) -> MessageCoordinates:
        return MessageCoordinates(
            emitter_chain=self.emitter_chain,
            emitter_address=self.emitter_address,
            sequence=self.sequence,
        )

    def matches(self, coords: MessageCoordinates) -> bool:
        return (
            self.emitter_chain == coords.emitter_chain
            and self.emitter_address == coords.emitter_address
            and self.sequence == coords.sequence
        )

    def __str__(self) -> str:
        return (
            f"VAA(chain={self.emitter_chain}, "
            f"emitter={self.emitter_address.hex()[:10]}..., "
            f"sequence={self.sequence}, "
            f"signatures={len(self.signatures)}, "
            f"hash={self.hash.hex()[:10]}...)"
        )


@dataclass(frozen=True, slots=True)
class UnsignedTransaction:
    """A chain-native transaction awaiting signature.

    Attributes:
        transaction: Backend-specific transaction object (TxParams, serialized
            Solana transaction, Sui transaction block, ...)
        description: Human-readable label used only for diagnostics
    """

    transaction: Any
    description: str = ""


@dataclass(frozen=True, slots=True)
class ReceiptEvent:
    """A structured event emitted by a transaction."""

    event_type: str
    data: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ChainReceipt:
    """Finalized receipt for a transaction, normalized across chains.

    Attributes:
        chain_id: Protocol chain id of the chain that produced the receipt
        tx_id: Transaction hash / digest / signature
        events: Structured events (EVM logs, Sui events)
        logs: Free-form log lines (Solana program logs)
        success: Whether the transaction executed successfully
    """

    chain_id: int
    tx_id: str
    events: tuple[ReceiptEvent, ...] = ()
    logs: tuple[str, ...] = ()
    success: bool = True


@dataclass(frozen=True, slots=True)
class TransferIntent:
    """Caller-supplied description of one bridging operation."""

    source_chain: int
    target_chain: int
    source_transactions: tuple[UnsignedTransaction, ...]
    recipient: str
    token: str | None = None
    amount: int | None = None
    payload: bytes = b""
    requires_redeem: bool = True
    intent_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self) -> None:
        if not is_registered(self.source_chain):
            raise ValueError(f"Unknown source chain id: {self.source_chain}")
        if not is_registered(self.target_chain):
            raise ValueError(f"Unknown target chain id: {self.target_chain}")
        if not self.source_transactions:
            raise ValueError("Transfer intent needs at least one source transaction")
        if self.amount is not None and self.amount < 0:
            raise ValueError(f"Amount must be non-negative, got {self.amount}")
        object.__setattr__(self, "source_transactions", tuple(self.source_transactions))

    def __str__(self) -> str:
        return (
            f"TransferIntent({self.intent_id[:8]}, "
            f"{chain_name(self.source_chain)} -> {chain_name(self.target_chain)}, "
            f"recipient={self.recipient})"
        )


class TransferState(str, Enum):
    CREATED = "Created"
    SOURCE_SUBMITTED = "SourceSubmitted"
    COORDINATES_RESOLVED = "CoordinatesResolved"
    ATTESTATION_RESOLVED = "AttestationResolved"
    TARGET_SUBMITTED = "TargetSubmitted"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TransferState.COMPLETED, TransferState.FAILED)


@dataclass(slots=True)
class BridgeReceipt:
    """Progress record for one TransferIntent.

    Resolved fields are set once through ``record``; re-recording the same
    value is a no-op and recording a different value raises
    ReceiptFieldConflictError. Only ``state`` and ``last_error`` change freely.
    """

    RESOLVED_FIELDS = ("source_tx_ids", "coordinates", "attestation", "target_tx_ids")

    intent_id: str
    state: TransferState = TransferState.CREATED
    source_tx_ids: tuple[str, ...] | None = None
    coordinates: MessageCoordinates | None = None
    attestation: SignedAttestation | None = None
    target_tx_ids: tuple[str, ...] | None = None
    last_error: dict[str, Any] | None = None

    @property
    def source_tx_id(self) -> str | None:
        """The transaction that emitted the bridge message (last of the batch)."""
        return self.source_tx_ids[-1] if self.source_tx_ids else None

    @property
    def target_tx_id(self) -> str | None:
        return self.target_tx_ids[-1] if self.target_tx_ids else None

    def record(self, name: str, value: Any) -> None:
        if name not in self.RESOLVED_FIELDS:
            raise ValueError(f"Not a resolved receipt field: {name}")
        if value is None:
            raise ValueError(f"Cannot record an empty value for {name}")
        current = getattr(self, name)
        if current is None:
            setattr(self, name, value)
        elif current != value:
            raise ReceiptFieldConflictError(
                f"Receipt {self.intent_id[:8]} already has {name}={current!s}, refusing {value!s}"
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for external persistence."""
        from .utils.vaa_codec import VaaCodec

        return {
            "intent_id": self.intent_id,
            "state": self.state.value,
            "source_tx_ids": list(self.source_tx_ids) if self.source_tx_ids else None,
            "coordinates": self.coordinates.to_dict() if self.coordinates else None,
            "attestation": VaaCodec.encode(self.attestation).hex() if self.attestation else None,
            "target_tx_ids": list(self.target_tx_ids) if self.target_tx_ids else None,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BridgeReceipt":
        from .utils.vaa_codec import VaaCodec

        source_tx_ids = data.get("source_tx_ids")
        target_tx_ids = data.get("target_tx_ids")
        coordinates = data.get("coordinates")
        attestation = data.get("attestation")
        return cls(
            intent_id=data["intent_id"],
            state=TransferState(data.get("state", TransferState.CREATED.value)),
            source_tx_ids=tuple(source_tx_ids) if source_tx_ids else None,
            coordinates=MessageCoordinates.from_dict(coordinates) if coordinates else None,
            attestation=VaaCodec.decode(bytes.fromhex(attestation)) if attestation else None,
            target_tx_ids=tuple(target_tx_ids) if target_tx_ids else None,
            last_error=data.get("last_error"),
        )
