"""
Token bridge payload decoding.

VAAs emitted by the Wormhole token bridge carry one of a few fixed payload
layouts. Only transfers are decoded here; other payloads are opaque.
"""

from dataclasses import dataclass

from ..errors import DecodeError, DecodeFailure
from ..models import UniversalAddress

PAYLOAD_TRANSFER = 1
PAYLOAD_ATTEST_META = 2
PAYLOAD_TRANSFER_WITH_PAYLOAD = 3

TRANSFER_LENGTH = 133


@dataclass(frozen=True, slots=True)
class TokenTransfer:
    """Decoded token bridge transfer payload.

    Attributes:
        payload_type: 1 (transfer) or 3 (transfer with payload)
        amount: Normalized amount (8 decimals max)
        token_address: Origin token address
        token_chain: Origin chain of the token
        to: Recipient on the target chain
        to_chain: Target chain id
        fee: Relayer fee (type 1 only, zero otherwise)
        from_address: Sender (type 3 only)
        extra_payload: Application payload (type 3 only)
    """

    payload_type: int
    amount: int
    token_address: UniversalAddress
    token_chain: int
    to: UniversalAddress
    to_chain: int
    fee: int = 0
    from_address: UniversalAddress | None = None
    extra_payload: bytes = b""


def decode_token_transfer(payload: bytes) -> TokenTransfer | None:
    """
    Decode a token bridge transfer payload.

    Returns:
        TokenTransfer, or None if the payload is not a transfer

    Raises:
        DecodeError: If the payload is tagged as a transfer but truncated
    """
    if not payload or payload[0] not in (PAYLOAD_TRANSFER, PAYLOAD_TRANSFER_WITH_PAYLOAD):
        return None

    payload_type = payload[0]
    if len(payload) < TRANSFER_LENGTH:
        raise DecodeError(
            DecodeFailure.TRUNCATED,
            f"token transfer payload type {payload_type} needs {TRANSFER_LENGTH} bytes, got {len(payload)}",
        )

    off = 1
    amount = int.from_bytes(payload[off:off + 32], "big")
    off += 32
    token_address = UniversalAddress(payload[off:off + 32])
    off += 32
    token_chain = int.from_bytes(payload[off:off + 2], "big")
    off += 2
    to = UniversalAddress(payload[off:off + 32])
    off += 32
    to_chain = int.from_bytes(payload[off:off + 2], "big")
    off += 2

    if payload_type == PAYLOAD_TRANSFER:
        fee = int.from_bytes(payload[off:off + 32], "big")
        return TokenTransfer(
            payload_type=payload_type,
            amount=amount,
            token_address=token_address,
            token_chain=token_chain,
            to=to,
            to_chain=to_chain,
            fee=fee,
        )

    from_address = UniversalAddress(payload[off:off + 32])
    off += 32
    return TokenTransfer(
        payload_type=payload_type,
        amount=amount,
        token_address=token_address,
        token_chain=token_chain,
        to=to,
        to_chain=to_chain,
        from_address=from_address,
        extra_payload=payload[off:],
    )


def encode_token_transfer(transfer: TokenTransfer) -> bytes:
    """Serialize a transfer payload (inverse of decode_token_transfer)."""
    parts = [
        transfer.payload_type.to_bytes(1, "big"),
        transfer.amount.to_bytes(32, "big"),
        transfer.token_address.value,
        transfer.token_chain.to_bytes(2, "big"),
        transfer.to.value,
        transfer.to_chain.to_bytes(2, "big"),
    ]
    if transfer.payload_type == PAYLOAD_TRANSFER:
        parts.append(transfer.fee.to_bytes(32, "big"))
    else:
        if transfer.from_address is None:
            raise ValueError("Transfer with payload requires from_address")
        parts.append(transfer.from_address.value)
        parts.append(transfer.extra_payload)
    return b"".join(parts)
