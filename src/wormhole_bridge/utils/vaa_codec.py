"""
VAA encoding utilities.

This module provides byte-exact decoding and encoding of guardian-signed
VAAs (version 1) and the body hash guardians sign.

Layout (big-endian)::

    1   version
    4   guardian set index
    1   signature count N
    N * 66  [1 guardian index][65 signature r||s||v]
    --- body ---
    4   timestamp
    4   nonce
    2   emitter chain
    32  emitter address
    8   sequence
    1   consistency level
    *   payload
"""

import logging
from typing import Iterable

from hexbytes import HexBytes
from web3 import Web3

from ..errors import DecodeError, DecodeFailure
from ..models import GuardianSignature, SignedAttestation, UniversalAddress

logger = logging.getLogger(__name__)

VAA_VERSION = 1
HEADER_LENGTH = 6
SIGNATURE_LENGTH = 66
BODY_FIXED_LENGTH = 51


class _Reader:
    """Cursor over a byte string that fails with Truncated on short reads."""

    def __init__(self, data: bytes):
        self.data = data
        self.offset = 0

    def take(self, size: int, field: str) -> bytes:
        end = self.offset + size
        if end > len(self.data):
            raise DecodeError(
                DecodeFailure.TRUNCATED,
                f"{field} needs {size} bytes at offset {self.offset}, "
                f"only {len(self.data) - self.offset} available",
            )
        chunk = self.data[self.offset:end]
        self.offset = end
        return chunk

    def uint(self, size: int, field: str) -> int:
        return int.from_bytes(self.take(size, field), "big")

    def rest(self) -> bytes:
        chunk = self.data[self.offset:]
        self.offset = len(self.data)
        return chunk


class VaaCodec:
    """Binary codec for guardian-signed VAAs."""

    @staticmethod
    def to_bytes_safe(value: HexBytes | bytes | bytearray | str) -> bytes:
        """
        Convert raw VAA input to bytes, accepting HexBytes, bytes or hex strings.

        Raises:
            DecodeError: If a string is not valid hex
        """
        if isinstance(value, (bytes, bytearray)):
            return bytes(value)
        try:
            return bytes(HexBytes(value))
        except (ValueError, TypeError):
            raise DecodeError(DecodeFailure.INVALID_ENCODING, "VAA string is not valid hex") from None

    @staticmethod
    def encode_body(
        timestamp: int,
        nonce: int,
        emitter_chain: int,
        emitter_address: UniversalAddress,
        sequence: int,
        consistency_level: int,
        payload: bytes,
    ) -> bytes:
        """Serialize the signed portion of a VAA."""
        return b"".join([
            timestamp.to_bytes(4, "big"),
            nonce.to_bytes(4, "big"),
            emitter_chain.to_bytes(2, "big"),
            emitter_address.value,
            sequence.to_bytes(8, "big"),
            consistency_level.to_bytes(1, "big"),
            bytes(payload),
        ])

    @staticmethod
    def hash_body(body: bytes) -> bytes:
        """Double keccak256 of the body, the digest guardians sign over."""
        return bytes(Web3.keccak(Web3.keccak(body)))

    @staticmethod
    def body_hash(vaa: SignedAttestation) -> bytes:
        """
        Compute the body hash of an attestation.

        Signatures are not part of the body, so adding, removing or reordering
        them never changes the result.
        """
        return VaaCodec.hash_body(VaaCodec._body_of(vaa))

    @staticmethod
    def _body_of(vaa: SignedAttestation) -> bytes:
        return VaaCodec.encode_body(
            vaa.timestamp,
            vaa.nonce,
            vaa.emitter_chain,
            vaa.emitter_address,
            vaa.sequence,
            vaa.consistency_level,
            vaa.payload,
        )

    @staticmethod
    def check_signature_order(signatures: Iterable[GuardianSignature]) -> None:
        """
        Reject duplicate or out-of-order guardian indices.

        Raises:
            DecodeError: BadSignatureOrdering if indices are not strictly increasing
        """
        previous = -1
        for position, sig in enumerate(signatures):
            if sig.guardian_index <= previous:
                raise DecodeError(
                    DecodeFailure.BAD_SIGNATURE_ORDERING,
                    f"guardian index {sig.guardian_index} at position {position} "
                    f"does not follow {previous}",
                )
            previous = sig.guardian_index

    @staticmethod
    def build(
        *,
        emitter_chain: int,
        emitter_address: UniversalAddress,
        sequence: int,
        payload: bytes = b"",
        timestamp: int = 0,
        nonce: int = 0,
        consistency_level: int = 1,
        guardian_set_index: int = 0,
        signatures: Iterable[GuardianSignature] = (),
        version: int = VAA_VERSION,
    ) -> SignedAttestation:
        """Construct an attestation with its hash computed from the body."""
        signatures = tuple(signatures)
        VaaCodec.check_signature_order(signatures)
        body = VaaCodec.encode_body(
            timestamp, nonce, emitter_chain, emitter_address, sequence, consistency_level, payload
        )
        return SignedAttestation(
            version=version,
            guardian_set_index=guardian_set_index,
            signatures=signatures,
            timestamp=timestamp,
            nonce=nonce,
            emitter_chain=emitter_chain,
            emitter_address=emitter_address,
            sequence=sequence,
            consistency_level=consistency_level,
            payload=bytes(payload),
            hash=VaaCodec.hash_body(body),
        )

    @staticmethod
    def decode(raw: HexBytes | bytes | bytearray | str) -> SignedAttestation:
        """
        Decode a signed VAA.

        Args:
            raw: VAA bytes (or hex string)

        Returns:
            The decoded attestation, with its body hash

        Raises:
            DecodeError: Truncated, BadSignatureOrdering or UnsupportedVersion
        """
        data = VaaCodec.to_bytes_safe(raw)
        reader = _Reader(data)

        version = reader.uint(1, "version")
        if version != VAA_VERSION:
            raise DecodeError(DecodeFailure.UNSUPPORTED_VERSION, f"version {version}")

        guardian_set_index = reader.uint(4, "guardianSetIndex")
        signature_count = reader.uint(1, "signatureCount")

        signatures = []
        for i in range(signature_count):
            guardian_index = reader.uint(1, f"signatures[{i}].guardianIndex")
            signature = reader.take(65, f"signatures[{i}].signature")
            signatures.append(GuardianSignature(guardian_index, signature))
        VaaCodec.check_signature_order(signatures)

        body_start = reader.offset
        timestamp = reader.uint(4, "timestamp")
        nonce = reader.uint(4, "nonce")
        emitter_chain = reader.uint(2, "emitterChain")
        emitter_address = UniversalAddress(reader.take(32, "emitterAddress"))
        sequence = reader.uint(8, "sequence")
        consistency_level = reader.uint(1, "consistencyLevel")
        # Zero-length payloads are valid
        payload = reader.rest()

        return SignedAttestation(
            version=version,
            guardian_set_index=guardian_set_index,
            signatures=tuple(signatures),
            timestamp=timestamp,
            nonce=nonce,
            emitter_chain=emitter_chain,
            emitter_address=emitter_address,
            sequence=sequence,
            consistency_level=consistency_level,
            payload=payload,
            hash=VaaCodec.hash_body(data[body_start:]),
        )

    @staticmethod
    def encode(vaa: SignedAttestation) -> bytes:
        """
        Serialize an attestation to its wire format.

        Raises:
            DecodeError: If the signatures are not strictly ordered
            ValueError: If a field does not fit its wire width
        """
        VaaCodec.check_signature_order(vaa.signatures)
        if len(vaa.signatures) > 0xFF:
            raise ValueError(f"Too many signatures: {len(vaa.signatures)}")

        try:
            header = b"".join([
                vaa.version.to_bytes(1, "big"),
                vaa.guardian_set_index.to_bytes(4, "big"),
                len(vaa.signatures).to_bytes(1, "big"),
            ])
            signatures = b"".join(
                sig.guardian_index.to_bytes(1, "big") + sig.signature for sig in vaa.signatures
            )
            body = VaaCodec._body_of(vaa)
        except OverflowError as e:
            raise ValueError(f"VAA field out of range: {e}") from None

        return header + signatures + body
