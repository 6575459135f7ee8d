"""Shared fixtures for the bridge test suite."""

import pytest

from wormhole_bridge.models import GuardianSignature, MessageCoordinates, UniversalAddress
from wormhole_bridge.utils.vaa_codec import VaaCodec

SUI_CHAIN_ID = 21
EMITTER_HEX = "00" * 31 + "ab"


def make_signature(index: int, fill: int = 0x11) -> GuardianSignature:
    return GuardianSignature(guardian_index=index, signature=bytes([fill]) * 64 + bytes([index % 2]))


def make_vaa(coords: MessageCoordinates, payload: bytes = b"hello", guardians=(0, 1, 2), **kwargs):
    return VaaCodec.build(
        emitter_chain=coords.emitter_chain,
        emitter_address=coords.emitter_address,
        sequence=coords.sequence,
        payload=payload,
        timestamp=kwargs.pop("timestamp", 1_700_000_000),
        nonce=kwargs.pop("nonce", 7),
        consistency_level=kwargs.pop("consistency_level", 1),
        guardian_set_index=kwargs.pop("guardian_set_index", 4),
        signatures=[make_signature(i) for i in guardians],
        **kwargs,
    )


@pytest.fixture
def emitter() -> UniversalAddress:
    return UniversalAddress.from_hex(EMITTER_HEX)


@pytest.fixture
def coords(emitter) -> MessageCoordinates:
    return MessageCoordinates(emitter_chain=SUI_CHAIN_ID, emitter_address=emitter, sequence=42)


@pytest.fixture
def vaa(coords):
    return make_vaa(coords)
