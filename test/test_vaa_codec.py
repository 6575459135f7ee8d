"""Tests for the VAA codec and body hash."""

import pytest

from wormhole_bridge.errors import DecodeError, DecodeFailure, ErrorKind
from wormhole_bridge.models import MessageCoordinates
from wormhole_bridge.utils.vaa_codec import SIGNATURE_LENGTH, VaaCodec

from conftest import make_signature, make_vaa


class TestVaaCodec:
    """Test suite for VaaCodec."""

    def test_round_trip(self, vaa):
        """Decoding an encoded VAA reproduces the identical structure."""
        assert VaaCodec.decode(VaaCodec.encode(vaa)) == vaa

    def test_round_trip_from_hex_string(self, vaa):
        raw = VaaCodec.encode(vaa)
        assert VaaCodec.decode("0x" + raw.hex()) == vaa

    def test_layout(self, vaa):
        raw = VaaCodec.encode(vaa)
        assert raw[0] == 1
        assert int.from_bytes(raw[1:5], "big") == 4
        assert raw[5] == 3
        body = raw[6 + 3 * SIGNATURE_LENGTH:]
        assert int.from_bytes(body[8:10], "big") == 21
        assert body[10:42] == vaa.emitter_address.value
        assert int.from_bytes(body[42:50], "big") == 42
        assert body[51:] == b"hello"

    def test_empty_payload_is_valid(self, coords):
        vaa = make_vaa(coords, payload=b"")
        decoded = VaaCodec.decode(VaaCodec.encode(vaa))
        assert decoded.payload == b""
        assert decoded == vaa

    def test_hash_is_double_keccak_of_body(self, vaa):
        from web3 import Web3

        raw = VaaCodec.encode(vaa)
        body = raw[6 + len(vaa.signatures) * SIGNATURE_LENGTH:]
        assert vaa.hash == bytes(Web3.keccak(Web3.keccak(body)))
        assert VaaCodec.body_hash(vaa) == vaa.hash

    def test_hash_independent_of_signatures(self, coords):
        """Adding, removing or reordering signatures never changes the hash."""
        full = make_vaa(coords, guardians=(0, 1, 2, 3))
        fewer = make_vaa(coords, guardians=(1, 3))
        none = make_vaa(coords, guardians=())

        assert VaaCodec.body_hash(full) == VaaCodec.body_hash(fewer) == VaaCodec.body_hash(none)

    @pytest.mark.parametrize(
        "change",
        [
            {"timestamp": 1},
            {"nonce": 8},
            {"consistency_level": 15},
            {"payload": b"hellp"},
        ],
    )
    def test_hash_changes_with_body(self, coords, vaa, change):
        assert make_vaa(coords, **change).hash != vaa.hash

    def test_hash_changes_with_sequence(self, coords, vaa):
        other = MessageCoordinates(coords.emitter_chain, coords.emitter_address, coords.sequence + 1)
        assert make_vaa(other).hash != vaa.hash

    def test_rejects_duplicate_guardian_index(self, vaa):
        raw = bytearray(VaaCodec.encode(vaa))
        # Second signature claims guardian 0 again
        raw[6 + SIGNATURE_LENGTH] = 0

        with pytest.raises(DecodeError) as exc_info:
            VaaCodec.decode(bytes(raw))
        assert exc_info.value.reason == DecodeFailure.BAD_SIGNATURE_ORDERING
        assert exc_info.value.kind == ErrorKind.MALFORMED

    def test_rejects_reordered_guardians(self, vaa):
        raw = bytearray(VaaCodec.encode(vaa))
        first = raw[6:6 + SIGNATURE_LENGTH]
        second = raw[6 + SIGNATURE_LENGTH:6 + 2 * SIGNATURE_LENGTH]
        raw[6:6 + 2 * SIGNATURE_LENGTH] = second + first

        with pytest.raises(DecodeError) as exc_info:
            VaaCodec.decode(bytes(raw))
        assert exc_info.value.reason == DecodeFailure.BAD_SIGNATURE_ORDERING

    def test_build_rejects_unordered_signatures(self, coords):
        with pytest.raises(DecodeError):
            VaaCodec.build(
                emitter_chain=coords.emitter_chain,
                emitter_address=coords.emitter_address,
                sequence=coords.sequence,
                signatures=[make_signature(2), make_signature(1)],
            )

    @pytest.mark.parametrize("cut", [0, 1, 5, 6, 50, 6 + 3 * SIGNATURE_LENGTH + 50])
    def test_truncated(self, vaa, cut):
        raw = VaaCodec.encode(vaa)
        with pytest.raises(DecodeError) as exc_info:
            VaaCodec.decode(raw[:cut])
        assert exc_info.value.reason == DecodeFailure.TRUNCATED

    def test_unsupported_version(self, vaa):
        raw = b"\x02" + VaaCodec.encode(vaa)[1:]
        with pytest.raises(DecodeError) as exc_info:
            VaaCodec.decode(raw)
        assert exc_info.value.reason == DecodeFailure.UNSUPPORTED_VERSION

    def test_invalid_hex_string(self):
        with pytest.raises(DecodeError) as exc_info:
            VaaCodec.decode("0xnothex")
        assert exc_info.value.reason == DecodeFailure.INVALID_ENCODING

    def test_matches_coordinates(self, vaa, coords):
        assert vaa.matches(coords)
        assert vaa.coordinates == coords
        assert not vaa.matches(MessageCoordinates(coords.emitter_chain, coords.emitter_address, 43))
