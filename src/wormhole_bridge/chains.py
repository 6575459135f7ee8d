"""
Wormhole chain registry.

Protocol chain ids are defined by the Wormhole network and shared by every
guardian, emitter and VAA. This module maps them to chain names and the
platform family that determines native address encoding.
"""

from types import MappingProxyType
from typing import Mapping


CHAIN_ID_SOLANA = 1
CHAIN_ID_ETHEREUM = 2
CHAIN_ID_BSC = 4
CHAIN_ID_POLYGON = 5
CHAIN_ID_AVALANCHE = 6
CHAIN_ID_SUI = 21
CHAIN_ID_APTOS = 22
CHAIN_ID_ARBITRUM = 23
CHAIN_ID_OPTIMISM = 24
CHAIN_ID_BASE = 30
CHAIN_ID_SEPOLIA = 10002

PLATFORM_EVM = "evm"
PLATFORM_SOLANA = "solana"
PLATFORM_SUI = "sui"
PLATFORM_APTOS = "aptos"
PLATFORM_COSMWASM = "cosmwasm"
PLATFORM_ALGORAND = "algorand"
PLATFORM_NEAR = "near"

# (name, platform) keyed by protocol chain id
_REGISTRY: dict[int, tuple[str, str]] = {
    1: ("Solana", PLATFORM_SOLANA),
    2: ("Ethereum", PLATFORM_EVM),
    3: ("Terra", PLATFORM_COSMWASM),
    4: ("Bsc", PLATFORM_EVM),
    5: ("Polygon", PLATFORM_EVM),
    6: ("Avalanche", PLATFORM_EVM),
    7: ("Oasis", PLATFORM_EVM),
    8: ("Algorand", PLATFORM_ALGORAND),
    9: ("Aurora", PLATFORM_EVM),
    10: ("Fantom", PLATFORM_EVM),
    11: ("Karura", PLATFORM_EVM),
    12: ("Acala", PLATFORM_EVM),
    13: ("Klaytn", PLATFORM_EVM),
    14: ("Celo", PLATFORM_EVM),
    15: ("Near", PLATFORM_NEAR),
    16: ("Moonbeam", PLATFORM_EVM),
    18: ("Terra2", PLATFORM_COSMWASM),
    19: ("Injective", PLATFORM_COSMWASM),
    20: ("Osmosis", PLATFORM_COSMWASM),
    21: ("Sui", PLATFORM_SUI),
    22: ("Aptos", PLATFORM_APTOS),
    23: ("Arbitrum", PLATFORM_EVM),
    24: ("Optimism", PLATFORM_EVM),
    25: ("Gnosis", PLATFORM_EVM),
    26: ("Pythnet", PLATFORM_SOLANA),
    30: ("Base", PLATFORM_EVM),
    32: ("Sei", PLATFORM_COSMWASM),
    34: ("Scroll", PLATFORM_EVM),
    35: ("Mantle", PLATFORM_EVM),
    3104: ("Wormchain", PLATFORM_COSMWASM),
    10002: ("Sepolia", PLATFORM_EVM),
    10003: ("ArbitrumSepolia", PLATFORM_EVM),
    10004: ("BaseSepolia", PLATFORM_EVM),
    10005: ("OptimismSepolia", PLATFORM_EVM),
    10006: ("Holesky", PLATFORM_EVM),
    10007: ("PolygonSepolia", PLATFORM_EVM),
}

CHAINS: Mapping[int, tuple[str, str]] = MappingProxyType(_REGISTRY)

_NAME_TO_ID: Mapping[str, int] = MappingProxyType(
    {name.lower(): chain_id for chain_id, (name, _) in _REGISTRY.items()}
)


def to_chain_id(identifier: str | int) -> int:
    """
    Resolve a chain name or numeric id to a registered protocol chain id.

    Accepts ints, numeric strings ("21") and case-insensitive names ("sui").

    Raises:
        ValueError: If the identifier does not name a registered chain
    """
    match identifier:
        case bool():
            raise ValueError(f"Invalid chain identifier type: {type(identifier).__name__}")
        case int() as chain_id:
            pass
        case str() as text if text.strip().isdigit():
            chain_id = int(text.strip())
        case str() as text:
            chain_id = _NAME_TO_ID.get(text.strip().lower(), -1)
            if chain_id < 0:
                raise ValueError(f"Unknown or unsupported chain: {identifier}")
        case _:
            raise ValueError(f"Invalid chain identifier type: {type(identifier).__name__}")

    if chain_id not in _REGISTRY:
        raise ValueError(f"Unknown or unsupported chain id: {chain_id}")
    return chain_id


def chain_name(chain_id: int) -> str:
    """Return the registry name for a chain id."""
    try:
        return _REGISTRY[chain_id][0]
    except KeyError:
        raise ValueError(f"Unknown or unsupported chain id: {chain_id}") from None


def chain_platform(chain_id: int) -> str:
    """Return the platform family (evm, solana, sui, ...) for a chain id."""
    try:
        return _REGISTRY[chain_id][1]
    except KeyError:
        raise ValueError(f"Unknown or unsupported chain id: {chain_id}") from None


def is_registered(chain_id: int) -> bool:
    return chain_id in _REGISTRY
