"""
Wormhole bridge relayer package.

Tracks cross-chain messages from source transaction to guardian-signed VAA
and drives transfers through pluggable chain backends.
"""

from .attestation_fetcher import AttestationFetcher
from .config import BridgeConfig, ChainConfig, GuardianConfig, RetryPolicy, backoff_delay
from .coordinate_extractor import MessageCoordinateExtractor
from .errors import BridgeError, ErrorKind
from .models import (
    BridgeReceipt,
    ChainReceipt,
    MessageCoordinates,
    SignedAttestation,
    TransferIntent,
    TransferState,
    UniversalAddress,
    UnsignedTransaction,
)
from .orchestrator import CrossChainTransferOrchestrator

__all__ = [
    "AttestationFetcher",
    "BridgeConfig",
    "BridgeError",
    "BridgeReceipt",
    "ChainConfig",
    "ChainReceipt",
    "CrossChainTransferOrchestrator",
    "ErrorKind",
    "GuardianConfig",
    "MessageCoordinateExtractor",
    "MessageCoordinates",
    "RetryPolicy",
    "SignedAttestation",
    "TransferIntent",
    "TransferState",
    "UniversalAddress",
    "UnsignedTransaction",
    "backoff_delay",
]
__version__ = "0.1.0"
