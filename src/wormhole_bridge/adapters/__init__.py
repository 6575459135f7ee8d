"""Chain backends: signer and receipt adapters per platform."""

from ..chains import PLATFORM_EVM, PLATFORM_SOLANA, PLATFORM_SUI, chain_platform
from ..config import ChainConfig
from .base import ChainAdapter, JsonRpcChainAdapter, SignerAdapter, is_user_rejection
from .evm import EvmChainAdapter, EvmSignerAdapter
from .solana import SolanaChainAdapter, SolanaSignerAdapter, SolanaWallet
from .sui import SuiChainAdapter, SuiSignerAdapter, SuiWallet


def create_chain_adapter(chain: ChainConfig, timeout: float = 10.0) -> ChainAdapter:
    """Build the receipt adapter for a configured chain."""
    platform = chain_platform(chain.chain_id)
    if platform == PLATFORM_EVM:
        return EvmChainAdapter.from_url(chain.chain_id, chain.rpc_url)
    if platform == PLATFORM_SOLANA:
        return SolanaChainAdapter(chain.chain_id, chain.rpc_url, timeout=timeout)
    if platform == PLATFORM_SUI:
        return SuiChainAdapter(chain.chain_id, chain.rpc_url, timeout=timeout)
    raise ValueError(f"No chain adapter for {chain.name} ({platform})")


__all__ = [
    "ChainAdapter",
    "EvmChainAdapter",
    "EvmSignerAdapter",
    "JsonRpcChainAdapter",
    "SignerAdapter",
    "SolanaChainAdapter",
    "SolanaSignerAdapter",
    "SolanaWallet",
    "SuiChainAdapter",
    "SuiSignerAdapter",
    "SuiWallet",
    "create_chain_adapter",
    "is_user_rejection",
]
