#!/usr/bin/env python3
"""EVM chain backend.

Transactions are signed locally with an eth_account LocalAccount and sent
as raw transactions through an AsyncWeb3 provider. Receipts are read back
with eth_getTransactionReceipt and exposed as ``evm.log`` events.
"""

import asyncio
import logging
from typing import Any

import aiohttp
from eth_account import Account
from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound, Web3Exception
from web3.types import TxParams, TxReceipt

from ..coordinate_extractor import EVM_LOG_EVENT
from ..errors import (
    NetworkFailureError,
    NotYetAvailableError,
    TransactionRevertedError,
    UnconfirmedError,
)
from ..models import ChainReceipt, ReceiptEvent, UnsignedTransaction
from .base import ChainAdapter, SignerAdapter, is_user_rejection

logger = logging.getLogger(__name__)


def _build_web3(rpc_url: str) -> AsyncWeb3:
    return AsyncWeb3(AsyncHTTPProvider(rpc_url))


class EvmSignerAdapter(SignerAdapter):
    """Signs TxParams locally and submits them one at a time."""

    def __init__(
        self,
        chain_id: int,
        w3: AsyncWeb3,
        account: LocalAccount,
        receipt_timeout: float = 120.0,
    ) -> None:
        """
        Initialize the EVM signer.

        Args:
            chain_id: Protocol chain id of the target chain
            w3: Connected AsyncWeb3 instance
            account: Local account used for signing
            receipt_timeout: Seconds to wait for each transaction receipt
        """
        super().__init__(chain_id)
        self.w3 = w3
        self.account = account
        self.receipt_timeout = receipt_timeout

    @classmethod
    def from_key(
        cls, chain_id: int, rpc_url: str, private_key: str, receipt_timeout: float = 120.0
    ) -> "EvmSignerAdapter":
        account: LocalAccount = Account.from_key(private_key)
        return cls(chain_id, _build_web3(rpc_url), account, receipt_timeout)

    def address(self) -> str:
        return self.account.address

    async def _fill_params(self, params: dict[str, Any]) -> TxParams:
        """Complete nonce, chain id, gas and fee fields left unset by the caller."""
        params.setdefault("from", self.account.address)
        if "chainId" not in params:
            params["chainId"] = await self.w3.eth.chain_id
        if "nonce" not in params:
            params["nonce"] = await self.w3.eth.get_transaction_count(self.account.address, "pending")
        if "gas" not in params:
            try:
                params["gas"] = await self.w3.eth.estimate_gas(params)
            except ContractLogicError as e:
                raise TransactionRevertedError(f"Transaction would revert: {e}") from e
        if "gasPrice" not in params and "maxFeePerGas" not in params:
            params["gasPrice"] = await self.w3.eth.gas_price
        return params

    async def send(self, prepared: UnsignedTransaction, transaction: UnsignedTransaction) -> str:
        params = await self._fill_params(dict(transaction.transaction))
        signed = self.account.sign_transaction(params)
        tx_hash = Web3.to_hex(signed.hash)

        try:
            await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except asyncio.TimeoutError as e:
            raise UnconfirmedError(
                f"Timed out sending {tx_hash}; it may still be broadcast", tx_id=tx_hash
            ) from e
        except (ConnectionRefusedError, aiohttp.ClientConnectorError) as e:
            raise NetworkFailureError(f"Could not reach node to send {tx_hash}: {e}") from e
        except Exception as e:
            if is_user_rejection(e):
                raise
            # The node may have accepted the bytes before the failure
            raise UnconfirmedError(
                f"Send of {tx_hash} failed after connecting: {e}", tx_id=tx_hash
            ) from e
        logger.debug(f"Sent {tx_hash} with nonce {params['nonce']}")

        try:
            receipt: TxReceipt = await self.w3.eth.wait_for_transaction_receipt(
                HexBytes(tx_hash), timeout=self.receipt_timeout
            )
        except TimeExhausted as e:
            raise UnconfirmedError(
                f"No receipt for {tx_hash} after {self.receipt_timeout}s", tx_id=tx_hash
            ) from e
        except (Web3Exception, OSError, asyncio.TimeoutError) as e:
            raise UnconfirmedError(f"Lost track of {tx_hash}: {e}", tx_id=tx_hash) from e

        if (status := receipt.get("status", 0)) != 1:
            raise TransactionRevertedError(
                f"Transaction {tx_hash} reverted with status={status}", tx_id=tx_hash
            )
        return tx_hash


class EvmChainAdapter(ChainAdapter):
    """Reads EVM transaction receipts and exposes their logs."""

    def __init__(self, chain_id: int, w3: AsyncWeb3, confirmations: int = 1) -> None:
        super().__init__(chain_id)
        if confirmations < 1:
            raise ValueError(f"Confirmations must be at least 1, got {confirmations}")
        self.w3 = w3
        self.confirmations = confirmations

    @classmethod
    def from_url(cls, chain_id: int, rpc_url: str, confirmations: int = 1) -> "EvmChainAdapter":
        return cls(chain_id, _build_web3(rpc_url), confirmations)

    async def get_receipt(self, tx_id: str) -> ChainReceipt | None:
        try:
            receipt: TxReceipt = await self.w3.eth.get_transaction_receipt(HexBytes(tx_id))
            if self.confirmations > 1:
                head = await self.w3.eth.block_number
                if head - receipt["blockNumber"] + 1 < self.confirmations:
                    logger.debug(f"{tx_id} has not reached {self.confirmations} confirmations yet")
                    return None
        except TransactionNotFound:
            return None
        except (Web3Exception, OSError, asyncio.TimeoutError) as e:
            raise NotYetAvailableError(f"Could not fetch receipt for {tx_id}: {e}", tx_id=tx_id) from e

        events = tuple(
            ReceiptEvent(
                EVM_LOG_EVENT,
                {
                    "address": log["address"],
                    "topics": [bytes(topic) for topic in log["topics"]],
                    "data": bytes(log["data"]),
                },
            )
            for log in receipt["logs"]
        )
        return ChainReceipt(
            chain_id=self.chain_id,
            tx_id=tx_id,
            events=events,
            success=receipt.get("status", 0) == 1,
        )
