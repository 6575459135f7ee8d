"""
Solana chain backend.

The wallet and connection objects come from wallet-integration code. They are
wrapped once in explicit adapters that check the required members at
construction, so a wrong object fails immediately with WalletAdapterError
rather than in the middle of a transfer.
"""

import asyncio
import logging
from typing import Any

import base58
import httpx

from ..errors import (
    MalformedError,
    NetworkFailureError,
    TransactionRevertedError,
    UnconfirmedError,
    WalletAdapterError,
)
from ..models import ChainReceipt, UnsignedTransaction
from .base import JsonRpcChainAdapter, SignerAdapter, maybe_await

logger = logging.getLogger(__name__)


def _require_callable(obj: Any, name: str, owner: str) -> Any:
    member = getattr(obj, name, None)
    if not callable(member):
        raise WalletAdapterError(f"{owner} is missing required method {name}()")
    return member


class SolanaWallet:
    """Validated view over a Solana wallet.

    The wallet must expose ``public_key`` and either
    ``sign_all_transactions(txs)`` or ``sign_transaction(tx)``. Either may be
    sync or async.
    """

    def __init__(self, wallet: Any) -> None:
        public_key = getattr(wallet, "public_key", None)
        if public_key is None:
            raise WalletAdapterError("Solana wallet is missing public_key (is it connected?)")

        self._sign_all = getattr(wallet, "sign_all_transactions", None)
        self._sign_one = getattr(wallet, "sign_transaction", None)
        if not callable(self._sign_all) and not callable(self._sign_one):
            raise WalletAdapterError(
                "Solana wallet needs sign_all_transactions() or sign_transaction()"
            )
        self.public_key = str(public_key)

    async def sign_all(self, transactions: list[Any]) -> list[Any]:
        if callable(self._sign_all):
            signed = list(await maybe_await(self._sign_all(transactions)))
        else:
            signed = [await maybe_await(self._sign_one(tx)) for tx in transactions]
        if len(signed) != len(transactions):
            raise WalletAdapterError(
                f"Wallet returned {len(signed)} signed transactions for {len(transactions)}"
            )
        return signed


class SolanaConnection:
    """Validated view over a Solana RPC connection.

    Requires ``send_raw_transaction(bytes)`` and ``confirm_transaction(signature)``.
    Responses may be plain values or objects carrying ``.value``.
    """

    def __init__(self, connection: Any) -> None:
        self._send = _require_callable(connection, "send_raw_transaction", "Solana connection")
        self._confirm = _require_callable(connection, "confirm_transaction", "Solana connection")

    async def send_raw_transaction(self, raw: bytes) -> str:
        response = await maybe_await(self._send(raw))
        return str(getattr(response, "value", response))

    async def confirm_transaction(self, signature: str) -> Any:
        response = await maybe_await(self._confirm(signature))
        return getattr(response, "value", response)


def _serialize(signed: Any) -> bytes:
    if isinstance(signed, (bytes, bytearray)):
        return bytes(signed)
    if callable(serialize := getattr(signed, "serialize", None)):
        return bytes(serialize())
    return bytes(signed)


def _first_signature(raw: bytes) -> str | None:
    """Transaction id of a serialized transaction: its first signature, base58."""
    if len(raw) < 65 or raw[0] == 0:
        return None
    return base58.b58encode(raw[1:65]).decode()


def _confirmation_error(status: Any) -> Any:
    """Extract a transaction error from a confirmation response, if any."""
    if isinstance(status, list):
        status = status[0] if status else None
    if isinstance(status, dict):
        return status.get("err")
    return getattr(status, "err", None)


class SolanaSignerAdapter(SignerAdapter):
    """Signs the whole batch with the wallet, then sends and confirms in order."""

    def __init__(
        self,
        chain_id: int,
        wallet: Any,
        connection: Any,
        confirm_timeout: float = 90.0,
    ) -> None:
        super().__init__(chain_id)
        self.wallet = wallet if isinstance(wallet, SolanaWallet) else SolanaWallet(wallet)
        self.connection = (
            connection if isinstance(connection, SolanaConnection) else SolanaConnection(connection)
        )
        self.confirm_timeout = confirm_timeout

    def address(self) -> str:
        return self.wallet.public_key

    async def prepare(self, transactions: list[UnsignedTransaction]) -> list[Any]:
        return await self.wallet.sign_all([tx.transaction for tx in transactions])

    async def send(self, prepared: Any, transaction: UnsignedTransaction) -> str:
        raw = _serialize(prepared)
        expected = _first_signature(raw)
        try:
            signature = await self.connection.send_raw_transaction(raw)
        except (httpx.ConnectError, ConnectionRefusedError) as e:
            raise NetworkFailureError(f"Could not reach Solana node: {e}") from e
        except Exception as e:
            # The node may have accepted the bytes before the failure
            raise UnconfirmedError(
                f"Solana send outcome unknown for {expected}: {e}", tx_id=expected
            ) from e
        logger.debug(f"Sent Solana transaction {signature}")

        try:
            status = await asyncio.wait_for(
                self.connection.confirm_transaction(signature), timeout=self.confirm_timeout
            )
        except asyncio.TimeoutError as e:
            raise UnconfirmedError(
                f"Solana transaction {signature} not confirmed after {self.confirm_timeout}s",
                tx_id=signature,
            ) from e
        except (httpx.HTTPError, OSError) as e:
            raise UnconfirmedError(f"Lost track of {signature}: {e}", tx_id=signature) from e

        if (err := _confirmation_error(status)) is not None:
            raise TransactionRevertedError(f"Solana transaction {signature} failed: {err}", tx_id=signature)
        return signature


class SolanaChainAdapter(JsonRpcChainAdapter):
    """Reads finalized Solana transactions and exposes their program logs."""

    COMMITMENT = "finalized"

    async def get_receipt(self, tx_id: str) -> ChainReceipt | None:
        try:
            base58.b58decode(tx_id)
        except ValueError:
            raise MalformedError(f"Invalid Solana transaction signature: {tx_id}", tx_id=tx_id) from None

        result = await self.call(
            "getTransaction",
            [tx_id, {"commitment": self.COMMITMENT, "encoding": "json", "maxSupportedTransactionVersion": 0}],
        )
        if result is None:
            return None

        meta = result.get("meta") or {}
        return ChainReceipt(
            chain_id=self.chain_id,
            tx_id=tx_id,
            logs=tuple(meta.get("logMessages") or ()),
            success=meta.get("err") is None,
        )
