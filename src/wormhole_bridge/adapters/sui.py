"""
Sui chain backend.

Sui wallets sign and execute in one call, so there is no window between
signing and submission that the adapter can observe.
"""

import logging
from typing import Any, Mapping

import httpx

from ..errors import NetworkFailureError, TransactionRevertedError, UnconfirmedError, WalletAdapterError
from ..models import ChainReceipt, ReceiptEvent, UnsignedTransaction
from .base import JsonRpcChainAdapter, SignerAdapter, is_user_rejection, maybe_await

logger = logging.getLogger(__name__)


class SuiWallet:
    """Validated view over a Sui wallet exposing ``account.address`` and
    ``sign_and_execute_transaction_block``."""

    def __init__(self, wallet: Any) -> None:
        account = getattr(wallet, "account", None)
        if account is None or not getattr(account, "address", None):
            raise WalletAdapterError("Sui wallet is missing account.address (is it connected?)")
        execute = getattr(wallet, "sign_and_execute_transaction_block", None)
        if not callable(execute):
            raise WalletAdapterError("Sui wallet is missing sign_and_execute_transaction_block()")

        self.address = str(account.address)
        self._execute = execute

    async def sign_and_execute(self, transaction_block: Any) -> Mapping[str, Any]:
        result = await maybe_await(
            self._execute(
                transaction_block=transaction_block,
                options={"showEffects": True, "showEvents": True},
            )
        )
        if not isinstance(result, Mapping):
            raise UnconfirmedError(f"Unexpected Sui execution result: {type(result).__name__}")
        return result


def _effects_status(result: Mapping[str, Any]) -> tuple[str | None, str | None]:
    status = (result.get("effects") or {}).get("status") or {}
    return status.get("status"), status.get("error")


class SuiSignerAdapter(SignerAdapter):
    """Executes transaction blocks one at a time through the wallet."""

    def __init__(self, chain_id: int, wallet: Any) -> None:
        super().__init__(chain_id)
        self.wallet = wallet if isinstance(wallet, SuiWallet) else SuiWallet(wallet)

    def address(self) -> str:
        return self.wallet.address

    async def send(self, prepared: UnsignedTransaction, transaction: UnsignedTransaction) -> str:
        try:
            result = await self.wallet.sign_and_execute(transaction.transaction)
        except httpx.ConnectError as e:
            raise NetworkFailureError(f"Could not reach Sui node: {e}") from e
        except UnconfirmedError:
            raise
        except Exception as e:
            if is_user_rejection(e):
                raise
            # Execution may have reached the network before the failure
            raise UnconfirmedError(f"Sui execution outcome unknown: {e}") from e

        digest = result.get("digest")
        if not digest:
            raise UnconfirmedError("Sui wallet returned no transaction digest")

        match _effects_status(result):
            case ("failure", error):
                raise TransactionRevertedError(f"Sui transaction {digest} failed: {error}", tx_id=digest)
            case _:
                return str(digest)


class SuiChainAdapter(JsonRpcChainAdapter):
    """Reads Sui transaction blocks and exposes their events."""

    async def get_receipt(self, tx_id: str) -> ChainReceipt | None:
        result = await self.call(
            "sui_getTransactionBlock",
            [tx_id, {"showEvents": True, "showEffects": True}],
        )
        if result is None:
            return None

        events = []
        for event in result.get("events") or ():
            data = dict(event.get("parsedJson") or {})
            events.append(ReceiptEvent(str(event.get("type", "")), data))

        status, _ = _effects_status(result)
        return ChainReceipt(
            chain_id=self.chain_id,
            tx_id=tx_id,
            events=tuple(events),
            success=status != "failure",
        )
