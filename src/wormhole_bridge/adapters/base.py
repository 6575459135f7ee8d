"""
Chain backend interfaces.

A SignerAdapter turns chain-native unsigned transactions into submitted
transaction ids; a ChainAdapter reads finalized receipts back. The
orchestrator only ever talks to these two interfaces.
"""

import inspect
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Sequence

import httpx

from ..chains import chain_name
from ..errors import (
    MalformedError,
    NetworkFailureError,
    NotYetAvailableError,
    SignatureRejectedError,
    SignatureRequestRejected,
    SignError,
)
from ..models import ChainReceipt, UnsignedTransaction

logger = logging.getLogger(__name__)

USER_REJECTED_CODE = 4001
_REJECTION_MARKERS = ("user rejected", "user declined", "user denied", "rejected the request")


async def maybe_await(value: Any) -> Any:
    """Await wallet results that may be plain values or awaitables."""
    return await value if inspect.isawaitable(value) else value


def is_user_rejection(exc: BaseException) -> bool:
    """Return True if the exception means the user declined to sign."""
    if isinstance(exc, SignatureRequestRejected):
        return True
    if getattr(exc, "code", None) == USER_REJECTED_CODE:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _REJECTION_MARKERS)


class SignerAdapter(ABC):
    """Uniform signing capability for one chain backend.

    ``sign_and_send`` submits each transaction at most once, in input order,
    and never retries a submission internally. A failure anywhere in the
    batch raises a single SignError whose ``index`` is the failing position
    and whose ``submitted`` holds the ids already sent.
    """

    def __init__(self, chain_id: int) -> None:
        self.chain_id = chain_id

    @abstractmethod
    def address(self) -> str:
        """Chain-native address of the signing account."""

    async def prepare(self, transactions: list[UnsignedTransaction]) -> list[Any]:
        """Hook for backends that sign the whole batch before sending."""
        return list(transactions)

    @abstractmethod
    async def send(self, prepared: Any, transaction: UnsignedTransaction) -> str:
        """
        Submit one prepared transaction and wait for its finality.

        Failures after the transaction may have reached the network must be
        raised as UnconfirmedError (or TransactionRevertedError). Anything
        else raised is treated as a failure before submission.
        """

    async def sign_and_send(self, transactions: Sequence[UnsignedTransaction]) -> list[str]:
        """
        Sign and submit a batch of transactions.

        Args:
            transactions: Unsigned transactions, in execution order

        Returns:
            Transaction ids in the same order as the input

        Raises:
            SignError: Rejected, NetworkFailure, Unconfirmed or Reverted,
                carrying the failing index and the ids already submitted
        """
        transactions = list(transactions)
        if not transactions:
            raise ValueError("No transactions to sign")

        name = chain_name(self.chain_id)
        logger.info(f"Signing {len(transactions)} transaction(s) on {name} as {self.address()}")

        submitted: list[str] = []
        index = 0
        try:
            prepared = await self.prepare(transactions)
            for index, (item, transaction) in enumerate(zip(prepared, transactions)):
                label = transaction.description or f"tx {index}"
                tx_id = await self.send(item, transaction)
                logger.info(f"✓ {name} {label} confirmed: {tx_id}")
                submitted.append(tx_id)
        except SignError as e:
            e.index = index
            e.submitted = tuple(submitted)
            e.context["index"] = index
            logger.error(f"✗ {name} batch failed at index {index} ({e.kind.value}): {e}")
            raise
        except Exception as e:
            if is_user_rejection(e):
                logger.warning(f"User declined signature on {name} at index {index}")
                raise SignatureRejectedError(
                    f"User rejected the signature request: {e}", index=index, submitted=submitted
                ) from e
            logger.error(f"✗ {name} submission failed before sending index {index}: {e}")
            raise NetworkFailureError(
                f"Could not submit transaction to {name}: {e}", index=index, submitted=submitted
            ) from e

        return submitted


class ChainAdapter(ABC):
    """Read access to finalized transaction receipts on one chain."""

    def __init__(self, chain_id: int) -> None:
        self.chain_id = chain_id

    @abstractmethod
    async def get_receipt(self, tx_id: str) -> ChainReceipt | None:
        """
        Fetch the finalized receipt of a transaction.

        Returns:
            ChainReceipt, or None if the transaction is unknown or not final yet

        Raises:
            NotYetAvailableError: If the node could not be reached
            MalformedError: If the node returned an invalid response
        """


class JsonRpcChainAdapter(ChainAdapter):
    """ChainAdapter base for nodes that speak JSON-RPC over HTTP."""

    def __init__(
        self,
        chain_id: int,
        rpc_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(chain_id)
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.transport = transport
        self._request_id = 0

    async def call(self, method: str, params: list[Any]) -> Any:
        """
        Issue one JSON-RPC request.

        Returns:
            The ``result`` member, or None when the node reports the
            object as not found
        """
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}

        async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
            logger.debug(f"Posting {method} to {self.rpc_url}")
            try:
                response = await client.post(self.rpc_url, json=payload)
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise NotYetAvailableError(
                    f"{method} failed on {self.rpc_url}: {e}", host=self.rpc_url
                ) from e

        try:
            body = response.json()
        except json.JSONDecodeError:
            raise MalformedError(f"{method} returned non-JSON body", host=self.rpc_url) from None
        if not isinstance(body, dict):
            raise MalformedError(f"{method} returned unexpected body type", host=self.rpc_url)

        if error := body.get("error"):
            message = str(error.get("message", error)) if isinstance(error, dict) else str(error)
            if "not find" in message.lower() or "not found" in message.lower():
                return None
            raise MalformedError(f"{method} error from {self.rpc_url}: {message}", host=self.rpc_url)
        return body.get("result")
