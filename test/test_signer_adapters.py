"""Tests for the per-platform signer adapters."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import base58
import httpx
import pytest
from eth_account import Account
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from wormhole_bridge.adapters import EvmSignerAdapter, SolanaSignerAdapter, SuiSignerAdapter
from wormhole_bridge.adapters.base import is_user_rejection
from wormhole_bridge.errors import (
    ErrorKind,
    NetworkFailureError,
    SignatureRejectedError,
    SignatureRequestRejected,
    TransactionRevertedError,
    UnconfirmedError,
    WalletAdapterError,
)
from wormhole_bridge.models import UnsignedTransaction

# Well-known test key, never funded on a real network
PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
SEPOLIA = 10002
SOLANA = 1
SUI = 21


class WalletRejection(Exception):
    """Mimics an EIP-1193 provider error."""

    def __init__(self, message, code):
        super().__init__(message)
        self.code = code


def evm_tx(nonce: int, label: str = "") -> UnsignedTransaction:
    return UnsignedTransaction(
        {
            "to": "0x" + "22" * 20,
            "value": 0,
            "data": b"",
            "gas": 21000,
            "gasPrice": 1_000_000_000,
            "nonce": nonce,
            "chainId": 11155111,
        },
        description=label,
    )


@pytest.fixture
def account():
    return Account.from_key(PRIVATE_KEY)


@pytest.fixture
def w3():
    mock = MagicMock()
    mock.eth.send_raw_transaction = AsyncMock()
    mock.eth.wait_for_transaction_receipt = AsyncMock(return_value={"status": 1})
    return mock


def expected_hash(account, tx: UnsignedTransaction) -> str:
    params = dict(tx.transaction, **{"from": account.address})
    return Web3.to_hex(account.sign_transaction(params).hash)


class TestUserRejection:

    def test_detects_rejections(self):
        assert is_user_rejection(SignatureRequestRejected("no"))
        assert is_user_rejection(WalletRejection("denied", 4001))
        assert is_user_rejection(RuntimeError("User rejected the request."))

    def test_ignores_other_errors(self):
        assert not is_user_rejection(RuntimeError("insufficient funds"))
        assert not is_user_rejection(WalletRejection("internal", -32603))


class TestEvmSignerAdapter:

    @pytest.mark.asyncio
    async def test_ids_follow_input_order(self, w3, account):
        signer = EvmSignerAdapter(SEPOLIA, w3, account)
        batch = [evm_tx(0, "approve"), evm_tx(1, "transfer"), evm_tx(2, "publish")]

        ids = await signer.sign_and_send(batch)

        assert ids == [expected_hash(account, tx) for tx in batch]
        assert len(set(ids)) == 3
        assert w3.eth.send_raw_transaction.await_count == 3

    @pytest.mark.asyncio
    async def test_fills_missing_params(self, w3, account):
        async def value(v):
            return v

        w3.eth.chain_id = value(11155111)
        w3.eth.gas_price = value(2_000_000_000)
        w3.eth.get_transaction_count = AsyncMock(return_value=9)
        w3.eth.estimate_gas = AsyncMock(return_value=50_000)
        signer = EvmSignerAdapter(SEPOLIA, w3, account)

        await signer.sign_and_send([UnsignedTransaction({"to": "0x" + "22" * 20, "value": 1})])

        w3.eth.get_transaction_count.assert_awaited_once_with(account.address, "pending")
        estimated = w3.eth.estimate_gas.await_args.args[0]
        assert estimated["nonce"] == 9
        assert estimated["chainId"] == 11155111
        assert estimated["from"] == account.address

    @pytest.mark.asyncio
    async def test_unconfirmed_carries_index_and_submitted(self, w3, account):
        w3.eth.wait_for_transaction_receipt = AsyncMock(
            side_effect=[{"status": 1}, TimeExhausted("no receipt")]
        )
        signer = EvmSignerAdapter(SEPOLIA, w3, account)
        batch = [evm_tx(0), evm_tx(1), evm_tx(2)]

        with pytest.raises(UnconfirmedError) as exc_info:
            await signer.sign_and_send(batch)

        error = exc_info.value
        assert error.kind == ErrorKind.UNCONFIRMED
        assert error.index == 1
        assert error.submitted == (expected_hash(account, batch[0]),)
        assert w3.eth.send_raw_transaction.await_count == 2

    @pytest.mark.asyncio
    async def test_reverted_status(self, w3, account):
        w3.eth.wait_for_transaction_receipt = AsyncMock(return_value={"status": 0})
        signer = EvmSignerAdapter(SEPOLIA, w3, account)

        with pytest.raises(TransactionRevertedError) as exc_info:
            await signer.sign_and_send([evm_tx(0)])
        assert exc_info.value.index == 0
        assert exc_info.value.submitted == ()

    @pytest.mark.asyncio
    async def test_estimate_revert(self, w3, account):
        w3.eth.estimate_gas = AsyncMock(side_effect=ContractLogicError("execution reverted"))
        signer = EvmSignerAdapter(SEPOLIA, w3, account)
        tx = evm_tx(0)
        params = dict(tx.transaction)
        del params["gas"]

        with pytest.raises(TransactionRevertedError):
            await signer.sign_and_send([UnsignedTransaction(params)])
        w3.eth.send_raw_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "rejection",
        [SignatureRequestRejected("user closed the popup"), WalletRejection("denied", 4001)],
    )
    async def test_rejection_at_second_transaction(self, w3, account, rejection):
        w3.eth.send_raw_transaction = AsyncMock(side_effect=[None, rejection])
        signer = EvmSignerAdapter(SEPOLIA, w3, account)
        batch = [evm_tx(0), evm_tx(1)]

        with pytest.raises(SignatureRejectedError) as exc_info:
            await signer.sign_and_send(batch)

        assert exc_info.value.kind == ErrorKind.REJECTED
        assert exc_info.value.index == 1
        assert exc_info.value.submitted == (expected_hash(account, batch[0]),)

    @pytest.mark.asyncio
    async def test_network_failure_before_send(self, w3, account):
        w3.eth.send_raw_transaction = AsyncMock(side_effect=ConnectionRefusedError("connection refused"))
        signer = EvmSignerAdapter(SEPOLIA, w3, account)

        with pytest.raises(NetworkFailureError) as exc_info:
            await signer.sign_and_send([evm_tx(0), evm_tx(1)])

        assert exc_info.value.index == 0
        assert exc_info.value.submitted == ()
        w3.eth.wait_for_transaction_receipt.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reset_during_send_is_unconfirmed(self, w3, account):
        """A connection dropped mid-send may still have delivered the transaction."""
        w3.eth.send_raw_transaction = AsyncMock(
            side_effect=ConnectionResetError("Connection reset by peer")
        )
        signer = EvmSignerAdapter(SEPOLIA, w3, account)
        batch = [evm_tx(0), evm_tx(1)]

        with pytest.raises(UnconfirmedError) as exc_info:
            await signer.sign_and_send(batch)

        assert exc_info.value.kind == ErrorKind.UNCONFIRMED
        assert exc_info.value.index == 0
        assert exc_info.value.context["tx_id"] == expected_hash(account, batch[0])
        w3.eth.wait_for_transaction_receipt.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_node_error_during_send_is_unconfirmed(self, w3, account):
        w3.eth.send_raw_transaction = AsyncMock(
            side_effect=[HexBytes(b"\x01" * 32), RuntimeError("502 Bad Gateway")]
        )
        signer = EvmSignerAdapter(SEPOLIA, w3, account)
        batch = [evm_tx(0), evm_tx(1)]

        with pytest.raises(UnconfirmedError) as exc_info:
            await signer.sign_and_send(batch)

        assert exc_info.value.index == 1
        assert exc_info.value.submitted == (expected_hash(account, batch[0]),)
        assert exc_info.value.context["tx_id"] == expected_hash(account, batch[1])

        w3.eth.wait_for_transaction_receipt.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_batch(self, w3, account):
        with pytest.raises(ValueError):
            await EvmSignerAdapter(SEPOLIA, w3, account).sign_and_send([])

    def test_from_key(self, account):
        signer = EvmSignerAdapter.from_key(SEPOLIA, "http://localhost:8545", PRIVATE_KEY)
        assert signer.address() == account.address


def solana_wallet(**overrides):
    wallet = SimpleNamespace(
        public_key="9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin",
        sign_all_transactions=MagicMock(side_effect=lambda txs: [b"signed:" + tx for tx in txs]),
    )
    for name, value in overrides.items():
        setattr(wallet, name, value)
    return wallet


def solana_connection(confirm=None):
    signatures = iter(["sigA", "sigB", "sigC"])
    return SimpleNamespace(
        send_raw_transaction=AsyncMock(side_effect=lambda raw: SimpleNamespace(value=next(signatures))),
        confirm_transaction=confirm or AsyncMock(return_value=SimpleNamespace(value=[{"err": None}])),
    )


class TestSolanaSignerAdapter:

    @pytest.mark.asyncio
    async def test_signs_batch_then_sends_in_order(self):
        wallet = solana_wallet()
        connection = solana_connection()
        signer = SolanaSignerAdapter(SOLANA, wallet, connection)

        ids = await signer.sign_and_send([UnsignedTransaction(b"tx1"), UnsignedTransaction(b"tx2")])

        assert ids == ["sigA", "sigB"]
        wallet.sign_all_transactions.assert_called_once_with([b"tx1", b"tx2"])
        sent = [call.args[0] for call in connection.send_raw_transaction.await_args_list]
        assert sent == [b"signed:tx1", b"signed:tx2"]

    @pytest.mark.asyncio
    async def test_sign_transaction_fallback(self):
        wallet = SimpleNamespace(
            public_key="pk",
            sign_transaction=AsyncMock(side_effect=lambda tx: b"one:" + tx),
        )
        signer = SolanaSignerAdapter(SOLANA, wallet, solana_connection())

        assert await signer.sign_and_send([UnsignedTransaction(b"a")]) == ["sigA"]
        wallet.sign_transaction.assert_awaited_once_with(b"a")

    @pytest.mark.asyncio
    async def test_rejection_before_any_send(self):
        wallet = solana_wallet(sign_all_transactions=MagicMock(side_effect=SignatureRequestRejected("no")))
        connection = solana_connection()
        signer = SolanaSignerAdapter(SOLANA, wallet, connection)

        with pytest.raises(SignatureRejectedError) as exc_info:
            await signer.sign_and_send([UnsignedTransaction(b"tx1")])

        assert exc_info.value.submitted == ()
        connection.send_raw_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_confirmation_is_reverted(self):
        confirm = AsyncMock(side_effect=[
            SimpleNamespace(value=[{"err": None}]),
            SimpleNamespace(value=[{"err": {"InstructionError": [0, "Custom"]}}]),
        ])
        signer = SolanaSignerAdapter(SOLANA, solana_wallet(), solana_connection(confirm))

        with pytest.raises(TransactionRevertedError) as exc_info:
            await signer.sign_and_send([UnsignedTransaction(b"tx1"), UnsignedTransaction(b"tx2")])

        assert exc_info.value.index == 1
        assert exc_info.value.submitted == ("sigA",)

    @pytest.mark.asyncio
    async def test_confirmation_timeout_is_unconfirmed(self):
        async def never_confirms(signature):
            await asyncio.sleep(5)

        connection = solana_connection(confirm=never_confirms)
        signer = SolanaSignerAdapter(SOLANA, solana_wallet(), connection, confirm_timeout=0.01)

        with pytest.raises(UnconfirmedError) as exc_info:
            await signer.sign_and_send([UnsignedTransaction(b"tx1")])
        assert exc_info.value.context["tx_id"] == "sigA"

    @pytest.mark.asyncio
    async def test_send_failure_is_unconfirmed_with_signature(self):
        signature = b"\x07" * 64
        wallet = solana_wallet(
            sign_all_transactions=MagicMock(side_effect=lambda txs: [b"\x01" + signature + tx for tx in txs])
        )
        connection = solana_connection()
        connection.send_raw_transaction = AsyncMock(side_effect=ConnectionResetError("Connection reset by peer"))
        signer = SolanaSignerAdapter(SOLANA, wallet, connection)

        with pytest.raises(UnconfirmedError) as exc_info:
            await signer.sign_and_send([UnsignedTransaction(b"tx1")])

        assert exc_info.value.index == 0
        assert exc_info.value.context["tx_id"] == base58.b58encode(signature).decode()
        connection.confirm_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rpc_error_after_first_send_is_unconfirmed(self):
        connection = solana_connection()
        connection.send_raw_transaction = AsyncMock(
            side_effect=[SimpleNamespace(value="sigA"), RuntimeError("Transaction simulation failed")]
        )
        signer = SolanaSignerAdapter(SOLANA, solana_wallet(), connection)

        with pytest.raises(UnconfirmedError) as exc_info:
            await signer.sign_and_send([UnsignedTransaction(b"tx1"), UnsignedTransaction(b"tx2")])

        assert exc_info.value.index == 1
        assert exc_info.value.submitted == ("sigA",)

    @pytest.mark.asyncio
    async def test_connect_error_is_network_failure(self):
        connection = solana_connection()
        connection.send_raw_transaction = AsyncMock(side_effect=httpx.ConnectError("refused"))
        signer = SolanaSignerAdapter(SOLANA, solana_wallet(), connection)

        with pytest.raises(NetworkFailureError) as exc_info:
            await signer.sign_and_send([UnsignedTransaction(b"tx1"), UnsignedTransaction(b"tx2")])

        assert exc_info.value.index == 0
        assert exc_info.value.submitted == ()

    def test_wallet_without_public_key(self):
        with pytest.raises(WalletAdapterError):
            SolanaSignerAdapter(SOLANA, solana_wallet(public_key=None), solana_connection())

    def test_wallet_without_signing(self):
        wallet = SimpleNamespace(public_key="pk")
        with pytest.raises(WalletAdapterError):
            SolanaSignerAdapter(SOLANA, wallet, solana_connection())

    def test_connection_without_confirm(self):
        connection = SimpleNamespace(send_raw_transaction=AsyncMock())
        with pytest.raises(WalletAdapterError):
            SolanaSignerAdapter(SOLANA, solana_wallet(), connection)


def sui_wallet(execute=None, address="0x" + "ab" * 32):
    return SimpleNamespace(
        account=SimpleNamespace(address=address),
        sign_and_execute_transaction_block=execute or AsyncMock(
            side_effect=[
                {"digest": "D1", "effects": {"status": {"status": "success"}}},
                {"digest": "D2", "effects": {"status": {"status": "success"}}},
            ]
        ),
    )


class TestSuiSignerAdapter:

    @pytest.mark.asyncio
    async def test_executes_in_order(self):
        wallet = sui_wallet()
        signer = SuiSignerAdapter(SUI, wallet)

        ids = await signer.sign_and_send([UnsignedTransaction("block1"), UnsignedTransaction("block2")])

        assert ids == ["D1", "D2"]
        first = wallet.sign_and_execute_transaction_block.await_args_list[0]
        assert first.kwargs["transaction_block"] == "block1"
        assert first.kwargs["options"]["showEvents"] is True

    @pytest.mark.asyncio
    async def test_failure_status_is_reverted(self):
        execute = AsyncMock(return_value={
            "digest": "D1",
            "effects": {"status": {"status": "failure", "error": "MoveAbort"}},
        })
        signer = SuiSignerAdapter(SUI, sui_wallet(execute))

        with pytest.raises(TransactionRevertedError) as exc_info:
            await signer.sign_and_send([UnsignedTransaction("block1")])
        assert "MoveAbort" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_rejection(self):
        signer = SuiSignerAdapter(SUI, sui_wallet(AsyncMock(side_effect=SignatureRequestRejected("no"))))

        with pytest.raises(SignatureRejectedError) as exc_info:
            await signer.sign_and_send([UnsignedTransaction("block1")])
        assert exc_info.value.index == 0

    @pytest.mark.asyncio
    async def test_connect_error_is_network_failure(self):
        signer = SuiSignerAdapter(SUI, sui_wallet(AsyncMock(side_effect=httpx.ConnectError("refused"))))

        with pytest.raises(NetworkFailureError):
            await signer.sign_and_send([UnsignedTransaction("block1")])

    @pytest.mark.asyncio
    async def test_unknown_outcome_is_unconfirmed(self):
        execute = AsyncMock(side_effect=[
            {"digest": "D1", "effects": {"status": {"status": "success"}}},
            RuntimeError("read timed out"),
        ])
        signer = SuiSignerAdapter(SUI, sui_wallet(execute))

        with pytest.raises(UnconfirmedError) as exc_info:
            await signer.sign_and_send([UnsignedTransaction("block1"), UnsignedTransaction("block2")])

        assert exc_info.value.index == 1
        assert exc_info.value.submitted == ("D1",)

    @pytest.mark.asyncio
    async def test_missing_digest(self):
        signer = SuiSignerAdapter(SUI, sui_wallet(AsyncMock(return_value={"effects": {}})))

        with pytest.raises(UnconfirmedError):
            await signer.sign_and_send([UnsignedTransaction("block1")])

    def test_wallet_without_account(self):
        with pytest.raises(WalletAdapterError):
            SuiSignerAdapter(SUI, sui_wallet(address=None))

    def test_wallet_without_execute(self):
        wallet = SimpleNamespace(account=SimpleNamespace(address="0x1"))
        with pytest.raises(WalletAdapterError):
            SuiSignerAdapter(SUI, wallet)
