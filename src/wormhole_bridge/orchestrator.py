#!/usr/bin/env python3
"""
Cross-chain transfer orchestration.

This module drives one TransferIntent through the bridge pipeline:

    Created --submit--> SourceSubmitted --extract--> CoordinatesResolved
    --poll--> AttestationResolved [--redeem--> TargetSubmitted --confirm-->]
    Completed

Any unrecoverable error moves the intent to Failed. Every step records its
result in the BridgeReceipt before the state advances, and ``run`` resumes
at the first unresolved field, so completed side-effecting steps are never
executed twice.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Mapping, Sequence

from .adapters.base import ChainAdapter, SignerAdapter, maybe_await
from .attestation_fetcher import AttestationFetcher
from .chains import chain_name
from .config import RetryPolicy, backoff_delay
from .coordinate_extractor import MessageCoordinateExtractor
from .errors import (
    BridgeError,
    DecodeError,
    ErrorKind,
    FetchError,
    InvalidTransitionError,
    MalformedError,
    MalformedEventError,
    NotYetAvailableError,
    ReceiptTimeoutError,
    SignError,
    TransactionRevertedError,
)
from .models import (
    BridgeReceipt,
    MessageCoordinates,
    SignedAttestation,
    TransferIntent,
    TransferState,
    UnsignedTransaction,
)
from .utils.token_bridge import decode_token_transfer

logger = logging.getLogger(__name__)

RedeemBuilder = Callable[
    [SignedAttestation, TransferIntent],
    Sequence[UnsignedTransaction] | Awaitable[Sequence[UnsignedTransaction]],
]

_TRANSITIONS: dict[TransferState, set[TransferState]] = {
    TransferState.CREATED: {TransferState.SOURCE_SUBMITTED},
    TransferState.SOURCE_SUBMITTED: {TransferState.COORDINATES_RESOLVED},
    TransferState.COORDINATES_RESOLVED: {TransferState.ATTESTATION_RESOLVED},
    TransferState.ATTESTATION_RESOLVED: {TransferState.TARGET_SUBMITTED, TransferState.COMPLETED},
    TransferState.TARGET_SUBMITTED: {TransferState.COMPLETED},
    TransferState.COMPLETED: set(),
    TransferState.FAILED: set(),
}


class CrossChainTransferOrchestrator:
    """
    State machine driving one intent from source submission to redeem.

    The orchestrator only depends on the SignerAdapter and ChainAdapter
    interfaces; chain specifics live entirely in the adapters. It keeps no
    per-intent state of its own, so one instance can drive many intents
    concurrently.
    """

    def __init__(
        self,
        signers: Mapping[int, SignerAdapter],
        chain_adapters: Mapping[int, ChainAdapter],
        extractor: MessageCoordinateExtractor,
        fetcher: AttestationFetcher,
        receipt_policy: RetryPolicy | None = None,
        redeem_builder: RedeemBuilder | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            signers: SignerAdapter per protocol chain id
            chain_adapters: ChainAdapter per protocol chain id
            extractor: Coordinate extractor for source receipts
            fetcher: Guardian attestation fetcher
            receipt_policy: Retry policy while waiting for source receipts
            redeem_builder: Builds target-chain transactions from an attestation
            sleep: Wait used between receipt polls
        """
        self.signers = dict(signers)
        self.chain_adapters = dict(chain_adapters)
        self.extractor = extractor
        self.fetcher = fetcher
        self.receipt_policy = receipt_policy or RetryPolicy(
            max_attempts=10, initial_delay=3.0, backoff_multiplier=1.0
        )
        self.redeem_builder = redeem_builder
        self.sleep = sleep

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, intent: TransferIntent) -> BridgeReceipt:
        """Create the receipt that tracks ``intent`` for its whole lifetime."""
        logger.info(f"Starting {intent}")
        return BridgeReceipt(intent_id=intent.intent_id)

    async def run(
        self,
        intent: TransferIntent,
        receipt: BridgeReceipt | None = None,
        cancel_event: asyncio.Event | None = None,
        deadline: float | None = None,
    ) -> BridgeReceipt:
        """
        Drive an intent as far as it can go.

        Resumes at the first unresolved receipt field. Errors propagate after
        being recorded on the receipt; depending on their kind the receipt
        is left resumable or moved to Failed.

        Args:
            intent: The transfer to execute
            receipt: Receipt from a previous run (a new one is started if None)
            cancel_event: Cancels attestation polling when set
            deadline: Absolute deadline for attestation polling

        Returns:
            The receipt in a terminal state
        """
        receipt = receipt or self.start(intent)
        if receipt.intent_id != intent.intent_id:
            raise ValueError(f"Receipt {receipt.intent_id} does not belong to intent {intent.intent_id}")

        if receipt.state.is_terminal:
            logger.info(f"Intent {intent.intent_id[:8]} already {receipt.state.value}")
            return receipt

        if receipt.source_tx_ids is None:
            await self.submit(intent, receipt)
        if receipt.coordinates is None:
            await self.extract(intent, receipt)
        if receipt.attestation is None:
            await self.poll(intent, receipt, cancel_event=cancel_event, deadline=deadline)

        if not intent.requires_redeem:
            self._transition(receipt, TransferState.COMPLETED)
            return receipt

        if receipt.target_tx_ids is None:
            await self.redeem(intent, receipt)
        await self.confirm(intent, receipt)
        return receipt

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def submit(self, intent: TransferIntent, receipt: BridgeReceipt) -> list[str]:
        """
        Sign and send the intent's source transactions.

        Never retried here: a NetworkFailure with nothing sent leaves the
        intent in Created, every other SignError moves it to Failed.
        """
        self._require_state(receipt, TransferState.CREATED, "submit")
        signer = self._signer(intent.source_chain)

        try:
            tx_ids = await signer.sign_and_send(intent.source_transactions)
        except SignError as e:
            self._handle_sign_error(receipt, e, "submit")
            raise

        receipt.record("source_tx_ids", tuple(tx_ids))
        self._transition(receipt, TransferState.SOURCE_SUBMITTED)
        return tx_ids

    async def extract(self, intent: TransferIntent, receipt: BridgeReceipt) -> MessageCoordinates:
        """
        Wait for the source receipt and extract the message coordinates.

        Raises:
            ReceiptTimeoutError: If no publish event appeared within the
                receipt policy (intent stays in SourceSubmitted)
            MalformedEventError: If the publish event cannot be decoded (Failed)
            TransactionRevertedError: If the source transaction failed (Failed)
        """
        self._require_state(receipt, TransferState.SOURCE_SUBMITTED, "extract")
        adapter = self._chain_adapter(intent.source_chain)
        tx_id = receipt.source_tx_id
        policy = self.receipt_policy

        for attempt in range(1, policy.max_attempts + 1):
            try:
                chain_receipt = await adapter.get_receipt(tx_id)
            except NotYetAvailableError as e:
                logger.warning(f"Receipt for {tx_id} unavailable (attempt {attempt}): {e}")
                chain_receipt = None
            except MalformedError as e:
                logger.warning(f"Malformed receipt response for {tx_id} (attempt {attempt}): {e}")
                chain_receipt = None

            if chain_receipt is not None:
                if not chain_receipt.success:
                    error = TransactionRevertedError(
                        f"Source transaction {tx_id} failed on {chain_name(intent.source_chain)}",
                        tx_id=tx_id,
                    )
                    self._fail(receipt, error)
                    raise error

                try:
                    coords = self.extractor.extract(chain_receipt)
                except MalformedEventError as e:
                    self._fail(receipt, e)
                    raise

                if coords is not None:
                    receipt.record("coordinates", coords)
                    self._transition(receipt, TransferState.COORDINATES_RESOLVED)
                    return coords

            if attempt < policy.max_attempts:
                delay = backoff_delay(attempt, policy)
                logger.info(f"No bridge message in {tx_id} yet, retrying in {delay:.1f} seconds...")
                await self.sleep(delay)

        error = ReceiptTimeoutError(
            f"No bridge message found in {tx_id} after {policy.max_attempts} attempts",
            tx_id=tx_id,
            attempts=policy.max_attempts,
        )
        receipt.last_error = error.to_dict()
        raise error

    async def poll(
        self,
        intent: TransferIntent,
        receipt: BridgeReceipt,
        cancel_event: asyncio.Event | None = None,
        deadline: float | None = None,
    ) -> SignedAttestation:
        """
        Fetch the guardian attestation for the resolved coordinates.

        Timeout and cancellation leave the intent in CoordinatesResolved so
        it can be resumed without touching the source chain again.
        """
        self._require_state(receipt, TransferState.COORDINATES_RESOLVED, "poll")

        try:
            attestation = await self.fetcher.fetch(
                receipt.coordinates, cancel_event=cancel_event, deadline=deadline
            )
        except FetchError as e:
            receipt.last_error = {**e.to_dict(), "last_errors": e.last_errors}
            logger.warning(f"Attestation for intent {intent.intent_id[:8]} not resolved: {e}")
            raise

        receipt.record("attestation", attestation)
        self._transition(receipt, TransferState.ATTESTATION_RESOLVED)
        return attestation

    async def redeem(self, intent: TransferIntent, receipt: BridgeReceipt) -> list[str]:
        """
        Submit the target-chain transactions built from the attestation.

        Follows the same error handling as ``submit``.
        """
        self._require_state(receipt, TransferState.ATTESTATION_RESOLVED, "redeem")
        if not intent.requires_redeem:
            raise InvalidTransitionError(f"Intent {intent.intent_id[:8]} has no redeem step")
        if self.redeem_builder is None:
            raise ValueError("No redeem builder configured")

        attestation = receipt.attestation
        self._check_destination(intent, receipt, attestation)

        transactions = list(await maybe_await(self.redeem_builder(attestation, intent)))
        signer = self._signer(intent.target_chain)
        try:
            tx_ids = await signer.sign_and_send(transactions)
        except SignError as e:
            self._handle_sign_error(receipt, e, "redeem")
            raise

        receipt.record("target_tx_ids", tuple(tx_ids))
        self._transition(receipt, TransferState.TARGET_SUBMITTED)
        return tx_ids

    async def confirm(self, intent: TransferIntent, receipt: BridgeReceipt) -> None:
        """
        Confirm the redeem transaction and complete the intent.

        Without a target ChainAdapter, the signer's finality wait counts as
        confirmation.

        Raises:
            NotYetAvailableError: If the target receipt is not final yet
            MalformedError: If the target node returned an unreadable receipt
            TransactionRevertedError: If the target transaction failed (Failed)
        """
        self._require_state(receipt, TransferState.TARGET_SUBMITTED, "confirm")

        if adapter := self.chain_adapters.get(intent.target_chain):
            tx_id = receipt.target_tx_id
            try:
                chain_receipt = await adapter.get_receipt(tx_id)
            except (NotYetAvailableError, MalformedError) as e:
                receipt.last_error = e.to_dict()
                logger.warning(f"Could not read target receipt {tx_id}: {e}")
                raise
            if chain_receipt is None:
                error = NotYetAvailableError(f"Target receipt for {tx_id} not final yet", tx_id=tx_id)
                receipt.last_error = error.to_dict()
                raise error
            if not chain_receipt.success:
                error = TransactionRevertedError(
                    f"Target transaction {tx_id} failed on {chain_name(intent.target_chain)}",
                    tx_id=tx_id,
                )
                self._fail(receipt, error)
                raise error

        self._transition(receipt, TransferState.COMPLETED)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_destination(
        self, intent: TransferIntent, receipt: BridgeReceipt, attestation: SignedAttestation
    ) -> None:
        """Refuse to redeem a token transfer attested for another chain."""
        try:
            transfer = decode_token_transfer(attestation.payload)
        except DecodeError:
            logger.debug("Attestation payload is not a token transfer")
            return

        if transfer is not None and transfer.to_chain != intent.target_chain:
            error = MalformedError(
                f"Attested transfer targets chain {transfer.to_chain}, "
                f"intent targets {intent.target_chain}",
                coordinates=receipt.coordinates,
            )
            self._fail(receipt, error)
            raise error

    def _handle_sign_error(self, receipt: BridgeReceipt, error: SignError, step: str) -> None:
        if error.kind == ErrorKind.NETWORK_FAILURE and not error.submitted:
            receipt.last_error = {**error.to_dict(), "submitted": []}
            logger.warning(f"{step} did not reach the network, intent stays {receipt.state.value}: {error}")
            return
        self._fail(receipt, error)

    def _fail(self, receipt: BridgeReceipt, error: BridgeError) -> None:
        last_error = error.to_dict()
        if isinstance(error, SignError):
            last_error["submitted"] = list(error.submitted)
        receipt.last_error = last_error
        logger.error(
            f"Intent {receipt.intent_id[:8]} failed in {receipt.state.value} "
            f"({error.kind.value}): {error}"
        )
        receipt.state = TransferState.FAILED

    def _transition(self, receipt: BridgeReceipt, new_state: TransferState) -> None:
        if new_state not in _TRANSITIONS[receipt.state]:
            raise InvalidTransitionError(
                f"Cannot move intent {receipt.intent_id[:8]} from {receipt.state.value} to {new_state.value}"
            )
        logger.info(f"Intent {receipt.intent_id[:8]}: {receipt.state.value} -> {new_state.value}")
        receipt.state = new_state
        receipt.last_error = None

    def _require_state(self, receipt: BridgeReceipt, expected: TransferState, step: str) -> None:
        if receipt.state != expected:
            raise InvalidTransitionError(
                f"Cannot {step} intent {receipt.intent_id[:8]} in state {receipt.state.value}"
            )

    def _signer(self, chain_id: int) -> SignerAdapter:
        try:
            return self.signers[chain_id]
        except KeyError:
            raise ValueError(f"No signer configured for {chain_name(chain_id)}") from None

    def _chain_adapter(self, chain_id: int) -> ChainAdapter:
        try:
            return self.chain_adapters[chain_id]
        except KeyError:
            raise ValueError(f"No chain adapter configured for {chain_name(chain_id)}") from None
