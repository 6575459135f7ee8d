#!/usr/bin/env python3
"""Guardian attestation polling.

This module polls guardian RPC hosts for the signed VAA that matches a set
of message coordinates, with bounded retry and cancellable backoff. A fetch
holds no state beyond its own call, so concurrent fetches for the same
coordinates only cost redundant requests.
"""

import asyncio
import base64
import binascii
import logging
import time
from typing import TYPE_CHECKING, Awaitable, Callable, Sequence

import httpx

from .config import RetryPolicy, backoff_delay
from .errors import (
    AttestationTimeoutError,
    DecodeError,
    DecodeFailure,
    FetchCancelledError,
    MalformedError,
    NotYetAvailableError,
)
from .models import MessageCoordinates, SignedAttestation
from .utils.vaa_codec import VaaCodec

if TYPE_CHECKING:
    from .config import BridgeConfig

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

# gRPC NOT_FOUND, returned in the JSON body by the guardian REST gateway
GRPC_NOT_FOUND = 5


def signed_vaa_url(host: str, coords: MessageCoordinates) -> str:
    """Guardian REST path for a VAA: /v1/signed_vaa/{chain}/{emitter}/{sequence}."""
    return (
        f"{host.rstrip('/')}/v1/signed_vaa/"
        f"{coords.emitter_chain}/{coords.emitter_address.hex()}/{coords.sequence}"
    )


def _b64decode(value: str, field: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise DecodeError(DecodeFailure.INVALID_ENCODING, f"{field} is not valid base64") from None


def extract_vaa_bytes(response: httpx.Response) -> bytes:
    """
    Pull the raw VAA out of a guardian or Wormholescan response body.

    Accepts ``{"vaaBytes": <base64>}``, ``{"data": {"vaa": <base64>}}`` or a
    bare hex string.

    Raises:
        NotYetAvailableError: If the body carries the not-found code
        MalformedError: If no VAA can be found or decoded
    """
    try:
        body = response.json()
    except ValueError:
        body = response.text.strip()

    match body:
        case {"code": code} if code == GRPC_NOT_FOUND:
            raise NotYetAvailableError(str(body.get("message", "requested VAA not found")))
        case {"vaaBytes": str(encoded)}:
            return _b64decode(encoded, "vaaBytes")
        case {"data": {"vaa": str(encoded)}}:
            return _b64decode(encoded, "data.vaa")
        case str(text) if text:
            return VaaCodec.to_bytes_safe(text)
        case _:
            raise MalformedError(f"Response carries no VAA: {str(body)[:120]}")


class AttestationFetcher:
    """Fetches signed VAAs from an ordered list of guardian RPC hosts."""

    def __init__(
        self,
        hosts: Sequence[str],
        policy: RetryPolicy | None = None,
        sleep: Sleep | None = None,
        clock: Callable[[], float] = time.monotonic,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the fetcher.

        Args:
            hosts: Guardian RPC hosts, tried in order on every attempt
            policy: Retry policy (defaults to RetryPolicy())
            sleep: Replacement for the backoff wait, used by tests
            clock: Monotonic clock used for deadlines
            transport: httpx transport override
        """
        if not hosts:
            raise ValueError("At least one guardian RPC host is required")
        self.hosts: tuple[str, ...] = tuple(host.rstrip("/") for host in hosts)
        self.policy = policy or RetryPolicy()
        self.sleep = sleep
        self.clock = clock
        self.transport = transport

    @classmethod
    def from_config(cls, config: "BridgeConfig", **kwargs) -> "AttestationFetcher":
        return cls(config.guardians.rpc_hosts, config.fetch_policy, **kwargs)

    async def fetch(
        self,
        coords: MessageCoordinates,
        cancel_event: asyncio.Event | None = None,
        deadline: float | None = None,
    ) -> SignedAttestation:
        """
        Poll the hosts until one returns the VAA for ``coords``.

        Args:
            coords: Message coordinates to look up
            cancel_event: Set by the caller to abandon the fetch
            deadline: Absolute time on ``clock`` after which the fetch is abandoned

        Returns:
            The decoded attestation, whose coordinates equal ``coords``

        Raises:
            AttestationTimeoutError: If max_attempts passed without a match
            FetchCancelledError: If cancelled or the deadline passed first
        """
        last_errors: dict[str, str] = {}
        policy = self.policy
        logger.info(f"Fetching VAA {coords} from {len(self.hosts)} guardian host(s)")

        async with httpx.AsyncClient(
            transport=self.transport, timeout=policy.per_request_timeout
        ) as client:
            for attempt in range(1, policy.max_attempts + 1):
                self._check_cancelled(coords, attempt - 1, last_errors, cancel_event, deadline)

                logger.debug(f"Attempt {attempt}/{policy.max_attempts} for {coords}")
                sweep = self._attempt(client, coords, last_errors)
                if vaa := await self._race(sweep, coords, attempt, last_errors, cancel_event, deadline):
                    logger.info(f"✓ VAA {coords} found on attempt {attempt}: hash=0x{vaa.hash.hex()}")
                    return vaa

                if attempt == policy.max_attempts:
                    break

                delay = backoff_delay(attempt, policy)
                if deadline is not None:
                    delay = max(0.0, min(delay, deadline - self.clock()))
                logger.info(f"VAA {coords} not available yet, retrying in {delay:.1f} seconds...")
                await self._wait(delay, cancel_event)

        self._check_cancelled(coords, policy.max_attempts, last_errors, cancel_event, deadline)
        logger.warning(f"Gave up on VAA {coords} after {policy.max_attempts} attempts")
        raise AttestationTimeoutError(
            f"No matching VAA for {coords} after {policy.max_attempts} attempts",
            attempts=policy.max_attempts,
            last_errors=last_errors,
            coordinates=coords,
        )

    async def _attempt(
        self,
        client: httpx.AsyncClient,
        coords: MessageCoordinates,
        last_errors: dict[str, str],
    ) -> SignedAttestation | None:
        """Ask each host once; return the first matching VAA."""
        for host in self.hosts:
            try:
                vaa = await self._query(client, host, coords)
            except NotYetAvailableError as e:
                last_errors[host] = f"NotYetAvailable: {e}"
                logger.debug(f"{host}: VAA {coords} not yet signed")
                continue
            except MalformedError as e:
                last_errors[host] = f"Malformed: {e}"
                logger.warning(f"{host}: malformed VAA response for {coords}: {e}")
                continue
            except httpx.HTTPError as e:
                last_errors[host] = f"NetworkFailure: {e}"
                logger.warning(f"{host}: request failed for {coords}: {e}")
                continue

            if not vaa.matches(coords):
                returned = f"{vaa.emitter_chain}/{vaa.emitter_address.hex()}/{vaa.sequence}"
                last_errors[host] = f"Mismatch: returned {returned}"
                logger.warning(f"{host}: returned VAA {returned} for request {coords}, skipping host")
                continue
            return vaa
        return None

    async def _race(
        self,
        sweep: Awaitable[SignedAttestation | None],
        coords: MessageCoordinates,
        attempt: int,
        last_errors: dict[str, str],
        cancel_event: asyncio.Event | None,
        deadline: float | None,
    ) -> SignedAttestation | None:
        """Run one host sweep, abandoning it if cancelled or past the deadline."""
        if cancel_event is None and deadline is None:
            return await sweep

        sweep_task = asyncio.ensure_future(sweep)
        tasks = {sweep_task}
        if cancel_event is not None:
            tasks.add(asyncio.ensure_future(cancel_event.wait()))
        timeout = None if deadline is None else max(0.0, deadline - self.clock())
        try:
            done, _ = await asyncio.wait(tasks, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        if sweep_task in done:
            return sweep_task.result()
        if cancel_event is not None and cancel_event.is_set():
            raise self._cancelled(coords, attempt, last_errors, "cancelled by caller")
        raise self._cancelled(coords, attempt, last_errors, "deadline passed")

    async def _query(
        self, client: httpx.AsyncClient, host: str, coords: MessageCoordinates
    ) -> SignedAttestation:
        response = await client.get(signed_vaa_url(host, coords))
        if response.status_code == 404:
            raise NotYetAvailableError("requested VAA not found", host=host)
        response.raise_for_status()
        return VaaCodec.decode(extract_vaa_bytes(response))

    def _check_cancelled(
        self,
        coords: MessageCoordinates,
        attempts: int,
        last_errors: dict[str, str],
        cancel_event: asyncio.Event | None,
        deadline: float | None,
    ) -> None:
        if cancel_event is not None and cancel_event.is_set():
            reason = "cancelled by caller"
        elif deadline is not None and self.clock() >= deadline:
            reason = "deadline passed"
        else:
            return
        raise self._cancelled(coords, attempts, last_errors, reason)

    def _cancelled(
        self,
        coords: MessageCoordinates,
        attempts: int,
        last_errors: dict[str, str],
        reason: str,
    ) -> FetchCancelledError:
        logger.info(f"Fetch of VAA {coords} {reason} after {attempts} attempt(s)")
        return FetchCancelledError(
            f"Fetch of {coords} {reason}",
            attempts=attempts,
            last_errors=last_errors,
            coordinates=coords,
        )

    async def _wait(self, delay: float, cancel_event: asyncio.Event | None) -> None:
        """Sleep for ``delay`` seconds, returning early if the fetch is cancelled."""
        if self.sleep is not None:
            await self.sleep(delay)
        elif cancel_event is None:
            await asyncio.sleep(delay)
        else:
            try:
                await asyncio.wait_for(cancel_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
