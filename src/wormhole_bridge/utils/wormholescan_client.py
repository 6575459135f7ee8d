"""
Wormholescan helpers.

Wormholescan indexes guardian-signed messages by source transaction. It is
used here as an alternative source of message coordinates (explorer links,
transaction lookups); VAA content always comes from the guardian hosts.
"""

import logging
import re
from typing import Any, Mapping

import httpx

from ..chains import is_registered, to_chain_id
from ..errors import MalformedError
from ..models import MessageCoordinates, UniversalAddress

logger = logging.getLogger(__name__)

# .../#/vaa/<chain>/<emitter>/<sequence> or .../vaa/<chain>/<emitter>/<sequence>
_VAA_LINK_PATTERN = re.compile(r"(?:#/|/)vaa/([^/]+)/([^/]+)/([^/?#]+)")


def parse_wormholescan_link(url: str) -> MessageCoordinates:
    """
    Parse message coordinates out of a Wormholescan VAA link.

    The chain segment may be a chain name ("sui") or a numeric id ("21").

    Raises:
        ValueError: If the link does not follow the VAA link format
    """
    match = _VAA_LINK_PATTERN.search(url)
    if not match:
        raise ValueError(
            f"Invalid Wormholescan URL format: {url}. Expected: .../vaa/<chain>/<emitter>/<sequence>"
        )

    chain, emitter, sequence = match.groups()
    if not sequence.isdigit():
        raise ValueError(f"Invalid sequence in Wormholescan URL: {sequence}")

    return MessageCoordinates(
        emitter_chain=to_chain_id(chain),
        emitter_address=UniversalAddress.from_hex(emitter),
        sequence=int(sequence),
    )


def _coordinates_from_entry(entry: Mapping[str, Any]) -> MessageCoordinates | None:
    chain_id = entry.get("emitterChain")
    if not isinstance(chain_id, int) or not is_registered(chain_id):
        logger.warning(f"Unknown emitter chain id from Wormholescan: {chain_id}")
        return None

    emitter = entry.get("emitterAddr") or entry.get("emitterAddress")
    sequence = entry.get("sequence")
    try:
        return MessageCoordinates(
            emitter_chain=chain_id,
            emitter_address=UniversalAddress.from_hex(str(emitter)),
            sequence=int(str(sequence)),
        )
    except ValueError as e:
        raise MalformedError(f"Invalid Wormholescan message entry {dict(entry)}: {e}") from None


class WormholescanClient:
    """Minimal async client for the Wormholescan API."""

    def __init__(
        self,
        api_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def find_messages(self, tx_id: str) -> list[MessageCoordinates]:
        """
        Look up the bridge messages emitted by a source transaction.

        Args:
            tx_id: Source transaction hash, signature or digest

        Returns:
            Coordinates of every indexed message; empty if the transaction
            is not indexed yet

        Raises:
            httpx.HTTPError: On transport errors or unexpected status codes
            MalformedError: If an indexed message cannot be decoded
        """
        url = f"{self.api_url}/api/v1/transactions/{tx_id}"
        logger.debug(f"Fetching messages from Wormholescan: {url}")

        async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
            response = await client.get(url)

        if response.status_code == 404:
            logger.info(f"Transaction {tx_id} not indexed by Wormholescan yet")
            return []
        response.raise_for_status()

        try:
            data = response.json()
        except ValueError:
            raise MalformedError(f"Wormholescan returned non-JSON body for {tx_id}") from None
        if not isinstance(data, dict):
            raise MalformedError(f"Unexpected Wormholescan response for {tx_id}")

        vaa_info = data.get("vaa") or (data.get("data") or {}).get("vaa")
        if isinstance(vaa_info, dict) and vaa_info.get("sequence") is not None:
            entries = [vaa_info]
        elif isinstance(data.get("messages"), list):
            entries = data["messages"]
        else:
            logger.warning(f"No VAA or messages found in Wormholescan response for tx {tx_id}")
            return []

        return [coords for entry in entries if (coords := _coordinates_from_entry(entry))]
