#!/usr/bin/env python3
"""Command line entry point for the Wormhole bridge relayer.

Commands:
    fetch  Fetch a signed VAA by coordinates or Wormholescan link
    track  Follow a source transaction to its signed VAA(s)
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
import time


# Configure logging before any other imports create loggers
def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


# Get logger for this module
logger = logging.getLogger(__name__)

from wormhole_bridge.adapters import create_chain_adapter
from wormhole_bridge.attestation_fetcher import AttestationFetcher
from wormhole_bridge.chains import chain_name, to_chain_id
from wormhole_bridge.config import BridgeConfig
from wormhole_bridge.coordinate_extractor import MessageCoordinateExtractor
from wormhole_bridge.errors import BridgeError, DecodeError
from wormhole_bridge.models import MessageCoordinates, SignedAttestation, UniversalAddress
from wormhole_bridge.utils.token_bridge import decode_token_transfer
from wormhole_bridge.utils.wormholescan_client import WormholescanClient, parse_wormholescan_link


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Wormhole bridge relayer - track messages and fetch guardian-signed VAAs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  WORMHOLE_NETWORK         - Mainnet, Testnet or Devnet (default: Testnet)
  GUARDIAN_RPC_HOSTS       - Comma-separated guardian hosts (default: built-in list)
  FETCH_MAX_ATTEMPTS       - Attestation polling attempts (default: 5)
  FETCH_INITIAL_DELAY      - First backoff delay in seconds (default: 2.0)
  FETCH_BACKOFF_MULTIPLIER - Backoff growth per attempt (default: 1.5)
  FETCH_REQUEST_TIMEOUT    - Per-request timeout in seconds (default: 10.0)
  BRIDGE_CHAINS            - Chains with a configured node (e.g. sepolia,solana,sui)
  <CHAIN>_RPC_URL          - Node RPC endpoint for each listed chain
  <CHAIN>_NETWORK          - Network of each listed chain (mainnet, testnet, devnet, localnet)
  <CHAIN>_EMITTER_ADDRESS  - Emitter used to attribute Solana program logs
  LOG_LEVEL                - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Give up attestation polling after this many seconds"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch = subparsers.add_parser("fetch", help="Fetch a signed VAA")
    fetch.add_argument("--link", help="Wormholescan VAA link (.../vaa/<chain>/<emitter>/<sequence>)")
    fetch.add_argument("--chain", help="Emitter chain name or id")
    fetch.add_argument("--emitter", help="Emitter address (hex or chain-native)")
    fetch.add_argument("--sequence", type=int, help="Message sequence")

    track = subparsers.add_parser("track", help="Follow a source transaction to its VAA(s)")
    track.add_argument("--chain", required=True, help="Source chain name or id")
    track.add_argument("--tx", required=True, help="Source transaction hash, signature or digest")

    return parser


def coordinates_from_args(args: argparse.Namespace) -> MessageCoordinates:
    """Resolve fetch coordinates from either --link or --chain/--emitter/--sequence."""
    if args.link:
        return parse_wormholescan_link(args.link)
    if not (args.chain and args.emitter and args.sequence is not None):
        raise ValueError("fetch needs --link or all of --chain, --emitter and --sequence")
    chain_id = to_chain_id(args.chain)
    return MessageCoordinates(
        emitter_chain=chain_id,
        emitter_address=UniversalAddress.from_native(args.emitter, chain_id),
        sequence=args.sequence,
    )


def print_attestation(vaa: SignedAttestation) -> None:
    print(f"VAA hash:           0x{vaa.hash.hex()}")
    print(f"Emitter chain:      {chain_name(vaa.emitter_chain)} ({vaa.emitter_chain})")
    print(f"Emitter address:    {vaa.emitter_address}")
    print(f"Sequence:           {vaa.sequence}")
    print(f"Guardian set:       {vaa.guardian_set_index}")
    print(f"Signatures:         {len(vaa.signatures)}")
    print(f"Timestamp:          {vaa.timestamp}")
    print(f"Consistency level:  {vaa.consistency_level}")
    print(f"Payload:            0x{vaa.payload.hex()}")
    try:
        transfer = decode_token_transfer(vaa.payload)
    except DecodeError:
        transfer = None
    if transfer:
        print(f"Token transfer:     {transfer.amount} of {transfer.token_address} "
              f"(chain {transfer.token_chain}) to {transfer.to} on chain {transfer.to_chain}")


async def find_coordinates(config: BridgeConfig, chain_id: int, tx_id: str) -> list[MessageCoordinates]:
    """Read coordinates from the chain when configured, otherwise ask Wormholescan."""
    if chain_id in config.chains:
        adapter = create_chain_adapter(config.chains[chain_id], config.fetch_policy.per_request_timeout)
        receipt = await adapter.get_receipt(tx_id)
        if receipt is None:
            logger.warning(f"Transaction {tx_id} not found or not final on {chain_name(chain_id)}")
            return []
        return MessageCoordinateExtractor.from_config(config).extract_all(receipt)

    logger.info(f"{chain_name(chain_id)} not configured, looking {tx_id} up on Wormholescan")
    client = WormholescanClient(config.guardians.wormholescan_url)
    return await client.find_messages(tx_id)


async def main() -> None:
    """Main entry point for the bridge relayer CLI.

    Raises:
        SystemExit: On configuration or bridge errors
    """
    args: argparse.Namespace = build_parser().parse_args()
    setup_logging(args.log_level)

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown_event.set)

    try:
        config = BridgeConfig.from_env()
        config.log_config()
        fetcher = AttestationFetcher.from_config(config)
        deadline = time.monotonic() + args.timeout if args.timeout else None

        match args.command:
            case "fetch":
                coords = coordinates_from_args(args)
                print_attestation(await fetcher.fetch(coords, cancel_event=shutdown_event, deadline=deadline))
            case "track":
                messages = await find_coordinates(config, to_chain_id(args.chain), args.tx)
                if not messages:
                    logger.error(f"No bridge message found for {args.tx}")
                    sys.exit(1)
                for coords in messages:
                    logger.info(f"Found message {coords}")
                    print_attestation(await fetcher.fetch(coords, cancel_event=shutdown_event, deadline=deadline))

    except BridgeError as e:
        logger.error(f"{e.kind.value}: {e}")
        for host, error in getattr(e, "last_errors", {}).items():
            logger.error(f"  {host}: {error}")
        sys.exit(1)

    except ValueError as e:
        logger.error(f"Configuration Error: {e}")
        sys.exit(1)

    except Exception as e:
        logger.error(f"Fatal Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    # Run the main async function
    asyncio.run(main())
