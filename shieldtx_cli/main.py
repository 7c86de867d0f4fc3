"""
Command line entry point running the transfer pipeline once.

Every option falls back to its environment variable, so the tool can be
driven entirely from the environment.
"""
import argparse
import logging
import os
import sys
from typing import List, Optional

from shieldtx_sdk import __version__
from shieldtx_sdk.config import TransferConfig
from shieldtx_sdk.exceptions import (
    ConfigError, TransportError, InsufficientBalanceError, KeyResolutionError,
    BuildError, RejectedByChainError, SyncIncompleteError, ShieldTxError
)
from shieldtx_sdk.pipeline import TransferPipeline, PipelineReport
from shieldtx_sdk.session import SessionBootstrapper
from shieldtx_sdk.transport import LocalLedger
from shieldtx_sdk.wallet.crypto import derive_address, load_secret_key, public_key_hex

logger = logging.getLogger("shieldtx_cli")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="shieldtx",
        description="Reveal, transfer, shield, sync and unshield in one run"
    )
    parser.add_argument("--rpc", help="Chain node RPC URL (env: RPC)")
    parser.add_argument("--source-private-key", help="Hex Ed25519 secret key of the source (env: SOURCE_PRIVATE_KEY)")
    parser.add_argument("--target", dest="target_address", help="Transparent target address (env: TARGET_ADDRESS)")
    parser.add_argument("--amount", type=int, help="Amount in the token's smallest unit (env: AMOUNT)")
    parser.add_argument("--chain-id", help="Chain identifier (env: CHAIN_ID)")
    parser.add_argument("--spending-key", help="Hex shielded spending key (env: SPENDING_KEY)")
    parser.add_argument(
        "--expiration",
        dest="expiration_timestamp_utc",
        type=int,
        help="Expiration as a UTC unix timestamp (env: EXPIRATION_TIMESTAMP_UTC)"
    )
    parser.add_argument("--memo", help="Memo attached to the transfers (env: MEMO)")
    parser.add_argument("--base-dir", help="Directory for wallet and shielded state (env: BASE_DIR)")
    parser.add_argument("--gas-limit", type=int, help="Gas limit per transaction (env: SHIELDTX_GAS_LIMIT)")
    parser.add_argument(
        "--local",
        action="store_true",
        help="Run against an in-process ledger instead of a node"
    )
    parser.add_argument(
        "--local-funds",
        type=int,
        help="Native token balance of the source on the in-process ledger (default: 10x amount)"
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("SHIELDTX_LOG", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
        help="Log level (env: SHIELDTX_LOG, default: INFO)"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> TransferConfig:
    return TransferConfig.from_env(
        rpc="local" if args.local else args.rpc,
        source_private_key=args.source_private_key,
        target_address=args.target_address,
        amount=args.amount,
        chain_id=args.chain_id,
        spending_key=args.spending_key,
        expiration_timestamp_utc=args.expiration_timestamp_utc,
        memo=args.memo,
        base_dir=args.base_dir,
        gas_limit=args.gas_limit,
    )


def local_ledger(config: TransferConfig, funds: Optional[int] = None) -> LocalLedger:
    """In-process ledger on the configured chain with the source funded."""
    ledger = LocalLedger(chain_id=config.chain_id)
    ledger.initialize("local")
    source = derive_address(public_key_hex(load_secret_key(config.source_private_key)))
    ledger.credit(source, ledger.native_token, funds if funds is not None else config.amount * 10)
    return ledger


def print_report(report: PipelineReport) -> None:
    print(f"Source:            {report.source}")
    print(f"Initial balance:   {report.initial_balance}")
    print(f"Public key reveal: {'submitted' if report.revealed else 'already revealed'}")
    for step, verdict in report.verdicts.items():
        print(f"{step + ':':<18} accepted at height {verdict.height} (wrapper {verdict.wrapper_hash})")
    print(f"Payment address:   {report.payment_address}")
    print(f"Shielded sync:     height {report.checkpoint}")
    if report.final_balance is not None:
        print(f"Final balance:     {report.final_balance}")


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_arguments(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format=LOG_FORMAT)

    try:
        config = build_config(args)
        bootstrapper = None
        if args.local:
            ledger = local_ledger(config, args.local_funds)
            bootstrapper = SessionBootstrapper(config, transport_factory=lambda: ledger)
        report = TransferPipeline(config, bootstrapper=bootstrapper).run()
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return EXIT_INTERRUPTED
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except InsufficientBalanceError as e:
        print(f"Insufficient balance: have {e.balance}, need {e.required}", file=sys.stderr)
        return EXIT_FAILURE
    except KeyResolutionError as e:
        print(f"Signing key not found: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except BuildError as e:
        print(f"Could not build transaction: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except RejectedByChainError as e:
        print(f"Transaction rejected: {e.detail or e}", file=sys.stderr)
        return EXIT_FAILURE
    except SyncIncompleteError as e:
        print(
            f"Shielded sync incomplete: reached {e.checkpoint}, need {e.required_height}",
            file=sys.stderr
        )
        return EXIT_FAILURE
    except TransportError as e:
        print(f"Node error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except ShieldTxError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE

    print_report(report)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
