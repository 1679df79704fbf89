"""
approval-sweeper -- command-line entry point.

Usage:
    approval-sweeper [--config PATH] [--log-level LEVEL] <command> [options]

Commands:
    run        Run the verifier and transfer executor continuously.
    verify     Run only the verifier (``--once`` for a single cycle).
    transfer   Run only the transfer executor (``--once`` for a single cycle).
    init-db    Create the approval tables.
    submit     Store a claim from a JSON file (the ingestion payload shape).

Examples:
    # Local run against the bundled environment-driven config
    approval-sweeper init-db
    approval-sweeper run

    # One verification pass with an explicit config file
    approval-sweeper --config sweeper.yaml verify --once

Settings are read from the environment; a ``.env`` file in the working
directory is loaded first.
"""

from __future__ import annotations

import argparse
import json
import signal
import sys
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_STORE_UNAVAILABLE = 2


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="approval-sweeper",
        description="Verify delegated token approvals and sweep the delegated funds.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML configuration file (default: APPROVAL_SWEEPER_CONFIG or environment).",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override the configured log level (DEBUG, INFO, WARNING, ...).",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Run both stages.")
    run.add_argument("--once", action="store_true", help="Run one cycle of each stage and exit.")

    verify = commands.add_parser("verify", help="Run the verifier only.")
    verify.add_argument("--once", action="store_true", help="Run a single cycle and exit.")

    transfer = commands.add_parser("transfer", help="Run the transfer executor only.")
    transfer.add_argument("--once", action="store_true", help="Run a single cycle and exit.")

    commands.add_parser("init-db", help="Create the approval tables.")

    submit = commands.add_parser("submit", help="Store a claim from a JSON file.")
    submit.add_argument(
        "file",
        type=Path,
        help="JSON with owner, delegate, network, transactionSignature, approvals.",
    )

    return parser.parse_args(argv)


def _load_claim(path: Path) -> dict[str, Any]:
    """Read a claim payload; raises ValueError unless it is a JSON object."""
    with open(path) as f:
        claim = json.load(f)
    if not isinstance(claim, dict):
        raise ValueError(f"expected a JSON object, got {type(claim).__name__}")
    return claim


def _print_results(results: tuple) -> None:
    for result in results:
        if result is None:
            print("  cycle failed (see log)")
            continue
        print(
            f"  {result.stage.value}: examined={result.examined} "
            f"advanced={result.advanced} failed={result.failed} "
            f"skipped={result.skipped} deferred={result.deferred} "
            f"conflicts={result.conflicts} errors={result.errors}"
        )


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    load_dotenv()

    # Lazy imports so argument errors fail fast
    import yaml

    from approval_config import get_active_config
    from approval_kernel.exceptions import InvalidClaimError, StoreUnavailableError
    from approval_kernel.logging_config import configure_logging, get_logger
    from approval_batch.orchestrator import SweeperOrchestrator

    try:
        config = get_active_config(args.config)
    except (OSError, ValueError, KeyError, yaml.YAMLError) as e:
        print(f"ERROR: Failed to load config: {e}", file=sys.stderr)
        return EXIT_ERROR

    configure_logging(level=(args.log_level or config.log_level).upper())
    logger = get_logger("cli")

    orchestrator = SweeperOrchestrator.from_config(config)
    try:
        if args.command == "init-db":
            orchestrator.init_db()
            print("Approval tables created.")
            return EXIT_OK

        if args.command == "submit":
            try:
                claim = _load_claim(args.file)
            except (OSError, ValueError) as e:
                print(f"ERROR: Failed to read claim {args.file}: {e}", file=sys.stderr)
                return EXIT_ERROR
            try:
                record = orchestrator.store.submit_claim(
                    owner=claim.get("owner"),
                    delegate=claim.get("delegate"),
                    network=claim.get("network"),
                    claim_signature=claim.get("transactionSignature"),
                    grants=claim.get("approvals") or [],
                )
            except InvalidClaimError as e:
                print(f"ERROR: {e}", file=sys.stderr)
                return EXIT_ERROR
            print(f"Stored approval {record.approval_id} ({len(record.grants)} grants).")
            return EXIT_OK

        scheduler = orchestrator.create_scheduler(
            verify=args.command in ("run", "verify"),
            transfer=args.command in ("run", "transfer"),
        )

        if args.once:
            results = scheduler.run_once()
            _print_results(results)
            return EXIT_OK if all(r is not None for r in results) else EXIT_ERROR

        def _shutdown(signum: int, frame: Any) -> None:
            logger.info("shutdown_requested", extra={"signal": signum})
            scheduler.stop()

        signal.signal(signal.SIGINT, _shutdown)
        signal.signal(signal.SIGTERM, _shutdown)

        scheduler.run_forever()
        return EXIT_OK

    except StoreUnavailableError as e:
        logger.critical("store_unavailable", exc_info=True)
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_STORE_UNAVAILABLE
    finally:
        orchestrator.close()


if __name__ == "__main__":
    sys.exit(main())
