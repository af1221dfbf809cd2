import argparse
import asyncio
import logging
import random
import sys
import time
from typing import List, Optional, TextIO
import structlog

from config import Settings, get_settings, get_settings_for_environment
from generator import generate_transactions
from services import get_ledger_aggregator
from storage import write_accounts, write_transactions

logger = structlog.get_logger()


def configure_logging(settings: Settings) -> None:
    """Route structlog through stdlib logging to stderr; stdout carries CSV only."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        force=True,
    )

    if settings.log_format == "json":
        renderers = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        renderers = [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            *renderers,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="txledger", description="Replay transaction sources into client ledgers")
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    parser.add_argument(
        "--env",
        choices=["development", "production", "testing"],
        default=None,
        help="Settings profile. Default: plain settings from the environment",
    )
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    parser.add_argument("--log-format", choices=["json", "text"], default=None, help="Override the log format")

    subparsers = parser.add_subparsers(dest="command")

    read = subparsers.add_parser("read", help="Replay CSV sources and print the combined accounts")
    read.add_argument("paths", nargs="+", help="Transaction CSV files, each replayed into its own ledger")

    generate = subparsers.add_parser("generate", help="Print a random transaction CSV")
    generate.add_argument("--num-txns", type=int, default=1000, help="Number of transactions. Default: 1000")
    generate.add_argument("--num-clients", type=int, default=10, help="Number of distinct clients. Default: 10")
    generate.add_argument("--seed", type=int, default=None, help="Random seed for a reproducible stream")

    return parser


def load_settings(args: argparse.Namespace) -> Settings:
    settings = get_settings_for_environment(args.env) if args.env else get_settings()

    overrides = {}
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.log_format:
        overrides["log_format"] = args.log_format
    if overrides:
        settings = settings.model_copy(update=overrides)
    return settings


async def read_sources(paths: List[str], settings: Settings, sink: TextIO) -> int:
    start_time = time.time()

    aggregator = get_ledger_aggregator(settings)
    accounts = await aggregator.run(paths)
    write_accounts(accounts, sink)

    logger.info(
        "Ledger written",
        sources=len(paths),
        failed=len(aggregator.failed_sources),
        accounts=len(accounts),
        process_time=round(time.time() - start_time, 4),
    )

    if paths and len(aggregator.failed_sources) == len(paths):
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = load_settings(args)

    if args.version:
        print(settings.app_version)
        return 0

    configure_logging(settings)

    if args.command == "read":
        logger.info("Starting ledger replay", app=settings.app_name, sources=len(args.paths))
        return asyncio.run(read_sources(args.paths, settings, sys.stdout))

    if args.command == "generate":
        logger.info("Generating transactions", num_txns=args.num_txns, num_clients=args.num_clients)
        try:
            transactions = generate_transactions(
                args.num_txns,
                args.num_clients,
                rng=random.Random(args.seed),
                max_amount=settings.generator_max_amount,
            )
        except ValueError as e:
            parser.error(str(e))
        write_transactions(transactions, sys.stdout)
        return 0

    parser.print_help(sys.stderr)
    return 2


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
