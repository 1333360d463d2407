#!/usr/bin/env python3
"""
Safe Batch — CLI for turning recipient CSVs into Safe batch files.

Usage:
    safe-batch build --file <path> [--token <address>] [--output <path>]
    safe-batch validate --file <path> [--token <address>]
    safe-batch token --address <address>
    safe-batch generate-template --output <path> [--count <n>]

Examples:
    # Pay native IMX to every recipient in a CSV
    safe-batch build --file recipients.csv --output batch.json

    # Pay an ERC-20 instead (decimals are looked up on-chain)
    safe-batch build --file recipients.csv --token <erc20-address>

    # Check a recipient list without writing anything
    safe-batch validate --file recipients.csv

    # Generate a template CSV file
    safe-batch generate-template --output recipients.csv --count 5
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
import time
from pathlib import Path

from safe_batch import __version__
from safe_batch.amounts import format_amount
from safe_batch.batch import (
    BuildResult,
    build_batch,
    read_recipients_file,
)
from safe_batch.config import DEFAULT_CONFIG, BatchConfig
from safe_batch.rows import InvalidAddress, validate_address
from safe_batch.tokens import (
    CachingTokenResolver,
    TokenResolutionError,
    Web3TokenResolver,
)


BANNER = """
  Safe Batch — CSV to Safe Transaction Builder
"""


def _config_from_args(args: argparse.Namespace) -> BatchConfig:
    overrides = {}
    if getattr(args, "safe", None):
        overrides["safe_address"] = args.safe
    if getattr(args, "chain_id", None) is not None:
        overrides["chain_id"] = args.chain_id
    if getattr(args, "rpc_url", None):
        overrides["rpc_url"] = args.rpc_url
    if getattr(args, "name", None):
        overrides["name"] = args.name
    if getattr(args, "description", None):
        overrides["description"] = args.description
    return dataclasses.replace(DEFAULT_CONFIG, **overrides)


def _run_build(args: argparse.Namespace, created_at: int | None = None) -> BuildResult | None:
    """Shared front half of build/validate. Returns None on setup errors."""
    try:
        config = _config_from_args(args)
    except ValueError as e:
        print(f"Invalid configuration: {e}")
        return None

    try:
        text = read_recipients_file(args.file)
    except (OSError, UnicodeDecodeError) as e:
        print(f"Error reading file: {e}")
        return None

    print(f"Loaded {args.file}")
    print(f"Chain id: {config.chain_id}")
    print(f"Safe: {config.safe_address}")
    if args.token:
        print(f"Token: {args.token}")
    else:
        print(f"Asset: native {config.native_symbol}")
    print()

    resolver = CachingTokenResolver(Web3TokenResolver(config.rpc_url)) if args.token else None
    return build_batch(
        text,
        token_address=args.token,
        config=config,
        resolver=resolver,
        created_at=created_at,
    )


def _print_errors(result: BuildResult) -> None:
    if result.errors:
        print(f"✗ Found {len(result.errors)} problems:")
        for err in result.errors:
            print(f"  ✗ {err}")
    else:
        print(f"✗ {result.message}")


def cmd_build(args: argparse.Namespace) -> int:
    """Build a batch file."""
    print(BANNER)

    created_at = int(time.time() * 1000) if args.timestamp else None
    result = _run_build(args, created_at)
    if result is None:
        return 1
    if not result.success:
        _print_errors(result)
        return 1

    output = Path(args.output)
    output.write_text(result.document.to_json() + "\n", encoding="utf-8")

    print(result.summary())
    if not result.document.transactions:
        print("\n⚠ No recipient rows found, the batch is empty")
    print(f"\nWrote {output}")
    print("Import it in the Safe Transaction Builder to review and sign.")
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate a recipient list."""
    print(BANNER)

    result = _run_build(args)
    if result is None:
        return 1
    if not result.success:
        _print_errors(result)
        return 1

    txs = result.document.transactions
    print(f"✓ All {len(txs)} recipients are valid")
    print(f"  Total amount: {format_amount(result.total_amount, result.decimals)} {result.symbol}")

    print("\nPreview (first 5):")
    for tx in txs[:5]:
        amount = tx.amount if result.token else tx.value
        print(f"  {tx.to} → {format_amount(amount, result.decimals)} {result.symbol}")
    if len(txs) > 5:
        print(f"  ... and {len(txs) - 5} more")
    return 0


def cmd_token(args: argparse.Namespace) -> int:
    """Look up an ERC-20 token's symbol and decimals."""
    checked = validate_address(args.address)
    if isinstance(checked, InvalidAddress):
        print(checked.reason)
        return 1

    rpc_url = args.rpc_url or DEFAULT_CONFIG.rpc_url
    try:
        token = Web3TokenResolver(rpc_url).resolve(checked)
    except TokenResolutionError as e:
        print(f"Error: {e}")
        return 1

    print(token.summary())
    return 0


def cmd_generate_template(args: argparse.Namespace) -> int:
    """Generate a template recipient file."""
    print(BANNER)

    count = args.count
    output = Path(args.output)

    # Well-known EIP-55 test vectors, not real recipients
    sample_addresses = [
        "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed",
        "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359",
        "0xdbF03B407c01E7cD3CBea99509d93f8DDDC8C6FB",
        "0xD1220A0cf47c7B9Be7A2E6BA89F429762e7b9aDb",
    ]

    lines = ["address,amount"]
    for i in range(count):
        addr = sample_addresses[i % len(sample_addresses)]
        lines.append(f"{addr},{1 + i * 0.5:g}")
    output.write_text("\n".join(lines) + "\n", encoding="utf-8")

    print(f"Generated template with {count} recipients: {output}")
    print("\nEdit the file with your actual recipient addresses and amounts,")
    print(f"then run: safe-batch validate --file {output}")
    return 0


def _add_build_options(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--file", "-f", required=True, help="Path to recipient CSV (address,amount)"
    )
    p.add_argument(
        "--token", "-t", default=None,
        help="ERC-20 contract address. Omit to pay in the native currency"
    )
    p.add_argument(
        "--safe", default=None,
        help=f"Safe address the batch is created from. Default: {DEFAULT_CONFIG.safe_address}"
    )
    p.add_argument(
        "--chain-id", type=int, default=None,
        help=f"Target chain id. Default: {DEFAULT_CONFIG.chain_id}"
    )
    p.add_argument(
        "--rpc-url", default=None,
        help=f"JSON-RPC endpoint for token lookups. Default: {DEFAULT_CONFIG.rpc_url}"
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="safe-batch",
        description="Safe Batch — CSV to Safe Transaction Builder batch files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", action="version", version=f"safe-batch {__version__}"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Build command
    build_parser = subparsers.add_parser(
        "build", help="Build a Safe batch file from a recipient CSV"
    )
    _add_build_options(build_parser)
    build_parser.add_argument(
        "--output", "-o", default="batch.json", help="Output file. Default: batch.json"
    )
    build_parser.add_argument(
        "--name", default=None, help="Batch name shown in the Transaction Builder"
    )
    build_parser.add_argument(
        "--description", default=None, help="Batch description"
    )
    build_parser.add_argument(
        "--timestamp", action="store_true",
        help="Embed createdAt (output then differs between runs)"
    )

    # Validate command
    validate_parser = subparsers.add_parser(
        "validate", help="Validate a recipient CSV without writing a batch"
    )
    _add_build_options(validate_parser)

    # Token command
    token_parser = subparsers.add_parser(
        "token", help="Show an ERC-20 token's symbol and decimals"
    )
    token_parser.add_argument(
        "--address", "-a", required=True, help="ERC-20 contract address"
    )
    token_parser.add_argument(
        "--rpc-url", default=None, help="JSON-RPC endpoint"
    )

    # Generate template command
    template_parser = subparsers.add_parser(
        "generate-template", help="Generate a template recipient CSV"
    )
    template_parser.add_argument(
        "--output", "-o", default="recipients.csv", help="Output file path"
    )
    template_parser.add_argument(
        "--count", "-c", type=int, default=5, help="Number of sample recipients"
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "build": cmd_build,
        "validate": cmd_validate,
        "token": cmd_token,
        "generate-template": cmd_generate_template,
    }

    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
