"""Command line front end.

Usage:
    python -m scrow watch --ticks 10
    python -m scrow operations
    python -m scrow create 0xTokenA 0xTokenB 10 5 --duration 7200
    python -m scrow complete 7

Environment variables (or .env):
    SCROW_RPC_URL: Node endpoint (default: http://127.0.0.1:8545)
    SCROW_SWAP_ADDRESS: Escrow contract address
    SCROW_PRIVATE_KEY: Signing key; unset means read-only
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from scrow.config import get_settings
from scrow.errors import ScrowError
from scrow.ledger.models import Operation, TransactionReceipt, truncate_address
from scrow.services.units import format_units
from scrow.session import EscrowSession

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def _describe_operation(session: EscrowSession, op: Operation) -> str:
    meta_a = await session.metadata.get(op.token_a)
    meta_b = await session.metadata.get(op.token_b)
    amount_a = (
        format_units(op.amount_a, meta_a.decimals) if meta_a.is_available else str(op.amount_a)
    )
    amount_b = (
        format_units(op.amount_b, meta_b.decimals) if meta_b.is_available else str(op.amount_b)
    )
    expired = " (expired)" if op.is_expired() else ""
    return (
        f"#{op.id} [{op.status.value}]{expired} {truncate_address(op.maker)} offers "
        f"{amount_a} {meta_a.label} for {amount_b} {meta_b.label}"
    )


def _print_receipt(receipt: TransactionReceipt) -> None:
    print(f"Confirmed {receipt.tx_hash} in block {receipt.block_number}")


async def cmd_operations(session: EscrowSession, args: argparse.Namespace) -> int:
    await session.operations.refresh()
    ops = session.operations_snapshot.items
    if args.status:
        ops = [op for op in ops if op.status.value == args.status]
    if not ops:
        print("No operations")
    for op in ops:
        print(await _describe_operation(session, op))
    return 0


async def cmd_tokens(session: EscrowSession, args: argparse.Namespace) -> int:
    tokens = await session.operations.refresh_tokens()
    metas = await session.metadata.prefetch(tokens)
    if not tokens:
        print("No active tokens")
    for token in tokens:
        meta = metas[token.lower()]
        if meta.is_available:
            print(f"{token}  {meta.symbol:<8} {meta.name} ({meta.decimals} decimals)")
        else:
            print(f"{token}  (metadata unavailable)")
    return 0


async def cmd_balances(session: EscrowSession, args: argparse.Namespace) -> int:
    user = args.user or session.account
    session.balances.apply(await session.balances.fetch(user))
    if user:
        print(f"Escrowed balances for {user}:")
        for balance in session.user_balances:
            label = await session.metadata.label(balance.token)
            print(f"  {format_units(balance.raw, balance.decimals)} {label}")
    print(f"Escrow contract {session.ledger.swap_address}:")
    for balance in session.escrow_balances:
        label = await session.metadata.label(balance.token)
        print(f"  {format_units(balance.raw, balance.decimals)} {label}")
    return 0


async def cmd_watch(session: EscrowSession, args: argparse.Namespace) -> int:
    interval = session.schedulers["operations"].interval
    session.start()
    try:
        ticks = 0
        while args.ticks is None or ticks < args.ticks:
            await asyncio.sleep(interval)
            snapshot = session.operations_snapshot
            logger.info(
                f"{len(snapshot)} operations ({len(session.operations.open())} open), "
                f"{len(session.active_tokens)} active tokens, generation {snapshot.generation}"
            )
            ticks += 1
    finally:
        await session.stop()
    return 0


async def cmd_create(session: EscrowSession, args: argparse.Namespace) -> int:
    receipt = await session.create_operation(
        args.token_a, args.token_b, args.amount_a, args.amount_b, args.duration
    )
    _print_receipt(receipt)
    return 0


async def cmd_complete(session: EscrowSession, args: argparse.Namespace) -> int:
    _print_receipt(await session.complete_operation(args.operation_id))
    return 0


async def cmd_cancel(session: EscrowSession, args: argparse.Namespace) -> int:
    _print_receipt(await session.cancel_operation(args.operation_id))
    return 0


async def cmd_add_token(session: EscrowSession, args: argparse.Namespace) -> int:
    _print_receipt(await session.add_token(args.token))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="scrow", description="Escrow swap client")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("config", help="Show effective settings (secrets redacted)")

    p = sub.add_parser("operations", help="List operations, newest first")
    p.add_argument("--status", choices=["open", "completed", "cancelled"])
    p.set_defaults(handler=cmd_operations)

    p = sub.add_parser("tokens", help="List active whitelisted tokens")
    p.set_defaults(handler=cmd_tokens)

    p = sub.add_parser("balances", help="Show escrowed and escrow-held balances")
    p.add_argument("--user", help="User address (default: signer)")
    p.set_defaults(handler=cmd_balances)

    p = sub.add_parser("watch", help="Poll the ledger and log snapshots")
    p.add_argument("--ticks", type=int, default=None, help="Stop after N intervals")
    p.set_defaults(handler=cmd_watch)

    p = sub.add_parser("create", help="Create an operation (amounts in token units)")
    p.add_argument("token_a")
    p.add_argument("token_b")
    p.add_argument("amount_a")
    p.add_argument("amount_b")
    p.add_argument("--duration", type=int, default=None, help="Seconds until expiry")
    p.set_defaults(handler=cmd_create)

    p = sub.add_parser("complete", help="Complete an open operation")
    p.add_argument("operation_id", type=int)
    p.set_defaults(handler=cmd_complete)

    p = sub.add_parser("cancel", help="Cancel your open operation")
    p.add_argument("operation_id", type=int)
    p.set_defaults(handler=cmd_cancel)

    p = sub.add_parser("add-token", help="Whitelist a token (owner only)")
    p.add_argument("token")
    p.set_defaults(handler=cmd_add_token)

    return parser


async def run(args: argparse.Namespace, session: Optional[EscrowSession] = None) -> int:
    if args.command == "config":
        print(json.dumps(get_settings().get_safe_dict(), indent=2))
        return 0

    session = session or EscrowSession.from_settings()
    try:
        return await args.handler(session, args)
    except ScrowError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    finally:
        await session.wait_idle()


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
