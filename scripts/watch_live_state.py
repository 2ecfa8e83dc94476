#!/usr/bin/env python3
"""Watch the live balance and transaction feed for one user.

This script uses the paysync client to:
1) log in as the given user (token from --token or PAYSYNC_TOKEN),
2) subscribe to the balance and transactions topics,
3) print every state change, showing whether push or pull won the race.

Use this to check fallback timing against a real backend and broker.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
import time
from dataclasses import dataclass
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from paysync import PaySyncClient, SyncConfig, TopicView, TransactionFilters  # noqa: E402


@dataclass
class WatchStats:
    started_at: float
    balance_changes: int = 0
    transaction_changes: int = 0


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Print live balance and transaction updates for a user.",
    )
    parser.add_argument("user_id", help="User id to log in as.")
    parser.add_argument(
        "--token",
        default=os.environ.get("PAYSYNC_TOKEN"),
        help="Bearer token (default: $PAYSYNC_TOKEN).",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--type",
        dest="tx_type",
        default=None,
        help="Only show transactions of this type.",
    )
    parser.add_argument(
        "--no-push",
        action="store_true",
        help="Disable the push channel and rely on the pull fallback only.",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=5,
        help="Transactions to print per change.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _print_balance(view: TopicView[float | None], stats: WatchStats) -> None:
    stats.balance_changes += 1
    value, loading, _refresh = view
    status = "loading" if loading else "ready"
    error = f" error={view.last_error}" if view.last_error else ""
    print(f"[watch] balance={value} ({status}, via {view.source or '-'}){error}")


def _print_transactions(view: TopicView, stats: WatchStats, limit: int) -> None:
    stats.transaction_changes += 1
    items, loading, _refresh = view
    status = "loading" if loading else "ready"
    error = f" error={view.last_error}" if view.last_error else ""
    print(f"[watch] transactions={len(items)} ({status}, via {view.source or '-'}){error}")
    for tx in items[:limit]:
        print(f"[watch]   {tx.timestamp:%Y-%m-%d %H:%M:%S} {tx.id} {tx.type or '-'} {tx.amount} {tx.status or ''}")


def _print_summary(stats: WatchStats) -> None:
    runtime = time.time() - stats.started_at
    print("[watch] Summary")
    print(f"[watch]   runtime_s           : {runtime:.1f}")
    print(f"[watch]   balance_changes     : {stats.balance_changes}")
    print(f"[watch]   transaction_changes : {stats.transaction_changes}")


async def _watch(args: argparse.Namespace) -> int:
    overrides = {"push_enabled": False} if args.no_push else {}
    config = SyncConfig.from_env(**overrides)
    token: str = args.token

    async def token_provider() -> str | None:
        return token

    stats = WatchStats(started_at=time.time())
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop.set)

    filters = TransactionFilters(type=args.tx_type) if args.tx_type else None
    async with PaySyncClient(config, token_provider=token_provider, transaction_filters=filters) as client:
        client.balance.on_change(lambda view: _print_balance(view, stats))
        client.transactions.on_change(lambda view: _print_transactions(view, stats, args.limit))

        print(f"[watch] Logging in as {args.user_id}")
        client.login(args.user_id)
        try:
            if args.duration > 0:
                await asyncio.wait_for(stop.wait(), timeout=args.duration)
            else:
                await stop.wait()
        except TimeoutError:
            print(f"[watch] Reached --duration={args.duration}s, stopping.")
        finally:
            client.logout()

    _print_summary(stats)
    return 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    if not args.token:
        print("[watch] No token given (use --token or PAYSYNC_TOKEN)", file=sys.stderr)
        return 2

    try:
        return asyncio.run(_watch(args))
    except Exception as exc:  # pragma: no cover - network/system interaction
        print(f"[watch] Failed: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(_main())
