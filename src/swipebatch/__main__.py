"""swipebatch - Entry Point

Usage:
    python -m swipebatch [--config PATH] [--log-level LEVEL] [command]

Commands:
    run     - Start the service (default)
    demo    - Seed markets and replay a burst of swipes through the dry-run relay
    stats   - Print a user's positions and totals, or a market's YES/NO split
    version - Show version

Examples:
    python -m swipebatch
    python -m swipebatch --config config/production.toml
    python -m swipebatch demo --swipes 12 --user demo-user
    python -m swipebatch stats --user demo-user
    python -m swipebatch stats --market demo-1
"""

import argparse
import asyncio
import random
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

from swipebatch import __version__


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="swipebatch",
        description="Batches swipe predictions into single relay submissions",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"swipebatch {__version__}",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (TOML)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log level",
    )

    parser.add_argument(
        "--db",
        default=None,
        help="SQLite database path (overrides database.path)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("run", help="Start the service")

    demo = subparsers.add_parser("demo", help="Replay a burst of swipes")
    demo.add_argument("--user", default="demo-user", help="User ID")
    demo.add_argument("--swipes", type=int, default=12, help="Number of swipes")
    demo.add_argument("--markets", type=int, default=8, help="Markets to seed")
    demo.add_argument("--seed", type=int, default=None, help="Random seed")

    stats = subparsers.add_parser("stats", help="Print user or market statistics")
    target = stats.add_mutually_exclusive_group(required=True)
    target.add_argument("--user", help="User ID")
    target.add_argument("--market", help="Market ID")

    subparsers.add_parser("version", help="Show version")

    return parser.parse_args(argv)


def find_config_file(specified: Path | None) -> Path | None:
    """Find configuration file."""
    if specified and specified.exists():
        return specified

    search_paths = [
        Path("config/default.toml"),
        Path("config/development.toml"),
        Path("config/production.toml"),
        Path("swipebatch.toml"),
        Path("/etc/swipebatch/swipebatch.toml"),
    ]

    for path in search_paths:
        if path.exists():
            return path

    return None


def load_config(args: argparse.Namespace):
    from swipebatch.core.config import ConfigManager

    overrides = {}
    if args.log_level:
        overrides["swipebatch.log_level"] = args.log_level
    if args.db:
        overrides["database.path"] = args.db
    return ConfigManager(find_config_file(args.config), overrides=overrides)


async def run_service(args: argparse.Namespace) -> int:
    """Run the service until interrupted."""
    import structlog

    from swipebatch.app import SwipeBatchApp

    app = SwipeBatchApp(load_config(args))
    log = structlog.get_logger()

    try:
        await app.run_forever()
        return 0
    except Exception as e:
        log.error("fatal_error", error=str(e))
        return 1


async def run_demo(args: argparse.Namespace) -> int:
    """Seed markets, approve the user, and swipe through the dry-run relay."""
    from swipebatch.app import SwipeBatchApp
    from swipebatch.domain.market import Market

    rng = random.Random(args.seed)
    app = SwipeBatchApp(load_config(args))
    await app.start()

    try:
        now = datetime.now(timezone.utc)
        market_ids = []
        for n in range(args.markets):
            market = Market(
                market_id=f"demo-{n + 1}",
                question=f"Will demo market {n + 1} resolve YES?",
                contract_address="0x" + f"{rng.getrandbits(160):040x}",
                end_time=now + timedelta(days=1),
            )
            await app.store.save_market(market)
            market_ids.append(market.market_id)

        await app.allowance.approve(args.user)

        for _ in range(args.swipes):
            direction = rng.choice(["left", "right", "right", "up"])
            await app.sessions.swipe(args.user, rng.choice(market_ids), direction)
            await asyncio.sleep(rng.uniform(0.05, 0.4))
    finally:
        await app.stop()

    await app.store.connect()
    try:
        await print_stats(app.store, args.user)
    finally:
        await app.store.close()
    return 0


async def print_stats(store, user_id: str) -> None:
    totals = await store.get_user_stats(user_id)
    print(f"User: {user_id}")
    print(f"Predictions: {totals['total_predictions']}")
    print(f"Total invested: {totals['total_invested']} USDC")
    for position in await store.get_positions(user_id):
        print(
            f"  {position.market_id}: YES {position.yes_stake} / NO {position.no_stake}"
        )
    for row in await store.get_submissions(user_id=user_id, limit=20):
        print(f"  batch {row['batch_id']}: {row['state']} ({row['intent_count']} intents)")
    recent = await store.get_predictions(user_id, limit=10)
    if recent:
        print("Recent predictions:")
    for prediction in recent:
        print(
            f"  {prediction.created_at:%Y-%m-%d %H:%M:%S} {prediction.market_id} "
            f"{prediction.side.value} {prediction.amount} ({prediction.receipt_id[:10]})"
        )


async def print_market_stats(store, market_id: str) -> None:
    stats = await store.get_market_stats(market_id)
    print(f"Market: {market_id}")
    print(f"Predictions: {stats['total_predictions']}")
    print(f"YES: {stats['yes_total']} USDC ({stats['yes_percentage']:.1f}%)")
    print(f"NO: {stats['no_total']} USDC ({stats['no_percentage']:.1f}%)")


async def show_stats(args: argparse.Namespace) -> int:
    from swipebatch.services.state_store import StateStore

    store = StateStore(config=load_config(args))
    await store.connect()
    try:
        if args.market:
            await print_market_stats(store, args.market)
        else:
            await print_stats(store, args.user)
    finally:
        await store.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    if args.command == "version":
        print(f"swipebatch {__version__}")
        return 0

    if args.command == "demo":
        return asyncio.run(run_demo(args))

    if args.command == "stats":
        return asyncio.run(show_stats(args))

    return asyncio.run(run_service(args))


if __name__ == "__main__":
    sys.exit(main())
