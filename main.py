#!/usr/bin/env python3
"""
Bidstream Marketplace Client
============================

Main entry point that ties together all components:
- Wallet session (restored from local storage)
- Event stream (new bids / new auctions)
- Countdowns for tracked auctions
- Query cache invalidation

Usage:
    # Watch the marketplace for 10 minutes (simulated wallet)
    DRY_RUN=true python main.py --origin http://localhost:3000 --duration 10

    # Follow auctions 7 and 42 and reconnect the saved wallet
    python main.py --track 7 --track 42 --resume
"""

import argparse
import asyncio
import logging
import signal

from config.settings import ORIGIN, STORAGE_PATH
from bidstream.client import MarketplaceClient
from bidstream.data.stream import NEW_AUCTION, NEW_BID

# ============================================================
# Logging setup
# ============================================================
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(name)s] %(levelname)s: %(message)s',
    datefmt='%H:%M:%S',
)
logger = logging.getLogger('bidstream')


def setup_signal_handlers(stop_event: asyncio.Event):
    """Graceful shutdown on SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()

    def handle_signal(signum):
        logger.info(f"Signal {signum} received - shutting down gracefully...")
        stop_event.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, handle_signal, signum)
        except NotImplementedError:
            signal.signal(signum, lambda s, f: handle_signal(s))


async def run_client(args):
    """Main client loop."""
    client = MarketplaceClient(origin=args.origin, storage_path=args.storage)

    logger.info(f"{'='*60}")
    logger.info(f"Bidstream Marketplace Client")
    logger.info(f"{'='*60}")
    logger.info(f"  Origin:   {args.origin}")
    logger.info(f"  Stream:   {client.stream.url}")
    logger.info(f"  Mode:     {'DRY RUN' if client.dry_run else 'LIVE'}")
    logger.info(f"  Duration: {args.duration} minutes")
    logger.info(f"{'='*60}")

    # ============================================================
    # 1. Wallet session
    # ============================================================
    if args.wallet:
        status = await client.session.connect(args.wallet)
    elif args.resume:
        status = await client.session.resume()
    else:
        status = client.session.status

    if status is not None and status.error:
        logger.warning(f"Wallet not connected: {status.error}")
    else:
        logger.info(f"Wallet: {client.session.summary()}")

    # ============================================================
    # 2. Tracking
    # ============================================================
    for auction_id in args.track or []:
        client.tracking.track(auction_id)
    client.on_notification(lambda aid, data: logger.info(f"  New bid on #{aid}: {data}"))

    # ============================================================
    # 3. Stream
    # ============================================================
    client.stream.subscribe(NEW_BID, lambda data: logger.info(f"  new-bid: {data}"))
    client.stream.subscribe(NEW_AUCTION, lambda data: logger.info(f"  new-auction: {data}"))
    client.cache.on_stale(lambda key: logger.debug(f"  stale: {key}"))

    stop_event = asyncio.Event()
    setup_signal_handlers(stop_event)
    await client.start()

    # ============================================================
    # 4. Countdowns for tracked auctions
    # ============================================================
    for entry in client.tracking:
        try:
            auction = await client.get_auction(entry.auction_id)
        except Exception as e:
            logger.warning(f"Could not load auction #{entry.auction_id}: {e}")
            continue
        if auction:
            client.watch(auction)

    # ============================================================
    # 5. Run until duration elapses or a signal arrives
    # ============================================================
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=args.duration * 60)
    except asyncio.TimeoutError:
        pass
    finally:
        summary = client.status()
        await client.stop()

        logger.info(f"\nFinal Summary:")
        logger.info(f"  Stream:   {summary['stream']['messages_received']} messages, "
                    f"{summary['stream']['reconnect_count']} reconnects")
        logger.info(f"  Cache:    {summary['cache']}")
        logger.info(f"  Tracking: {summary['tracking']['tracked']} auctions")
        logger.info(f"  Actions:  {summary['bidder']['total_actions']} "
                    f"({summary['bidder']['unreconciled']} unreconciled)")


def main():
    parser = argparse.ArgumentParser(description='Bidstream marketplace client')
    parser.add_argument('--origin', type=str, default=ORIGIN,
                        help=f'Marketplace origin (default: {ORIGIN})')
    parser.add_argument('--duration', type=float, default=60,
                        help='Duration in minutes (default: 60)')
    parser.add_argument('--storage', type=str, default=STORAGE_PATH,
                        help=f'Local storage file (default: {STORAGE_PATH})')
    parser.add_argument('--track', type=int, action='append',
                        help='Auction id to follow (repeatable)')
    parser.add_argument('--wallet', type=str, default=None,
                        help='Connect a wallet provider (metamask, coinbase, walletconnect)')
    parser.add_argument('--resume', action='store_true',
                        help='Reconnect the wallet saved by a previous run')
    args = parser.parse_args()

    asyncio.run(run_client(args))


if __name__ == '__main__':
    main()
