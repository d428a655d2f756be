# clairvoyance/main.py
"""
Uniswap V3 Pool Monitor
Watches Swap events of one or more pools and logs the derived price

THIS IS THE ENTRY POINT - Run with: python -m clairvoyance.main --pool ETH USDC 5

MODES:
1. MONITOR: Stream swaps of every --pool in parallel (default)
2. LIST: Show the pool address of every fee tier for a pair (--list-pools)
3. CHECK: RPC health check only (--check)
"""

import sys
import logging
import signal
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from web3.exceptions import Web3Exception

from clairvoyance.config import CHAIN_ID, CHAIN_NAME, LOG_DIR, LOG_LEVEL, POLL_INTERVAL_SECONDS
from clairvoyance.chain import FactoryResolver, PoolReader, RPCHealth, SwapEventStream, get_provider
from clairvoyance.errors import ClairvoyanceError
from clairvoyance.pool import DerivedObservation, Pool, construct_pool
from clairvoyance.tokens import TokenRegistry, default_registry
from clairvoyance.uniswap_v3 import is_zero_address, sort_tokens

logger = logging.getLogger(__name__)


# =============================================================================
# LOGGING SETUP
# =============================================================================

def setup_logging(level: str = LOG_LEVEL):
    LOG_DIR.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s | %(levelname)-8s | %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(LOG_DIR / f"clairvoyance_{datetime.now().strftime('%Y%m%d')}.log"),
        ]
    )


# =============================================================================
# OBSERVATION SINK
# =============================================================================

def format_observation(obs: DerivedObservation) -> str:
    return (
        f"------------NEW SWAP------------\n"
        f"Pool:      {obs.address}\n"
        f"Sender:    {obs.sender}\n"
        f"Recipient: {obs.recipient}\n"
        f"Amount_0:  {obs.amount_0}\n"
        f"Amount_1:  {obs.amount_1}\n"
        f"Liquidity: {obs.liquidity}\n"
        f"Tick:      {obs.tick}\n"
        f"Price:     {obs.price}"
    )


@dataclass
class SessionSummary:
    """Outcome of one pool's monitoring session"""
    pool: str
    swaps: int = 0
    last_tick: Optional[int] = None
    last_price: Optional[Decimal] = None
    error: str = ""

    @property
    def failed(self) -> bool:
        return bool(self.error)


def run_session(pool: Pool) -> SessionSummary:
    """
    Consume one pool's observations until its stream ends.

    A stream failure ends this session only; it is recorded, not raised.
    """
    summary = SessionSummary(pool=pool.name)
    try:
        for obs in pool.monitor():
            logger.info(format_observation(obs))
            summary.swaps += 1
            summary.last_tick = obs.tick
            summary.last_price = obs.price
    except ClairvoyanceError as e:
        summary.error = str(e)
    return summary


# =============================================================================
# MAIN MONITOR CLASS
# =============================================================================

class PoolMonitor:
    """
    One monitoring thread per pool; pools share no state.

    SIGINT/SIGTERM stop every pool at its next event boundary.
    """

    def __init__(self, pools: List[Pool]):
        self.pools = pools
        self.summaries: List[SessionSummary] = []

    def _handle_shutdown(self, signum, frame):
        """Handle shutdown signals gracefully"""
        logger.info("\n🛑 Shutdown signal received...")
        self.stop()

    def stop(self):
        for pool in self.pools:
            pool.stop()

    def run(self, install_signal_handlers: bool = True) -> List[SessionSummary]:
        if install_signal_handlers:
            signal.signal(signal.SIGINT, self._handle_shutdown)
            signal.signal(signal.SIGTERM, self._handle_shutdown)

        logger.info("=" * 60)
        logger.info(f"🚀 MONITORING {len(self.pools)} POOL(S)")
        for pool in self.pools:
            logger.info(f"  {pool.name} @ {pool.address}")
        logger.info("=" * 60)

        self.summaries = []
        with ThreadPoolExecutor(max_workers=max(len(self.pools), 1)) as executor:
            futures = {executor.submit(run_session, pool): pool for pool in self.pools}
            for future in as_completed(futures):
                summary = future.result()
                if summary.failed:
                    logger.error(f"❌ {summary.pool}: {summary.error}")
                self.summaries.append(summary)

        logger.info(self.get_summary())
        return self.summaries

    def get_summary(self) -> str:
        lines = [f"\n{'='*60}", "📊 SESSION SUMMARY", f"{'='*60}"]
        for s in self.summaries:
            status = f"FAILED ({s.error})" if s.failed else "closed"
            lines.append(
                f"{s.pool}: {s.swaps} swaps, last tick {s.last_tick}, "
                f"last price {s.last_price} [{status}]"
            )
        lines.append("=" * 60)
        return "\n".join(lines)


# =============================================================================
# CLI HELPERS
# =============================================================================

def list_pools(resolver: FactoryResolver, registry: TokenRegistry, symbol_0: str, symbol_1: str) -> int:
    token_0, token_1 = sort_tokens(registry.resolve(symbol_0), registry.resolve(symbol_1))
    pools = resolver.find_pools(token_0.address, token_1.address)
    for fee_tier, address in pools.items():
        state = "missing" if is_zero_address(address) else address
        logger.info(f"{symbol_0}/{symbol_1} {int(fee_tier):>3} bps: {state}")
    return 0


def build_parser():
    import argparse

    parser = argparse.ArgumentParser(description="Uniswap V3 Pool Monitor")
    parser.add_argument(
        "--pool",
        nargs=3,
        action="append",
        metavar=("TOKEN0", "TOKEN1", "BP"),
        default=[],
        help="Pool to monitor, e.g. --pool ETH USDC 5 (repeatable)"
    )
    parser.add_argument(
        "--list-pools",
        nargs=2,
        metavar=("TOKEN0", "TOKEN1"),
        help="Show the pool address of every fee tier for a pair"
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Check RPC health and exit"
    )
    parser.add_argument(
        "--refresh",
        action="store_true",
        help="Read slot0/liquidity once before listening"
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=POLL_INTERVAL_SECONDS,
        help=f"Seconds between event polls (default: {POLL_INTERVAL_SECONDS})"
    )
    parser.add_argument(
        "--rpc-url",
        default=None,
        help="JSON-RPC endpoint (default: RPC_URL from config/.env)"
    )
    return parser


# =============================================================================
# ENTRY POINT
# =============================================================================

def main(argv=None) -> int:
    """Main entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not (args.pool or args.list_pools or args.check):
        parser.error("nothing to do: pass --pool, --list-pools or --check")

    setup_logging()

    try:
        w3 = get_provider(args.rpc_url)
    except RuntimeError as e:
        logger.error(f"❌ {e}")
        return 1

    health = RPCHealth(w3)
    chain_id = health.get_chain_id()
    if chain_id != CHAIN_ID:
        logger.error(f"❌ RPC is on chain {chain_id}, expected {CHAIN_NAME} ({CHAIN_ID})")
        return 1
    logger.info(f"✅ Connected to {CHAIN_NAME} (Chain ID: {chain_id})")

    if args.check:
        ok, status = health.check()
        logger.info(f"RPC {'healthy' if ok else 'unhealthy'}: {status}")
        return 0 if ok else 1

    registry = default_registry()
    resolver = FactoryResolver(w3)

    try:
        if args.list_pools:
            return list_pools(resolver, registry, *args.list_pools)

        reader = PoolReader(w3)
        stream_factory = SwapEventStream.factory(w3, poll_interval=args.poll_interval)
        pools = [
            construct_pool(
                symbol_0, symbol_1, bp,
                registry=registry,
                resolver=resolver,
                reader=reader,
                stream_factory=stream_factory,
            )
            for symbol_0, symbol_1, bp in args.pool
        ]

        if args.refresh:
            for pool in pools:
                pool.refresh()
                logger.info(f"{pool.name} price: {pool.current_price()}")

    except (ClairvoyanceError, Web3Exception, OSError) as e:
        logger.error(f"❌ {e}")
        return 1

    summaries = PoolMonitor(pools).run()
    return 1 if any(s.failed for s in summaries) else 0


if __name__ == "__main__":
    sys.exit(main())
