# clairvoyance/chain.py
"""
On-chain collaborators for pool monitoring
- Provider construction and RPC health
- Factory lookup (pool address per token pair and fee tier)
- Direct pool reads (slot0, liquidity)
- Swap event stream (polled log filter)
"""

import logging
import threading
import time
from typing import Dict, Iterator, Optional, Tuple

from web3 import Web3

from clairvoyance.config import (
    MAX_RPC_LATENCY,
    POLL_INTERVAL_SECONDS,
    UNISWAP_V3_FACTORY,
    require_rpc_url,
)
from clairvoyance.errors import StreamError
from clairvoyance.pool import SwapEvent
from clairvoyance.uniswap_v3 import FACTORY_ABI, POOL_ABI, FeeTier, parse_fee_tier

logger = logging.getLogger(__name__)


# =============================================================================
# PROVIDER
# =============================================================================

def get_provider(rpc_url: Optional[str] = None) -> Web3:
    """Connect to an HTTP JSON-RPC endpoint"""
    if rpc_url is None:
        rpc_url = require_rpc_url()

    w3 = Web3(Web3.HTTPProvider(rpc_url))
    if not w3.is_connected():
        raise RuntimeError(f"RPC not connected: {rpc_url}")
    return w3


class RPCHealth:
    """
    Check RPC connection and latency
    """

    def __init__(self, w3: Web3, max_latency: float = MAX_RPC_LATENCY):
        self.w3 = w3
        self.max_latency = max_latency

    def check(self) -> tuple:
        """
        Check RPC health
        Returns (is_healthy: bool, status_message: str)
        """
        try:
            start = time.time()
            latest = self.w3.eth.block_number
            latency = time.time() - start

            if latency > self.max_latency:
                return False, f"High latency {latency:.2f}s"

            return True, f"OK (latency={latency:.2f}s, block={latest})"

        except Exception as e:
            return False, str(e)

    def get_chain_id(self) -> int:
        """Get chain ID"""
        return self.w3.eth.chain_id


# =============================================================================
# FACTORY
# =============================================================================

class FactoryResolver:
    """Resolve pool addresses through the Uniswap V3 factory"""

    def __init__(self, w3: Web3, factory_address: str = UNISWAP_V3_FACTORY):
        self.factory = w3.eth.contract(
            address=Web3.to_checksum_address(factory_address),
            abi=FACTORY_ABI,
        )

    def resolve_pool(self, token_0_address: str, token_1_address: str, bp) -> str:
        """Pool address, or the zero address when the pool does not exist"""
        fee_tier = parse_fee_tier(bp)
        address = self.factory.functions.getPool(
            Web3.to_checksum_address(token_0_address),
            Web3.to_checksum_address(token_1_address),
            fee_tier.factory_fee,
        ).call()
        return Web3.to_checksum_address(address)

    def find_pools(self, token_0_address: str, token_1_address: str) -> Dict[FeeTier, str]:
        """Pool address for every fee tier (zero address where none exists)"""
        return {
            fee_tier: self.resolve_pool(token_0_address, token_1_address, fee_tier)
            for fee_tier in FeeTier
        }


# =============================================================================
# POOL READS
# =============================================================================

class PoolReader:
    """Direct contract reads for one-shot state refreshes"""

    def __init__(self, w3: Web3):
        self.w3 = w3
        self._contracts = {}

    def _pool(self, address: str):
        if address not in self._contracts:
            self._contracts[address] = self.w3.eth.contract(
                address=Web3.to_checksum_address(address),
                abi=POOL_ABI,
            )
        return self._contracts[address]

    def read_slot(self, address: str) -> Tuple[int, int]:
        """(sqrtPriceX96, tick) from slot0"""
        slot_0 = self._pool(address).functions.slot0().call()
        return slot_0[0], slot_0[1]

    def read_liquidity(self, address: str) -> int:
        return self._pool(address).functions.liquidity().call()


# =============================================================================
# EVENT STREAM
# =============================================================================

class SwapEventStream:
    """
    Ordered Swap events of one pool, polled from a log filter.

    Iteration blocks between polls and ends only when stop() is called.
    Transport failures raise StreamError; undecodable logs raise
    MalformedEvent. There is no reconnect.
    """

    def __init__(
        self,
        w3: Web3,
        pool_address: str,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        from_block="latest",
    ):
        self.w3 = w3
        self.pool_address = Web3.to_checksum_address(pool_address)
        self.poll_interval = poll_interval
        self.from_block = from_block
        self.contract = w3.eth.contract(address=self.pool_address, abi=POOL_ABI)
        self._stop = threading.Event()

    @classmethod
    def factory(cls, w3: Web3, poll_interval: float = POLL_INTERVAL_SECONDS):
        """Callable(address) -> SwapEventStream, as expected by Pool"""
        def make_stream(pool_address: str) -> "SwapEventStream":
            return cls(w3, pool_address, poll_interval=poll_interval)
        return make_stream

    def stop(self):
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def __iter__(self) -> Iterator[SwapEvent]:
        try:
            event_filter = self.contract.events.Swap.create_filter(from_block=self.from_block)
        except Exception as e:
            raise StreamError(self.pool_address, f"could not install Swap filter: {e}") from e

        try:
            while not self._stop.is_set():
                try:
                    entries = event_filter.get_new_entries()
                except Exception as e:
                    raise StreamError(self.pool_address, str(e)) from e

                for entry in entries:
                    yield SwapEvent.from_log(entry, self.pool_address)
                    if self._stop.is_set():
                        return

                self._stop.wait(self.poll_interval)
        finally:
            self._uninstall(event_filter)

    def _uninstall(self, event_filter):
        try:
            self.w3.eth.uninstall_filter(event_filter.filter_id)
        except Exception as e:
            logger.warning(f"Could not uninstall Swap filter for {self.pool_address}: {e}")
