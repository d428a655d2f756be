# clairvoyance/__init__.py
"""
Clairvoyance
Uniswap V3 pool monitor: swap-driven pool state and sqrtPriceX96 pricing

Modules:
- config: Configuration and environment
- tokens: Token registry
- uniswap_v3: Contract ABIs, fee tiers, Q64.96 decoding and price math
- pool: Pool state and the swap-driven state machine
- chain: web3 factory lookup, pool reads and Swap event stream
- main: Entry point
"""

__version__ = "0.1.0"

from clairvoyance.errors import (
    ClairvoyanceError,
    InvalidFeeTier,
    MalformedEvent,
    PoolDoesNotExist,
    StreamError,
    TokenNotFound,
    UninitializedPool,
)
from clairvoyance.tokens import Token, TokenRegistry
from clairvoyance.uniswap_v3 import FeeTier, compute_price, convert_q64_96
from clairvoyance.pool import (
    DerivedObservation,
    Pool,
    PoolState,
    PoolStatus,
    SwapEvent,
    construct_pool,
    current_price,
    monitor,
)

__all__ = [
    "ClairvoyanceError",
    "InvalidFeeTier",
    "MalformedEvent",
    "PoolDoesNotExist",
    "StreamError",
    "TokenNotFound",
    "UninitializedPool",
    "Token",
    "TokenRegistry",
    "FeeTier",
    "compute_price",
    "convert_q64_96",
    "DerivedObservation",
    "Pool",
    "PoolState",
    "PoolStatus",
    "SwapEvent",
    "construct_pool",
    "current_price",
    "monitor",
]
