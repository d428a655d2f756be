# clairvoyance/pool.py
"""
Uniswap V3 Pool State
Tracks tick, liquidity and sqrtPriceX96 of one pool from its Swap events

Lifecycle:
  UNINITIALIZED -> ACTIVE      construction (fee tier check, factory lookup)
  ACTIVE <-> UPDATED           one round trip per applied swap
  ACTIVE -> CLOSED             event stream ended, failed, or stop() was called
"""

import logging
import threading
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Callable, Iterable, Iterator, Optional, Tuple

from clairvoyance.errors import (
    ClairvoyanceError,
    ConfigurationError,
    MalformedEvent,
    PoolDoesNotExist,
    SessionClosed,
    StateConsistencyError,
    StreamError,
    UninitializedPool,
)
from clairvoyance.tokens import Token, TokenRegistry
from clairvoyance.uniswap_v3 import (
    UINT256_MAX,
    FeeTier,
    compute_price,
    is_zero_address,
    parse_fee_tier,
    sort_tokens,
)

logger = logging.getLogger(__name__)

UINT128_MAX = 2 ** 128 - 1
INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1


# =============================================================================
# ENUMS & DATA CLASSES
# =============================================================================

class PoolStatus(Enum):
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    UPDATED = "updated"
    CLOSED = "closed"


@dataclass(frozen=True)
class SwapEvent:
    """Post-swap pool state as emitted by the pool's Swap event"""
    sender: str
    recipient: str
    amount_0: int
    amount_1: int
    liquidity: int
    tick: int
    sqrt_price_x96: int
    block_number: Optional[int] = None
    tx_hash: Optional[str] = None

    def __post_init__(self):
        if not 0 <= self.liquidity <= UINT128_MAX:
            raise ValueError(f"liquidity {self.liquidity} is not a uint128")
        if not INT32_MIN <= self.tick <= INT32_MAX:
            raise ValueError(f"tick {self.tick} is not an int32")
        if not 0 < self.sqrt_price_x96 <= UINT256_MAX:
            raise ValueError(f"sqrtPriceX96 {self.sqrt_price_x96} out of range")

    @classmethod
    def from_log(cls, log, pool_address: str = "") -> "SwapEvent":
        """
        Decode a web3 Swap log (EventData).

        Raises MalformedEvent when a field is missing or out of range.
        """
        try:
            args = log["args"]
            tx_hash = log.get("transactionHash")
            return cls(
                sender=args["sender"],
                recipient=args["recipient"],
                amount_0=int(args["amount0"]),
                amount_1=int(args["amount1"]),
                liquidity=int(args["liquidity"]),
                tick=int(args["tick"]),
                sqrt_price_x96=int(args["sqrtPriceX96"]),
                block_number=log.get("blockNumber"),
                tx_hash=tx_hash.hex() if hasattr(tx_hash, "hex") else tx_hash,
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise MalformedEvent(pool_address or "?", f"bad Swap log: {e}") from e


@dataclass(frozen=True)
class PoolSlot:
    """One consistent reading of the pool's mutable fields"""
    tick: int = 0
    liquidity: int = 0
    sqrt_price_x96: int = 0


@dataclass(frozen=True)
class DerivedObservation:
    """Human-readable record emitted once per applied swap"""
    address: str
    sender: str
    recipient: str
    amount_0: int
    amount_1: int
    liquidity: int
    tick: int
    price: Decimal
    block_number: Optional[int] = None
    tx_hash: Optional[str] = None


# =============================================================================
# POOL STATE
# =============================================================================

class PoolState:
    """
    Authoritative tick/liquidity/sqrtPriceX96 of a pool.

    The three fields live in a single immutable PoolSlot that is replaced
    whole, so a reader never sees a partially applied swap.
    """

    def __init__(self):
        self._slot = PoolSlot()
        self._initialized = False
        self.events_applied = 0

    def apply(self, event: SwapEvent) -> PoolSlot:
        """Overwrite all fields with the swap's post-swap values"""
        slot = PoolSlot(
            tick=event.tick,
            liquidity=event.liquidity,
            sqrt_price_x96=event.sqrt_price_x96,
        )
        self._slot = slot
        self._initialized = True
        self.events_applied += 1
        return slot

    def load(self, sqrt_price_x96: int, tick: int, liquidity: int) -> PoolSlot:
        """Replace all fields from a direct contract read"""
        slot = PoolSlot(tick=tick, liquidity=liquidity, sqrt_price_x96=sqrt_price_x96)
        self._slot = slot
        self._initialized = True
        return slot

    def snapshot(self) -> PoolSlot:
        return self._slot

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def tick(self) -> int:
        return self._slot.tick

    @property
    def liquidity(self) -> int:
        return self._slot.liquidity

    @property
    def sqrt_price_x96(self) -> int:
        return self._slot.sqrt_price_x96


# =============================================================================
# POOL
# =============================================================================

class Pool:
    """
    A Uniswap V3 pool and the state machine that keeps it in sync.

    Collaborators are passed in explicitly:
      resolver        resolve_pool(token_0_address, token_1_address, bp) -> address
      reader          read_slot(address) / read_liquidity(address), for refresh()
      stream_factory  callable(address) -> iterable of SwapEvent (may expose stop())

    Identity fields never change after construction. State only changes
    through apply() (swap events) and refresh() (direct contract read).
    """

    def __init__(
        self,
        token_0: Token,
        token_1: Token,
        bp,
        resolver,
        reader=None,
        stream_factory: Optional[Callable[[str], Iterable[SwapEvent]]] = None,
    ):
        self.status = PoolStatus.UNINITIALIZED

        # Validated before any external call
        fee_tier = parse_fee_tier(bp)
        canonical_0, canonical_1 = sort_tokens(token_0, token_1)

        pool_address = resolver.resolve_pool(canonical_0.address, canonical_1.address, fee_tier)
        if is_zero_address(pool_address):
            raise PoolDoesNotExist(token_0.symbol, token_1.symbol, int(fee_tier))

        self._tokens = (token_0, token_1)
        self._canonical = (canonical_0, canonical_1)
        self._fee_tier = fee_tier
        self._address = pool_address

        self._reader = reader
        self._stream_factory = stream_factory
        self._stream = None
        self._monitored = False
        self._stop_requested = threading.Event()

        self._state = PoolState()
        self.status = PoolStatus.ACTIVE

        logger.info(
            f"Got pool {token_0.symbol}/{token_1.symbol} {int(fee_tier)} bps at {pool_address}"
        )

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def address(self) -> str:
        return self._address

    @property
    def tokens(self) -> Tuple[Token, Token]:
        """Tokens in the order the caller asked for them"""
        return self._tokens

    @property
    def token_0(self) -> Token:
        """Pool's canonical token0"""
        return self._canonical[0]

    @property
    def token_1(self) -> Token:
        """Pool's canonical token1"""
        return self._canonical[1]

    @property
    def bp(self) -> int:
        return int(self._fee_tier)

    @property
    def fee_tier(self) -> FeeTier:
        return self._fee_tier

    @property
    def name(self) -> str:
        return f"{self._tokens[0].symbol}/{self._tokens[1].symbol} {self.bp}bps"

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> PoolState:
        return self._state

    @property
    def tick(self) -> int:
        return self._state.tick

    @property
    def liquidity(self) -> int:
        return self._state.liquidity

    @property
    def sqrt_price_x96(self) -> int:
        return self._state.sqrt_price_x96

    @property
    def events_applied(self) -> int:
        return self._state.events_applied

    def price_at(self, sqrt_price_x96: int) -> Decimal:
        """Price of tokens[0] in tokens[1] for a given sqrtPriceX96"""
        try:
            return compute_price(self._tokens, sqrt_price_x96, self.token_0.address)
        except UninitializedPool:
            raise UninitializedPool(self._address) from None

    def current_price(self) -> Decimal:
        """
        Price of tokens[0] in units of tokens[1] from the latest state.

        Raises UninitializedPool until a swap was applied or refresh() ran.
        """
        if not self._state.initialized:
            raise UninitializedPool(self._address)
        return self.price_at(self._state.snapshot().sqrt_price_x96)

    def refresh(self) -> PoolSlot:
        """Resync tick, liquidity and sqrtPriceX96 with contract calls"""
        if self._reader is None:
            raise ConfigurationError(f"Pool {self.name} has no pool reader")
        if self.status is PoolStatus.CLOSED:
            raise SessionClosed(f"Pool {self.name} is closed")

        sqrt_price_x96, tick = self._reader.read_slot(self._address)
        liquidity = self._reader.read_liquidity(self._address)
        slot = self._state.load(sqrt_price_x96=sqrt_price_x96, tick=tick, liquidity=liquidity)

        logger.info(f"Refreshed {self.name}: tick={slot.tick} liquidity={slot.liquidity}")
        return slot

    # ------------------------------------------------------------------
    # Event application
    # ------------------------------------------------------------------

    def apply(self, event: SwapEvent) -> DerivedObservation:
        """Apply one swap and derive its observation"""
        if self.status is PoolStatus.CLOSED:
            raise SessionClosed(f"Pool {self.name} is closed")
        if not isinstance(event, SwapEvent):
            raise MalformedEvent(self._address, f"expected SwapEvent, got {type(event).__name__}")

        slot = self._state.apply(event)
        self.status = PoolStatus.UPDATED

        # Check tick, price, and liquidity were updated
        if (slot.tick, slot.liquidity, slot.sqrt_price_x96) != (
            event.tick, event.liquidity, event.sqrt_price_x96
        ):
            raise StateConsistencyError(
                f"Pool {self.name} state {slot} does not match applied swap {event}"
            )

        observation = DerivedObservation(
            address=self._address,
            sender=event.sender,
            recipient=event.recipient,
            amount_0=event.amount_0,
            amount_1=event.amount_1,
            liquidity=slot.liquidity,
            tick=slot.tick,
            price=self.price_at(slot.sqrt_price_x96),
            block_number=event.block_number,
            tx_hash=event.tx_hash,
        )
        logger.debug(f"Applied swap to {self.name}: tick={slot.tick} liquidity={slot.liquidity}")
        return observation

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    def monitor(self) -> Iterator[DerivedObservation]:
        """
        Lazily yield one DerivedObservation per swap, in stream order.

        A pool can be monitored once. The iterator ends when the stream
        ends or stop() is called, and raises StreamError if the stream fails.
        """
        if self.status is PoolStatus.CLOSED or self._monitored:
            raise SessionClosed(f"Pool {self.name} was already monitored")
        if self._stream_factory is None:
            raise ConfigurationError(f"Pool {self.name} has no event stream")

        self._monitored = True
        self._stream = self._stream_factory(self._address)
        return self._observe(self._stream)

    def _observe(self, stream: Iterable[SwapEvent]) -> Iterator[DerivedObservation]:
        logger.info(f"Listening for swaps on {self.name} ({self._address})...")
        events = iter(stream)
        try:
            while not self._stop_requested.is_set():
                self.status = PoolStatus.ACTIVE
                try:
                    event = next(events)
                except StopIteration:
                    break
                except StreamError:
                    raise
                except Exception as e:
                    raise StreamError(self._address, str(e)) from e

                yield self.apply(event)
        except ClairvoyanceError as e:
            logger.error(f"Monitoring of {self.name} halted: {e}")
            raise
        finally:
            # Runs the stream's own cleanup (e.g. filter uninstall) when it is
            # suspended mid-iteration
            close = getattr(events, "close", None)
            if close is not None:
                close()
            self.status = PoolStatus.CLOSED
            logger.info(f"Stopped monitoring {self.name} after {self.events_applied} swaps")

    def stop(self):
        """Stop monitoring at the next event boundary"""
        self._stop_requested.set()
        stop_stream = getattr(self._stream, "stop", None)
        if stop_stream is not None:
            stop_stream()

    def __repr__(self) -> str:
        return f"Pool({self.name}, address={self._address}, status={self.status.value})"


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def construct_pool(
    token_0_symbol: str,
    token_1_symbol: str,
    bp,
    *,
    registry: TokenRegistry,
    resolver,
    reader=None,
    stream_factory=None,
) -> Pool:
    """
    Wrapper function to easily create a pool from token symbols.

    Fee tier and symbols are checked before the resolver is contacted.
    """
    parse_fee_tier(bp)
    token_0 = registry.resolve(token_0_symbol)
    token_1 = registry.resolve(token_1_symbol)
    return Pool(token_0, token_1, bp, resolver, reader=reader, stream_factory=stream_factory)


def current_price(pool: Pool) -> Decimal:
    return pool.current_price()


def monitor(pool: Pool) -> Iterator[DerivedObservation]:
    return pool.monitor()
