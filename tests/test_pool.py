"""
Tests for pool state, the swap-driven state machine and pool construction.

Collaborators are test doubles; nothing here touches the network.
"""

from decimal import Decimal, localcontext
from unittest.mock import Mock

import pytest

from clairvoyance.config import DECIMAL_PRECISION
from clairvoyance.errors import (
    ConfigurationError,
    InvalidFeeTier,
    MalformedEvent,
    PoolDoesNotExist,
    SessionClosed,
    StreamError,
    TokenNotFound,
    UninitializedPool,
)
from clairvoyance.pool import (
    DerivedObservation,
    Pool,
    PoolSlot,
    PoolState,
    PoolStatus,
    SwapEvent,
    construct_pool,
    current_price,
    monitor,
)
from clairvoyance.uniswap_v3 import Q96, FeeTier, convert_q64_96
from tests.conftest import (
    HEAVY,
    OTHER,
    POOL_ADDRESS,
    RECIPIENT,
    SENDER,
    STABLE,
    ListStream,
    make_swap,
)


def stream_of(*events, **kwargs):
    stream = ListStream(events, **kwargs)
    return stream, Mock(return_value=stream)


class TestSwapEvent:

    def test_frozen(self):
        event = make_swap()
        with pytest.raises(AttributeError):
            event.tick = 5

    @pytest.mark.parametrize("field, value", [
        ("liquidity", -1),
        ("liquidity", 2 ** 128),
        ("tick", 2 ** 31),
        ("sqrt_price_x96", 0),
        ("sqrt_price_x96", 2 ** 256),
    ])
    def test_out_of_range(self, field, value):
        with pytest.raises(ValueError):
            make_swap(**{field: value})

    def test_from_log(self):
        log = {
            "args": {
                "sender": SENDER,
                "recipient": RECIPIENT,
                "amount0": -5,
                "amount1": 7,
                "sqrtPriceX96": Q96,
                "liquidity": 42,
                "tick": -12,
            },
            "blockNumber": 17000000,
            "transactionHash": bytes.fromhex("ab" * 32),
        }
        event = SwapEvent.from_log(log, POOL_ADDRESS)

        assert event.amount_0 == -5
        assert event.amount_1 == 7
        assert event.sqrt_price_x96 == Q96
        assert event.liquidity == 42
        assert event.tick == -12
        assert event.block_number == 17000000
        assert event.tx_hash == "ab" * 32

    def test_from_log_missing_field(self):
        log = {"args": {"sender": SENDER, "recipient": RECIPIENT}}
        with pytest.raises(MalformedEvent, match=POOL_ADDRESS):
            SwapEvent.from_log(log, POOL_ADDRESS)


class TestPoolState:

    def test_unset_baseline(self):
        state = PoolState()
        assert state.snapshot() == PoolSlot(tick=0, liquidity=0, sqrt_price_x96=0)
        assert state.initialized is False
        assert state.events_applied == 0

    def test_last_event_wins(self):
        """Three swaps leave exactly the third swap's fields, not a merge"""
        state = PoolState()
        state.apply(make_swap(tick=10, liquidity=100, sqrt_price_x96=Q96))
        state.apply(make_swap(tick=-20, liquidity=300, sqrt_price_x96=2 * Q96))
        state.apply(make_swap(tick=5, liquidity=7, sqrt_price_x96=3 * Q96))

        assert state.tick == 5
        assert state.liquidity == 7
        assert state.sqrt_price_x96 == 3 * Q96
        assert state.events_applied == 3

    def test_snapshot_is_stable(self):
        state = PoolState()
        state.apply(make_swap(tick=1))
        before = state.snapshot()
        state.apply(make_swap(tick=2))

        assert before.tick == 1
        assert state.snapshot().tick == 2

    def test_load(self):
        state = PoolState()
        slot = state.load(sqrt_price_x96=Q96, tick=3, liquidity=9)

        assert slot == PoolSlot(tick=3, liquidity=9, sqrt_price_x96=Q96)
        assert state.initialized is True
        assert state.events_applied == 0


class TestPoolConstruction:

    def test_invalid_fee_tier_before_any_call(self, resolver, reader):
        with pytest.raises(InvalidFeeTier):
            Pool(HEAVY, STABLE, 7, resolver, reader=reader)

        resolver.resolve_pool.assert_not_called()
        assert reader.mock_calls == []

    @pytest.mark.parametrize("bp", [5.7, 30.9, Decimal("1.5"), True])
    def test_non_integral_fee_tier_is_not_truncated(self, resolver, reader, bp):
        with pytest.raises(InvalidFeeTier):
            Pool(HEAVY, STABLE, bp, resolver, reader=reader)

        resolver.resolve_pool.assert_not_called()

    def test_construct_pool_invalid_fee_tier(self, registry, resolver, reader):
        stream_factory = Mock()
        with pytest.raises(InvalidFeeTier):
            construct_pool(
                "HEAVY", "STABLE", 7,
                registry=registry, resolver=resolver, reader=reader, stream_factory=stream_factory,
            )

        resolver.resolve_pool.assert_not_called()
        assert reader.mock_calls == []
        stream_factory.assert_not_called()

    def test_unknown_token(self, registry, resolver):
        with pytest.raises(TokenNotFound, match="NOPE"):
            construct_pool("NOPE", "STABLE", 5, registry=registry, resolver=resolver)

        resolver.resolve_pool.assert_not_called()

    def test_pool_does_not_exist(self, registry, missing_resolver):
        with pytest.raises(PoolDoesNotExist, match="HEAVY/STABLE with fee tier 100"):
            construct_pool("HEAVY", "STABLE", 100, registry=registry, resolver=missing_resolver)

    def test_resolver_gets_canonical_order(self, resolver):
        Pool(STABLE, HEAVY, "30", resolver)

        resolver.resolve_pool.assert_called_once_with(HEAVY.address, STABLE.address, FeeTier.BP_30)

    def test_identity(self, resolver):
        pool = Pool(STABLE, HEAVY, 5, resolver)

        assert pool.address == POOL_ADDRESS
        assert pool.tokens == (STABLE, HEAVY)
        assert pool.token_0 == HEAVY
        assert pool.token_1 == STABLE
        assert pool.bp == 5
        assert pool.fee_tier is FeeTier.BP_5
        assert pool.status is PoolStatus.ACTIVE

    def test_unset_baseline(self, resolver):
        pool = Pool(HEAVY, STABLE, 5, resolver)

        assert (pool.tick, pool.liquidity, pool.sqrt_price_x96) == (0, 0, 0)


class TestCurrentPrice:

    def test_uninitialized(self, resolver):
        pool = Pool(HEAVY, STABLE, 5, resolver)

        with pytest.raises(UninitializedPool, match=POOL_ADDRESS):
            current_price(pool)

    def test_matches_independent_computation(self, resolver):
        pool = Pool(HEAVY, STABLE, 5, resolver)
        sqrt_price_x96 = 1234567890123456789012345678901
        pool.apply(make_swap(sqrt_price_x96=sqrt_price_x96))

        with localcontext() as ctx:
            ctx.prec = DECIMAL_PRECISION
            # HEAVY is token0: raw ratio shifted by 18 - 6 decimals
            expected = convert_q64_96(sqrt_price_x96) ** 2 * Decimal(10) ** 12

        assert current_price(pool) == expected

    def test_end_to_end_unit_sqrt_price(self, resolver):
        """18/6 decimal pair, 18-decimal token is token0, sqrtPriceX96 = 2**96"""
        pool = Pool(HEAVY, STABLE, 5, resolver)
        pool.apply(make_swap(sqrt_price_x96=2 ** 96))

        price = current_price(pool)
        assert price == Decimal(10) ** 12
        assert price.as_integer_ratio() == (10 ** 12, 1)

    def test_caller_order_reversed(self, resolver):
        pool = Pool(STABLE, HEAVY, 5, resolver)
        pool.apply(make_swap(sqrt_price_x96=2 ** 96))

        assert current_price(pool).as_integer_ratio() == (1, 10 ** 12)

    def test_after_refresh(self, resolver, reader):
        reader.read_slot.return_value = (2 * Q96, -7)
        reader.read_liquidity.return_value = 555
        pool = Pool(HEAVY, OTHER, 30, resolver, reader=reader)

        slot = pool.refresh()

        reader.read_slot.assert_called_once_with(POOL_ADDRESS)
        reader.read_liquidity.assert_called_once_with(POOL_ADDRESS)
        assert slot == PoolSlot(tick=-7, liquidity=555, sqrt_price_x96=2 * Q96)
        assert pool.current_price() == 4

    def test_refresh_without_reader(self, resolver):
        pool = Pool(HEAVY, OTHER, 30, resolver)

        with pytest.raises(ConfigurationError, match="reader"):
            pool.refresh()


class TestApply:

    def test_observation(self, resolver):
        pool = Pool(HEAVY, OTHER, 5, resolver)
        event = make_swap(tick=-3, liquidity=99, sqrt_price_x96=2 * Q96, amount_0=-1, amount_1=4,
                          block_number=10, tx_hash="0xbeef")

        obs = pool.apply(event)

        assert obs == DerivedObservation(
            address=POOL_ADDRESS,
            sender=SENDER,
            recipient=RECIPIENT,
            amount_0=-1,
            amount_1=4,
            liquidity=99,
            tick=-3,
            price=Decimal(4),
            block_number=10,
            tx_hash="0xbeef",
        )
        assert pool.status is PoolStatus.UPDATED

    def test_rejects_non_event(self, resolver):
        pool = Pool(HEAVY, OTHER, 5, resolver)

        with pytest.raises(MalformedEvent, match="expected SwapEvent"):
            pool.apply({"tick": 1})
        assert pool.events_applied == 0


class TestMonitor:

    def test_observations_in_stream_order(self, resolver):
        events = [make_swap(tick=t, sqrt_price_x96=(t + 1) * Q96) for t in range(3)]
        stream, factory = stream_of(*events)
        pool = Pool(HEAVY, OTHER, 5, resolver, stream_factory=factory)

        observations = list(monitor(pool))

        factory.assert_called_once_with(POOL_ADDRESS)
        assert [o.tick for o in observations] == [0, 1, 2]
        assert [o.price for o in observations] == [1, 4, 9]
        assert pool.tick == 2
        assert pool.events_applied == 3
        assert pool.status is PoolStatus.CLOSED

    def test_lazy(self, resolver):
        stream, factory = stream_of(make_swap(tick=1), make_swap(tick=2))
        pool = Pool(HEAVY, OTHER, 5, resolver, stream_factory=factory)

        observations = pool.monitor()
        assert pool.events_applied == 0

        assert next(observations).tick == 1
        assert pool.events_applied == 1
        assert pool.status is PoolStatus.UPDATED

    def test_not_restartable(self, resolver):
        stream, factory = stream_of(make_swap())
        pool = Pool(HEAVY, OTHER, 5, resolver, stream_factory=factory)
        list(pool.monitor())

        with pytest.raises(SessionClosed):
            pool.monitor()

    def test_without_stream(self, resolver):
        pool = Pool(HEAVY, OTHER, 5, resolver)

        with pytest.raises(ConfigurationError, match="event stream"):
            pool.monitor()

    def test_stream_error_is_terminal(self, resolver):
        stream, factory = stream_of(make_swap(tick=1), make_swap(tick=2), fail_after=1)
        pool = Pool(HEAVY, OTHER, 5, resolver, stream_factory=factory)
        observations = pool.monitor()

        assert next(observations).tick == 1
        with pytest.raises(StreamError, match="websocket closed"):
            next(observations)

        assert pool.status is PoolStatus.CLOSED
        # State stays at the last fully applied swap
        assert pool.tick == 1

    def test_malformed_event_halts(self, resolver):
        stream, factory = stream_of(make_swap(tick=1), "garbage")
        pool = Pool(HEAVY, OTHER, 5, resolver, stream_factory=factory)

        with pytest.raises(MalformedEvent):
            list(pool.monitor())
        assert pool.status is PoolStatus.CLOSED
        assert pool.events_applied == 1

    def test_stop_between_events(self, resolver):
        stream, factory = stream_of(*[make_swap(tick=t) for t in range(5)])
        pool = Pool(HEAVY, OTHER, 5, resolver, stream_factory=factory)
        observations = pool.monitor()

        next(observations)
        pool.stop()

        assert stream.stopped is True
        assert list(observations) == []
        assert pool.events_applied == 1
        assert pool.status is PoolStatus.CLOSED

    def test_stop_releases_suspended_stream(self, resolver):
        stream, factory = stream_of(*[make_swap(tick=t) for t in range(5)])
        pool = Pool(HEAVY, OTHER, 5, resolver, stream_factory=factory)
        observations = pool.monitor()

        next(observations)
        assert stream.released is False

        pool.stop()
        list(observations)

        assert stream.released is True

    def test_close_generator(self, resolver):
        stream, factory = stream_of(make_swap(tick=1), make_swap(tick=2))
        pool = Pool(HEAVY, OTHER, 5, resolver, stream_factory=factory)
        observations = pool.monitor()

        next(observations)
        observations.close()

        assert pool.status is PoolStatus.CLOSED
        with pytest.raises(SessionClosed):
            pool.apply(make_swap())

    def test_pools_are_independent(self, resolver):
        _, failing = stream_of(make_swap(), fail_after=0)
        _, healthy = stream_of(make_swap(tick=8))
        pool_a = Pool(HEAVY, OTHER, 5, resolver, stream_factory=failing)
        pool_b = Pool(HEAVY, OTHER, 30, resolver, stream_factory=healthy)

        with pytest.raises(StreamError):
            list(pool_a.monitor())
        assert [o.tick for o in pool_b.monitor()] == [8]
