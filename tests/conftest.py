"""
Shared fixtures: synthetic tokens and in-memory collaborators.

Token addresses are digit-only so they are already checksummed and their
canonical order is obvious (lower address = pool token0).
"""

from unittest.mock import Mock

import pytest

from clairvoyance.pool import SwapEvent
from clairvoyance.tokens import Token, TokenRegistry
from clairvoyance.uniswap_v3 import Q96, ZERO_ADDRESS

POOL_ADDRESS = "0x8888888888888888888888888888888888888888"
SENDER = "0x3333333333333333333333333333333333333333"
RECIPIENT = "0x4444444444444444444444444444444444444444"

# 18 decimals, lowest address: canonical token0 whenever paired with STABLE
HEAVY = Token("HEAVY", "0x1000000000000000000000000000000000000001", 18)
# 6 decimals
STABLE = Token("STABLE", "0x2000000000000000000000000000000000000002", 6)
# 18 decimals, highest address
OTHER = Token("OTHER", "0x9000000000000000000000000000000000000009", 18)


class ListStream:
    """Finite event stream that records stop() calls and iterator cleanup"""

    def __init__(self, events, fail_after=None):
        self.events = list(events)
        self.fail_after = fail_after
        self.stopped = False
        self.released = False

    def __iter__(self):
        try:
            for i, event in enumerate(self.events):
                if self.fail_after is not None and i >= self.fail_after:
                    raise ConnectionError("websocket closed")
                yield event
            if self.fail_after is not None and self.fail_after >= len(self.events):
                raise ConnectionError("websocket closed")
        finally:
            self.released = True

    def stop(self):
        self.stopped = True


def make_swap(tick=0, liquidity=10 ** 18, sqrt_price_x96=Q96, amount_0=1000, amount_1=-2000, **kwargs):
    return SwapEvent(
        sender=SENDER,
        recipient=RECIPIENT,
        amount_0=amount_0,
        amount_1=amount_1,
        liquidity=liquidity,
        tick=tick,
        sqrt_price_x96=sqrt_price_x96,
        **kwargs,
    )


@pytest.fixture
def registry():
    return TokenRegistry([HEAVY, STABLE, OTHER])


@pytest.fixture
def resolver():
    mock = Mock()
    mock.resolve_pool.return_value = POOL_ADDRESS
    return mock


@pytest.fixture
def missing_resolver():
    mock = Mock()
    mock.resolve_pool.return_value = ZERO_ADDRESS
    return mock


@pytest.fixture
def reader():
    return Mock()
