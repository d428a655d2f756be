# clairvoyance/uniswap_v3.py
"""
Uniswap V3 contract interfaces and sqrtPriceX96 price math.

sqrtPriceX96 is a Q64.96 fixed-point number: the stored integer equals
sqrt(token1_raw / token0_raw) * 2**96. See
https://docs.uniswap.org/sdk/guides/fetching-prices
"""

from decimal import Decimal, localcontext
from enum import IntEnum
from typing import Tuple

from web3 import Web3

from clairvoyance.config import DECIMAL_PRECISION
from clairvoyance.errors import ConfigurationError, InvalidFeeTier, UninitializedPool
from clairvoyance.tokens import Token

# =============================================================================
# ABI DEFINITIONS
# =============================================================================

FACTORY_ABI = [
    {
        "name": "getPool",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "tokenA", "type": "address"},
            {"name": "tokenB", "type": "address"},
            {"name": "fee", "type": "uint24"},
        ],
        "outputs": [{"name": "pool", "type": "address"}],
    },
]

POOL_ABI = [
    {
        "name": "slot0",
        "outputs": [
            {"name": "sqrtPriceX96", "type": "uint160"},
            {"name": "tick", "type": "int24"},
            {"name": "observationIndex", "type": "uint16"},
            {"name": "observationCardinality", "type": "uint16"},
            {"name": "observationCardinalityNext", "type": "uint16"},
            {"name": "feeProtocol", "type": "uint8"},
            {"name": "unlocked", "type": "bool"},
        ],
        "inputs": [],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "name": "liquidity",
        "outputs": [{"name": "", "type": "uint128"}],
        "inputs": [],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "name": "token0",
        "outputs": [{"type": "address"}],
        "inputs": [],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "name": "token1",
        "outputs": [{"type": "address"}],
        "inputs": [],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "name": "Swap",
        "type": "event",
        "anonymous": False,
        "inputs": [
            {"name": "sender", "type": "address", "indexed": True},
            {"name": "recipient", "type": "address", "indexed": True},
            {"name": "amount0", "type": "int256", "indexed": False},
            {"name": "amount1", "type": "int256", "indexed": False},
            {"name": "sqrtPriceX96", "type": "uint160", "indexed": False},
            {"name": "liquidity", "type": "uint128", "indexed": False},
            {"name": "tick", "type": "int24", "indexed": False},
        ],
    },
]

# =============================================================================
# CONSTANTS
# =============================================================================

# get_pool() returns the zero address if the pool does not exist
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

Q96 = 2 ** 96
UINT256_MAX = 2 ** 256 - 1

LIMB_BITS = 64
LIMB_MASK = (1 << LIMB_BITS) - 1

TWO_64 = Decimal(2 ** 64)
TWO_128 = Decimal(2 ** 128)
TWO_192 = Decimal(2 ** 192)
TWO_96 = Decimal(Q96)


class FeeTier(IntEnum):
    """Pool fee in basis points; the factory takes hundredths of a bip."""
    BP_1 = 1      # 0.01%
    BP_5 = 5      # 0.05%
    BP_30 = 30    # 0.30%
    BP_100 = 100  # 1.00%

    @property
    def factory_fee(self) -> int:
        return int(self) * 100


def parse_fee_tier(bp) -> FeeTier:
    """
    Validate a fee tier given as int or string of digits.

    Raises InvalidFeeTier for anything outside {1, 5, 30, 100}. Floats,
    Decimals and bools are rejected rather than truncated.
    """
    if isinstance(bp, bool):
        raise InvalidFeeTier(bp)
    if isinstance(bp, str) and bp.strip().isdigit():
        bp = int(bp.strip())
    if not isinstance(bp, int):
        raise InvalidFeeTier(bp)
    try:
        return FeeTier(bp)
    except ValueError:
        raise InvalidFeeTier(bp) from None


# =============================================================================
# PRICE MATH
# =============================================================================

def split_limbs(value: int) -> Tuple[int, int, int, int]:
    """Split a uint256 into four 64-bit limbs, least significant first"""
    if value < 0 or value > UINT256_MAX:
        raise ValueError(f"{value} is not a uint256")
    return (
        value & LIMB_MASK,
        (value >> 64) & LIMB_MASK,
        (value >> 128) & LIMB_MASK,
        (value >> 192) & LIMB_MASK,
    )


def convert_q64_96(q64_96: int) -> Decimal:
    """
    Decode a Q64.96 fixed-point value into value / 2**96.

    The limbs are recombined in Decimal arithmetic at DECIMAL_PRECISION
    significant digits, so a full uint256 is represented exactly before the
    division.
    """
    least_sig, second_sig, third_sig, most_sig = split_limbs(q64_96)

    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION
        value = (
            Decimal(most_sig) * TWO_192
            + Decimal(third_sig) * TWO_128
            + Decimal(second_sig) * TWO_64
            + Decimal(least_sig)
        )
        return value / TWO_96


def sqrt_price_x96_to_price_decimal(sqrt_price_x96: int) -> Decimal:
    """Raw token1/token0 ratio in base units, before decimal normalization"""
    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION
        return convert_q64_96(sqrt_price_x96) ** 2


def compute_price(tokens: Tuple[Token, Token], sqrt_price_x96: int, pool_token_0: str) -> Decimal:
    """
    Price of tokens[0] expressed in units of tokens[1].

    pool_token_0 is the pool's canonical token0. When it is tokens[0] the raw
    ratio already reads tokens[1] per tokens[0] and only needs the decimal
    shift; otherwise the ratio is inverted.
    """
    base, quote = tokens
    diff_decimals = base.decimals - quote.decimals

    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION
        price_raw = sqrt_price_x96_to_price_decimal(sqrt_price_x96)
        scale = Decimal(10) ** diff_decimals

        if pool_token_0.lower() == base.address.lower():
            return price_raw * scale

        if price_raw == 0:
            raise UninitializedPool()
        return scale / price_raw


def sort_tokens(token_a: Token, token_b: Token) -> Tuple[Token, Token]:
    """Canonical Uniswap ordering: token0 has the lower address"""
    if token_a.address.lower() == token_b.address.lower():
        raise ConfigurationError(f"Identical token addresses: {token_a.symbol}/{token_b.symbol}")
    if int(token_a.address, 16) < int(token_b.address, 16):
        return token_a, token_b
    return token_b, token_a


def is_zero_address(address: str) -> bool:
    return Web3.to_checksum_address(address) == ZERO_ADDRESS
