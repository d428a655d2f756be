# clairvoyance/tokens.py
"""
Token Registry for Ethereum Mainnet
Symbol -> (address, decimals) lookup used to build pools
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from web3 import Web3

from clairvoyance.config import TOKENS_FILE
from clairvoyance.errors import TokenNotFound

logger = logging.getLogger(__name__)

# =============================================================================
# TOKEN ADDRESSES (Ethereum Mainnet - All Checksummed)
# =============================================================================

# Stablecoins
USDC = Web3.to_checksum_address("0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48")
USDT = Web3.to_checksum_address("0xdac17f958d2ee523a2206206994597c13d831ec7")
DAI = Web3.to_checksum_address("0x6b175474e89094c44da98b954eedeac495271d0f")

# Native/Wrapped
WETH = Web3.to_checksum_address("0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2")
WBTC = Web3.to_checksum_address("0x2260fac5e5542a773aa44fbcfedf7c193bc2c599")

# Major DeFi Tokens
LINK = Web3.to_checksum_address("0x514910771af9ca656af840dff83e8264ecf986ca")
UNI = Web3.to_checksum_address("0x1f9840a85d5af5bf1d1762f925bdaddc4201f984")

# =============================================================================
# TOKEN METADATA
# =============================================================================

@dataclass(frozen=True)
class Token:
    symbol: str
    address: str
    decimals: int


BUILTIN_TOKENS: List[Token] = [
    # Uniswap V3 pools hold WETH, so ETH resolves to the wrapped token
    Token("ETH", WETH, 18),
    Token("WETH", WETH, 18),
    Token("USDC", USDC, 6),
    Token("USDT", USDT, 6),
    Token("DAI", DAI, 18),
    Token("WBTC", WBTC, 8),
    Token("LINK", LINK, 18),
    Token("UNI", UNI, 18),
]


class TokenRegistry:
    """
    Immutable symbol -> Token lookup.

    Symbols are matched exactly first, then case-insensitively.
    """

    def __init__(self, tokens: Iterable[Token]):
        self._by_symbol: Dict[str, Token] = {}
        for token in tokens:
            self._by_symbol[token.symbol] = token

    def resolve(self, symbol: str) -> Token:
        """Get token by symbol, raising TokenNotFound if absent"""
        token = self._by_symbol.get(symbol)
        if token is not None:
            return token

        wanted = symbol.upper()
        for known, token in self._by_symbol.items():
            if known.upper() == wanted:
                return token

        raise TokenNotFound(symbol)

    def symbols(self) -> List[str]:
        return list(self._by_symbol.keys())

    def __contains__(self, symbol: str) -> bool:
        try:
            self.resolve(symbol)
        except TokenNotFound:
            return False
        return True

    def __len__(self) -> int:
        return len(self._by_symbol)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def load_token_file(path) -> List[Token]:
    """
    Load a JSON token list:

        [{"symbol": "WETH", "address": "0x...", "decimals": 18}, ...]
    """
    raw = json.loads(Path(path).read_text())
    if not isinstance(raw, list):
        raise ValueError(f"Token file {path} must contain a JSON list")

    tokens = []
    for entry in raw:
        try:
            tokens.append(Token(
                symbol=str(entry["symbol"]),
                address=Web3.to_checksum_address(entry["address"]),
                decimals=int(entry["decimals"]),
            ))
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Invalid token entry in {path}: {entry!r}") from e

    return tokens


def default_registry(tokens_file: Optional[str] = TOKENS_FILE) -> TokenRegistry:
    """Built-in mainnet registry, or the configured TOKENS_FILE when set"""
    if tokens_file:
        tokens = load_token_file(tokens_file)
        logger.info(f"Loaded {len(tokens)} tokens from {tokens_file}")
        return TokenRegistry(tokens)
    return TokenRegistry(BUILTIN_TOKENS)
