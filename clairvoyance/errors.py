"""
Exceptions raised by pool construction, price queries and monitoring.

Configuration and existence errors are fatal to a single construction
attempt. State errors are recoverable by waiting for the first swap.
Stream errors end one pool's monitoring session only.
"""

from typing import Optional


class ClairvoyanceError(Exception):
    """Base exception for pool monitoring."""
    pass


class ConfigurationError(ClairvoyanceError):
    """Raised for bad caller input, before any external call is made."""
    pass


class InvalidFeeTier(ConfigurationError):
    """Raised when a fee tier outside {1, 5, 30, 100} bps is requested."""

    def __init__(self, bp):
        super().__init__(f"Fee tier {bp} bps does not exist (expected one of 1, 5, 30, 100)")
        self.bp = bp


class TokenNotFound(ConfigurationError):
    """Raised when a token symbol is absent from the registry."""

    def __init__(self, symbol: str):
        super().__init__(f"Token {symbol!r} not found in registry")
        self.symbol = symbol


class PoolDoesNotExist(ClairvoyanceError):
    """Raised when the factory resolves a pair/tier to the zero address."""

    def __init__(self, token_0: str, token_1: str, bp: int):
        super().__init__(f"Pool {token_0}/{token_1} with fee tier {bp} bps does not exist")
        self.token_0 = token_0
        self.token_1 = token_1
        self.bp = bp


class UninitializedPool(ClairvoyanceError):
    """Raised when a price is requested before any pool state was observed."""

    def __init__(self, address: Optional[str] = None):
        where = f" {address}" if address else ""
        super().__init__(f"Pool{where} has no observed state yet; wait for the first swap")
        self.address = address


class StreamError(ClairvoyanceError):
    """Raised when a pool's event stream fails; ends that pool's session."""

    def __init__(self, address: str, reason: str):
        super().__init__(f"Event stream for pool {address} failed: {reason}")
        self.address = address
        self.reason = reason


class MalformedEvent(StreamError):
    """Raised when a log cannot be decoded into a swap event."""
    pass


class StateConsistencyError(ClairvoyanceError):
    """Raised when applied pool state differs from the event that produced it."""
    pass


class SessionClosed(ClairvoyanceError):
    """Raised when monitoring is requested on a closed or already-monitored pool."""
    pass
