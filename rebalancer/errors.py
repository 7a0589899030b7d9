"""
Exceptions for the Slipstream rebalancer.

Arithmetic and validation errors always reach the caller. Collaborator
failures are raised only where the operation cannot continue (deposits,
withdrawals, swaps); close-time cleanup and position creation branch on
the CallResult instead.
"""

from dataclasses import dataclass
from typing import Optional


class RebalancerError(Exception):
    """Base class for all rebalancer errors."""


class InvalidInput(RebalancerError, ValueError):
    """Malformed ratio, slippage, tick range, decimals or amount."""


class ArithmeticOverflow(RebalancerError, ArithmeticError):
    """Result does not fit into 256 bits."""


class DivisionByZero(RebalancerError, ZeroDivisionError):
    """mul_div called with a zero denominator."""


class TickOutOfRange(RebalancerError, ValueError):
    """Tick outside [MIN_TICK, MAX_TICK]."""

    def __init__(self, tick: int):
        self.tick = tick
        super().__init__(f"Tick {tick} is out of range [-887272, 887272]")


@dataclass
class CollaboratorCallFailed(RebalancerError):
    """An external call (token, position manager, gauge, pool) failed."""
    operation: str
    error: Optional[str] = None
    tx_hash: Optional[str] = None

    def __str__(self):
        msg = f"{self.operation} failed"
        if self.error:
            msg += f": {self.error}"
        if self.tx_hash:
            msg += f" (tx {self.tx_hash})"
        return msg


@dataclass
class Unauthorized(RebalancerError):
    """Mutating call made by an address other than the controller."""
    caller: str
    controller: str

    def __str__(self):
        return f"Caller {self.caller} is not the controller {self.controller}"


class ConfigError(RebalancerError, ValueError):
    """Missing or malformed environment configuration."""
