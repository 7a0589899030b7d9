"""
Concentrated Liquidity Mathematics (integer, as LiquidityAmounts.sol)

Формулы из whitepaper (sqrt цены в Q96):
- L = amount0 * (sqrt_upper * sqrt_lower) / (sqrt_upper - sqrt_lower)
- L = amount1 / (sqrt_upper - sqrt_lower)

Когда текущая цена в диапазоне:
- L0 = amount0 * (sqrt_upper * sqrt_current) / (sqrt_upper - sqrt_current)
- L1 = amount1 / (sqrt_current - sqrt_lower)
- L = min(L0, L1)

Используется для оценки того, сколько токенов реально заберёт mint,
и расчёта amount0Min / amount1Min.
"""

from dataclasses import dataclass
from typing import Tuple

from ..errors import ArithmeticOverflow
from .full_math import mul_div, mul_div_rounding_up, MAX_UINT128
from .ticks import Q96


@dataclass
class LiquidityAmounts:
    """Результат расчёта количества токенов."""
    amount0: int  # В минимальных единицах
    amount1: int  # В минимальных единицах
    liquidity: int


def _sorted(sqrt_a: int, sqrt_b: int) -> Tuple[int, int]:
    return (sqrt_a, sqrt_b) if sqrt_a <= sqrt_b else (sqrt_b, sqrt_a)


def _to_uint128(value: int) -> int:
    if value > MAX_UINT128:
        raise ArithmeticOverflow(f"Liquidity {value} overflows uint128")
    return value


def get_liquidity_for_amount0(sqrt_a: int, sqrt_b: int, amount0: int) -> int:
    """Liquidity по количеству token0 (цена ниже диапазона)."""
    sqrt_a, sqrt_b = _sorted(sqrt_a, sqrt_b)
    if sqrt_a == sqrt_b:
        return 0
    intermediate = mul_div(sqrt_a, sqrt_b, Q96)
    return _to_uint128(mul_div(amount0, intermediate, sqrt_b - sqrt_a))


def get_liquidity_for_amount1(sqrt_a: int, sqrt_b: int, amount1: int) -> int:
    """Liquidity по количеству token1 (цена выше диапазона)."""
    sqrt_a, sqrt_b = _sorted(sqrt_a, sqrt_b)
    if sqrt_a == sqrt_b:
        return 0
    return _to_uint128(mul_div(amount1, Q96, sqrt_b - sqrt_a))


def get_liquidity_for_amounts(
    sqrt_price: int,
    sqrt_a: int,
    sqrt_b: int,
    amount0: int,
    amount1: int
) -> int:
    """
    Максимальная liquidity для заданных количеств токенов.

    Три случая:
    1. current <= lower: позиция полностью в token0
    2. current >= upper: позиция полностью в token1
    3. иначе: нужны оба токена, берём лимитирующий
    """
    sqrt_a, sqrt_b = _sorted(sqrt_a, sqrt_b)

    if sqrt_price <= sqrt_a:
        return get_liquidity_for_amount0(sqrt_a, sqrt_b, amount0)

    if sqrt_price < sqrt_b:
        liquidity0 = get_liquidity_for_amount0(sqrt_price, sqrt_b, amount0)
        liquidity1 = get_liquidity_for_amount1(sqrt_a, sqrt_price, amount1)
        return min(liquidity0, liquidity1)

    return get_liquidity_for_amount1(sqrt_a, sqrt_b, amount1)


def get_amount0_for_liquidity(sqrt_a: int, sqrt_b: int, liquidity: int, round_up: bool = False) -> int:
    """amount0 = L * (sqrt_upper - sqrt_lower) / (sqrt_upper * sqrt_lower)"""
    sqrt_a, sqrt_b = _sorted(sqrt_a, sqrt_b)
    if sqrt_a == 0:
        return 0
    if round_up:
        return -(-mul_div_rounding_up(liquidity << 96, sqrt_b - sqrt_a, sqrt_b) // sqrt_a)
    return mul_div(liquidity << 96, sqrt_b - sqrt_a, sqrt_b) // sqrt_a


def get_amount1_for_liquidity(sqrt_a: int, sqrt_b: int, liquidity: int, round_up: bool = False) -> int:
    """amount1 = L * (sqrt_upper - sqrt_lower)"""
    sqrt_a, sqrt_b = _sorted(sqrt_a, sqrt_b)
    if round_up:
        return mul_div_rounding_up(liquidity, sqrt_b - sqrt_a, Q96)
    return mul_div(liquidity, sqrt_b - sqrt_a, Q96)


def get_amounts_for_liquidity(
    sqrt_price: int,
    sqrt_a: int,
    sqrt_b: int,
    liquidity: int
) -> Tuple[int, int]:
    """
    Количество токенов, соответствующее liquidity при текущей цене.

    Returns:
        (amount0, amount1)
    """
    sqrt_a, sqrt_b = _sorted(sqrt_a, sqrt_b)

    if liquidity <= 0:
        return 0, 0

    if sqrt_price <= sqrt_a:
        return get_amount0_for_liquidity(sqrt_a, sqrt_b, liquidity), 0

    if sqrt_price < sqrt_b:
        return (
            get_amount0_for_liquidity(sqrt_price, sqrt_b, liquidity),
            get_amount1_for_liquidity(sqrt_a, sqrt_price, liquidity),
        )

    return 0, get_amount1_for_liquidity(sqrt_a, sqrt_b, liquidity)


def estimate_mint(
    sqrt_price: int,
    sqrt_a: int,
    sqrt_b: int,
    amount0_desired: int,
    amount1_desired: int
) -> LiquidityAmounts:
    """Оценка liquidity и реально используемых количеств для mint."""
    liquidity = get_liquidity_for_amounts(sqrt_price, sqrt_a, sqrt_b, amount0_desired, amount1_desired)
    amount0, amount1 = get_amounts_for_liquidity(sqrt_price, sqrt_a, sqrt_b, liquidity)
    return LiquidityAmounts(amount0=amount0, amount1=amount1, liquidity=liquidity)
