"""
Allocation planner

Сколько каждого резерва запросить у новой позиции [tick_lower, tick_upper]
при текущей цене:
- цена ниже диапазона -> нужен только token0
- цена выше диапазона -> нужен только token1
- цена внутри -> оба токена в пропорции, которую задаёт инвариант AMM

Граница по соглашению Uniswap: sqrtP <= lower - ниже, sqrtP >= upper - выше.
"""

import logging
from enum import Enum
from typing import Optional, Tuple

from ..errors import ArithmeticOverflow, DivisionByZero, TickOutOfRange
from .full_math import FIXED_ONE, MAX_UINT256, mul_div
from .ticks import Q96, get_sqrt_ratio_at_tick

logger = logging.getLogger(__name__)

# Decimals к которым приводятся балансы при сравнении
_NORMALIZED_DECIMALS = 38


class PriceRegion(Enum):
    BELOW = "below"    # только token0
    INSIDE = "inside"  # оба токена
    ABOVE = "above"    # только token1


def price_region(sqrt_price_x96: int, sqrt_a: int, sqrt_b: int) -> PriceRegion:
    """Положение цены относительно диапазона (границы в любом порядке)."""
    sqrt_lower, sqrt_upper = min(sqrt_a, sqrt_b), max(sqrt_a, sqrt_b)
    if sqrt_price_x96 <= sqrt_lower:
        return PriceRegion.BELOW
    if sqrt_price_x96 >= sqrt_upper:
        return PriceRegion.ABOVE
    return PriceRegion.INSIDE


def range_ratio(sqrt_price_x96: int, sqrt_lower: int, sqrt_upper: int) -> int:
    """
    Сколько token0 нужно на единицу token1 для позиции, когда цена внутри.

    ratio = (sqrt_upper - sqrt_current) * Q96 * ONE
            / ((sqrt_upper * sqrt_current / Q96) * (sqrt_current - sqrt_lower))

    Returns:
        Соотношение в минимальных единицах (FIXED_ONE = 1.0),
        MAX_UINT256 если результат не представим
    """
    try:
        upper_times_current = mul_div(sqrt_upper, sqrt_price_x96, Q96)
        scaled = mul_div(sqrt_upper - sqrt_price_x96, Q96 * FIXED_ONE, upper_times_current)
        return mul_div(scaled, 1, sqrt_price_x96 - sqrt_lower)
    except (ArithmeticOverflow, DivisionByZero):
        return MAX_UINT256


def _normalized(amount: int, decimals: int) -> int:
    return amount * 10 ** (_NORMALIZED_DECIMALS - decimals)


def _try_mul_div(a: int, b: int, denominator: int) -> Optional[int]:
    try:
        return mul_div(a, b, denominator)
    except ArithmeticOverflow:
        return None


def _single_asset(region: PriceRegion, balance0: int, balance1: int) -> Tuple[int, int]:
    if region is PriceRegion.BELOW:
        return balance0, 0
    if region is PriceRegion.ABOVE:
        return 0, balance1
    # Внутри диапазона нужны оба токена
    logger.info("Price inside range but only one token available, nothing to deposit")
    return 0, 0


def _proportional(
    ratio: int,
    balance0: int,
    balance1: int,
    decimals0: int,
    decimals1: int
) -> Tuple[int, int]:
    # Option A: весь token1, token0 по пропорции
    need0 = _try_mul_div(balance1, ratio, FIXED_ONE)
    # Option B: весь token0, token1 по пропорции
    need1 = _try_mul_div(balance0, FIXED_ONE, ratio)

    fits_a = need0 is not None and need0 <= balance0
    fits_b = need1 is not None and need1 <= balance1

    if fits_a and fits_b:
        # Сначала исчерпываем больший баланс
        if _normalized(balance0, decimals0) >= _normalized(balance1, decimals1):
            return balance0, need1
        return need0, balance1
    if fits_a:
        return need0, balance1
    if fits_b:
        return balance0, need1

    # Ни один баланс не подходит точно (округление) - меньший остаток
    left_a = None if need0 is None else _normalized(abs(balance0 - need0), decimals0)
    left_b = None if need1 is None else _normalized(abs(balance1 - need1), decimals1)
    if left_b is None or (left_a is not None and left_a <= left_b):
        return min(need0, balance0), balance1
    return balance0, min(need1, balance1)


def desired_amounts(
    tick_lower: int,
    tick_upper: int,
    balance0: int,
    balance1: int,
    decimals0: int,
    decimals1: int,
    sqrt_price_x96: int
) -> Tuple[int, int]:
    """
    Количества token0/token1 для новой позиции.

    Args:
        tick_lower: Нижний тик
        tick_upper: Верхний тик
        balance0: Доступный token0
        balance1: Доступный token1
        decimals0: Decimals token0
        decimals1: Decimals token1
        sqrt_price_x96: Текущая цена пула

    Returns:
        (amount0, amount1). (0, 0) - позицию открывать нечем
    """
    if balance0 == 0 and balance1 == 0:
        return 0, 0

    try:
        sqrt_a = get_sqrt_ratio_at_tick(tick_lower)
        sqrt_b = get_sqrt_ratio_at_tick(tick_upper)
    except TickOutOfRange as e:
        logger.warning(f"{e}, depositing balances as-is")
        return balance0, balance1

    sqrt_lower, sqrt_upper = min(sqrt_a, sqrt_b), max(sqrt_a, sqrt_b)
    region = price_region(sqrt_price_x96, sqrt_lower, sqrt_upper)

    if balance0 == 0 or balance1 == 0:
        return _single_asset(region, balance0, balance1)

    if region is PriceRegion.BELOW:
        return balance0, 0
    if region is PriceRegion.ABOVE:
        return 0, balance1

    ratio = range_ratio(sqrt_price_x96, sqrt_lower, sqrt_upper)
    if ratio == 0 or ratio >= MAX_UINT256:
        logger.warning(f"Degenerate range ratio {ratio}, depositing balances as-is")
        return balance0, balance1

    amount0, amount1 = _proportional(ratio, balance0, balance1, decimals0, decimals1)
    logger.debug(f"Allocation inside range: ratio={ratio} -> amount0={amount0}, amount1={amount1}")
    return amount0, amount1
