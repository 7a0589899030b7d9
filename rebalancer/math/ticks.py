"""
Slipstream / Uniswap V3 Tick Mathematics

Основные формулы:
- price(i) = 1.0001^i
- sqrtPriceX96 = sqrt(price) * 2^96

get_sqrt_ratio_at_tick - точная целочисленная версия (как TickMath.sol),
используется во всех расчётах ликвидности.
Float-функции (price_to_tick, tick_to_price, sqrt_price_x96_to_price) нужны
только для ввода/вывода человекочитаемых цен в CLI.

Slipstream пулы задаются tick spacing напрямую (1, 50, 100, 200, 2000),
а не fee tier.
"""

import math

from ..errors import TickOutOfRange

# Константы
Q96 = 2 ** 96
Q192 = 2 ** 192
MIN_TICK = -887272
MAX_TICK = 887272
MIN_SQRT_RATIO = 4295128739
MAX_SQRT_RATIO = 1461446703485210103287273052203988822378723970342

# 1 / sqrt(1.0001)^(2^k) in Q128, k = 1..19
_RATIO_TABLE = (
    (0x2, 0xFFF97272373D413259A46990580E213A),
    (0x4, 0xFFF2E50F5F656932EF12357CF3C7FDCC),
    (0x8, 0xFFE5CACA7E10E4E61C3624EAA0941CD0),
    (0x10, 0xFFCB9843D60F6159C9DB58835C926644),
    (0x20, 0xFF973B41FA98C081472E6896DFB254C0),
    (0x40, 0xFF2EA16466C96A3843EC78B326B52861),
    (0x80, 0xFE5DEE046A99A2A811C461F1969C3053),
    (0x100, 0xFCBE86C7900A88AEDCFFC83B479AA3A4),
    (0x200, 0xF987A7253AC413176F2B074CF7815E54),
    (0x400, 0xF3392B0822B70005940C7A398E4B70F3),
    (0x800, 0xE7159475A2C29B7443B29C7FA6E889D9),
    (0x1000, 0xD097F3BDFD2022B8845AD8F792AA5825),
    (0x2000, 0xA9F746462D870FDF8A65DC1F90E061E5),
    (0x4000, 0x70D869A156D2A1B890BB3DF62BAF32F7),
    (0x8000, 0x31BE135F97D08FD981231505542FCFA6),
    (0x10000, 0x9AA508B5B7A84E1C677DE54F3E99BC9),
    (0x20000, 0x5D6AF8DEDB81196699C329225EE604),
    (0x40000, 0x2216E584F5FA1EA926041BEDFE98),
    (0x80000, 0x48A170391F7DC42444E8FA2),
)

_MAX_UINT256 = (1 << 256) - 1


def get_sqrt_ratio_at_tick(tick: int) -> int:
    """
    Точный sqrt(1.0001^tick) * 2^96.

    Бинарное возведение в степень по таблице: каждый установленный бит |tick|
    умножает аккумулятор (Q128) на константу и сдвигает на 128 бит.
    Для положительного тика аккумулятор инвертируется.
    Результат переводится из Q128 в Q96 с округлением вверх.

    Args:
        tick: Номер тика в [MIN_TICK, MAX_TICK]

    Returns:
        sqrtPriceX96 (целое число)

    Raises:
        TickOutOfRange: |tick| > MAX_TICK
    """
    abs_tick = -tick if tick < 0 else tick
    if abs_tick > MAX_TICK:
        raise TickOutOfRange(tick)

    if abs_tick & 0x1:
        ratio = 0xFFFCB933BD6FAD37AA2D162D1A594001
    else:
        ratio = 0x100000000000000000000000000000000

    for bit, multiplier in _RATIO_TABLE:
        if abs_tick & bit:
            ratio = (ratio * multiplier) >> 128

    if tick > 0:
        ratio = _MAX_UINT256 // ratio

    return (ratio >> 32) + (1 if ratio % (1 << 32) else 0)


def price_to_tick(price: float, invert: bool = False) -> int:
    """
    Конвертация цены в тик (float, для CLI).

    price(i) = 1.0001^i
    i = log(price) / log(1.0001)

    Args:
        price: Цена token1/token0 в минимальных единицах (pool price)
        invert: Если True, price задана как token0/token1

    Returns:
        Tick, ограниченный [MIN_TICK, MAX_TICK]
    """
    if price <= 0:
        raise ValueError("Price must be positive")

    if invert:
        price = 1.0 / price

    tick = math.floor(math.log(price) / math.log(1.0001))
    return max(MIN_TICK, min(MAX_TICK, tick))


def human_price_to_tick(price: float, decimals0: int, decimals1: int) -> int:
    """
    Тик для человекочитаемой цены (token1 за 1 целый token0).

    Pool price в минимальных единицах = price * 10^(decimals1 - decimals0).
    """
    if price <= 0:
        raise ValueError("Price must be positive")
    return price_to_tick(price * (10 ** (decimals1 - decimals0)))


def tick_to_price(tick: int, invert: bool = False) -> float:
    """
    Конвертация тика в цену (token1/token0 в минимальных единицах).

    Args:
        tick: Номер тика
        invert: Если True, возвращает цену token0/token1
    """
    pool_price = 1.0001 ** tick
    if invert:
        return 1.0 / pool_price
    return pool_price


def align_tick_to_spacing(tick: int, tick_spacing: int, round_down: bool = True) -> int:
    """
    Выравнивание тика к tick_spacing.

    Позиция может использовать только тики, кратные tick_spacing пула.

    Args:
        tick: Исходный тик
        tick_spacing: Шаг тиков пула
        round_down: True = округление вниз (к -∞), False = вверх (к +∞)

    Returns:
        Выровненный тик
    """
    if tick_spacing <= 0:
        raise ValueError("tick_spacing must be positive")

    if tick % tick_spacing == 0:
        return tick

    if round_down:
        # Floor division works correctly for both positive and negative
        return (tick // tick_spacing) * tick_spacing
    return ((tick // tick_spacing) + 1) * tick_spacing


def sqrt_price_x96_to_price(sqrt_price_x96: int, decimals0: int = 18, decimals1: int = 18) -> float:
    """
    Конвертация sqrtPriceX96 в человекочитаемую цену.

    price = (sqrtPriceX96 / 2^96)^2 * 10^(decimals0 - decimals1)

    Returns:
        Цена: сколько целых token1 за 1 целый token0
    """
    sqrt_price = sqrt_price_x96 / Q96
    return (sqrt_price ** 2) * (10 ** (decimals0 - decimals1))
