"""
Full-precision 256-bit fixed point math

Точное floor(a * b / denominator) без переполнения промежуточного
произведения:
- произведение a * b хранится как 512-битное число [prod1 prod0]
- из знаменателя выносится степень двойки
- обратный элемент нечётной части считается итерациями Ньютона
  (8 -> 16 -> 32 -> 64 -> 128 -> 256 бит)

Все операнды - uint256. Всё, что выходит за 256 бит, - ArithmeticOverflow,
никакого молчаливого ограничения значений.
"""

from ..errors import ArithmeticOverflow, DivisionByZero

# Константы
MAX_UINT256 = (1 << 256) - 1
MAX_UINT128 = (1 << 128) - 1
FIXED_ONE = 10 ** 18


def _require_uint256(*values: int):
    for value in values:
        if value < 0 or value > MAX_UINT256:
            raise ArithmeticOverflow(f"Operand {value} is not a uint256")


def checked_mul(*factors: int) -> int:
    """
    Произведение с проверкой переполнения uint256.

    Raises:
        ArithmeticOverflow: если результат (или любой множитель) не помещается в 256 бит
    """
    _require_uint256(*factors)
    result = 1
    for factor in factors:
        result *= factor
        if result > MAX_UINT256:
            raise ArithmeticOverflow(f"Product of {factors} overflows uint256")
    return result


def checked_add(*terms: int) -> int:
    """Сумма с проверкой переполнения uint256."""
    _require_uint256(*terms)
    result = sum(terms)
    if result > MAX_UINT256:
        raise ArithmeticOverflow(f"Sum of {terms} overflows uint256")
    return result


def mul_div(a: int, b: int, denominator: int) -> int:
    """
    floor(a * b / denominator) с полной точностью.

    Args:
        a: Множимое (uint256)
        b: Множитель (uint256)
        denominator: Делитель (uint256, > 0)

    Returns:
        Частное, округлённое вниз

    Raises:
        DivisionByZero: denominator == 0
        ArithmeticOverflow: частное не помещается в 256 бит
    """
    _require_uint256(a, b, denominator)
    if denominator == 0:
        raise DivisionByZero("mul_div: denominator is zero")

    # 512-bit product: prod0 = low limb, prod1 = high limb
    prod0 = (a * b) & MAX_UINT256
    mm = (a * b) % MAX_UINT256
    prod1 = (mm - prod0 - (1 if mm < prod0 else 0)) & MAX_UINT256

    # Fast path: product fits into 256 bits
    if prod1 == 0:
        return prod0 // denominator

    if denominator <= prod1:
        raise ArithmeticOverflow(
            f"mul_div: quotient of {a} * {b} / {denominator} overflows uint256"
        )

    # Make the division exact by subtracting the remainder from [prod1 prod0]
    remainder = (a * b) % denominator
    prod1 = (prod1 - (1 if remainder > prod0 else 0)) & MAX_UINT256
    prod0 = (prod0 - remainder) & MAX_UINT256

    # Largest power of two dividing the denominator
    twos = denominator & ((-denominator) & MAX_UINT256)
    denominator //= twos
    prod0 //= twos

    # Shift bits from prod1 into prod0: twos becomes 2^256 / twos (0 when twos == 1)
    twos = ((((-twos) & MAX_UINT256) // twos) + 1) & MAX_UINT256
    prod0 |= (prod1 * twos) & MAX_UINT256

    # Inverse of the odd denominator mod 2^256; seed is correct to 4 bits
    inv = ((3 * denominator) ^ 2) & MAX_UINT256
    for _ in range(6):
        inv = (inv * (2 - denominator * inv)) & MAX_UINT256

    return (prod0 * inv) & MAX_UINT256


def mul_div_rounding_up(a: int, b: int, denominator: int) -> int:
    """ceil(a * b / denominator) с полной точностью."""
    result = mul_div(a, b, denominator)
    if (a * b) % denominator > 0:
        if result >= MAX_UINT256:
            raise ArithmeticOverflow("mul_div_rounding_up: result overflows uint256")
        result += 1
    return result
