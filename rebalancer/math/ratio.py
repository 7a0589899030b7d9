"""
Ratio rebalance calculator

Решает, нужен ли один своп, чтобы привести резервы к целевому соотношению
token0/token1, в какую сторону и на какую сумму.

Соотношение - fixed point с 18 знаками (FIXED_ONE = 1.0):
    current_ratio = balance0 * 10^decimals1 * FIXED_ONE / (balance1 * 10^decimals0)
то есть целых token0 на один целый token1.

Две стратегии за одним интерфейсом:
- PriceAwareRatioCalculator: решает линейное уравнение по цене пула
  (точная, используется когда цена известна)
- BalanceRatioCalculator: оценивает встречную сумму по текущему соотношению
  балансов (без зависимости от цены, менее точная)

1% каждого баланса никогда не тратится. Если точная цель недостижима за
один своп, выполняется частичная коррекция: сходимость к цели идёт за
несколько вызовов rebalance.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple

from .full_math import FIXED_ONE, checked_add, checked_mul, mul_div
from .ticks import Q192

logger = logging.getLogger(__name__)

MAX_DECIMALS = 38
RATIO_TOLERANCE = FIXED_ONE // 1_000_000  # 1 ppm
RESERVE_BPS = 9900                        # тратим не больше 99% баланса
BPS = 10000

# BalanceRatioCalculator
MIN_ESTIMATED_OUTPUT = 100                # ниже - amount_out_min = 0
ESTIMATE_SLIPPAGE_MULTIPLIER = 3
MAX_ESTIMATE_SLIPPAGE = FIXED_ONE // 2    # 50%


@dataclass(frozen=True)
class SwapPlan:
    """Результат расчёта: один своп или ничего."""
    should_swap: bool
    token_in: Optional[str] = None
    token_out: Optional[str] = None
    amount_in: int = 0
    amount_out_min: int = 0
    is_buy: bool = False  # True = покупаем token0 за token1

    @classmethod
    def none(cls) -> 'SwapPlan':
        return cls(should_swap=False)


@dataclass(frozen=True)
class RatioInputs:
    """Нормализованные входные данные одного расчёта."""
    balance0: int
    balance1: int
    scale0: int
    scale1: int
    target_ratio: int
    current_ratio: int
    slippage: int
    sqrt_price_x96: Optional[int] = None


def current_ratio(balance0: int, balance1: int, decimals0: int, decimals1: int) -> int:
    """Текущее соотношение целых token0 на целый token1 (FIXED_ONE = 1.0)."""
    return mul_div(
        checked_mul(balance0, 10 ** decimals1),
        FIXED_ONE,
        checked_mul(balance1, 10 ** decimals0),
    )


def max_spend(balance: int) -> int:
    """Сколько можно потратить, оставив 1% резерва."""
    return mul_div(balance, RESERVE_BPS, BPS)


class RatioCalculator(ABC):
    """
    Интерфейс калькулятора ребаланса.

    Базовый класс проверяет входные данные, допуск 1 ppm и итоговый план;
    стратегии считают только сумму свопа и ожидаемый выход.
    """

    name = "abstract"
    requires_price = False

    def plan_swap(
        self,
        balance0: int,
        balance1: int,
        decimals0: int,
        decimals1: int,
        target_ratio: int,
        slippage: int,
        token0: str,
        token1: str,
        sqrt_price_x96: Optional[int] = None
    ) -> SwapPlan:
        """
        Расчёт свопа для приведения резервов к target_ratio.

        Args:
            balance0: Баланс token0 (минимальные единицы)
            balance1: Баланс token1 (минимальные единицы)
            decimals0: Decimals token0 (0-38)
            decimals1: Decimals token1 (0-38)
            target_ratio: Целевое соотношение, FIXED_ONE = 1.0
            slippage: Допустимое проскальзывание, [0, FIXED_ONE]
            token0: Адрес token0
            token1: Адрес token1
            sqrt_price_x96: Текущая цена пула (Q96)

        Returns:
            SwapPlan (should_swap=False если своп не нужен или невозможен)

        Raises:
            ArithmeticOverflow: если промежуточные значения не помещаются в 256 бит
        """
        if target_ratio <= 0:
            return SwapPlan.none()
        if slippage < 0 or slippage > FIXED_ONE:
            return SwapPlan.none()
        if balance0 <= 0 or balance1 <= 0:
            return SwapPlan.none()
        if not (0 <= decimals0 <= MAX_DECIMALS and 0 <= decimals1 <= MAX_DECIMALS):
            return SwapPlan.none()
        if self.requires_price and not sqrt_price_x96:
            return SwapPlan.none()

        ratio = current_ratio(balance0, balance1, decimals0, decimals1)
        if abs(ratio - target_ratio) <= RATIO_TOLERANCE:
            logger.debug(f"Ratio {ratio} within 1ppm of target {target_ratio}, no swap")
            return SwapPlan.none()

        inputs = RatioInputs(
            balance0=balance0,
            balance1=balance1,
            scale0=10 ** decimals0,
            scale1=10 ** decimals1,
            target_ratio=target_ratio,
            current_ratio=ratio,
            slippage=slippage,
            sqrt_price_x96=sqrt_price_x96,
        )

        if ratio < target_ratio:
            # Не хватает token0 -> продаём token1
            amounts = self._buy_token0(inputs)
            token_in, token_out, balance_in, is_buy = token1, token0, balance1, True
        else:
            # Слишком много token0 -> продаём token0
            amounts = self._buy_token1(inputs)
            token_in, token_out, balance_in, is_buy = token0, token1, balance0, False

        if amounts is None:
            return SwapPlan.none()

        amount_in, expected_out = amounts
        amount_out_min, zero_min_allowed = self._min_output(expected_out, slippage)

        logger.debug(
            f"[{self.name}] ratio={ratio} target={target_ratio} "
            f"amount_in={amount_in} expected_out={expected_out} min_out={amount_out_min}"
        )

        plan = SwapPlan(
            should_swap=True,
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            amount_out_min=amount_out_min,
            is_buy=is_buy,
        )
        if not self._is_valid(plan, token0, token1, balance_in, zero_min_allowed):
            return SwapPlan.none()
        return plan

    @abstractmethod
    def _buy_token0(self, inputs: RatioInputs) -> Optional[Tuple[int, int]]:
        """(amount1_in, expected_amount0_out) или None."""

    @abstractmethod
    def _buy_token1(self, inputs: RatioInputs) -> Optional[Tuple[int, int]]:
        """(amount0_in, expected_amount1_out) или None."""

    @abstractmethod
    def _min_output(self, expected_out: int, slippage: int) -> Tuple[int, bool]:
        """(amount_out_min, разрешён ли нулевой минимум)."""

    def _is_valid(
        self,
        plan: SwapPlan,
        token0: str,
        token1: str,
        balance_in: int,
        zero_min_allowed: bool
    ) -> bool:
        pair = {token0.lower(), token1.lower()}
        if len(pair) != 2:
            logger.warning(f"[{self.name}] token0 == token1 ({token0}), no swap")
            return False
        if plan.token_in.lower() == plan.token_out.lower():
            return False
        if plan.token_in.lower() not in pair or plan.token_out.lower() not in pair:
            return False
        if plan.amount_in <= 0:
            return False
        if plan.amount_in > max_spend(balance_in):
            logger.warning(f"[{self.name}] amount_in {plan.amount_in} exceeds 99% of balance {balance_in}")
            return False
        if plan.amount_out_min <= 0 and not zero_min_allowed:
            logger.debug(f"[{self.name}] expected output rounds to zero, no swap")
            return False
        return True


class PriceAwareRatioCalculator(RatioCalculator):
    """
    Точный расчёт по цене пула.

    Покупка token0 (current < target), продаём delta1 token1:
        (b0 + delta1 * p01) * s1 * ONE / ((b1 - delta1) * s0) = target
        delta1 = (target*b1*s0 - b0*s1*ONE) / (p01*s1 + target*s0)
    где p01 = Q192 * ONE / sqrtP^2 - token0 за token1.

    Покупка token1 - зеркально, через p10 = sqrtP^2 * ONE / Q192.
    """

    name = "price-aware"
    requires_price = True

    def _buy_token0(self, inputs: RatioInputs) -> Optional[Tuple[int, int]]:
        sqrt_price = inputs.sqrt_price_x96
        price0_per_1 = mul_div(Q192, FIXED_ONE, sqrt_price) // sqrt_price
        limit = max_spend(inputs.balance1)

        wanted = checked_mul(inputs.target_ratio, inputs.balance1, inputs.scale0)
        have = checked_mul(inputs.balance0, inputs.scale1, FIXED_ONE)

        if wanted <= have:
            logger.info(f"[{self.name}] target unreachable by selling token1, spending maximum {limit}")
            delta1 = limit
        else:
            denominator = checked_add(
                checked_mul(price0_per_1, inputs.scale1),
                checked_mul(inputs.target_ratio, inputs.scale0),
            )
            delta1 = mul_div(wanted - have, 1, denominator)
            if delta1 > limit:
                logger.info(f"[{self.name}] partial correction: {delta1} capped at {limit}")
                delta1 = limit

        if delta1 == 0:
            return None
        return delta1, mul_div(delta1, price0_per_1, FIXED_ONE)

    def _buy_token1(self, inputs: RatioInputs) -> Optional[Tuple[int, int]]:
        sqrt_price = inputs.sqrt_price_x96
        price1_per_0 = mul_div(checked_mul(sqrt_price, FIXED_ONE), sqrt_price, Q192)
        limit = max_spend(inputs.balance0)

        have = checked_mul(inputs.balance0, inputs.scale1, FIXED_ONE)
        wanted = checked_mul(inputs.target_ratio, inputs.balance1, inputs.scale0)

        if have <= wanted:
            logger.info(f"[{self.name}] target unreachable by selling token0, spending maximum {limit}")
            delta0 = limit
        else:
            # delta0 = (have - wanted) / (s1*ONE + target*s0*p10/ONE), scaled by ONE
            denominator = checked_add(
                checked_mul(inputs.scale1, FIXED_ONE, FIXED_ONE),
                checked_mul(inputs.target_ratio, inputs.scale0, price1_per_0),
            )
            delta0 = mul_div(have - wanted, FIXED_ONE, denominator)
            if delta0 > limit:
                logger.info(f"[{self.name}] partial correction: {delta0} capped at {limit}")
                delta0 = limit

        if delta0 == 0:
            return None
        return delta0, mul_div(delta0, price1_per_0, FIXED_ONE)

    def _min_output(self, expected_out: int, slippage: int) -> Tuple[int, bool]:
        amount_out_min = mul_div(expected_out, FIXED_ONE - slippage, FIXED_ONE)
        if expected_out > 0 and amount_out_min == 0:
            amount_out_min = 1
        return amount_out_min, False


class BalanceRatioCalculator(RatioCalculator):
    """
    Оценка без цены пула.

    Сумма свопа - доля баланса, пропорциональная отклонению от цели;
    встречная сумма оценивается по текущему соотношению балансов
    (в единицах соотношения, без пересчёта decimals), поэтому:
    - ожидаемый выход < 100 единиц -> amount_out_min = 0
      (защиты от проскальзывания нет, принятый риск для пыли)
    - иначе slippage расширяется в 3 раза, но не больше 50%
    """

    name = "balance-ratio"
    requires_price = False

    def _buy_token0(self, inputs: RatioInputs) -> Optional[Tuple[int, int]]:
        limit = max_spend(inputs.balance1)
        delta1 = mul_div(inputs.balance1, inputs.target_ratio - inputs.current_ratio, inputs.target_ratio)
        delta1 = min(delta1, limit)
        if delta1 == 0:
            return None
        return delta1, mul_div(delta1, inputs.current_ratio, FIXED_ONE)

    def _buy_token1(self, inputs: RatioInputs) -> Optional[Tuple[int, int]]:
        limit = max_spend(inputs.balance0)
        delta0 = mul_div(inputs.balance0, inputs.current_ratio - inputs.target_ratio, inputs.current_ratio)
        delta0 = min(delta0, limit)
        if delta0 == 0:
            return None
        return delta0, mul_div(delta0, FIXED_ONE, inputs.current_ratio)

    def _min_output(self, expected_out: int, slippage: int) -> Tuple[int, bool]:
        if expected_out < MIN_ESTIMATED_OUTPUT:
            logger.warning(
                f"[{self.name}] estimated output {expected_out} below {MIN_ESTIMATED_OUTPUT} units, "
                f"swapping without minimum output"
            )
            return 0, True

        widened = min(slippage * ESTIMATE_SLIPPAGE_MULTIPLIER, MAX_ESTIMATE_SLIPPAGE)
        amount_out_min = mul_div(expected_out, FIXED_ONE - widened, FIXED_ONE)
        return max(amount_out_min, 1), False


def select_calculator(sqrt_price_x96: Optional[int]) -> RatioCalculator:
    """
    Цена пула известна -> точный расчёт, иначе оценка по балансам.

    Опорный сценарий 10000 / 1000 (decimals 6 / 8, цель 1e23) даёт
    amount_in=990, amount_out_min=960300 только у BalanceRatioCalculator.
    PriceAwareRatioCalculator при известной цене считает выход по цене пула,
    поэтому его план для того же сценария другой. Кому нужен именно опорный
    результат, должен вызвать plan_swap без sqrt_price_x96.
    """
    if sqrt_price_x96:
        return PriceAwareRatioCalculator()
    return BalanceRatioCalculator()


def plan_swap(
    balance0: int,
    balance1: int,
    decimals0: int,
    decimals1: int,
    target_ratio: int,
    slippage: int,
    token0: str,
    token1: str,
    sqrt_price_x96: Optional[int] = None
) -> SwapPlan:
    """Расчёт свопа стратегией, выбранной по наличию цены."""
    calculator = select_calculator(sqrt_price_x96)
    return calculator.plan_swap(
        balance0, balance1, decimals0, decimals1,
        target_ratio, slippage, token0, token1, sqrt_price_x96
    )
