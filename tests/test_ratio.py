"""
Tests for the ratio rebalance calculators.

Покрытие:
- сценарии с известным результатом
- идемпотентность (уже в пределах 1 ppm -> без свопа)
- сходимость (применённый план уменьшает отклонение)
- 1% резерв баланса
- защитные проверки входных данных
"""

import pytest

from rebalancer.errors import ArithmeticOverflow
from rebalancer.math.full_math import FIXED_ONE, mul_div
from rebalancer.math.ratio import (
    BalanceRatioCalculator,
    PriceAwareRatioCalculator,
    SwapPlan,
    current_ratio,
    max_spend,
    plan_swap,
    select_calculator,
)
from rebalancer.math.ticks import Q96, get_sqrt_ratio_at_tick


TOKEN0 = "0x1111111111111111111111111111111111111111"
TOKEN1 = "0x2222222222222222222222222222222222222222"
SLIPPAGE = 10 ** 16  # 1%


def apply_plan(plan: SwapPlan, balance0: int, balance1: int, amount_out: int):
    """Балансы после свопа с заданным выходом."""
    if plan.is_buy:
        return balance0 + amount_out, balance1 - plan.amount_in
    return balance0 - plan.amount_in, balance1 + amount_out


def pool_output(plan: SwapPlan, sqrt_price: int) -> int:
    """Выход свопа по спотовой цене, без проскальзывания."""
    if plan.is_buy:
        return mul_div(plan.amount_in * Q96, Q96, sqrt_price * sqrt_price)
    return mul_div(plan.amount_in * sqrt_price, sqrt_price, Q96 * Q96)


class TestCurrentRatio:

    def test_equal_balances_same_decimals(self):
        assert current_ratio(500, 500, 6, 6) == FIXED_ONE

    def test_decimals_normalised(self):
        # 1 целый token0 (6 dec) на 1 целый token1 (18 dec)
        assert current_ratio(10 ** 6, 10 ** 18, 6, 18) == FIXED_ONE

    def test_max_spend_keeps_one_percent(self):
        assert max_spend(1000) == 990
        assert max_spend(99) == 98


class TestScenarios:
    """Сценарии с известным результатом."""

    def test_buy_token0_capped_at_reserve_floor(self):
        """
        10000 token0 (6 dec), 1000 token1 (8 dec), цель 1e23:
        свопаем 99% token1, min out 960300.
        """
        plan = BalanceRatioCalculator().plan_swap(
            10000, 1000, 6, 8, 10 ** 23, SLIPPAGE, TOKEN0, TOKEN1, Q96
        )

        assert plan.should_swap
        assert plan.is_buy
        assert plan.token_in == TOKEN1
        assert plan.token_out == TOKEN0
        assert plan.amount_in == 990
        assert plan.amount_out_min == 960300

    def test_reference_result_comes_from_balance_ratio(self):
        without_price = plan_swap(10000, 1000, 6, 8, 10 ** 23, SLIPPAGE, TOKEN0, TOKEN1)
        with_price = plan_swap(10000, 1000, 6, 8, 10 ** 23, SLIPPAGE, TOKEN0, TOKEN1, Q96)

        assert (without_price.amount_in, without_price.amount_out_min) == (990, 960300)
        assert with_price == PriceAwareRatioCalculator().plan_swap(
            10000, 1000, 6, 8, 10 ** 23, SLIPPAGE, TOKEN0, TOKEN1, Q96
        )
        assert with_price != without_price

    def test_same_scenario_price_aware_stays_within_floor(self):
        plan = PriceAwareRatioCalculator().plan_swap(
            10000, 1000, 6, 8, 10 ** 23, SLIPPAGE, TOKEN0, TOKEN1, Q96
        )

        assert plan.should_swap
        assert plan.is_buy
        assert 0 < plan.amount_in <= 990
        assert plan.amount_out_min > 0

    def test_equal_ratio_no_swap(self):
        plan = plan_swap(500, 500, 6, 6, FIXED_ONE, SLIPPAGE, TOKEN0, TOKEN1, Q96)
        assert plan == SwapPlan.none()
        assert not plan.should_swap

    def test_sell_token0(self):
        """Слишком много token0 -> продаём token0."""
        plan = plan_swap(3 * 10 ** 18, 10 ** 18, 18, 18, FIXED_ONE, SLIPPAGE, TOKEN0, TOKEN1, Q96)

        assert plan.should_swap
        assert not plan.is_buy
        assert plan.token_in == TOKEN0
        # цена 1:1 -> продаём половину разницы
        assert plan.amount_in == pytest.approx(10 ** 18, rel=1e-9)
        assert plan.amount_out_min == pytest.approx(0.99 * 10 ** 18, rel=1e-9)


class TestIdempotence:
    """Баланс в пределах 1 ppm от цели -> своп не нужен."""

    @pytest.mark.parametrize("calculator", [PriceAwareRatioCalculator(), BalanceRatioCalculator()],
                             ids=["price-aware", "balance-ratio"])
    @pytest.mark.parametrize("slippage", [0, SLIPPAGE, FIXED_ONE])
    def test_within_tolerance(self, calculator, slippage):
        balance0 = 10 ** 18
        balance1 = 10 ** 18 + 10 ** 11  # 0.1 ppm
        plan = calculator.plan_swap(balance0, balance1, 18, 18, FIXED_ONE, slippage, TOKEN0, TOKEN1, Q96)
        assert not plan.should_swap

    def test_just_outside_tolerance_swaps(self):
        plan = plan_swap(10 ** 18, 10 ** 18 + 10 ** 14, 18, 18, FIXED_ONE, SLIPPAGE, TOKEN0, TOKEN1, Q96)
        assert plan.should_swap


class TestConvergence:
    """Применённый план строго уменьшает |current - target|."""

    @pytest.mark.parametrize("balance0,balance1,target,tick", [
        (10 ** 18, 5 * 10 ** 18, FIXED_ONE, 0),
        (5 * 10 ** 18, 10 ** 18, FIXED_ONE, 0),
        (10 ** 18, 10 ** 18, 2 * FIXED_ONE, 1000),
        (10 ** 18, 10 ** 18, FIXED_ONE // 3, -1000),
        (7 * 10 ** 17, 2 * 10 ** 18, 5 * FIXED_ONE, 6932),
        (2 * 10 ** 18, 10 ** 16, FIXED_ONE // 10, -6932),
    ], ids=["buy0-spot", "buy1-spot", "buy0-price-up", "buy1-price-down", "buy0-partial", "buy1-partial"])
    def test_price_aware_reduces_error(self, balance0, balance1, target, tick):
        sqrt_price = get_sqrt_ratio_at_tick(tick)
        plan = PriceAwareRatioCalculator().plan_swap(
            balance0, balance1, 18, 18, target, SLIPPAGE, TOKEN0, TOKEN1, sqrt_price
        )
        assert plan.should_swap

        before = abs(current_ratio(balance0, balance1, 18, 18) - target)
        new0, new1 = apply_plan(plan, balance0, balance1, pool_output(plan, sqrt_price))
        after = abs(current_ratio(new0, new1, 18, 18) - target)
        assert after < before

    @pytest.mark.parametrize("balance0,balance1,target", [
        (10 ** 18, 5 * 10 ** 18, FIXED_ONE),
        (5 * 10 ** 18, 10 ** 18, FIXED_ONE),
        (10 ** 18, 10 ** 18, 3 * FIXED_ONE),
        (3 * 10 ** 18, 10 ** 18, FIXED_ONE // 2),
    ], ids=["buy0", "buy1", "buy0-far", "buy1-far"])
    def test_balance_ratio_moves_toward_target(self, balance0, balance1, target):
        """Оценка по балансам: соотношение сдвигается в сторону цели."""
        calculator = BalanceRatioCalculator()
        plan = calculator.plan_swap(balance0, balance1, 18, 18, target, SLIPPAGE, TOKEN0, TOKEN1)
        assert plan.should_swap

        before = current_ratio(balance0, balance1, 18, 18)
        expected_out = mul_div(plan.amount_out_min, FIXED_ONE, FIXED_ONE - 3 * SLIPPAGE)
        new0, new1 = apply_plan(plan, balance0, balance1, expected_out)
        after = current_ratio(new0, new1, 18, 18)
        assert plan.is_buy == (before < target)
        if plan.is_buy:
            assert after > before
        else:
            assert after < before

    def test_repeated_rebalances_converge(self):
        """Недостижимая за один своп цель сходится за несколько вызовов."""
        balance0, balance1 = 10 ** 18, 10 ** 18
        target = 500 * FIXED_ONE
        errors = []
        for _ in range(2):
            plan = plan_swap(balance0, balance1, 18, 18, target, SLIPPAGE, TOKEN0, TOKEN1, Q96)
            if not plan.should_swap:
                break
            balance0, balance1 = apply_plan(plan, balance0, balance1, pool_output(plan, Q96))
            errors.append(abs(current_ratio(balance0, balance1, 18, 18) - target))
        assert len(errors) == 2
        assert errors[1] < errors[0]


class TestReserveFloor:

    @pytest.mark.parametrize("calculator", [PriceAwareRatioCalculator(), BalanceRatioCalculator()],
                             ids=["price-aware", "balance-ratio"])
    def test_never_spends_more_than_99_percent(self, calculator):
        plan = calculator.plan_swap(1, 10 ** 18, 18, 18, 10 ** 30, SLIPPAGE, TOKEN0, TOKEN1, Q96)
        assert plan.should_swap
        assert plan.amount_in <= max_spend(10 ** 18)

    def test_far_target_capped_at_maximum(self):
        """Точное решение больше 99% баланса: частичная коррекция."""
        plan = PriceAwareRatioCalculator().plan_swap(
            10 ** 18, 10 ** 18, 18, 18, 10 ** 36, SLIPPAGE, TOKEN0, TOKEN1, Q96
        )
        assert plan.amount_in == max_spend(10 ** 18)


class TestGuards:
    """Некорректные входные данные -> SwapPlan.none()."""

    @pytest.mark.parametrize("kwargs", [
        {"target_ratio": 0},
        {"slippage": -1},
        {"slippage": FIXED_ONE + 1},
        {"balance0": 0},
        {"balance1": 0},
        {"decimals0": 39},
        {"decimals1": 39},
    ], ids=["zero-target", "negative-slippage", "slippage-over-one", "zero-balance0",
            "zero-balance1", "decimals0", "decimals1"])
    @pytest.mark.parametrize("calculator", [PriceAwareRatioCalculator(), BalanceRatioCalculator()],
                             ids=["price-aware", "balance-ratio"])
    def test_invalid_inputs(self, calculator, kwargs):
        args = dict(
            balance0=10 ** 18, balance1=3 * 10 ** 18, decimals0=18, decimals1=18,
            target_ratio=FIXED_ONE, slippage=SLIPPAGE, token0=TOKEN0, token1=TOKEN1, sqrt_price_x96=Q96,
        )
        args.update(kwargs)
        assert not calculator.plan_swap(**args).should_swap

    def test_price_aware_needs_price(self):
        plan = PriceAwareRatioCalculator().plan_swap(
            10 ** 18, 3 * 10 ** 18, 18, 18, FIXED_ONE, SLIPPAGE, TOKEN0, TOKEN1, 0
        )
        assert not plan.should_swap

    def test_same_token_pair(self):
        plan = plan_swap(10 ** 18, 3 * 10 ** 18, 18, 18, FIXED_ONE, SLIPPAGE, TOKEN0, TOKEN0.upper(), Q96)
        assert not plan.should_swap

    def test_overflow_propagates(self):
        with pytest.raises(ArithmeticOverflow):
            plan_swap(2 ** 250, 2 ** 250, 38, 38, FIXED_ONE, SLIPPAGE, TOKEN0, TOKEN1, Q96)


class TestBalanceRatioMinimumOutput:

    def test_small_trade_has_zero_minimum(self):
        """Ожидаемый выход < 100 единиц -> amount_out_min = 0."""
        plan = BalanceRatioCalculator().plan_swap(10, 50, 0, 0, FIXED_ONE, SLIPPAGE, TOKEN0, TOKEN1)
        assert plan.should_swap
        assert plan.amount_out_min == 0

    def test_widened_slippage_is_capped(self):
        """slippage 30% * 3 > 50% -> используется 50%."""
        plan = BalanceRatioCalculator().plan_swap(
            10 ** 18, 3 * 10 ** 18, 18, 18, FIXED_ONE, 3 * 10 ** 17, TOKEN0, TOKEN1
        )
        expected_out = mul_div(plan.amount_in, current_ratio(10 ** 18, 3 * 10 ** 18, 18, 18), FIXED_ONE)
        assert plan.amount_out_min == expected_out // 2


class TestSelectCalculator:

    def test_price_known(self):
        assert isinstance(select_calculator(Q96), PriceAwareRatioCalculator)

    @pytest.mark.parametrize("price", [None, 0])
    def test_price_unknown(self, price):
        assert isinstance(select_calculator(price), BalanceRatioCalculator)
