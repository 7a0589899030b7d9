from .full_math import mul_div, mul_div_rounding_up, checked_mul, FIXED_ONE, MAX_UINT256, MAX_UINT128
from .ticks import (
    get_sqrt_ratio_at_tick,
    price_to_tick,
    human_price_to_tick,
    tick_to_price,
    align_tick_to_spacing,
    sqrt_price_x96_to_price,
    Q96,
    MIN_TICK,
    MAX_TICK,
    MIN_SQRT_RATIO,
    MAX_SQRT_RATIO,
)
from .ratio import (
    SwapPlan,
    RatioCalculator,
    PriceAwareRatioCalculator,
    BalanceRatioCalculator,
    select_calculator,
    plan_swap,
    current_ratio,
)
from .allocation import desired_amounts, PriceRegion, price_region
from .liquidity import estimate_mint, get_liquidity_for_amounts, get_amounts_for_liquidity, LiquidityAmounts
