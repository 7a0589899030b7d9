"""
Position lifecycle

Одна позиция, два состояния:
- EMPTY: token_id == 0
- OPEN: token_id != 0

close():     OPEN -> EMPTY (id обнуляется ДО любых внешних вызовов)
rebalance(): [close] -> своп к целевому соотношению -> mint -> stake

Сбои при закрытии и при открытии позиции поглощаются (логируются),
сбой свопа фатален: дальнейшее распределение от него зависит.
"""

import json
import logging
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple

from .collaborators import (
    AssetLedger,
    CallResult,
    MintParams,
    PositionIssuer,
    StakingGauge,
    SwapVenue,
    swap_deltas,
)
from .errors import CollaboratorCallFailed, Unauthorized
from .math.allocation import desired_amounts
from .math.full_math import FIXED_ONE, mul_div
from .math.liquidity import estimate_mint
from .math.ratio import SwapPlan, plan_swap
from .math.ticks import MAX_SQRT_RATIO, MIN_SQRT_RATIO, get_sqrt_ratio_at_tick

logger = logging.getLogger(__name__)

DEFAULT_DEADLINE_SECONDS = 3600


class PositionState(Enum):
    EMPTY = "empty"
    OPEN = "open"


class PositionRecord:
    """
    Единственное сохраняемое состояние: id текущей позиции.

    С path каждое изменение сразу пишется в JSON файл.
    """

    def __init__(self, token_id: int = 0, path: Optional[str] = None):
        self._token_id = token_id
        self.path = path

    @classmethod
    def load(cls, path: str) -> 'PositionRecord':
        if not os.path.exists(path):
            return cls(path=path)
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        return cls(token_id=int(data.get("token_id", 0)), path=path)

    @property
    def token_id(self) -> int:
        return self._token_id

    @token_id.setter
    def token_id(self, value: int):
        self._token_id = value
        if self.path:
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump({"token_id": value}, f)

    @property
    def state(self) -> PositionState:
        return PositionState.OPEN if self._token_id else PositionState.EMPTY

    def clear(self) -> int:
        token_id = self._token_id
        if token_id:
            self.token_id = 0
        return token_id


@dataclass(frozen=True)
class TokenContext:
    """Метаданные пары, загружаются один раз на вызов."""
    token0: str
    token1: str
    tick_spacing: int
    decimals0: int
    decimals1: int
    pool: str
    reward_token: str

    def other(self, token: str) -> str:
        return self.token1 if token.lower() == self.token0.lower() else self.token0

    def contains(self, token: str) -> bool:
        return token.lower() in (self.token0.lower(), self.token1.lower())


@dataclass
class CloseResult:
    """Результат закрытия позиции."""
    closed: bool
    token_id: int = 0
    liquidity: int = 0
    amount0: int = 0
    amount1: int = 0
    failures: List[str] = field(default_factory=list)


@dataclass
class SwapResult:
    """Результат выполненного свопа."""
    token_in: str
    token_out: str
    amount_in: int
    amount_out: int
    tx_hash: Optional[str] = None


@dataclass
class RebalanceResult:
    """Результат ребаланса."""
    state: PositionState
    close: CloseResult
    plan: SwapPlan
    swap: Optional[SwapResult] = None
    amount0: int = 0
    amount1: int = 0
    token_id: int = 0
    liquidity: int = 0
    staked: bool = False
    reason: Optional[str] = None


@dataclass
class _SwapInFlight:
    venue: str
    token0: str
    token1: str


class PositionLifecycle:
    """
    Машина состояний одной позиции.

    Держатель резервов (holder) - адрес, от имени которого коллабораторы
    выполняют вызовы и на который приходят токены.
    """

    def __init__(
        self,
        ledger: AssetLedger,
        issuer: PositionIssuer,
        gauge: StakingGauge,
        venue: SwapVenue,
        holder: str,
        deadline_seconds: int = DEFAULT_DEADLINE_SECONDS,
        clock: Callable[[], float] = time.time,
        record: Optional[PositionRecord] = None
    ):
        self.ledger = ledger
        self.issuer = issuer
        self.gauge = gauge
        self.venue = venue
        self.holder = holder
        self.deadline_seconds = deadline_seconds
        self.clock = clock
        self.record = record or PositionRecord()
        self._swap_in_flight: Optional[_SwapInFlight] = None

    @property
    def state(self) -> PositionState:
        return self.record.state

    def _deadline(self) -> int:
        return int(self.clock()) + self.deadline_seconds

    def load_context(self) -> TokenContext:
        """Пара, tick spacing, decimals, пул и токен наград из gauge."""
        token0, token1 = self.gauge.pair_assets().unwrap("gauge.pair_assets")
        tick_spacing = self.gauge.tick_spacing().unwrap("gauge.tick_spacing")
        pool = self.gauge.venue().unwrap("gauge.pool")
        reward_token = self.gauge.reward_asset().unwrap("gauge.reward_token")

        ctx = TokenContext(
            token0=token0,
            token1=token1,
            tick_spacing=int(tick_spacing),
            decimals0=self.ledger.decimals(token0),
            decimals1=self.ledger.decimals(token1),
            pool=pool,
            reward_token=reward_token,
        )
        logger.debug(f"Token context: {ctx}")
        return ctx

    def balances(self, ctx: TokenContext) -> Tuple[int, int]:
        balance0 = self.ledger.balance_of(ctx.token0, self.holder).unwrap("balanceOf token0")
        balance1 = self.ledger.balance_of(ctx.token1, self.holder).unwrap("balanceOf token1")
        return balance0, balance1

    # ── Close ─────────────────────────────────────────────────────────

    def close(self, ctx: TokenContext) -> CloseResult:
        """
        Закрытие текущей позиции (best effort).

        unstake -> decreaseLiquidity -> collect (один повтор) -> burn.
        Gauge может уже выполнить часть шагов сам, поэтому ни один сбой
        не прерывает закрытие.
        """
        token_id = self.record.clear()
        if token_id == 0:
            logger.debug("No open position, close is a no-op")
            return CloseResult(closed=False)

        logger.info(f"Closing position {token_id}...")
        result = CloseResult(closed=True, token_id=token_id)

        unstaked = self.gauge.unstake(token_id)
        if not unstaked.success:
            self._absorb(result, "unstake", token_id, unstaked)

        position = self.issuer.query_position(token_id)
        if not position.success:
            self._absorb(result, "query_position", token_id, position)
        elif position.value.liquidity > 0:
            result.liquidity = position.value.liquidity
            removed = self.issuer.remove_liquidity(token_id, result.liquidity, 0, 0, self._deadline())
            if not removed.success:
                self._absorb(result, "decrease_liquidity", token_id, removed)
            self._collect(result, token_id, ctx)

        destroyed = self.issuer.destroy(token_id)
        if not destroyed.success:
            self._absorb(result, "burn", token_id, destroyed)

        logger.info(
            f"Position {token_id} closed: collected {result.amount0} token0, {result.amount1} token1"
            + (f", absorbed failures: {result.failures}" if result.failures else "")
        )
        return result

    def _collect(self, result: CloseResult, token_id: int, ctx: TokenContext):
        collected = self.issuer.collect(token_id, self.holder)
        if not collected.success:
            logger.warning(f"Collect for position {token_id} failed ({collected.error}), retrying once")
            collected = self.issuer.collect(token_id, self.holder)
        if not collected.success:
            self._absorb(result, "collect", token_id, collected)
            return
        result.amount0, result.amount1 = collected.value

    @staticmethod
    def _absorb(result: CloseResult, step: str, token_id: int, call: CallResult):
        logger.warning(f"{step} for position {token_id} failed: {call.error}")
        result.failures.append(step)

    # ── Swap ──────────────────────────────────────────────────────────

    def execute_plan(self, ctx: TokenContext, plan: SwapPlan) -> SwapResult:
        """
        Выполнение свопа по плану.

        Raises:
            CollaboratorCallFailed: своп не выполнен или выход меньше amount_out_min
        """
        zero_for_one = plan.token_in.lower() == ctx.token0.lower()
        limit = MIN_SQRT_RATIO + 1 if zero_for_one else MAX_SQRT_RATIO - 1

        logger.info(
            f"Swapping {plan.amount_in} {'token0' if zero_for_one else 'token1'} "
            f"(min out {plan.amount_out_min})"
        )

        self._swap_in_flight = _SwapInFlight(venue=self.venue.address, token0=ctx.token0, token1=ctx.token1)
        try:
            result = self.venue.swap(
                self.holder, zero_for_one, plan.amount_in, plan.amount_out_min, limit, self.swap_callback
            )
        finally:
            self._swap_in_flight = None

        amount0_delta, amount1_delta = swap_deltas(result)
        amount_out = -(amount1_delta if zero_for_one else amount0_delta)
        if amount_out < plan.amount_out_min:
            raise CollaboratorCallFailed(
                "swap", f"output {amount_out} below minimum {plan.amount_out_min}", result.tx_hash
            )

        logger.info(f"Swap done: {plan.amount_in} in, {amount_out} out")
        return SwapResult(
            token_in=plan.token_in,
            token_out=plan.token_out,
            amount_in=plan.amount_in,
            amount_out=amount_out,
            tx_hash=result.tx_hash,
        )

    def swap_callback(self, caller: str, amount0_delta: int, amount1_delta: int):
        """
        Оплата свопа пулу: переводит только положительные дельты.

        Raises:
            CollaboratorCallFailed: нет свопа в процессе или перевод не прошёл
            Unauthorized: вызывает не пул текущего свопа
        """
        in_flight = self._swap_in_flight
        if in_flight is None:
            raise CollaboratorCallFailed("swap_callback", "no swap in flight")
        if caller.lower() != in_flight.venue.lower():
            raise Unauthorized(caller=caller, controller=in_flight.venue)

        if amount0_delta > 0:
            self.ledger.transfer(in_flight.token0, in_flight.venue, amount0_delta).unwrap("swap payment token0")
        if amount1_delta > 0:
            self.ledger.transfer(in_flight.token1, in_flight.venue, amount1_delta).unwrap("swap payment token1")

    # ── Rebalance ─────────────────────────────────────────────────────

    def rebalance(
        self,
        ctx: TokenContext,
        tick_lower: int,
        tick_upper: int,
        target_ratio: int,
        slippage: int
    ) -> RebalanceResult:
        """
        Полный цикл: закрыть -> своп к target_ratio -> открыть -> застейкать.

        Args:
            ctx: Контекст пары
            tick_lower: Нижний тик (кратен tick_spacing)
            tick_upper: Верхний тик (кратен tick_spacing)
            target_ratio: token0 на token1, FIXED_ONE = 1.0
            slippage: Допустимое проскальзывание, FIXED_ONE = 100%

        Returns:
            RebalanceResult. state == EMPTY без ошибки, если открывать нечем
            или открытие не удалось
        """
        close_result = self.close(ctx)

        price = self.venue.current_price()
        sqrt_price = price.value if price.success else None
        if sqrt_price is None:
            logger.warning(f"Pool price unavailable ({price.error}), estimating swap from balances")

        balance0, balance1 = self.balances(ctx)
        plan = plan_swap(
            balance0, balance1, ctx.decimals0, ctx.decimals1,
            target_ratio, slippage, ctx.token0, ctx.token1, sqrt_price
        )

        result = RebalanceResult(state=PositionState.EMPTY, close=close_result, plan=plan)

        if plan.should_swap:
            result.swap = self.execute_plan(ctx, plan)
            balance0, balance1 = self.balances(ctx)
            price = self.venue.current_price()
            sqrt_price = price.value if price.success else None

        if balance0 == 0 and balance1 == 0:
            result.reason = "no reserves"
            logger.info("No reserves, staying without a position")
            return result

        if sqrt_price is None:
            result.reason = f"pool price unavailable: {price.error}"
            logger.warning(f"Cannot size position, {result.reason}")
            return result

        amount0, amount1 = desired_amounts(
            tick_lower, tick_upper, balance0, balance1, ctx.decimals0, ctx.decimals1, sqrt_price
        )
        result.amount0, result.amount1 = amount0, amount1
        if amount0 == 0 and amount1 == 0:
            result.reason = "nothing to deposit for this range"
            logger.info(f"Allocation for [{tick_lower}, {tick_upper}] is empty, staying without a position")
            return result

        minted = self._open(ctx, tick_lower, tick_upper, amount0, amount1, slippage, sqrt_price)
        if minted is None:
            result.reason = "position not created"
            return result

        self.record.token_id = minted.token_id
        result.state = PositionState.OPEN
        result.token_id = minted.token_id
        result.liquidity = minted.liquidity
        result.amount0, result.amount1 = minted.amount0, minted.amount1
        result.staked = self._stake(minted.token_id)
        return result

    def _open(
        self,
        ctx: TokenContext,
        tick_lower: int,
        tick_upper: int,
        amount0: int,
        amount1: int,
        slippage: int,
        sqrt_price: int
    ):
        """Approve + mint. None если позиция не создана."""
        for token, amount in ((ctx.token0, amount0), (ctx.token1, amount1)):
            if amount == 0:
                continue
            approved = self.ledger.approve(token, self.issuer.address, amount)
            if not approved.success:
                logger.warning(f"Approve {token} for position manager failed: {approved.error}")
                return None

        estimate = estimate_mint(
            sqrt_price,
            get_sqrt_ratio_at_tick(tick_lower),
            get_sqrt_ratio_at_tick(tick_upper),
            amount0,
            amount1,
        )
        params = MintParams(
            token0=ctx.token0,
            token1=ctx.token1,
            tick_spacing=ctx.tick_spacing,
            tick_lower=tick_lower,
            tick_upper=tick_upper,
            amount0_desired=amount0,
            amount1_desired=amount1,
            amount0_min=mul_div(estimate.amount0, FIXED_ONE - slippage, FIXED_ONE),
            amount1_min=mul_div(estimate.amount1, FIXED_ONE - slippage, FIXED_ONE),
            recipient=self.holder,
            deadline=self._deadline(),
        )
        logger.info(
            f"Opening position [{tick_lower}, {tick_upper}]: "
            f"{amount0} token0, {amount1} token1 (expected liquidity {estimate.liquidity})"
        )

        opened = self.issuer.open(params)
        if not opened.success:
            logger.warning(f"Mint failed: {opened.error}, staying without a position")
            return None

        minted = opened.value
        if minted.liquidity == 0:
            logger.warning(f"Mint returned zero liquidity for position {minted.token_id}, staying without a position")
            if minted.token_id:
                destroyed = self.issuer.destroy(minted.token_id)
                if not destroyed.success:
                    logger.warning(f"Burn of empty position {minted.token_id} failed: {destroyed.error}")
            return None

        logger.info(f"Position {minted.token_id} opened, liquidity {minted.liquidity}")
        return minted

    def _stake(self, token_id: int) -> bool:
        approved = self.issuer.approve(self.gauge.address, token_id)
        if not approved.success:
            logger.warning(f"Approve of position {token_id} for gauge failed: {approved.error}")
            return False
        staked = self.gauge.stake(token_id)
        if not staked.success:
            logger.warning(f"Staking position {token_id} failed: {staked.error}, position stays unstaked")
            return False
        logger.info(f"Position {token_id} staked")
        return True

    # ── Withdraw ──────────────────────────────────────────────────────

    def withdraw_all(self, ctx: TokenContext, beneficiary: str) -> Tuple[int, int]:
        """
        Перевод обоих резервов целиком.

        Raises:
            CollaboratorCallFailed: если перевод не удался
        """
        balance0, balance1 = self.balances(ctx)
        if beneficiary.lower() == self.holder.lower():
            logger.info("Reserves are already held by the beneficiary, nothing to transfer")
            return balance0, balance1
        for token, amount in ((ctx.token0, balance0), (ctx.token1, balance1)):
            if amount > 0:
                self.ledger.transfer(token, beneficiary, amount).unwrap(f"transfer {token}")
        logger.info(f"Withdrew {balance0} token0 and {balance1} token1 to {beneficiary}")
        return balance0, balance1
