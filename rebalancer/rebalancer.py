"""
Slipstream Rebalancer

Одна застейканная CL позиция в пуле Aerodrome Slipstream.

Пример использования:
```python
rebalancer = Rebalancer.from_settings(load_settings())

# Предпросмотр свопа к соотношению 1:1
plan = rebalancer.preview_swap_plan(target_ratio=10**18, slippage=10**16)

# Закрыть текущую позицию, выровнять резервы, открыть и застейкать новую
result = rebalancer.rebalance(-600, 600, target_ratio=10**18, slippage=10**16, caller=rebalancer.operator)
print(result.token_id, result.liquidity)
```

Все изменяющие методы требуют явного caller и доступны только контроллеру,
выводы резервов и наград идут получателю (OWNER_ADDRESS).
Входные данные проверяются до любых изменений состояния.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from web3 import Web3
from eth_account import Account
from eth_account.signers.local import LocalAccount

from .collaborators import AssetLedger, PositionIssuer, StakingGauge, SwapVenue
from .contracts import CLGauge, ERC20Ledger, SlipstreamPool, SlipstreamPositionManager
from .errors import InvalidInput, Unauthorized
from .lifecycle import (
    CloseResult,
    PositionLifecycle,
    PositionRecord,
    PositionState,
    RebalanceResult,
    SwapResult,
    TokenContext,
)
from .math.full_math import FIXED_ONE
from .math.ratio import MAX_DECIMALS, SwapPlan, current_ratio, plan_swap
from .math.ticks import MAX_TICK, MIN_TICK
from .utils import GasEstimator, NonceManager, TransactionSender

logger = logging.getLogger(__name__)


class Rebalancer:
    """
    Точка входа: проверка прав и входных данных поверх PositionLifecycle.

    Каждый публичный вызов загружает TokenContext заново и передаёт его
    вниз явно.
    """

    def __init__(
        self,
        ledger: AssetLedger,
        issuer: PositionIssuer,
        gauge: StakingGauge,
        venue: SwapVenue,
        holder: str,
        controller: str,
        beneficiary: str = None,
        operator: str = None,
        deadline_seconds: int = 3600,
        record: PositionRecord = None
    ):
        self.ledger = ledger
        self.controller = controller
        self.beneficiary = beneficiary or controller  # получатель выводов
        self.operator = operator  # адрес подписывающего ключа, задаётся в from_settings
        self.lifecycle = PositionLifecycle(
            ledger, issuer, gauge, venue, holder, deadline_seconds=deadline_seconds, record=record
        )

    @classmethod
    def from_settings(cls, settings, proxy: dict = None) -> 'Rebalancer':
        """
        Сборка web3 адаптеров из RebalancerSettings.

        Args:
            settings: config.RebalancerSettings
            proxy: {"http": "socks5://...", "https": "socks5://..."}
        """
        if proxy:
            provider = Web3.HTTPProvider(endpoint_uri=settings.rpc_url, request_kwargs={"proxies": proxy})
        else:
            provider = Web3.HTTPProvider(settings.rpc_url)
        w3 = Web3(provider)

        account: LocalAccount = Account.from_key(settings.private_key)
        sender = TransactionSender(
            w3,
            account,
            nonce_manager=NonceManager(w3, account.address),
            gas_estimator=GasEstimator(w3, buffer_percent=settings.gas_buffer_percent),
            timeout=settings.tx_timeout,
        )

        ledger = ERC20Ledger(w3, sender)
        issuer = SlipstreamPositionManager(w3, settings.nft_manager, sender)
        gauge = CLGauge(w3, settings.gauge, sender)
        pool_address = gauge.venue().unwrap("gauge.pool")
        venue = SlipstreamPool(
            w3, pool_address, settings.swap_router, sender, ledger,
            deadline_seconds=settings.deadline_seconds
        )

        beneficiary = settings.owner or account.address
        logger.info(f"Rebalancer on {settings.network}: operator {account.address}, withdrawals to {beneficiary}")
        return cls(
            ledger, issuer, gauge, venue,
            holder=account.address,
            controller=account.address,
            beneficiary=beneficiary,
            operator=account.address,
            deadline_seconds=settings.deadline_seconds,
            record=PositionRecord.load(settings.state_file),
        )

    # ── Access control & validation ───────────────────────────────────

    @property
    def holder(self) -> str:
        return self.lifecycle.holder

    def _only_controller(self, caller: Optional[str]):
        if not caller or caller.lower() != self.controller.lower():
            raise Unauthorized(caller=caller, controller=self.controller)

    @staticmethod
    def _validate_ratio(target_ratio: int, slippage: int):
        if target_ratio <= 0:
            raise InvalidInput(f"Target ratio must be positive, got {target_ratio}")
        if slippage < 0 or slippage > FIXED_ONE:
            raise InvalidInput(f"Slippage must be within [0, {FIXED_ONE}], got {slippage}")

    @staticmethod
    def _validate_ticks(tick_lower: int, tick_upper: int, tick_spacing: int):
        for tick in (tick_lower, tick_upper):
            if tick < MIN_TICK or tick > MAX_TICK:
                raise InvalidInput(f"Tick {tick} is out of range [{MIN_TICK}, {MAX_TICK}]")
        if tick_lower >= tick_upper:
            raise InvalidInput(f"tick_lower ({tick_lower}) must be below tick_upper ({tick_upper})")
        if tick_lower % tick_spacing or tick_upper % tick_spacing:
            raise InvalidInput(f"Ticks must be multiples of tick spacing {tick_spacing}")

    @staticmethod
    def _validate_decimals(ctx: TokenContext):
        for decimals in (ctx.decimals0, ctx.decimals1):
            if decimals < 0 or decimals > MAX_DECIMALS:
                raise InvalidInput(f"Token decimals {decimals} outside [0, {MAX_DECIMALS}]")

    @staticmethod
    def _validate_amount(amount: int):
        if amount <= 0:
            raise InvalidInput(f"Amount must be positive, got {amount}")

    @staticmethod
    def _validate_pair_token(ctx: TokenContext, token: str):
        if not ctx.contains(token):
            raise InvalidInput(f"Token {token} is not part of the pair {ctx.token0}/{ctx.token1}")

    # ── Mutating operations (controller only) ─────────────────────────

    def deposit(self, token: str, amount: int, source: str, *, caller: str):
        """Перевод резерва от source держателю (нужен allowance)."""
        self._only_controller(caller)
        self._validate_amount(amount)
        ctx = self.lifecycle.load_context()
        self._validate_pair_token(ctx, token)

        result = self.ledger.transfer_from(token, source, self.holder, amount)
        result.unwrap(f"deposit {token}")
        logger.info(f"Deposited {amount} of {token} from {source}")
        return result.tx_hash

    def rebalance(
        self,
        tick_lower: int,
        tick_upper: int,
        target_ratio: int,
        slippage: int,
        *,
        caller: str
    ) -> RebalanceResult:
        """Закрыть позицию -> своп к target_ratio -> открыть -> застейкать."""
        self._only_controller(caller)
        self._validate_ratio(target_ratio, slippage)
        ctx = self.lifecycle.load_context()
        self._validate_decimals(ctx)
        self._validate_ticks(tick_lower, tick_upper, ctx.tick_spacing)

        logger.info(
            f"Rebalance to [{tick_lower}, {tick_upper}], target ratio {target_ratio}, slippage {slippage}"
        )
        return self.lifecycle.rebalance(ctx, tick_lower, tick_upper, target_ratio, slippage)

    def close_all_positions(self, *, caller: str) -> CloseResult:
        self._only_controller(caller)
        ctx = self.lifecycle.load_context()
        return self.lifecycle.close(ctx)

    def withdraw_all(self, *, caller: str) -> Tuple[int, int]:
        """Оба резерва целиком получателю (beneficiary). Позицию не трогает."""
        self._only_controller(caller)
        ctx = self.lifecycle.load_context()
        return self.lifecycle.withdraw_all(ctx, self.beneficiary)

    def withdraw_rewards(self, *, caller: str) -> int:
        """
        Награды получателю (beneficiary).

        Для застейканной позиции сначала getReward (сбой не фатален).
        """
        self._only_controller(caller)
        ctx = self.lifecycle.load_context()

        token_id = self.lifecycle.record.token_id
        if token_id:
            claimed = self.lifecycle.gauge.claim_rewards(token_id)
            if not claimed.success:
                logger.warning(f"Claiming rewards for position {token_id} failed: {claimed.error}")

        balance = self.ledger.balance_of(ctx.reward_token, self.holder).unwrap("balanceOf reward")
        if balance == 0:
            logger.info("No rewards to withdraw")
            return 0
        if self.beneficiary.lower() == self.holder.lower():
            logger.info(f"{balance} reward tokens already held by the beneficiary")
            return balance
        self.ledger.transfer(ctx.reward_token, self.beneficiary, balance).unwrap("transfer rewards")
        logger.info(f"Withdrew {balance} reward tokens to {self.beneficiary}")
        return balance

    def execute_swap(self, token_in: str, amount_in: int, amount_out_min: int, *, caller: str) -> SwapResult:
        """Явный своп token_in -> другой токен пары."""
        self._only_controller(caller)
        self._validate_amount(amount_in)
        if amount_out_min < 0:
            raise InvalidInput(f"amount_out_min must not be negative, got {amount_out_min}")
        ctx = self.lifecycle.load_context()
        self._validate_pair_token(ctx, token_in)

        token_out = ctx.other(token_in)
        plan = SwapPlan(
            should_swap=True,
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            amount_out_min=amount_out_min,
            is_buy=token_out.lower() == ctx.token0.lower(),
        )
        return self.lifecycle.execute_plan(ctx, plan)

    def rescue_token(self, token: str, amount: int, to: str, *, caller: str):
        """Перевод любого токена с держателя."""
        self._only_controller(caller)
        self._validate_amount(amount)
        result = self.ledger.transfer(token, to, amount)
        result.unwrap(f"rescue {token}")
        logger.info(f"Rescued {amount} of {token} to {to}")
        return result.tx_hash

    def close_and_withdraw(self, *, caller: str) -> Dict[str, Any]:
        """Закрыть позицию, вывести резервы и награды."""
        self._only_controller(caller)
        close_result = self.close_all_positions(caller=caller)
        amount0, amount1 = self.withdraw_all(caller=caller)
        rewards = self.withdraw_rewards(caller=caller)
        return {
            'close': close_result,
            'amount0': amount0,
            'amount1': amount1,
            'rewards': rewards,
        }

    # ── Read-only ─────────────────────────────────────────────────────

    @property
    def position_id(self) -> int:
        return self.lifecycle.record.token_id

    @property
    def state(self) -> PositionState:
        return self.lifecycle.state

    def get_tokens(self) -> Tuple[str, str]:
        ctx = self.lifecycle.load_context()
        return ctx.token0, ctx.token1

    def get_decimals(self) -> Tuple[int, int]:
        ctx = self.lifecycle.load_context()
        return ctx.decimals0, ctx.decimals1

    def get_balances(self) -> Tuple[int, int]:
        ctx = self.lifecycle.load_context()
        return self.lifecycle.balances(ctx)

    def preview_swap_plan(self, target_ratio: int, slippage: int) -> SwapPlan:
        """Какой своп сделал бы rebalance при текущих резервах."""
        self._validate_ratio(target_ratio, slippage)
        ctx = self.lifecycle.load_context()
        self._validate_decimals(ctx)

        balance0, balance1 = self.lifecycle.balances(ctx)
        price = self.lifecycle.venue.current_price()
        return plan_swap(
            balance0, balance1, ctx.decimals0, ctx.decimals1,
            target_ratio, slippage, ctx.token0, ctx.token1,
            price.value if price.success else None
        )

    def status(self) -> Dict[str, Any]:
        """Сводка: пара, резервы, цена, позиция, награды."""
        ctx = self.lifecycle.load_context()
        balance0, balance1 = self.lifecycle.balances(ctx)
        price = self.lifecycle.venue.current_price()

        ratio = None
        if balance0 > 0 and balance1 > 0:
            ratio = current_ratio(balance0, balance1, ctx.decimals0, ctx.decimals1)

        earned = None
        if self.position_id:
            result = self.lifecycle.gauge.earned(self.holder, self.position_id)
            earned = result.value if result.success else None

        return {
            'token0': ctx.token0,
            'token1': ctx.token1,
            'decimals0': ctx.decimals0,
            'decimals1': ctx.decimals1,
            'tick_spacing': ctx.tick_spacing,
            'pool': ctx.pool,
            'reward_token': ctx.reward_token,
            'balance0': balance0,
            'balance1': balance1,
            'ratio': ratio,
            'sqrt_price_x96': price.value if price.success else None,
            'position_id': self.position_id,
            'state': self.state.value,
            'earned': earned,
        }
