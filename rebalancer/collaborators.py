"""
Collaborator interfaces.

Всё, что ядро вызывает снаружи (токены, position manager, gauge, пул),
возвращает CallResult. Ядро ветвится по result.success и никогда не
полагается на исключение, чтобы попасть в нужную ветку.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, Tuple

from .errors import CollaboratorCallFailed
from .math.full_math import MAX_UINT128


@dataclass
class CallResult:
    """Результат внешнего вызова."""
    success: bool
    value: Any = None
    error: Optional[str] = None
    tx_hash: Optional[str] = None

    @classmethod
    def ok(cls, value: Any = None, tx_hash: Optional[str] = None) -> 'CallResult':
        return cls(success=True, value=value, tx_hash=tx_hash)

    @classmethod
    def fail(cls, error: str, tx_hash: Optional[str] = None) -> 'CallResult':
        return cls(success=False, error=error, tx_hash=tx_hash)

    def unwrap(self, operation: str) -> Any:
        """Значение или CollaboratorCallFailed."""
        if not self.success:
            raise CollaboratorCallFailed(operation, self.error, self.tx_hash)
        return self.value


@dataclass
class MintParams:
    """Параметры открытия позиции."""
    token0: str
    token1: str
    tick_spacing: int
    tick_lower: int
    tick_upper: int
    amount0_desired: int
    amount1_desired: int
    amount0_min: int
    amount1_min: int
    recipient: str
    deadline: int
    sqrt_price_x96: int = 0  # 0 = пул уже инициализирован


@dataclass
class MintResult:
    """Результат открытия позиции."""
    token_id: int
    liquidity: int
    amount0: int
    amount1: int


@dataclass
class PositionInfo:
    """Данные позиции из position manager."""
    token0: str
    token1: str
    tick_spacing: int
    tick_lower: int
    tick_upper: int
    liquidity: int
    tokens_owed0: int = 0
    tokens_owed1: int = 0


# (caller, amount0_delta, amount1_delta)
SwapCallback = Callable[[str, int, int], None]


class AssetLedger(Protocol):
    """ERC20 операции для любого токена пары."""

    def balance_of(self, token: str, holder: str) -> CallResult: ...

    def transfer(self, token: str, to: str, amount: int) -> CallResult: ...

    def transfer_from(self, token: str, source: str, to: str, amount: int) -> CallResult: ...

    def approve(self, token: str, spender: str, amount: int) -> CallResult: ...

    def decimals(self, token: str) -> int:
        """Decimals токена, 18 если контракт их не отдаёт."""
        ...


class PositionIssuer(Protocol):
    """NonfungiblePositionManager."""

    address: str

    def open(self, params: MintParams) -> CallResult: ...

    def remove_liquidity(
        self,
        token_id: int,
        liquidity: int,
        amount0_min: int,
        amount1_min: int,
        deadline: int
    ) -> CallResult: ...

    def collect(
        self,
        token_id: int,
        recipient: str,
        amount0_max: int = MAX_UINT128,
        amount1_max: int = MAX_UINT128
    ) -> CallResult: ...

    def destroy(self, token_id: int) -> CallResult: ...

    def query_position(self, token_id: int) -> CallResult: ...

    def approve(self, spender: str, token_id: int) -> CallResult: ...


class StakingGauge(Protocol):
    """CLGauge: стейкинг позиции и награды."""

    address: str

    def stake(self, token_id: int) -> CallResult: ...

    def unstake(self, token_id: int) -> CallResult:
        """Забирает награды и возвращает NFT владельцу."""
        ...

    def claim_rewards(self, token_id: int) -> CallResult: ...

    def earned(self, holder: str, token_id: int) -> CallResult: ...

    def pair_assets(self) -> CallResult: ...

    def tick_spacing(self) -> CallResult: ...

    def reward_asset(self) -> CallResult: ...

    def venue(self) -> CallResult: ...


class SwapVenue(Protocol):
    """Пул, в котором выполняется своп."""

    address: str

    def current_price(self) -> CallResult: ...

    def swap(
        self,
        recipient: str,
        zero_for_one: bool,
        amount_in: int,
        amount_out_min: int,
        sqrt_price_limit_x96: int,
        callback: SwapCallback
    ) -> CallResult:
        """
        Returns:
            CallResult со значением (amount0_delta, amount1_delta):
            положительное - заплачено пулу, отрицательное - получено
        """
        ...


def swap_deltas(result: CallResult) -> Tuple[int, int]:
    """(amount0_delta, amount1_delta) успешного свопа."""
    amount0_delta, amount1_delta = result.unwrap("swap")
    return int(amount0_delta), int(amount1_delta)
