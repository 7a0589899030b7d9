"""
Slipstream CLPool + SwapRouter.

Цена читается из slot0 пула. Своп идёт через SwapRouter.exactInputSingle:
роутер сам списывает token_in через allowance, поэтому callback оплаты
здесь не вызывается. Дельты считаются по изменению баланса token_out.
"""

import logging
import time
from typing import Optional, Tuple

from web3 import Web3
from web3.contract import Contract

from .abis import POOL_ABI, SWAP_ROUTER_ABI
from ..collaborators import AssetLedger, CallResult, SwapCallback
from ..utils import TransactionSender

logger = logging.getLogger(__name__)


class SlipstreamPool:
    """CLPool как SwapVenue."""

    def __init__(
        self,
        w3: Web3,
        pool_address: str,
        router_address: str,
        sender: TransactionSender,
        ledger: AssetLedger,
        deadline_seconds: int = 3600
    ):
        self.w3 = w3
        self.sender = sender
        self.ledger = ledger
        self.deadline_seconds = deadline_seconds
        self.address = Web3.to_checksum_address(pool_address)
        self.router_address = Web3.to_checksum_address(router_address)
        self.contract: Contract = w3.eth.contract(address=self.address, abi=POOL_ABI)
        self.router: Contract = w3.eth.contract(address=self.router_address, abi=SWAP_ROUTER_ABI)
        self._pool_info: Optional[Tuple[str, str, int]] = None

    def current_price(self) -> CallResult:
        """sqrtPriceX96 из slot0."""
        slot0 = self.sender.call(self.contract.functions.slot0(), "slot0")
        if not slot0.success:
            return slot0
        sqrt_price_x96 = slot0.value[0]
        if sqrt_price_x96 == 0:
            return CallResult.fail("pool is not initialized")
        return CallResult.ok(sqrt_price_x96)

    def _load_pool_info(self) -> CallResult:
        """(token0, token1, tickSpacing), читается один раз."""
        if self._pool_info is None:
            values = []
            for name in ("token0", "token1", "tickSpacing"):
                result = self.sender.call(getattr(self.contract.functions, name)(), f"pool.{name}")
                if not result.success:
                    return result
                values.append(result.value)
            self._pool_info = tuple(values)
        return CallResult.ok(self._pool_info)

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
        exactInputSingle через роутер.

        Returns:
            CallResult со значением (amount0_delta, amount1_delta)
        """
        info = self._load_pool_info()
        if not info.success:
            return info
        token0, token1, tick_spacing = info.value
        token_in, token_out = (token0, token1) if zero_for_one else (token1, token0)

        approved = self.ledger.approve(token_in, self.router_address, amount_in)
        if not approved.success:
            return approved

        before = self.ledger.balance_of(token_out, recipient)
        if not before.success:
            return before

        params = (
            Web3.to_checksum_address(token_in),
            Web3.to_checksum_address(token_out),
            tick_spacing,
            Web3.to_checksum_address(recipient),
            int(time.time()) + self.deadline_seconds,
            amount_in,
            amount_out_min,
            sqrt_price_limit_x96,
        )
        result = self.sender.send(self.router.functions.exactInputSingle(params), "swap")
        if not result.success:
            return result

        after = self.ledger.balance_of(token_out, recipient)
        if not after.success:
            return CallResult.fail(f"swap sent, balance unavailable: {after.error}", tx_hash=result.tx_hash)

        amount_out = after.value - before.value
        logger.debug(f"Router swap: {amount_in} in, {amount_out} out ({result.tx_hash})")
        if zero_for_one:
            return CallResult.ok((amount_in, -amount_out), tx_hash=result.tx_hash)
        return CallResult.ok((-amount_out, amount_in), tx_hash=result.tx_hash)
