"""
Slipstream Position Manager Integration

Работа с NonfungiblePositionManager Aerodrome Slipstream:
mint / decreaseLiquidity / collect / burn / positions / approve.

Каждый метод возвращает CallResult; исключения web3 наружу не выходят.
"""

import logging
from typing import Optional

from web3 import Web3
from web3.contract import Contract

from .abis import POSITION_MANAGER_ABI
from ..collaborators import CallResult, MintParams, MintResult, PositionInfo
from ..math.full_math import MAX_UINT128
from ..utils import TransactionSender

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def mint_params_tuple(params: MintParams) -> tuple:
    """Конвертация в tuple для контракта."""
    return (
        Web3.to_checksum_address(params.token0),
        Web3.to_checksum_address(params.token1),
        params.tick_spacing,
        params.tick_lower,
        params.tick_upper,
        params.amount0_desired,
        params.amount1_desired,
        params.amount0_min,
        params.amount1_min,
        Web3.to_checksum_address(params.recipient),
        params.deadline,
        params.sqrt_price_x96,
    )


class SlipstreamPositionManager:
    """NonfungiblePositionManager как PositionIssuer."""

    def __init__(self, w3: Web3, position_manager_address: str, sender: TransactionSender):
        self.w3 = w3
        self.sender = sender
        self.address = Web3.to_checksum_address(position_manager_address)
        self.contract: Contract = w3.eth.contract(
            address=self.address,
            abi=POSITION_MANAGER_ABI
        )

    def _parse_mint_events(self, receipt) -> Optional[MintResult]:
        """
        IncreaseLiquidity из receipt, fallback - Transfer от address(0).

        Transfer не несёт ликвидность: в этом случае liquidity=None,
        её дочитывает open() через positions().
        """
        try:
            events = self.contract.events.IncreaseLiquidity().process_receipt(receipt)
            if events:
                args = events[0]['args']
                return MintResult(
                    token_id=args['tokenId'],
                    liquidity=args['liquidity'],
                    amount0=args['amount0'],
                    amount1=args['amount1'],
                )
        except Exception as e:
            logger.debug(f"IncreaseLiquidity not decoded: {e}")

        try:
            for event in self.contract.events.Transfer().process_receipt(receipt):
                if event['args']['from'] == ZERO_ADDRESS:
                    return MintResult(token_id=event['args']['tokenId'], liquidity=None, amount0=0, amount1=0)
        except Exception as e:
            logger.debug(f"Transfer not decoded: {e}")

        return None

    def _parse_amounts(self, receipt, event_name: str) -> tuple:
        try:
            events = getattr(self.contract.events, event_name)().process_receipt(receipt)
            if events:
                return events[0]['args']['amount0'], events[0]['args']['amount1']
        except Exception as e:
            logger.debug(f"{event_name} not decoded: {e}")
        return 0, 0

    def open(self, params: MintParams) -> CallResult:
        """mint. Значение - MintResult."""
        result = self.sender.send(self.contract.functions.mint(mint_params_tuple(params)), "mint")
        if not result.success:
            return result

        minted = self._parse_mint_events(result.value)
        if minted is None:
            return CallResult.fail("mint events not found in receipt", tx_hash=result.tx_hash)

        if minted.liquidity is None:
            position = self.query_position(minted.token_id)
            if not position.success:
                return CallResult.fail(
                    f"position {minted.token_id} minted but not readable: {position.error}",
                    tx_hash=result.tx_hash
                )
            minted.liquidity = position.value.liquidity
        return CallResult.ok(minted, tx_hash=result.tx_hash)

    def remove_liquidity(
        self,
        token_id: int,
        liquidity: int,
        amount0_min: int,
        amount1_min: int,
        deadline: int
    ) -> CallResult:
        """decreaseLiquidity. Значение - (amount0, amount1)."""
        params = (token_id, liquidity, amount0_min, amount1_min, deadline)
        result = self.sender.send(
            self.contract.functions.decreaseLiquidity(params), "decrease_liquidity"
        )
        if not result.success:
            return result
        return CallResult.ok(self._parse_amounts(result.value, "DecreaseLiquidity"), tx_hash=result.tx_hash)

    def collect(
        self,
        token_id: int,
        recipient: str,
        amount0_max: int = MAX_UINT128,
        amount1_max: int = MAX_UINT128
    ) -> CallResult:
        """collect. Значение - (amount0, amount1)."""
        params = (token_id, Web3.to_checksum_address(recipient), amount0_max, amount1_max)
        result = self.sender.send(self.contract.functions.collect(params), "collect")
        if not result.success:
            return result
        return CallResult.ok(self._parse_amounts(result.value, "Collect"), tx_hash=result.tx_hash)

    def destroy(self, token_id: int) -> CallResult:
        return self.sender.send(self.contract.functions.burn(token_id), "burn")

    def query_position(self, token_id: int) -> CallResult:
        """positions(token_id). Значение - PositionInfo."""
        result = self.sender.call(self.contract.functions.positions(token_id), "positions")
        if not result.success:
            return result

        raw = result.value
        return CallResult.ok(PositionInfo(
            token0=raw[2],
            token1=raw[3],
            tick_spacing=raw[4],
            tick_lower=raw[5],
            tick_upper=raw[6],
            liquidity=raw[7],
            tokens_owed0=raw[10],
            tokens_owed1=raw[11],
        ))

    def approve(self, spender: str, token_id: int) -> CallResult:
        return self.sender.send(
            self.contract.functions.approve(Web3.to_checksum_address(spender), token_id),
            "approve"
        )

