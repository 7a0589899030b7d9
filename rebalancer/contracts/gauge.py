"""
Aerodrome CLGauge.

deposit(tokenId) стейкает NFT позиции, withdraw(tokenId) забирает
накопленные AERO и возвращает NFT владельцу.
"""

import logging

from web3 import Web3
from web3.contract import Contract

from .abis import GAUGE_ABI
from ..collaborators import CallResult
from ..utils import TransactionSender

logger = logging.getLogger(__name__)


class CLGauge:
    """CLGauge как StakingGauge."""

    def __init__(self, w3: Web3, gauge_address: str, sender: TransactionSender):
        self.w3 = w3
        self.sender = sender
        self.address = Web3.to_checksum_address(gauge_address)
        self.contract: Contract = w3.eth.contract(address=self.address, abi=GAUGE_ABI)

    def stake(self, token_id: int) -> CallResult:
        return self.sender.send(self.contract.functions.deposit(token_id), "stake")

    def unstake(self, token_id: int) -> CallResult:
        return self.sender.send(self.contract.functions.withdraw(token_id), "unstake")

    def claim_rewards(self, token_id: int) -> CallResult:
        return self.sender.send(self.contract.functions.getReward(token_id), "claim_rewards", gas_type="stake")

    def earned(self, holder: str, token_id: int) -> CallResult:
        return self.sender.call(
            self.contract.functions.earned(Web3.to_checksum_address(holder), token_id), "earned"
        )

    def pair_assets(self) -> CallResult:
        """(token0, token1) пула gauge."""
        token0 = self.sender.call(self.contract.functions.token0(), "gauge.token0")
        if not token0.success:
            return token0
        token1 = self.sender.call(self.contract.functions.token1(), "gauge.token1")
        if not token1.success:
            return token1
        return CallResult.ok((token0.value, token1.value))

    def tick_spacing(self) -> CallResult:
        return self.sender.call(self.contract.functions.tickSpacing(), "gauge.tickSpacing")

    def reward_asset(self) -> CallResult:
        return self.sender.call(self.contract.functions.rewardToken(), "gauge.rewardToken")

    def venue(self) -> CallResult:
        return self.sender.call(self.contract.functions.pool(), "gauge.pool")
