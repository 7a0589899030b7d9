"""
ERC20 ledger over web3.
"""

import logging
from typing import Dict

from web3 import Web3
from web3.contract import Contract

from .abis import ERC20_ABI
from ..collaborators import CallResult
from ..utils import TransactionSender

logger = logging.getLogger(__name__)

DEFAULT_DECIMALS = 18


class ERC20Ledger:
    """
    balanceOf / transfer / transferFrom / approve для любого токена.

    Транзакции идут от аккаунта TransactionSender.
    """

    def __init__(self, w3: Web3, sender: TransactionSender):
        self.w3 = w3
        self.sender = sender
        self._contracts: Dict[str, Contract] = {}
        self._decimals: Dict[str, int] = {}

    def _token(self, token: str) -> Contract:
        key = token.lower()
        if key not in self._contracts:
            self._contracts[key] = self.w3.eth.contract(
                address=Web3.to_checksum_address(token),
                abi=ERC20_ABI
            )
        return self._contracts[key]

    def balance_of(self, token: str, holder: str) -> CallResult:
        return self.sender.call(
            self._token(token).functions.balanceOf(Web3.to_checksum_address(holder)),
            f"balanceOf {token[:10]}..."
        )

    def transfer(self, token: str, to: str, amount: int) -> CallResult:
        return self.sender.send(
            self._token(token).functions.transfer(Web3.to_checksum_address(to), amount),
            "transfer"
        )

    def transfer_from(self, token: str, source: str, to: str, amount: int) -> CallResult:
        return self.sender.send(
            self._token(token).functions.transferFrom(
                Web3.to_checksum_address(source),
                Web3.to_checksum_address(to),
                amount
            ),
            "transfer_from",
            gas_type="transfer"
        )

    def approve(self, token: str, spender: str, amount: int) -> CallResult:
        """Approve на amount, если текущего allowance не хватает."""
        contract = self._token(token)
        spender = Web3.to_checksum_address(spender)

        allowance = self.sender.call(
            contract.functions.allowance(self.sender.address, spender),
            "allowance"
        )
        if allowance.success and allowance.value >= amount:
            return CallResult.ok()

        logger.info(f"Approving {amount} of {token[:10]}... for {spender[:10]}...")
        return self.sender.send(contract.functions.approve(spender, amount), "approve")

    def decimals(self, token: str) -> int:
        """Decimals (кэшируются), 18 если контракт их не отдаёт."""
        key = token.lower()
        if key not in self._decimals:
            result = self.sender.call(self._token(token).functions.decimals(), "decimals")
            if result.success:
                self._decimals[key] = int(result.value)
            else:
                logger.warning(f"decimals() unavailable for {token}, assuming {DEFAULT_DECIMALS}")
                self._decimals[key] = DEFAULT_DECIMALS
        return self._decimals[key]
