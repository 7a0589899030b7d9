"""
Transaction plumbing for the web3 adapters.

Includes:
- NonceManager: nonce allocation for back-to-back transactions
- GasEstimator: gas estimation with buffer and per-operation fallbacks
- TransactionSender: build -> sign -> send -> wait -> check status,
  returning CallResult instead of raising
"""

import logging
import threading
import time
from typing import Optional

from web3 import Web3
from web3.exceptions import ContractLogicError
from eth_account.signers.local import LocalAccount

from .collaborators import CallResult

logger = logging.getLogger(__name__)


class NonceManager:
    """
    Thread-safe nonce allocation.

    `get_transaction_count('pending')` returns the same nonce for
    transactions sent faster than they propagate, so nonces are tracked
    locally and re-synced with the chain periodically.

    Usage:
        nonce = nonce_mgr.get_next_nonce()
        ...
        nonce_mgr.confirm_transaction(nonce)  # mined (even if reverted)
        nonce_mgr.release_nonce(nonce)        # never sent
    """

    def __init__(self, w3: Web3, account_address: str, sync_interval: float = 30.0):
        self.w3 = w3
        self.account_address = Web3.to_checksum_address(account_address)
        self._lock = threading.Lock()
        self._current_nonce: Optional[int] = None
        self._pending_nonces: set = set()
        self._last_sync_time: float = 0
        self._sync_interval = sync_interval

    def _sync_nonce(self) -> int:
        return self.w3.eth.get_transaction_count(self.account_address, 'pending')

    def get_next_nonce(self, force_sync: bool = False) -> int:
        """Следующий свободный nonce."""
        with self._lock:
            now = time.time()
            if (self._current_nonce is None or force_sync
                    or now - self._last_sync_time > self._sync_interval):
                chain_nonce = self._sync_nonce()
                # Nonces below the chain nonce are already mined
                self._pending_nonces = {n for n in self._pending_nonces if n >= chain_nonce}
                if self._current_nonce is None:
                    self._current_nonce = chain_nonce
                else:
                    self._current_nonce = max(self._current_nonce, chain_nonce)
                self._last_sync_time = now
                logger.debug(f"Synced nonce with chain: {self._current_nonce}")

            nonce = self._current_nonce
            self._current_nonce += 1
            self._pending_nonces.add(nonce)
            logger.debug(f"Allocated nonce: {nonce}, pending: {len(self._pending_nonces)}")
            return nonce

    def confirm_transaction(self, nonce: int):
        """Транзакция попала в блок."""
        with self._lock:
            self._pending_nonces.discard(nonce)

    def release_nonce(self, nonce: int):
        """
        Транзакция не была отправлена.

        Последний выданный nonce возвращается, чтобы не копить дыры.
        """
        with self._lock:
            self._pending_nonces.discard(nonce)
            if self._current_nonce is not None and nonce == self._current_nonce - 1:
                self._current_nonce = nonce
            logger.debug(f"Released nonce: {nonce}, current: {self._current_nonce}")

    def reset(self):
        with self._lock:
            self._current_nonce = None
            self._pending_nonces.clear()
            self._last_sync_time = 0

    def get_pending_count(self) -> int:
        with self._lock:
            return len(self._pending_nonces)


class GasEstimator:
    """
    Gas estimation with a safety buffer.

    Если estimate_gas не проходит, берётся лимит по типу операции.
    """

    DEFAULTS = {
        'approve': 60000,
        'transfer': 65000,
        'mint': 600000,
        'decrease_liquidity': 300000,
        'collect': 200000,
        'burn': 100000,
        'stake': 400000,
        'unstake': 400000,
        'swap': 300000,
    }

    def __init__(self, w3: Web3, buffer_percent: int = 20, max_gas: int = 3000000):
        self.w3 = w3
        self.buffer_percent = buffer_percent
        self.max_gas = max_gas

    def estimate(self, contract_function, from_address: str, value: int = 0, default_type: str = 'approve') -> int:
        """
        Args:
            contract_function: e.g. contract.functions.approve(...)
            from_address: Отправитель
            value: ETH value
            default_type: Ключ DEFAULTS для fallback

        Returns:
            Gas limit с буфером, не больше max_gas
        """
        try:
            estimated = contract_function.estimate_gas({
                'from': Web3.to_checksum_address(from_address),
                'value': value
            })
            with_buffer = int(estimated * (1 + self.buffer_percent / 100))
            result = min(with_buffer, self.max_gas)
            logger.debug(f"Gas estimated: {estimated}, with buffer: {result}")
            return result

        except ContractLogicError as e:
            logger.warning(f"Gas estimation reverted for '{default_type}': {e}")
            return self.DEFAULTS.get(default_type, 200000)

        except Exception as e:
            logger.warning(f"Gas estimation failed: {e}, using default for '{default_type}'")
            return self.DEFAULTS.get(default_type, 200000)


class TransactionSender:
    """
    Отправка транзакций от имени одного аккаунта.

    nonce освобождается если транзакция не ушла в сеть и подтверждается
    если она смайнена, даже с revert.
    """

    def __init__(
        self,
        w3: Web3,
        account: LocalAccount,
        nonce_manager: NonceManager = None,
        gas_estimator: GasEstimator = None,
        timeout: int = 300
    ):
        self.w3 = w3
        self.account = account
        self.nonce_manager = nonce_manager
        self.gas_estimator = gas_estimator or GasEstimator(w3)
        self.timeout = timeout

    @property
    def address(self) -> str:
        return self.account.address

    def _next_nonce(self) -> int:
        if self.nonce_manager:
            return self.nonce_manager.get_next_nonce()
        return self.w3.eth.get_transaction_count(self.account.address, 'pending')

    def send(self, contract_function, operation: str, gas_type: str = None, value: int = 0) -> CallResult:
        """
        Отправка вызова контракта и ожидание receipt.

        Args:
            contract_function: e.g. contract.functions.burn(token_id)
            operation: Имя операции для логов и ошибок
            gas_type: Ключ GasEstimator.DEFAULTS (по умолчанию = operation)
            value: ETH value

        Returns:
            CallResult со значением receipt
        """
        nonce = self._next_nonce()
        tx_sent = False
        tx_hash = None
        try:
            gas = self.gas_estimator.estimate(
                contract_function, self.account.address, value, gas_type or operation
            )
            tx = contract_function.build_transaction({
                'from': self.account.address,
                'nonce': nonce,
                'gas': gas,
                'gasPrice': self.w3.eth.gas_price,
                'value': value,
            })

            signed = self.account.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
            tx_sent = True
            logger.debug(f"{operation}: sent {tx_hash.hex()} (nonce {nonce})")

            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.timeout)
        except Exception as e:
            if self.nonce_manager:
                if tx_sent:
                    self.nonce_manager.confirm_transaction(nonce)
                else:
                    self.nonce_manager.release_nonce(nonce)
            logger.error(f"{operation} failed: {e}")
            return CallResult.fail(str(e), tx_hash=tx_hash.hex() if tx_hash else None)

        # TX mined - nonce consumed (even if reverted)
        if self.nonce_manager:
            self.nonce_manager.confirm_transaction(nonce)

        if receipt['status'] != 1:
            logger.error(f"{operation} reverted: {tx_hash.hex()}")
            return CallResult.fail("transaction reverted", tx_hash=tx_hash.hex())

        return CallResult.ok(receipt, tx_hash=tx_hash.hex())

    @staticmethod
    def call(contract_function, operation: str) -> CallResult:
        """View-вызов, обёрнутый в CallResult."""
        try:
            return CallResult.ok(contract_function.call())
        except Exception as e:
            logger.warning(f"{operation} call failed: {e}")
            return CallResult.fail(str(e))
