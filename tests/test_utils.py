"""
Tests for transaction plumbing: NonceManager, GasEstimator, TransactionSender.
"""

import threading

import pytest
from unittest.mock import MagicMock, Mock

from web3.exceptions import ContractLogicError

from rebalancer.utils import GasEstimator, NonceManager, TransactionSender

from conftest import HOLDER, MockWeb3


# ============================================================
# NonceManager Tests
# ============================================================

class TestNonceManager:

    def test_initial_sync(self):
        """Первый get_next_nonce синхронизируется с блокчейном."""
        w3 = MockWeb3(initial_nonce=100)
        manager = NonceManager(w3, HOLDER)

        assert manager.get_next_nonce() == 100
        assert manager.get_pending_count() == 1
        w3.eth.get_transaction_count.assert_called_once_with(HOLDER, 'pending')

    def test_sequential_nonces(self):
        w3 = MockWeb3(initial_nonce=100)
        manager = NonceManager(w3, HOLDER)

        assert [manager.get_next_nonce() for _ in range(3)] == [100, 101, 102]
        assert manager.get_pending_count() == 3
        # Между синхронизациями сеть не опрашивается
        assert w3.eth.get_transaction_count.call_count == 1

    def test_confirm_transaction(self):
        manager = NonceManager(MockWeb3(), HOLDER)
        nonce1 = manager.get_next_nonce()
        manager.get_next_nonce()

        manager.confirm_transaction(nonce1)

        assert manager.get_pending_count() == 1

    def test_release_last_nonce_is_reused(self):
        manager = NonceManager(MockWeb3(initial_nonce=100), HOLDER)
        nonce = manager.get_next_nonce()

        manager.release_nonce(nonce)

        assert manager.get_pending_count() == 0
        assert manager.get_next_nonce() == 100

    def test_release_earlier_nonce_keeps_counter(self):
        manager = NonceManager(MockWeb3(initial_nonce=100), HOLDER)
        first = manager.get_next_nonce()
        manager.get_next_nonce()

        manager.release_nonce(first)

        assert manager.get_next_nonce() == 102

    def test_resync_drops_mined_nonces(self):
        w3 = MockWeb3(initial_nonce=100)
        manager = NonceManager(w3, HOLDER, sync_interval=0)
        for _ in range(3):
            manager.get_next_nonce()

        w3.set_nonce(102)
        nonce = manager.get_next_nonce(force_sync=True)

        assert nonce == 103
        assert manager.get_pending_count() == 2  # 102, 103

    def test_chain_ahead_of_local_counter(self):
        """Транзакции, отправленные извне, сдвигают nonce вперёд."""
        w3 = MockWeb3(initial_nonce=100)
        manager = NonceManager(w3, HOLDER)
        manager.get_next_nonce()

        w3.set_nonce(110)

        assert manager.get_next_nonce(force_sync=True) == 110

    def test_reset(self):
        w3 = MockWeb3(initial_nonce=100)
        manager = NonceManager(w3, HOLDER)
        manager.get_next_nonce()
        manager.get_next_nonce()

        manager.reset()
        w3.set_nonce(105)

        assert manager.get_pending_count() == 0
        assert manager.get_next_nonce() == 105

    def test_thread_safety(self):
        manager = NonceManager(MockWeb3(initial_nonce=0), HOLDER)
        results = []

        def worker():
            for _ in range(50):
                results.append(manager.get_next_nonce())

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(results) == list(range(200))


# ============================================================
# GasEstimator Tests
# ============================================================

class TestGasEstimator:

    def test_buffer_applied(self):
        func = Mock()
        func.estimate_gas.return_value = 100_000

        assert GasEstimator(MockWeb3(), buffer_percent=20).estimate(func, HOLDER) == 120_000
        func.estimate_gas.assert_called_once_with({'from': HOLDER, 'value': 0})

    def test_capped_at_max_gas(self):
        func = Mock()
        func.estimate_gas.return_value = 2_900_000

        assert GasEstimator(MockWeb3(), max_gas=3_000_000).estimate(func, HOLDER) == 3_000_000

    def test_revert_falls_back_to_default(self):
        func = Mock()
        func.estimate_gas.side_effect = ContractLogicError("execution reverted")

        assert GasEstimator(MockWeb3()).estimate(func, HOLDER, default_type='mint') == 600000

    def test_rpc_error_falls_back_to_default(self):
        func = Mock()
        func.estimate_gas.side_effect = ConnectionError("timeout")

        assert GasEstimator(MockWeb3()).estimate(func, HOLDER, default_type='stake') == 400000

    def test_unknown_type_default(self):
        func = Mock()
        func.estimate_gas.side_effect = ValueError("boom")

        assert GasEstimator(MockWeb3()).estimate(func, HOLDER, default_type='unknown') == 200000


# ============================================================
# TransactionSender Tests
# ============================================================

def make_function(gas: int = 100_000):
    func = MagicMock()
    func.estimate_gas.return_value = gas
    func.build_transaction.return_value = {'to': '0xabc', 'data': '0x'}
    return func


class TestTransactionSender:

    def test_success(self, mock_w3, mock_account, mock_receipt_success):
        mock_w3.eth.wait_for_transaction_receipt.return_value = mock_receipt_success
        nonce_manager = NonceManager(mock_w3, HOLDER)
        sender = TransactionSender(mock_w3, mock_account, nonce_manager)
        func = make_function()

        result = sender.send(func, "approve")

        assert result.success
        assert result.value == mock_receipt_success
        assert result.tx_hash == (b'\x12\x34' * 16).hex()
        tx_params = func.build_transaction.call_args[0][0]
        assert tx_params['nonce'] == 100
        assert tx_params['gas'] == 120_000
        assert tx_params['from'] == HOLDER
        mock_account.sign_transaction.assert_called_once()
        mock_w3.eth.send_raw_transaction.assert_called_once_with(b'signed_tx')
        assert nonce_manager.get_pending_count() == 0

    def test_reverted(self, mock_w3, mock_account, mock_receipt_fail):
        mock_w3.eth.wait_for_transaction_receipt.return_value = mock_receipt_fail
        nonce_manager = NonceManager(mock_w3, HOLDER)
        sender = TransactionSender(mock_w3, mock_account, nonce_manager)

        result = sender.send(make_function(), "burn")

        assert not result.success
        assert result.error == "transaction reverted"
        assert result.tx_hash is not None
        # Смайненный revert расходует nonce
        assert nonce_manager.get_next_nonce() == 101

    def test_failure_before_send_releases_nonce(self, mock_w3, mock_account):
        mock_account.sign_transaction.side_effect = ValueError("bad key")
        nonce_manager = NonceManager(mock_w3, HOLDER)
        sender = TransactionSender(mock_w3, mock_account, nonce_manager)

        result = sender.send(make_function(), "mint")

        assert not result.success
        assert "bad key" in result.error
        assert result.tx_hash is None
        mock_w3.eth.send_raw_transaction.assert_not_called()
        assert nonce_manager.get_pending_count() == 0
        assert nonce_manager.get_next_nonce() == 100

    def test_receipt_timeout_after_send(self, mock_w3, mock_account):
        mock_w3.eth.wait_for_transaction_receipt.side_effect = TimeoutError("not mined")
        nonce_manager = NonceManager(mock_w3, HOLDER)
        sender = TransactionSender(mock_w3, mock_account, nonce_manager)

        result = sender.send(make_function(), "swap")

        assert not result.success
        assert result.tx_hash == (b'\x12\x34' * 16).hex()
        assert nonce_manager.get_next_nonce() == 101

    def test_without_nonce_manager_uses_pending_count(self, mock_w3, mock_account):
        sender = TransactionSender(mock_w3, mock_account)
        func = make_function()

        assert sender.send(func, "stake").success
        mock_w3.eth.get_transaction_count.assert_called_with(HOLDER, 'pending')
        assert func.build_transaction.call_args[0][0]['nonce'] == 100

    def test_gas_type_overrides_operation(self, mock_w3, mock_account):
        func = make_function()
        func.estimate_gas.side_effect = ContractLogicError("reverted")
        sender = TransactionSender(mock_w3, mock_account)

        sender.send(func, "close position", gas_type='collect')

        assert func.build_transaction.call_args[0][0]['gas'] == 200000

    def test_address(self, mock_w3, mock_account):
        assert TransactionSender(mock_w3, mock_account).address == HOLDER

    def test_call_success(self):
        func = Mock()
        func.call.return_value = 18

        result = TransactionSender.call(func, "decimals")

        assert result.success
        assert result.value == 18

    def test_call_failure(self):
        func = Mock()
        func.call.side_effect = ContractLogicError("Invalid token ID")

        result = TransactionSender.call(func, "positions")

        assert not result.success
        assert "Invalid token ID" in result.error
