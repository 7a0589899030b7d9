"""
Shared fixtures for all tests.

Web3 моки для адаптеров и in-memory коллабораторы для lifecycle/rebalancer.
"""

import hashlib
from typing import Dict, List, Tuple
from unittest.mock import MagicMock, Mock

import pytest

from rebalancer.collaborators import CallResult, MintParams, MintResult, PositionInfo
from rebalancer.math.liquidity import estimate_mint
from rebalancer.math.ticks import Q96, get_sqrt_ratio_at_tick
from rebalancer.rebalancer import Rebalancer


# Тестовые адреса
TOKEN0 = "0x1111111111111111111111111111111111111111"
TOKEN1 = "0x2222222222222222222222222222222222222222"
REWARD = "0x3333333333333333333333333333333333333333"
HOLDER = "0x1234567890123456789012345678901234567890"
OWNER = HOLDER
BENEFICIARY = "0x4444444444444444444444444444444444444444"
STRANGER = "0x5555555555555555555555555555555555555555"
POOL = "0x6666666666666666666666666666666666666666"
NFT_MANAGER = "0x7777777777777777777777777777777777777777"
GAUGE = "0x8888888888888888888888888888888888888888"


class MockWeb3:
    """Переиспользуемый мок Web3 для тестов."""

    def __init__(self, initial_nonce: int = 100):
        self._nonce = initial_nonce
        self.eth = MagicMock()
        self.eth.get_transaction_count = MagicMock(return_value=self._nonce)
        self.eth.gas_price = 5_000_000_000  # 5 gwei
        self.eth.chain_id = 8453
        self.eth.send_raw_transaction = MagicMock(return_value=b'\x12\x34' * 16)
        self.eth.wait_for_transaction_receipt = MagicMock(return_value={
            'status': 1,
            'gasUsed': 300_000,
            'logs': [],
            'transactionHash': b'\x12\x34' * 16
        })
        self.eth.contract = MagicMock()

    def set_nonce(self, nonce: int):
        self._nonce = nonce
        self.eth.get_transaction_count.return_value = nonce

    @staticmethod
    def to_checksum_address(addr: str) -> str:
        return addr

    @staticmethod
    def keccak(text: str = None, primitive: bytes = None) -> bytes:
        data = text.encode() if text else (primitive or b'')
        return hashlib.sha256(data).digest()


@pytest.fixture
def mock_w3():
    """Мок Web3 instance."""
    return MockWeb3()


@pytest.fixture
def mock_account():
    """Мок LocalAccount."""
    account = Mock()
    account.address = HOLDER
    account.sign_transaction = Mock(return_value=Mock(raw_transaction=b'signed_tx'))
    return account


@pytest.fixture
def mock_receipt_success():
    return {
        'status': 1,
        'gasUsed': 300_000,
        'logs': [],
        'transactionHash': b'\x12\x34' * 16,
        'blockNumber': 20_000_000,
    }


@pytest.fixture
def mock_receipt_fail():
    return {
        'status': 0,
        'gasUsed': 300_000,
        'logs': [],
        'transactionHash': b'\xde\xad' * 16,
        'blockNumber': 20_000_000,
    }


# ============================================================
# In-memory collaborators
# ============================================================

class FailureInjector:
    """failures[op] = сколько следующих вызовов op вернут ошибку."""

    def __init__(self):
        self.failures: Dict[str, int] = {}
        self.calls: List[Tuple] = []

    def fail(self, op: str, times: int = 1):
        self.failures[op] = times

    def _check(self, op: str, *args):
        self.calls.append((op,) + args)
        remaining = self.failures.get(op, 0)
        if remaining:
            self.failures[op] = remaining - 1
            return CallResult.fail(f"{op} reverted")
        return None

    def called(self, op: str) -> int:
        return sum(1 for c in self.calls if c[0] == op)


class FakeLedger(FailureInjector):
    """ERC20 балансы в словаре. transfer/approve - от имени holder."""

    def __init__(self, holder: str = HOLDER):
        super().__init__()
        self.holder = holder
        self.balances: Dict[Tuple[str, str], int] = {}
        self.token_decimals: Dict[str, int] = {}
        self.allowances: Dict[Tuple[str, str], int] = {}

    def set_balance(self, token: str, owner: str, amount: int):
        self.balances[(token.lower(), owner.lower())] = amount

    def get(self, token: str, owner: str) -> int:
        return self.balances.get((token.lower(), owner.lower()), 0)

    def move(self, token: str, source: str, to: str, amount: int) -> bool:
        if self.get(token, source) < amount:
            return False
        self.set_balance(token, source, self.get(token, source) - amount)
        self.set_balance(token, to, self.get(token, to) + amount)
        return True

    def balance_of(self, token, holder):
        return self._check("balance_of", token, holder) or CallResult.ok(self.get(token, holder))

    def transfer(self, token, to, amount):
        failed = self._check("transfer", token, to, amount)
        if failed:
            return failed
        if not self.move(token, self.holder, to, amount):
            return CallResult.fail("insufficient balance")
        return CallResult.ok(True, tx_hash="0xtransfer")

    def transfer_from(self, token, source, to, amount):
        failed = self._check("transfer_from", token, source, to, amount)
        if failed:
            return failed
        if not self.move(token, source, to, amount):
            return CallResult.fail("insufficient balance")
        return CallResult.ok(True, tx_hash="0xtransferfrom")

    def approve(self, token, spender, amount):
        failed = self._check("approve", token, spender, amount)
        if failed:
            return failed
        self.allowances[(token.lower(), spender.lower())] = amount
        return CallResult.ok()

    def decimals(self, token):
        return self.token_decimals.get(token.lower(), 18)


class FakeVenue(FailureInjector):
    """
    Пул с фиксированным курсом (в минимальных единицах).

    Оплата через callback: пул ждёт перевода token_in на свой адрес.
    """

    def __init__(self, ledger: FakeLedger, token0: str = TOKEN0, token1: str = TOKEN1):
        super().__init__()
        self.address = POOL
        self.ledger = ledger
        self.token0 = token0
        self.token1 = token1
        self.sqrt_price_x96 = Q96
        self.rate = (1, 1)  # token1 за token0 = rate[0] / rate[1]
        self.pay_via_callback = True

    def current_price(self):
        return self._check("current_price") or CallResult.ok(self.sqrt_price_x96)

    def swap(self, recipient, zero_for_one, amount_in, amount_out_min, sqrt_price_limit_x96, callback):
        failed = self._check("swap", zero_for_one, amount_in, amount_out_min)
        if failed:
            return failed

        num, den = self.rate
        if zero_for_one:
            amount_out = amount_in * num // den
            token_in, token_out = self.token0, self.token1
            delta = (amount_in, -amount_out)
        else:
            amount_out = amount_in * den // num
            token_in, token_out = self.token1, self.token0
            delta = (-amount_out, amount_in)

        before = self.ledger.get(token_in, self.address)
        if self.pay_via_callback:
            callback(self.address, *delta)
        if self.ledger.get(token_in, self.address) - before < amount_in:
            return CallResult.fail("swap not paid")

        self.ledger.set_balance(token_out, recipient, self.ledger.get(token_out, recipient) + amount_out)
        return CallResult.ok(delta, tx_hash="0xswap")


class FakeIssuer(FailureInjector):
    """Position manager: mint забирает оценку estimate_mint у holder."""

    def __init__(self, ledger: FakeLedger, venue: FakeVenue):
        super().__init__()
        self.address = NFT_MANAGER
        self.ledger = ledger
        self.venue = venue
        self.positions: Dict[int, dict] = {}
        self.next_id = 1
        self.zero_liquidity = False
        self.last_params: MintParams = None

    def open(self, params: MintParams):
        failed = self._check("open", params)
        if failed:
            return failed
        self.last_params = params

        estimate = estimate_mint(
            self.venue.sqrt_price_x96,
            get_sqrt_ratio_at_tick(params.tick_lower),
            get_sqrt_ratio_at_tick(params.tick_upper),
            params.amount0_desired,
            params.amount1_desired,
        )
        liquidity = 0 if self.zero_liquidity else estimate.liquidity
        used0, used1 = (0, 0) if self.zero_liquidity else (estimate.amount0, estimate.amount1)
        self.ledger.move(params.token0, params.recipient, self.address, used0)
        self.ledger.move(params.token1, params.recipient, self.address, used1)

        token_id = self.next_id
        self.next_id += 1
        self.positions[token_id] = {
            'token0': params.token0, 'token1': params.token1,
            'tick_spacing': params.tick_spacing,
            'tick_lower': params.tick_lower, 'tick_upper': params.tick_upper,
            'liquidity': liquidity, 'amount0': used0, 'amount1': used1,
            'owed0': 0, 'owed1': 0,
        }
        return CallResult.ok(MintResult(token_id, liquidity, used0, used1), tx_hash="0xmint")

    def remove_liquidity(self, token_id, liquidity, amount0_min, amount1_min, deadline):
        failed = self._check("remove_liquidity", token_id, liquidity)
        if failed:
            return failed
        pos = self.positions[token_id]
        pos['liquidity'] = 0
        pos['owed0'], pos['owed1'] = pos['amount0'], pos['amount1']
        return CallResult.ok((pos['owed0'], pos['owed1']))

    def collect(self, token_id, recipient, amount0_max=None, amount1_max=None):
        failed = self._check("collect", token_id, recipient)
        if failed:
            return failed
        pos = self.positions[token_id]
        out0, out1 = pos['owed0'], pos['owed1']
        self.ledger.move(pos['token0'], self.address, recipient, out0)
        self.ledger.move(pos['token1'], self.address, recipient, out1)
        pos['owed0'] = pos['owed1'] = 0
        return CallResult.ok((out0, out1))

    def destroy(self, token_id):
        failed = self._check("destroy", token_id)
        if failed:
            return failed
        self.positions.pop(token_id, None)
        return CallResult.ok()

    def query_position(self, token_id):
        failed = self._check("query_position", token_id)
        if failed:
            return failed
        if token_id not in self.positions:
            return CallResult.fail("Invalid token ID")
        pos = self.positions[token_id]
        return CallResult.ok(PositionInfo(
            token0=pos['token0'], token1=pos['token1'], tick_spacing=pos['tick_spacing'],
            tick_lower=pos['tick_lower'], tick_upper=pos['tick_upper'], liquidity=pos['liquidity'],
        ))

    def approve(self, spender, token_id):
        return self._check("approve", spender, token_id) or CallResult.ok()


class FakeGauge(FailureInjector):
    def __init__(self, token0: str = TOKEN0, token1: str = TOKEN1, tick_spacing: int = 100):
        super().__init__()
        self.address = GAUGE
        self.token0 = token0
        self.token1 = token1
        self.spacing = tick_spacing
        self.staked = set()

    def stake(self, token_id):
        failed = self._check("stake", token_id)
        if failed:
            return failed
        self.staked.add(token_id)
        return CallResult.ok()

    def unstake(self, token_id):
        failed = self._check("unstake", token_id)
        if failed:
            return failed
        self.staked.discard(token_id)
        return CallResult.ok()

    def claim_rewards(self, token_id):
        return self._check("claim_rewards", token_id) or CallResult.ok()

    def earned(self, holder, token_id):
        return self._check("earned", holder, token_id) or CallResult.ok(42)

    def pair_assets(self):
        return self._check("pair_assets") or CallResult.ok((self.token0, self.token1))

    def tick_spacing(self):
        return self._check("tick_spacing") or CallResult.ok(self.spacing)

    def reward_asset(self):
        return self._check("reward_asset") or CallResult.ok(REWARD)

    def venue(self):
        return self._check("venue") or CallResult.ok(POOL)


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def venue(ledger):
    return FakeVenue(ledger)


@pytest.fixture
def issuer(ledger, venue):
    return FakeIssuer(ledger, venue)


@pytest.fixture
def gauge():
    return FakeGauge()


@pytest.fixture
def rebalancer(ledger, issuer, gauge, venue):
    """Rebalancer на in-memory коллабораторах, контроллер = holder."""
    return Rebalancer(ledger, issuer, gauge, venue, holder=HOLDER, controller=OWNER, beneficiary=BENEFICIARY)
