"""
Configuration for the Slipstream rebalancer

Конфигурация для работы с Aerodrome Slipstream (CL пулы) на Base.
Slipstream - форк Uniswap V3, пулы задаются tick spacing вместо fee tier,
позиции стейкаются в CLGauge за AERO.
"""

import os
import re
from dataclasses import dataclass
from typing import Dict, Optional

from dotenv import load_dotenv

from rebalancer.errors import ConfigError


@dataclass
class ChainConfig:
    """Конфигурация сети."""
    chain_id: int
    rpc_url: str
    explorer_url: str
    native_token: str


@dataclass
class SlipstreamConfig:
    """Адреса Slipstream в сети."""
    name: str
    swap_router: str


@dataclass
class TokenConfig:
    """Конфигурация токена."""
    address: str
    symbol: str
    decimals: int


# ============================================================
# CHAIN CONFIGURATIONS
# ============================================================

# Base Mainnet
# Note: mainnet.base.org has strict rate limits, use alternative RPC if needed:
# - https://base.llamarpc.com
# - https://base-rpc.publicnode.com
BASE = ChainConfig(
    chain_id=8453,
    rpc_url="https://base.llamarpc.com",
    explorer_url="https://basescan.org",
    native_token="ETH",
)

ETHEREUM = ChainConfig(
    chain_id=1,
    rpc_url="https://eth.llamarpc.com",
    explorer_url="https://etherscan.io",
    native_token="ETH",
)

SEPOLIA = ChainConfig(
    chain_id=11155111,
    rpc_url="https://rpc.sepolia.org",
    explorer_url="https://sepolia.etherscan.io",
    native_token="ETH",
)

# Aerodrome Slipstream on Base
SLIPSTREAM_BASE = SlipstreamConfig(
    name="Aerodrome Slipstream",
    swap_router="0xBE6D8f0d05cC4be24d5167a3eF062215bE6D18a5",
)

# ============================================================
# TOKEN CONFIGURATIONS (Base)
# ============================================================

TOKENS_BASE: Dict[str, TokenConfig] = {
    "WETH": TokenConfig(
        address="0x4200000000000000000000000000000000000006",
        symbol="WETH",
        decimals=18
    ),
    "USDC": TokenConfig(
        address="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        symbol="USDC",
        decimals=6  # USDC on Base has 6 decimals
    ),
    "AERO": TokenConfig(
        address="0x940181a94A35A4569E4529A3CDfB74e38FD98631",
        symbol="AERO",
        decimals=18
    ),
    "cbBTC": TokenConfig(
        address="0xcbB7C0000aB88B473b1f5aFd9ef808440eed33Bf",
        symbol="cbBTC",
        decimals=8
    ),
}

# ============================================================
# DEFAULT SETTINGS
# ============================================================

FIXED_ONE = 10 ** 18
DEFAULT_SLIPPAGE = 10 ** 16  # 1%
DEFAULT_DEADLINE_SECONDS = 3600
DEFAULT_GAS_BUFFER_PERCENT = 20
DEFAULT_TX_TIMEOUT = 300
DEFAULT_STATE_FILE = "position.json"

_PRIVATE_KEY_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


@dataclass
class RebalancerSettings:
    """Настройки запуска из окружения."""
    private_key: str
    nft_manager: str
    gauge: str
    rpc_url: str
    network: str
    chain: ChainConfig
    swap_router: str = SLIPSTREAM_BASE.swap_router
    owner: Optional[str] = None  # None = адрес ключа
    deadline_seconds: int = DEFAULT_DEADLINE_SECONDS
    gas_buffer_percent: int = DEFAULT_GAS_BUFFER_PERCENT
    tx_timeout: int = DEFAULT_TX_TIMEOUT  # ожидание receipt, секунды
    state_file: str = DEFAULT_STATE_FILE  # id текущей позиции

    def __repr__(self):
        # Без приватного ключа в логах
        return (
            f"RebalancerSettings(network={self.network!r}, rpc_url={self.rpc_url!r}, "
            f"nft_manager={self.nft_manager!r}, gauge={self.gauge!r}, "
            f"swap_router={self.swap_router!r}, owner={self.owner!r})"
        )


def _require(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise ConfigError(f"{name} is not set in environment or .env file")
    return value


def _positive_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")
    if value <= 0:
        raise ConfigError(f"{name} must be positive")
    return value


def _address(name: str, value: str) -> str:
    if not _ADDRESS_RE.match(value):
        raise ConfigError(f"Invalid {name} format: {value} (expected 0x followed by 40 hex characters)")
    return value


def resolve_network(mainnet_rpc: Optional[str], sepolia_rpc: Optional[str]) -> tuple:
    """
    RPC и сеть: MAINNET_RPC_URL приоритетнее SEPOLIA_RPC_URL,
    URL с "base" означает сеть Base.

    Returns:
        (rpc_url, network, ChainConfig)
    """
    if mainnet_rpc:
        if "base" in mainnet_rpc.lower():
            return mainnet_rpc, "base", BASE
        return mainnet_rpc, "mainnet", ETHEREUM
    if sepolia_rpc:
        return sepolia_rpc, "sepolia", SEPOLIA
    raise ConfigError("Neither MAINNET_RPC_URL nor SEPOLIA_RPC_URL is set")


def load_settings(env_file: Optional[str] = None) -> RebalancerSettings:
    """
    Загрузка настроек из .env / окружения.

    Raises:
        ConfigError: отсутствует или некорректна обязательная переменная
    """
    load_dotenv(env_file)

    private_key = _require("PRIVATE_KEY")
    if not _PRIVATE_KEY_RE.match(private_key):
        raise ConfigError("Invalid PRIVATE_KEY format (expected 0x followed by 64 hex characters)")

    nft_manager = _address("NFT_MANAGER_ADDRESS", _require("NFT_MANAGER_ADDRESS"))
    gauge = _address("GAUGE_ADDRESS", _require("GAUGE_ADDRESS"))

    owner = os.getenv("OWNER_ADDRESS", "").strip() or None
    if owner:
        _address("OWNER_ADDRESS", owner)

    swap_router = os.getenv("SWAP_ROUTER_ADDRESS", "").strip() or SLIPSTREAM_BASE.swap_router
    _address("SWAP_ROUTER_ADDRESS", swap_router)

    rpc_url, network, chain = resolve_network(
        os.getenv("MAINNET_RPC_URL", "").strip() or None,
        os.getenv("SEPOLIA_RPC_URL", "").strip() or None,
    )

    deadline_seconds = _positive_int("DEADLINE_SECONDS", DEFAULT_DEADLINE_SECONDS)
    gas_buffer_percent = _positive_int("GAS_BUFFER_PERCENT", DEFAULT_GAS_BUFFER_PERCENT)
    tx_timeout = _positive_int("TX_TIMEOUT", DEFAULT_TX_TIMEOUT)

    return RebalancerSettings(
        private_key=private_key,
        nft_manager=nft_manager,
        gauge=gauge,
        rpc_url=rpc_url,
        network=network,
        chain=chain,
        swap_router=swap_router,
        owner=owner,
        deadline_seconds=deadline_seconds,
        gas_buffer_percent=gas_buffer_percent,
        tx_timeout=tx_timeout,
        state_file=os.getenv("STATE_FILE", "").strip() or DEFAULT_STATE_FILE,
    )


def get_token(symbol: str) -> TokenConfig:
    """Токен Base по символу."""
    if symbol not in TOKENS_BASE:
        raise ValueError(f"Unknown token: {symbol}")
    return TOKENS_BASE[symbol]
