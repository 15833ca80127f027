from __future__ import annotations

import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from .errors import ConfigurationError
from .pairs import (
    DEFAULT_PAIRS,
    DEX_ROUTER_MAP,
    TOKEN_ADDRESS_MAP,
    TOKEN_DECIMALS,
    TokenPair,
    parse_pair,
    unresolved_symbols,
)

BALANCER_VAULT_ADDRESS = "0xBA12222222228d8Ba445958a75a0704d566BF2C8"
ARBITRAGE_CONTRACT_ADDRESS = "0x675f26375aB7E5a35279CF3AE37C26a3004b9ae4"

# Balancer V2 pools on Base (WETH/USDC, BAL/WETH).
DEFAULT_FLASHLOAN_POOLS: List[str] = [
    "0x0297e37f1873d2dab4487aa67cd56b58e2f27875000200000000000000000002",
    "0x4bd6d86debdb9f5413e631ad386c4427dc9d01b20000000000000000000000ec",
]

# Default flashloan size caps in whole token units.
DEFAULT_SIZE_POLICY: Dict[str, float] = {
    "WETH": 50.0,
    "ETH": 50.0,
    "cbETH": 50.0,
    "USDC": 100_000.0,
    "USDT": 100_000.0,
    "DAI": 100_000.0,
    "LINK": 5_000.0,
    "UNI": 2_000.0,
}


@dataclass
class EngineConfig:
    """
    Configuration for the detection and execution engine.

    - rpc_url: HTTP JSON-RPC endpoint used for queries and submission
    - private_key: signer credential for the arbitrage transactions
    - contract_address: deployed flashloan arbitrage contract
    - dex_routers: DEX name -> router address (quote + swap route)
    - token_addresses: symbol -> token address
    - pairs: tracked (base, quote) pairs
    - vault_address / flashloan_pools: Balancer vault and pool ids polled for liquidity
    - min_spread_pct: spread (in %) an opportunity must exceed
    - min_net_profit_usd: net profit (USD) an opportunity must exceed
    - max_gas_price_gwei: gas price ceiling above which nothing is submitted
    - min_wallet_balance_eth: signer balance required to pay for gas
    - max_block_lag: how many blocks the head may advance past an opportunity's block
    - min_flashloan_amount / max_flashloan_amount: notional bounds for sizing
    - flashloan_fee_bps: flashloan fee rate in basis points
    - gas_units: gas limit / estimate for one arbitrage transaction
    - asset_usd_price: USD price used to convert profits and gas costs
    - flashloan_refresh_seconds: liquidity discovery period
    - size_policy / default_size_cap: per-asset flashloan caps in whole units
    - executed_keys_path: optional file that persists executed opportunity keys
    - nats_url / nats_subject: optional NATS event feed
    """

    rpc_url: str = ""
    private_key: Optional[str] = None
    chain_id: Optional[int] = None
    poa_chain: bool = False

    contract_address: str = ARBITRAGE_CONTRACT_ADDRESS
    dex_routers: Mapping[str, str] = field(default_factory=lambda: dict(DEX_ROUTER_MAP))
    token_addresses: Mapping[str, str] = field(default_factory=lambda: dict(TOKEN_ADDRESS_MAP))
    token_decimals: Mapping[str, int] = field(default_factory=lambda: dict(TOKEN_DECIMALS))
    pairs: List[Tuple[str, str]] = field(default_factory=lambda: list(DEFAULT_PAIRS))

    vault_address: str = BALANCER_VAULT_ADDRESS
    flashloan_pools: List[str] = field(default_factory=lambda: list(DEFAULT_FLASHLOAN_POOLS))
    flashloan_refresh_seconds: float = 7 * 60
    size_policy: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_SIZE_POLICY))
    default_size_cap: float = 10.0

    min_spread_pct: float = 0.1
    min_net_profit_usd: float = 5.0
    max_gas_price_gwei: float = 1.0
    min_wallet_balance_eth: float = 0.001
    max_block_lag: int = 2

    min_flashloan_amount: float = 0.1
    max_flashloan_amount: float = 10.0
    flashloan_fee_bps: float = 5.0
    gas_units: int = 350_000
    quote_test_amount: float = 1.0
    asset_usd_price: float = 3400.0

    block_poll_interval: float = 2.0
    confirmation_timeout: float = 120.0
    request_timeout: float = 10.0

    executed_keys_path: Optional[str] = None
    nats_url: Optional[str] = None
    nats_subject: str = "arb.events"

    @property
    def tracked_pairs(self) -> List[TokenPair]:
        return [TokenPair(base=b, quote=q) for b, q in self.pairs]

    def validate(self) -> "EngineConfig":
        """
        Check the configuration and freeze the address tables.

        Every tracked pair must resolve to token addresses, at least two DEX
        routers are required to form a spread, and sizing bounds must be
        ordered. Returns self so the call can be chained.
        """
        if not self.rpc_url:
            raise ConfigurationError("rpc_url is required")

        missing = unresolved_symbols(self.tracked_pairs, self.token_addresses)
        if missing:
            raise ConfigurationError(
                f"Unresolved token symbols in tracked pairs: {','.join(missing)}",
                details={"missing": missing},
            )

        if len(self.dex_routers) < 2:
            raise ConfigurationError(
                f"At least two DEX routers are required, got {len(self.dex_routers)}"
            )

        for name in (
            "min_spread_pct",
            "min_net_profit_usd",
            "max_gas_price_gwei",
            "min_wallet_balance_eth",
            "min_flashloan_amount",
            "flashloan_fee_bps",
        ):
            if float(getattr(self, name)) < 0:
                raise ConfigurationError(f"{name} must not be negative")

        if self.max_flashloan_amount < self.min_flashloan_amount:
            raise ConfigurationError(
                f"max_flashloan_amount={self.max_flashloan_amount} "
                f"< min_flashloan_amount={self.min_flashloan_amount}"
            )
        if self.max_block_lag < 0:
            raise ConfigurationError("max_block_lag must not be negative")
        if self.flashloan_refresh_seconds <= 0:
            raise ConfigurationError("flashloan_refresh_seconds must be positive")

        self.dex_routers = MappingProxyType(dict(self.dex_routers))
        self.token_addresses = MappingProxyType(dict(self.token_addresses))
        self.token_decimals = MappingProxyType(dict(self.token_decimals))
        self.size_policy = MappingProxyType(dict(self.size_policy))
        return self

    @classmethod
    def from_env(cls, prefix: str = "ARB_") -> "EngineConfig":
        """
        Build a config from environment variables.

        Lists are comma separated, maps are `name=value` items separated by
        commas. Example:
            ARB_RPC_URL=https://base-mainnet.g.alchemy.com/v2/<key>
            ARB_PRIVATE_KEY=0x...
            ARB_PAIRS=WETH/USDC,LINK/USDC
            ARB_DEX_ROUTERS=Uniswap V3=0x...,SushiSwap=0x...
        """

        def env(name: str) -> Optional[str]:
            raw = os.getenv(prefix + name)
            if raw is None:
                return None
            raw = raw.strip()
            return raw or None

        cfg = cls()

        cfg.rpc_url = env("RPC_URL") or ""
        cfg.private_key = env("PRIVATE_KEY")
        if env("CHAIN_ID"):
            cfg.chain_id = int(env("CHAIN_ID"))  # type: ignore[arg-type]
        if env("POA_CHAIN"):
            cfg.poa_chain = env("POA_CHAIN").lower() in ("1", "true", "yes")  # type: ignore[union-attr]
        if env("CONTRACT_ADDRESS"):
            cfg.contract_address = env("CONTRACT_ADDRESS")  # type: ignore[assignment]
        if env("VAULT_ADDRESS"):
            cfg.vault_address = env("VAULT_ADDRESS")  # type: ignore[assignment]

        if env("PAIRS"):
            cfg.pairs = [
                (p.base, p.quote) for p in (parse_pair(s) for s in _split_list(env("PAIRS")))
            ]
        if env("DEX_ROUTERS"):
            cfg.dex_routers = _parse_map(env("DEX_ROUTERS"), str)
        if env("TOKEN_ADDRESSES"):
            tokens = dict(cfg.token_addresses)
            tokens.update(_parse_map(env("TOKEN_ADDRESSES"), str))
            cfg.token_addresses = tokens
        if env("FLASHLOAN_POOLS"):
            cfg.flashloan_pools = _split_list(env("FLASHLOAN_POOLS"))
        if env("SIZE_POLICY"):
            policy = dict(cfg.size_policy)
            policy.update(_parse_map(env("SIZE_POLICY"), float))
            cfg.size_policy = policy

        floats = {
            "MIN_SPREAD_PCT": "min_spread_pct",
            "MIN_NET_PROFIT_USD": "min_net_profit_usd",
            "MAX_GAS_PRICE_GWEI": "max_gas_price_gwei",
            "MIN_WALLET_BALANCE_ETH": "min_wallet_balance_eth",
            "MIN_FLASHLOAN_AMOUNT": "min_flashloan_amount",
            "MAX_FLASHLOAN_AMOUNT": "max_flashloan_amount",
            "FLASHLOAN_FEE_BPS": "flashloan_fee_bps",
            "ASSET_USD_PRICE": "asset_usd_price",
            "FLASHLOAN_REFRESH_SECONDS": "flashloan_refresh_seconds",
            "BLOCK_POLL_INTERVAL": "block_poll_interval",
            "CONFIRMATION_TIMEOUT": "confirmation_timeout",
            "DEFAULT_SIZE_CAP": "default_size_cap",
        }
        for key, attr in floats.items():
            raw = env(key)
            if raw is not None:
                setattr(cfg, attr, float(raw))

        if env("MAX_BLOCK_LAG"):
            cfg.max_block_lag = int(env("MAX_BLOCK_LAG"))  # type: ignore[arg-type]
        if env("GAS_UNITS"):
            cfg.gas_units = int(env("GAS_UNITS"))  # type: ignore[arg-type]

        cfg.executed_keys_path = env("EXECUTED_KEYS_PATH")
        cfg.nats_url = env("NATS_URL")
        if env("NATS_SUBJECT"):
            cfg.nats_subject = env("NATS_SUBJECT")  # type: ignore[assignment]

        return cfg


def _split_list(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [s.strip() for s in raw.split(",") if s.strip()]


def _parse_map(raw: Optional[str], cast) -> Dict[str, object]:
    out: Dict[str, object] = {}
    for item in _split_list(raw):
        if "=" not in item:
            raise ConfigurationError(f"Expected name=value, got {item!r}")
        name, value = item.split("=", 1)
        out[name.strip()] = cast(value.strip())
    return out
