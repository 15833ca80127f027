"""
Flashloan capacity registry.

Polls the Balancer vault for the token balances of a configured set of pools
and keeps one immutable FlashloanCapability per token. Entries are replaced
wholesale on every discovery; readers never see a half-updated entry.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from hexbytes import HexBytes

from .chain import ChainDataClient
from .contracts import ERC20_ABI_NAME, VAULT_ABI_NAME, load_abi
from .errors import RpcError
from .pairs import resolve_address, symbol_for_address
from .quotes import from_base_units

logger = logging.getLogger(__name__)


class RegistryState(str, Enum):
    IDLE = "Idle"
    DISCOVERING = "Discovering"


@dataclass(frozen=True)
class FlashloanCapability:
    token_address: str
    symbol: str
    max_amount: float
    source_pool_id: str
    last_updated: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token_address": self.token_address,
            "symbol": self.symbol,
            "max_amount": self.max_amount,
            "source_pool_id": self.source_pool_id,
            "last_updated": self.last_updated,
        }


class FlashloanRegistry:
    """
    Owns the token -> FlashloanCapability map.

    - chain: ChainDataClient for vault / ERC20 reads
    - vault_address: Balancer V2 vault
    - pool_ids: pool ids (bytes32 hex) to read balances from
    - token_addresses: static symbol table consulted before on-chain symbol()
    - token_decimals: static decimals table consulted before on-chain decimals()
    - refresh_seconds: discovery period; entries older than twice this are stale
    - size_policy / default_size_cap: per-asset caps (whole units) used when no
      amount is requested
    """

    def __init__(
        self,
        chain: ChainDataClient,
        vault_address: str,
        pool_ids: Sequence[str],
        token_addresses: Mapping[str, str],
        token_decimals: Optional[Mapping[str, int]] = None,
        refresh_seconds: float = 7 * 60,
        size_policy: Optional[Mapping[str, float]] = None,
        default_size_cap: float = 10.0,
        clock=time.time,
    ) -> None:
        self._chain = chain
        self._vault_address = vault_address
        self._pool_ids = list(pool_ids)
        self._tokens = token_addresses
        self._decimals: Dict[str, int] = dict(token_decimals or {})
        self._refresh_seconds = float(refresh_seconds)
        self._size_policy = dict(size_policy or {})
        self._default_size_cap = float(default_size_cap)
        self._clock = clock

        self._capabilities: Dict[str, FlashloanCapability] = {}
        self._symbol_cache: Dict[str, str] = {}
        self._decimals_cache: Dict[str, int] = {}
        self._state = RegistryState.IDLE
        self._task: Optional[asyncio.Task] = None

        self._vault_abi = load_abi(VAULT_ABI_NAME)
        self._erc20_abi = load_abi(ERC20_ABI_NAME)

    @property
    def state(self) -> RegistryState:
        return self._state

    @property
    def refresh_seconds(self) -> float:
        return self._refresh_seconds

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # --------------- lifecycle ---------------
    async def start(self) -> None:
        """Run one discovery now, then keep refreshing every refresh_seconds."""
        if self.running:
            return
        logger.info(
            "Starting flashloan capability monitoring pools=%s interval=%ss",
            len(self._pool_ids),
            self._refresh_seconds,
        )
        await self.discover()
        self._task = asyncio.create_task(self._refresh_loop(), name="flashloan-refresh")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("Flashloan capability monitoring stopped")

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self._refresh_seconds)
            try:
                await self.discover()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("flashloan discovery failed")

    # --------------- discovery ---------------
    async def discover(self) -> int:
        """
        Read every configured pool and refresh the capability of each token.

        A pool that cannot be read is logged and skipped. Returns the number
        of capability entries written.
        """
        self._state = RegistryState.DISCOVERING
        updated = 0
        try:
            for pool_id in self._pool_ids:
                try:
                    updated += await self._discover_pool(pool_id)
                except (RpcError, ValueError, TypeError) as exc:
                    logger.warning("flashloan pool read failed pool=%s error=%s", pool_id, exc)
        finally:
            self._state = RegistryState.IDLE

        logger.info(
            "flashloan discovery done pools=%s updated=%s tokens=%s",
            len(self._pool_ids),
            updated,
            len(self._capabilities),
        )
        return updated

    async def _discover_pool(self, pool_id: str) -> int:
        tokens, balances, _last_change = await self._chain.call(
            self._vault_address,
            self._vault_abi,
            "getPoolTokens",
            [HexBytes(pool_id)],
        )

        updated = 0
        for token, balance in zip(tokens, balances):
            symbol = await self._resolve_symbol(token)
            if symbol is None:
                logger.debug("skipping token without symbol pool=%s token=%s", pool_id, token)
                continue
            decimals = await self._resolve_decimals(token, symbol)

            cap = FlashloanCapability(
                token_address=str(token),
                symbol=symbol,
                max_amount=from_base_units(int(balance), decimals),
                source_pool_id=pool_id,
                last_updated=self._clock(),
            )
            self._capabilities[str(token).lower()] = cap
            updated += 1
        return updated

    async def _resolve_symbol(self, token_address: str) -> Optional[str]:
        known = symbol_for_address(token_address, self._tokens)
        if known is not None:
            return known

        key = token_address.lower()
        if key in self._symbol_cache:
            return self._symbol_cache[key]

        try:
            symbol = await self._chain.call(token_address, self._erc20_abi, "symbol")
        except RpcError as exc:
            logger.debug("symbol() failed token=%s error=%s", token_address, exc)
            return None
        self._symbol_cache[key] = str(symbol)
        return str(symbol)

    async def _resolve_decimals(self, token_address: str, symbol: str) -> int:
        if symbol in self._decimals:
            return int(self._decimals[symbol])

        key = token_address.lower()
        if key in self._decimals_cache:
            return self._decimals_cache[key]

        try:
            decimals = int(await self._chain.call(token_address, self._erc20_abi, "decimals"))
        except RpcError as exc:
            logger.debug("decimals() failed token=%s error=%s, assuming 18", token_address, exc)
            decimals = 18
        self._decimals_cache[key] = decimals
        return decimals

    # --------------- queries ---------------
    def get_capability(self, token_address: str) -> Optional[FlashloanCapability]:
        return self._capabilities.get(token_address.lower())

    def get_capability_by_symbol(self, symbol: str) -> Optional[FlashloanCapability]:
        try:
            address = resolve_address(symbol, self._tokens)
        except ValueError:
            address = None

        if address is not None:
            cap = self.get_capability(address)
            if cap is not None:
                return cap

        upper = symbol.upper()
        for cap in self._capabilities.values():
            if cap.symbol.upper() == upper:
                return cap
        return None

    def all_capabilities(self) -> List[FlashloanCapability]:
        return list(self._capabilities.values())

    def is_stale(self, capability: FlashloanCapability, now: Optional[float] = None) -> bool:
        now = self._clock() if now is None else now
        return (now - capability.last_updated) > 2 * self._refresh_seconds

    def fresh_capability(self, symbol: str) -> Optional[FlashloanCapability]:
        """Capability for `symbol`, or None when unknown or stale."""
        cap = self.get_capability_by_symbol(symbol)
        if cap is None or self.is_stale(cap):
            return None
        return cap

    def size_cap(self, symbol: str) -> float:
        """Policy ceiling for `symbol` in whole units."""
        if symbol in self._size_policy:
            return float(self._size_policy[symbol])
        upper = symbol.upper()
        for name, cap in self._size_policy.items():
            if name.upper() == upper:
                return float(cap)
        return self._default_size_cap

    def get_optimal_amount(self, symbol: str, requested: Optional[float] = None) -> float:
        """
        Flashloan size for `symbol` in whole units.

        Returns min(requested, max_amount) when an amount is requested,
        otherwise the policy cap bounded by max_amount. Unknown or stale
        assets return 0.
        """
        cap = self.fresh_capability(symbol)
        if cap is None:
            return 0.0

        if requested is not None:
            return max(0.0, min(float(requested), cap.max_amount))

        return max(0.0, min(self.size_cap(symbol), cap.max_amount))

    def is_flashloan_available(self, symbol: str, amount: float) -> bool:
        cap = self.fresh_capability(symbol)
        if cap is None:
            return False
        return float(amount) <= cap.max_amount
