"""
TradeExecutor: guards an ArbitrageOpportunity and submits it to the
flashloan arbitrage contract.

Every outcome, including pre-flight rejections and RPC failures, comes back
as an ExecutionResult. Nothing is retried: a failed opportunity is dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Tuple

from .chain import ChainDataClient
from .contracts import ARBITRAGE_ABI_NAME, load_abi
from .detector import ArbitrageOpportunity
from .errors import ErrorKind, RpcError
from .pairs import decimals_for, resolve_address
from .quotes import to_base_units

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionResult:
    success: bool
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    profit_realized: Optional[float] = None
    error_kind: Optional[ErrorKind] = None
    detail: str = ""

    @classmethod
    def failure(cls, kind: ErrorKind, detail: str = "", **kwargs: Any) -> "ExecutionResult":
        return cls(success=False, error_kind=kind, detail=detail, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "tx_hash": self.tx_hash,
            "block_number": self.block_number,
            "gas_used": self.gas_used,
            "profit_realized": self.profit_realized,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "detail": self.detail,
        }


class TradeExecutor:
    """
    Pre-flight guards plus submission of `executeArbitrage`.

    Guards, in order, each a hard reject:
      - GasTooHigh: current gas price above max_gas_price_gwei
      - InsufficientBalance: signer balance below min_wallet_balance_wei
      - StaleOpportunity: head advanced more than max_block_lag past the
        opportunity's block

    The signer (account + nonce) is only touched here; the automation loop
    guarantees one execute() at a time.
    """

    def __init__(
        self,
        chain: ChainDataClient,
        contract_address: str,
        router_addresses: Mapping[str, str],
        token_addresses: Mapping[str, str],
        token_decimals: Optional[Mapping[str, int]] = None,
        max_gas_price_gwei: float = 1.0,
        min_wallet_balance_wei: int = 10**15,
        max_block_lag: int = 2,
        gas_units: int = 350_000,
        asset_usd_price: float = 3400.0,
        confirmation_timeout: float = 120.0,
    ) -> None:
        self._chain = chain
        self._contract_address = contract_address
        self._routers = router_addresses
        self._tokens = token_addresses
        self._decimals = token_decimals
        self.max_gas_price_gwei = float(max_gas_price_gwei)
        self.min_wallet_balance_wei = int(min_wallet_balance_wei)
        self.max_block_lag = int(max_block_lag)
        self.gas_units = int(gas_units)
        self.asset_usd_price = float(asset_usd_price)
        self.confirmation_timeout = float(confirmation_timeout)
        self._abi = load_abi(ARBITRAGE_ABI_NAME)

    @property
    def contract_address(self) -> str:
        return self._contract_address

    def min_profit_wei(self, opp: ArbitrageOpportunity) -> int:
        """Contract-side profit floor: the expected net profit converted from USD to wei."""
        if self.asset_usd_price <= 0 or opp.net_profit <= 0:
            return 0
        profit_eth = Decimal(str(opp.net_profit)) / Decimal(str(self.asset_usd_price))
        return int(profit_eth.quantize(Decimal("0.000001")) * Decimal(10**18))

    def _build_args(self, opp: ArbitrageOpportunity) -> list:
        token_in = resolve_address(opp.pair.base, self._tokens)
        token_out = resolve_address(opp.pair.quote, self._tokens)
        buy_router = self._routers[opp.buy_dex]
        sell_router = self._routers[opp.sell_dex]
        amount_in = to_base_units(opp.flashloan_amount, decimals_for(opp.pair.base, self._decimals))
        return [
            token_in,
            token_out,
            amount_in,
            buy_router,
            sell_router,
            self.min_profit_wei(opp),
        ]

    async def _preflight(self, opp: ArbitrageOpportunity) -> Tuple[Optional[ExecutionResult], int]:
        """Return (rejection or None, current gas price in wei)."""
        fee = await self._chain.get_fee_data()
        gas_gwei = fee.gas_price_gwei
        if gas_gwei > self.max_gas_price_gwei:
            return ExecutionResult.failure(
                ErrorKind.GAS_TOO_HIGH,
                f"Gas price too high: {gas_gwei:.4f} gwei > {self.max_gas_price_gwei} gwei",
            ), fee.gas_price

        signer = self._chain.signer_address
        balance = await self._chain.get_balance(signer) if signer else 0
        if balance < self.min_wallet_balance_wei:
            return ExecutionResult.failure(
                ErrorKind.INSUFFICIENT_BALANCE,
                f"Insufficient balance: {balance} wei < {self.min_wallet_balance_wei} wei",
            ), fee.gas_price

        head = await self._chain.get_block_number()
        lag = head - opp.block_number
        if lag > self.max_block_lag:
            return ExecutionResult.failure(
                ErrorKind.STALE_OPPORTUNITY,
                f"Opportunity block {opp.block_number} is {lag} blocks behind head {head}",
            ), fee.gas_price

        return None, fee.gas_price

    async def execute(self, opp: ArbitrageOpportunity) -> ExecutionResult:
        try:
            rejected, gas_price_wei = await self._preflight(opp)
        except RpcError as exc:
            logger.warning("[EXECUTOR] pre-flight rpc failure key=%s error=%s", opp.key, exc)
            return ExecutionResult.failure(ErrorKind.SUBMISSION_FAILED, f"pre-flight failed: {exc}")

        if rejected is not None:
            logger.info(
                "[EXECUTOR] Opportunity rejected key=%s kind=%s detail=%s",
                opp.key,
                rejected.error_kind.value if rejected.error_kind else None,
                rejected.detail,
            )
            return rejected

        logger.info(
            "[EXECUTOR] Executing arbitrage: %s | buy on %s @ %.6f, sell on %s @ %.6f, "
            "amount=%.6f net_usd=%.2f block=%s",
            opp.pair.symbol,
            opp.buy_dex,
            opp.buy_price,
            opp.sell_dex,
            opp.sell_price,
            opp.flashloan_amount,
            opp.net_profit,
            opp.block_number,
        )

        try:
            args = self._build_args(opp)
            tx = await self._chain.build_transaction(
                self._contract_address,
                self._abi,
                "executeArbitrage",
                args,
                {"gas": self.gas_units, "gasPrice": int(gas_price_wei), "value": 0},
            )
            submitted = await self._chain.send_transaction(tx)
        except Exception as exc:
            logger.warning("[EXECUTOR] submission failed key=%s error=%s", opp.key, exc)
            return ExecutionResult.failure(ErrorKind.SUBMISSION_FAILED, str(exc))

        logger.info("[EXECUTOR] Transaction submitted key=%s tx=%s", opp.key, submitted.hash)

        try:
            receipt = await submitted.wait(timeout=self.confirmation_timeout)
        except Exception as exc:
            logger.warning(
                "[EXECUTOR] confirmation failed key=%s tx=%s error=%s", opp.key, submitted.hash, exc
            )
            return ExecutionResult.failure(
                ErrorKind.SUBMISSION_FAILED, str(exc), tx_hash=submitted.hash
            )

        status = int(receipt.get("status", 0) or 0)
        block_number = receipt.get("blockNumber")
        gas_used = receipt.get("gasUsed")

        if status != 1:
            logger.warning("[EXECUTOR] Transaction reverted key=%s tx=%s", opp.key, submitted.hash)
            return ExecutionResult.failure(
                ErrorKind.REVERTED,
                "Transaction reverted",
                tx_hash=submitted.hash,
                block_number=int(block_number) if block_number is not None else None,
                gas_used=int(gas_used) if gas_used is not None else None,
            )

        logger.info(
            "[EXECUTOR] Done: tx=%s block=%s gas_used=%s profit_usd=%.2f",
            submitted.hash,
            block_number,
            gas_used,
            opp.net_profit,
        )
        return ExecutionResult(
            success=True,
            tx_hash=submitted.hash,
            block_number=int(block_number) if block_number is not None else None,
            gas_used=int(gas_used) if gas_used is not None else None,
            profit_realized=opp.net_profit,
        )
