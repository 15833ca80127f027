"""
Block-driven automation loop.

On every new block: quote every tracked pair on every DEX, detect and
broadcast opportunities, then hand the most profitable one to the executor,
unless it was already attempted or another execution is still in flight.
Executions run as background tasks so block handling never waits on a
confirmation.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .broadcaster import EVENT_EXECUTION, EVENT_OPPORTUNITY, EVENT_STATUS, EventBroadcaster
from .chain import BlockSubscription, ChainDataClient
from .config import EngineConfig
from .detector import ArbitrageOpportunity, OpportunityDetector, rank_opportunities
from .errors import ErrorKind, RpcError
from .executor import ExecutionResult, TradeExecutor
from .flashloan import FlashloanRegistry
from .quotes import PriceQuoteSource
from .state import AutomationState

logger = logging.getLogger(__name__)

WEI_PER_ETH = 10**18


class AutomationLoop:
    def __init__(
        self,
        config: EngineConfig,
        chain: ChainDataClient,
        quote_source: PriceQuoteSource,
        detector: OpportunityDetector,
        executor: TradeExecutor,
        broadcaster: EventBroadcaster,
        registry: Optional[FlashloanRegistry] = None,
        state: Optional[AutomationState] = None,
    ) -> None:
        self.config = config
        self._chain = chain
        self._quotes = quote_source
        self._detector = detector
        self._executor = executor
        self._broadcaster = broadcaster
        self._registry = registry
        self.state = state if state is not None else AutomationState.load(config.executed_keys_path)

        self._subscription: Optional[BlockSubscription] = None
        self._exec_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self.state.is_running

    # --------------- lifecycle ---------------
    async def start(self) -> None:
        if self.state.is_running:
            logger.info("Automation already running")
            return

        wallet = self._chain.signer_address
        balance_eth: Optional[float] = None
        if wallet:
            try:
                balance_wei = await self._chain.get_balance(wallet)
                balance_eth = balance_wei / WEI_PER_ETH
                logger.info("Wallet %s balance=%.6f ETH", wallet, balance_eth)
                if balance_eth < self.config.min_wallet_balance_eth:
                    logger.warning(
                        "Wallet balance %.6f ETH below minimum %.6f ETH; executions will be rejected",
                        balance_eth,
                        self.config.min_wallet_balance_eth,
                    )
            except RpcError as exc:
                logger.warning("Could not read wallet balance: %s", exc)
        else:
            logger.warning("No signer configured; detection only, executions will fail")

        if self._registry is not None:
            await self._registry.start()

        self.state.is_running = True
        self.state.stats.started_at = datetime.now(timezone.utc)
        self._subscription = self._chain.subscribe_blocks(self.on_block)

        logger.info(
            "Automation started pairs=%s dexes=%s contract=%s",
            ",".join(p.symbol for p in self.config.tracked_pairs),
            ",".join(self._quotes.dexes),
            self._executor.contract_address,
        )
        await self._broadcaster.broadcast(
            EVENT_STATUS,
            {
                "status": "started",
                "wallet": wallet,
                "balance_eth": balance_eth,
                "contract": self._executor.contract_address,
            },
        )

    async def stop(self) -> None:
        """
        Stop reacting to blocks. An execution already in flight is left to
        finish; use wait_idle() to await it.
        """
        if not self.state.is_running:
            return
        self.state.is_running = False

        sub, self._subscription = self._subscription, None
        if sub is not None:
            await sub.unsubscribe()
        if self._registry is not None:
            await self._registry.stop()

        logger.info("Automation stopped stats=%s", self.state.stats.to_dict())
        await self._broadcaster.broadcast(
            EVENT_STATUS,
            {"status": "stopped", "wallet": self._chain.signer_address, "stats": self.state.stats.to_dict()},
        )

    async def wait_idle(self) -> None:
        task = self._exec_task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def status(self) -> Dict[str, Any]:
        return {
            "is_running": self.state.is_running,
            "wallet": self._chain.signer_address,
            "contract": self._executor.contract_address,
            "in_flight_key": self.state.in_flight_key,
            "executed_count": len(self.state.executed_keys),
            "stats": self.state.stats.to_dict(),
        }

    # --------------- per block ---------------
    async def scan(self, block_number: int) -> List[ArbitrageOpportunity]:
        """Detect opportunities on every tracked pair at `block_number`."""
        try:
            fee = await self._chain.get_fee_data()
        except RpcError as exc:
            logger.warning("fee data unavailable block=%s error=%s", block_number, exc)
            return []

        found: List[ArbitrageOpportunity] = []
        for pair in self.config.tracked_pairs:
            quotes = await self._quotes.quote_all(pair, block_number)
            if len(quotes) < 2:
                continue
            opp = self._detector.detect(
                pair,
                quotes,
                min_spread_pct=self.config.min_spread_pct,
                min_net_profit_usd=self.config.min_net_profit_usd,
                gas_price_wei=fee.gas_price,
                block_number=block_number,
            )
            if opp is not None:
                found.append(opp)
        return found

    async def on_block(self, block_number: int) -> None:
        if not self.state.is_running:
            return

        stats = self.state.stats
        stats.blocks_scanned += 1
        stats.last_block = block_number

        try:
            opportunities = await self.scan(block_number)
        except Exception:
            logger.exception("scan failed block=%s", block_number)
            return

        if not opportunities:
            logger.debug("block=%s no opportunities", block_number)
            return

        stats.opportunities_found += len(opportunities)
        for opp in opportunities:
            logger.info(
                "opportunity block=%s pair=%s buy=%s sell=%s spread=%.4f%% net_usd=%.2f",
                block_number,
                opp.pair.symbol,
                opp.buy_dex,
                opp.sell_dex,
                opp.spread_pct,
                opp.net_profit,
            )
            await self._broadcaster.broadcast(EVENT_OPPORTUNITY, opp.to_dict())

        best = rank_opportunities(opportunities)[0]

        if self.state.already_executed(best.key):
            stats.skipped_duplicate += 1
            logger.info("skip already executed key=%s", best.key)
            return
        if self.state.in_flight_key is not None:
            stats.skipped_in_flight += 1
            logger.info(
                "skip key=%s, execution in flight key=%s", best.key, self.state.in_flight_key
            )
            return
        try:
            if not self.state.try_begin(best.key):
                return
        except Exception:
            logger.exception("could not claim execution key=%s", best.key)
            self.state.finish(best.key)
            return

        stats.executions_attempted += 1
        self._exec_task = asyncio.create_task(self._execute(best), name=f"execute-{best.key}")

    async def _execute(self, opp: ArbitrageOpportunity) -> ExecutionResult:
        try:
            result = await self._executor.execute(opp)
        except Exception as exc:
            logger.exception("executor raised key=%s", opp.key)
            result = ExecutionResult.failure(ErrorKind.SUBMISSION_FAILED, str(exc))
        finally:
            self.state.finish(opp.key)

        stats = self.state.stats
        if result.success:
            stats.executions_succeeded += 1
            stats.total_profit_usd += float(result.profit_realized or 0.0)
            logger.info(
                "execution succeeded key=%s tx=%s profit_usd=%.2f",
                opp.key,
                result.tx_hash,
                result.profit_realized or 0.0,
            )
        else:
            stats.executions_failed += 1
            logger.info(
                "execution failed key=%s kind=%s detail=%s",
                opp.key,
                result.error_kind.value if result.error_kind else None,
                result.detail,
            )

        await self._broadcaster.broadcast(
            EVENT_EXECUTION,
            {"opportunity": opp.to_dict(), "result": result.to_dict()},
        )
        return result
