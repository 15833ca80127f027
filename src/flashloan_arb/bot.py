from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Tuple

from .automation import AutomationLoop
from .broadcaster import EventBroadcaster, NatsEventPublisher
from .chain import ChainDataClient
from .config import EngineConfig
from .detector import OpportunityDetector
from .executor import TradeExecutor
from .flashloan import FlashloanRegistry
from .logging_config import configure_logging
from .quotes import PriceQuoteSource

logger = logging.getLogger(__name__)

WEI_PER_ETH = 10**18


def _format_table(headers: List[str], rows: List[List[str]]) -> str:
    widths = [len(h) for h in headers]
    for r in rows:
        for i, c in enumerate(r):
            widths[i] = max(widths[i], len(c))

    def fmt_row(r: List[str]) -> str:
        return " | ".join(c.ljust(widths[i]) for i, c in enumerate(r))

    sep = "-+-".join("-" * w for w in widths)
    return "\n".join([fmt_row(headers), sep] + [fmt_row(r) for r in rows])


def build_engine(
    config: EngineConfig,
    chain: Optional[ChainDataClient] = None,
    broadcaster: Optional[EventBroadcaster] = None,
) -> AutomationLoop:
    """Wire the components described by `config` into an AutomationLoop."""
    if chain is None:
        chain = ChainDataClient.from_rpc_url(
            config.rpc_url,
            private_key=config.private_key,
            poll_interval=config.block_poll_interval,
            request_timeout=config.request_timeout,
            poa_chain=config.poa_chain,
        )

    registry = FlashloanRegistry(
        chain=chain,
        vault_address=config.vault_address,
        pool_ids=config.flashloan_pools,
        token_addresses=config.token_addresses,
        token_decimals=config.token_decimals,
        refresh_seconds=config.flashloan_refresh_seconds,
        size_policy=config.size_policy,
        default_size_cap=config.default_size_cap,
    )

    quote_source = PriceQuoteSource(
        chain=chain,
        routers=config.dex_routers,
        token_addresses=config.token_addresses,
        token_decimals=config.token_decimals,
        test_amount=config.quote_test_amount,
    )

    detector = OpportunityDetector(
        registry=registry,
        gas_units=config.gas_units,
        flashloan_fee_bps=config.flashloan_fee_bps,
        min_flashloan_amount=config.min_flashloan_amount,
        max_flashloan_amount=config.max_flashloan_amount,
        asset_usd_price=config.asset_usd_price,
    )

    executor = TradeExecutor(
        chain=chain,
        contract_address=config.contract_address,
        router_addresses=config.dex_routers,
        token_addresses=config.token_addresses,
        token_decimals=config.token_decimals,
        max_gas_price_gwei=config.max_gas_price_gwei,
        min_wallet_balance_wei=int(config.min_wallet_balance_eth * WEI_PER_ETH),
        max_block_lag=config.max_block_lag,
        gas_units=config.gas_units,
        asset_usd_price=config.asset_usd_price,
        confirmation_timeout=config.confirmation_timeout,
    )

    return AutomationLoop(
        config=config,
        chain=chain,
        quote_source=quote_source,
        detector=detector,
        executor=executor,
        broadcaster=broadcaster if broadcaster is not None else EventBroadcaster(),
        registry=registry,
    )


def _summary_table(engine: AutomationLoop) -> str:
    stats = engine.state.stats
    rows: List[Tuple[str, str]] = [
        ("blocks_scanned", str(stats.blocks_scanned)),
        ("last_block", str(stats.last_block)),
        ("opportunities_found", str(stats.opportunities_found)),
        ("executions_attempted", str(stats.executions_attempted)),
        ("executions_succeeded", str(stats.executions_succeeded)),
        ("executions_failed", str(stats.executions_failed)),
        ("skipped_duplicate", str(stats.skipped_duplicate)),
        ("skipped_in_flight", str(stats.skipped_in_flight)),
        ("total_profit_usd", f"{stats.total_profit_usd:.2f}"),
    ]
    return _format_table(["metric", "value"], [list(r) for r in rows])


async def run_arbitrage_bot(
    config: EngineConfig,
    stop_event: Optional[asyncio.Event] = None,
    broadcaster: Optional[EventBroadcaster] = None,
) -> None:
    configure_logging()

    config.validate()
    logger.info(
        "Starting flashloan arbitrage engine pairs=%s dexes=%s pools=%s",
        ",".join(p.symbol for p in config.tracked_pairs),
        ",".join(config.dex_routers),
        len(config.flashloan_pools),
    )

    broadcaster = broadcaster if broadcaster is not None else EventBroadcaster()

    publisher: Optional[NatsEventPublisher] = None
    if config.nats_url:
        publisher = NatsEventPublisher(config.nats_url, subject=config.nats_subject)
        await publisher.connect()
        broadcaster.add_subscriber(publisher)

    engine = build_engine(config, broadcaster=broadcaster)
    stop_event = stop_event if stop_event is not None else asyncio.Event()

    try:
        await engine.start()
        await stop_event.wait()
        logger.info("Stop event set. Shutting down.")
    finally:
        await engine.stop()
        await engine.wait_idle()
        if publisher is not None:
            broadcaster.remove_subscriber(publisher)
            await publisher.close()
        logger.info("Final summary\n%s", _summary_table(engine))
