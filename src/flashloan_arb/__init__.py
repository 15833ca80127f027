from __future__ import annotations

"""
Root package for the flashloan_arb engine.

Re-exports the engine components and the process entry points.
"""

from .automation import AutomationLoop
from .bot import build_engine, run_arbitrage_bot
from .broadcaster import EventBroadcaster, NatsEventPublisher
from .chain import BlockSubscription, ChainDataClient, FeeData, SubmittedTransaction
from .config import EngineConfig
from .detector import ArbitrageOpportunity, OpportunityDetector, rank_opportunities
from .errors import (
    ArbitrageEngineError,
    ConfigurationError,
    ErrorKind,
    NoQuoteError,
    RpcError,
)
from .executor import ExecutionResult, TradeExecutor
from .flashloan import FlashloanCapability, FlashloanRegistry
from .logging_config import configure_logging
from .pairs import TokenPair
from .quotes import PriceQuoteSource, TokenPriceQuote
from .state import AutomationState, AutomationStats

__all__ = [
    "AutomationLoop",
    "AutomationState",
    "AutomationStats",
    "ArbitrageEngineError",
    "ArbitrageOpportunity",
    "BlockSubscription",
    "ChainDataClient",
    "ConfigurationError",
    "EngineConfig",
    "ErrorKind",
    "EventBroadcaster",
    "ExecutionResult",
    "FeeData",
    "FlashloanCapability",
    "FlashloanRegistry",
    "NatsEventPublisher",
    "NoQuoteError",
    "OpportunityDetector",
    "PriceQuoteSource",
    "RpcError",
    "SubmittedTransaction",
    "TokenPair",
    "TokenPriceQuote",
    "TradeExecutor",
    "build_engine",
    "configure_logging",
    "rank_opportunities",
    "run_arbitrage_bot",
]
