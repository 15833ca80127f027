"""
Cross-DEX Arbitrage Detector

Given the per-DEX quotes of one pair at one block, picks the cheapest DEX to
buy on and the most expensive DEX to sell on, sizes a flashloan for the trade
and prices it after gas and flashloan fees.

    spread     = (sell - buy) / buy * 100
    gross      = flashloan_amount * (sell - buy) * asset_usd_price
    gas        = gas_units * gas_price * asset_usd_price
    fee        = flashloan_amount * fee_bps / 10000 * asset_usd_price
    net        = gross - gas - fee

Only opportunities with spread > min_spread_pct and net > min_net_profit_usd
are returned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .flashloan import FlashloanRegistry
from .pairs import TokenPair
from .quotes import TokenPriceQuote

logger = logging.getLogger(__name__)

WEI_PER_ETH = 10**18
DEFAULT_GAS_PRICE_WEI = 100_000_000  # 0.1 gwei


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ArbitrageOpportunity:
    """
    A priced buy-low / sell-high route for one pair at one block.

    Attributes:
        pair: Tracked pair (quotes are base -> quote)
        buy_dex: DEX with the lowest quote
        sell_dex: DEX with the highest quote
        buy_price / sell_price: quote units per base unit
        spread_pct: (sell - buy) / buy * 100
        flashloan_amount: borrowed base amount (whole units)
        gross_profit / gas_cost_estimate / flashloan_fee / net_profit: USD
        block_number: block the quotes were read at
        created_at: detection time (UTC)
        opportunity_id: optional caller-assigned id; replaces the derived key
    """

    pair: TokenPair
    buy_dex: str
    sell_dex: str
    buy_price: float
    sell_price: float
    spread_pct: float
    flashloan_amount: float
    gross_profit: float
    gas_cost_estimate: float
    flashloan_fee: float
    net_profit: float
    block_number: int
    created_at: datetime = field(default_factory=_utcnow)
    opportunity_id: Optional[str] = None

    @property
    def key(self) -> str:
        """Identity used to deduplicate execution attempts."""
        if self.opportunity_id:
            return self.opportunity_id
        return f"{self.pair.symbol}:{self.buy_dex}:{self.sell_dex}:{self.block_number}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "pair": self.pair.symbol,
            "token_in": self.pair.base,
            "token_out": self.pair.quote,
            "buy_dex": self.buy_dex,
            "sell_dex": self.sell_dex,
            "buy_price": self.buy_price,
            "sell_price": self.sell_price,
            "spread_pct": self.spread_pct,
            "flashloan_amount": self.flashloan_amount,
            "gross_profit": self.gross_profit,
            "gas_cost_estimate": self.gas_cost_estimate,
            "flashloan_fee": self.flashloan_fee,
            "net_profit": self.net_profit,
            "block_number": self.block_number,
            "created_at": self.created_at.isoformat(),
        }

    def __str__(self) -> str:
        return (
            f"Arbitrage: {self.pair.symbol} @ block {self.block_number}\n"
            f"  Buy  {self.buy_dex} @ {self.buy_price:.6f}\n"
            f"  Sell {self.sell_dex} @ {self.sell_price:.6f}\n"
            f"  Spread: {self.spread_pct:.4f}%  Flashloan: {self.flashloan_amount:.4f} {self.pair.base}\n"
            f"  Gross: ${self.gross_profit:.2f}  Gas: ${self.gas_cost_estimate:.2f}  "
            f"Fee: ${self.flashloan_fee:.2f}  Net: ${self.net_profit:.2f}"
        )


class OpportunityDetector:
    """
    Stateless pricing of per-block quote sets.

    - registry: optional FlashloanRegistry consulted for trade size
    - gas_units: gas estimate of one arbitrage transaction
    - flashloan_fee_bps: flashloan fee in basis points
    - min_flashloan_amount / max_flashloan_amount: sizing bounds (whole units)
    - asset_usd_price: USD conversion for profit, gas and fees
    """

    def __init__(
        self,
        registry: Optional[FlashloanRegistry] = None,
        gas_units: int = 350_000,
        flashloan_fee_bps: float = 5.0,
        min_flashloan_amount: float = 0.1,
        max_flashloan_amount: float = 10.0,
        asset_usd_price: float = 3400.0,
        default_gas_price_wei: int = DEFAULT_GAS_PRICE_WEI,
    ) -> None:
        self._registry = registry
        self.gas_units = int(gas_units)
        self.flashloan_fee_bps = float(flashloan_fee_bps)
        self.min_flashloan_amount = float(min_flashloan_amount)
        self.max_flashloan_amount = float(max_flashloan_amount)
        self.asset_usd_price = float(asset_usd_price)
        self.default_gas_price_wei = int(default_gas_price_wei)

    @staticmethod
    def select_route(
        quotes: Sequence[TokenPriceQuote],
    ) -> Optional[tuple[TokenPriceQuote, TokenPriceQuote]]:
        """
        (buy, sell) = (min price, max price). Ties keep the first-seen quote.
        """
        if len(quotes) < 2:
            return None
        buy = quotes[0]
        sell = quotes[0]
        for q in quotes[1:]:
            if q.price < buy.price:
                buy = q
            if q.price > sell.price:
                sell = q
        return buy, sell

    def size_trade(self, pair: TokenPair, price_diff: float) -> float:
        """
        Flashloan amount in base units, or 0 when the vault cannot cover the
        minimum notional.
        """
        candidate = 0.0
        cap = None
        if self._registry is not None:
            candidate = self._registry.get_optimal_amount(pair.base)
            cap = self._registry.fresh_capability(pair.base)

        if candidate <= 0:
            candidate = price_diff * 100.0

        amount = min(self.max_flashloan_amount, max(self.min_flashloan_amount, candidate))

        if cap is not None and amount > cap.max_amount:
            amount = cap.max_amount
            if amount < self.min_flashloan_amount:
                return 0.0
        return amount

    def detect(
        self,
        pair: TokenPair,
        quotes: Iterable[TokenPriceQuote],
        min_spread_pct: float,
        min_net_profit_usd: float,
        gas_price_wei: Optional[int] = None,
        block_number: Optional[int] = None,
        opportunity_id: Optional[str] = None,
    ) -> Optional[ArbitrageOpportunity]:
        quotes = [
            q for q in quotes
            if q.token_in == pair.base and q.token_out == pair.quote and q.price > 0
        ]
        if not quotes:
            return None

        block = quotes[0].block_number if block_number is None else int(block_number)
        quotes = [q for q in quotes if q.block_number == block]

        route = self.select_route(quotes)
        if route is None:
            return None
        buy, sell = route

        price_diff = sell.price - buy.price
        if price_diff <= 0:
            return None

        spread_pct = price_diff / buy.price * 100.0
        if spread_pct <= min_spread_pct:
            logger.debug(
                "spread below threshold pair=%s spread=%.4f%% min=%.4f%%",
                pair.symbol,
                spread_pct,
                min_spread_pct,
            )
            return None

        amount = self.size_trade(pair, price_diff)
        if amount <= 0:
            logger.debug("no flashloan liquidity pair=%s asset=%s", pair.symbol, pair.base)
            return None

        gas_price = self.default_gas_price_wei if gas_price_wei is None else int(gas_price_wei)

        gross_profit = amount * price_diff * self.asset_usd_price
        gas_cost = self.gas_units * gas_price / WEI_PER_ETH * self.asset_usd_price
        flashloan_fee = amount * self.flashloan_fee_bps / 10_000.0 * self.asset_usd_price
        net_profit = gross_profit - gas_cost - flashloan_fee

        if net_profit <= min_net_profit_usd:
            logger.debug(
                "net profit below threshold pair=%s net=%.4f min=%.4f",
                pair.symbol,
                net_profit,
                min_net_profit_usd,
            )
            return None

        return ArbitrageOpportunity(
            pair=pair,
            buy_dex=buy.dex,
            sell_dex=sell.dex,
            buy_price=buy.price,
            sell_price=sell.price,
            spread_pct=spread_pct,
            flashloan_amount=amount,
            gross_profit=gross_profit,
            gas_cost_estimate=gas_cost,
            flashloan_fee=flashloan_fee,
            net_profit=net_profit,
            block_number=block,
            opportunity_id=opportunity_id,
        )


def rank_opportunities(opportunities: Iterable[ArbitrageOpportunity]) -> List[ArbitrageOpportunity]:
    """Sort by net profit, best first. Equal profits keep their scan order."""
    return sorted(opportunities, key=lambda o: o.net_profit, reverse=True)
