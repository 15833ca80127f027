import sys
import time
from pathlib import Path

import pytest

# Ensure "src" is on sys.path when running directly with python.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from flashloan_arb.detector import ArbitrageOpportunity, OpportunityDetector, rank_opportunities
from flashloan_arb.flashloan import FlashloanCapability, FlashloanRegistry
from flashloan_arb.pairs import TOKEN_ADDRESS_MAP, TokenPair
from flashloan_arb.quotes import TokenPriceQuote

PAIR = TokenPair("WETH", "USDC")


def q(dex: str, out: float, block: int = 100, pair: TokenPair = PAIR) -> TokenPriceQuote:
    return TokenPriceQuote(
        dex=dex,
        token_in=pair.base,
        token_out=pair.quote,
        quoted_output_amount=out,
        block_number=block,
    )


def test_spread_above_threshold_yields_opportunity() -> None:
    detector = OpportunityDetector()
    opp = detector.detect(
        PAIR,
        [q("BuyDexA", 1000.0), q("SellDexB", 1010.0)],
        min_spread_pct=0.5,
        min_net_profit_usd=0.0,
    )

    assert opp is not None
    assert opp.buy_dex == "BuyDexA"
    assert opp.sell_dex == "SellDexB"
    assert opp.spread_pct == pytest.approx(1.0)
    assert opp.block_number == 100


def test_spread_at_or_below_threshold_is_rejected() -> None:
    detector = OpportunityDetector()
    quotes = [q("BuyDexA", 1000.0), q("SellDexB", 1010.0)]

    assert detector.detect(PAIR, quotes, min_spread_pct=2.0, min_net_profit_usd=0.0) is None
    # Strictly greater than: an exactly matching spread is not enough.
    assert detector.detect(PAIR, quotes, min_spread_pct=1.0, min_net_profit_usd=0.0) is None


def test_buy_is_min_and_sell_is_max() -> None:
    detector = OpportunityDetector()
    quotes = [q("A", 1003.0), q("B", 999.0), q("C", 1012.0), q("D", 1005.0)]

    opp = detector.detect(PAIR, quotes, min_spread_pct=0.1, min_net_profit_usd=0.0)

    assert opp is not None
    assert opp.buy_dex == "B"
    assert opp.sell_dex == "C"
    assert opp.buy_price == min(x.price for x in quotes)
    assert opp.sell_price == max(x.price for x in quotes)
    assert opp.buy_price <= opp.sell_price


def test_ties_keep_first_seen_quote() -> None:
    buy, sell = OpportunityDetector.select_route([q("A", 1000.0), q("B", 1000.0), q("C", 1010.0)])
    assert buy.dex == "A"
    assert sell.dex == "C"

    buy, sell = OpportunityDetector.select_route([q("A", 1010.0), q("B", 1000.0), q("C", 1010.0)])
    assert buy.dex == "B"
    assert sell.dex == "A"


def test_single_quote_or_flat_prices_produce_nothing() -> None:
    detector = OpportunityDetector()
    assert detector.detect(PAIR, [q("A", 1000.0)], min_spread_pct=0.0, min_net_profit_usd=0.0) is None
    assert (
        detector.detect(PAIR, [q("A", 1000.0), q("B", 1000.0)], min_spread_pct=0.0, min_net_profit_usd=0.0)
        is None
    )


def test_net_profit_is_gross_minus_gas_minus_fee() -> None:
    detector = OpportunityDetector(
        gas_units=100_000,
        flashloan_fee_bps=5,
        min_flashloan_amount=0.1,
        max_flashloan_amount=10.0,
        asset_usd_price=2.0,
    )
    opp = detector.detect(
        PAIR,
        [q("A", 1000.0), q("B", 1010.0)],
        min_spread_pct=0.1,
        min_net_profit_usd=0.0,
        gas_price_wei=10**9,
    )

    assert opp is not None
    # price diff 10 -> 10 * 100 = 1000, clamped to the 10 unit maximum
    assert opp.flashloan_amount == 10.0
    assert opp.gross_profit == pytest.approx(10.0 * 10.0 * 2.0)
    assert opp.gas_cost_estimate == pytest.approx(100_000 * 10**9 / 10**18 * 2.0)
    assert opp.flashloan_fee == pytest.approx(10.0 * 5 / 10_000 * 2.0)
    assert opp.net_profit == opp.gross_profit - opp.gas_cost_estimate - opp.flashloan_fee


def test_net_profit_must_exceed_minimum() -> None:
    detector = OpportunityDetector(asset_usd_price=1.0, max_flashloan_amount=0.1, min_flashloan_amount=0.1)
    quotes = [q("A", 1000.0), q("B", 1001.0)]

    opp = detector.detect(PAIR, quotes, min_spread_pct=0.0, min_net_profit_usd=0.0, gas_price_wei=0)
    assert opp is not None
    assert detector.detect(
        PAIR, quotes, min_spread_pct=0.0, min_net_profit_usd=opp.net_profit, gas_price_wei=0
    ) is None


def test_quotes_from_other_blocks_or_pairs_are_ignored() -> None:
    detector = OpportunityDetector()
    other = TokenPair("LINK", "USDC")
    quotes = [
        q("A", 1000.0, block=100),
        q("B", 1010.0, block=99),
        q("C", 2000.0, block=100, pair=other),
    ]

    assert detector.detect(PAIR, quotes, min_spread_pct=0.0, min_net_profit_usd=0.0, block_number=100) is None


class _StaticRegistry(FlashloanRegistry):
    def __init__(self, max_amount: float) -> None:
        super().__init__(
            chain=None,  # type: ignore[arg-type]
            vault_address="0x0",
            pool_ids=[],
            token_addresses=TOKEN_ADDRESS_MAP,
        )
        self._capabilities[TOKEN_ADDRESS_MAP["WETH"].lower()] = FlashloanCapability(
            token_address=TOKEN_ADDRESS_MAP["WETH"],
            symbol="WETH",
            max_amount=max_amount,
            source_pool_id="0xpool",
            last_updated=time.time(),
        )


def test_registry_bounds_the_flashloan_amount() -> None:
    detector = OpportunityDetector(registry=_StaticRegistry(max_amount=3.0), max_flashloan_amount=10.0)
    opp = detector.detect(PAIR, [q("A", 1000.0), q("B", 1010.0)], min_spread_pct=0.1, min_net_profit_usd=0.0)

    assert opp is not None
    assert opp.flashloan_amount == 3.0


def test_registry_without_enough_liquidity_suppresses_opportunity() -> None:
    detector = OpportunityDetector(registry=_StaticRegistry(max_amount=0.01), min_flashloan_amount=0.1)
    opp = detector.detect(PAIR, [q("A", 1000.0), q("B", 1010.0)], min_spread_pct=0.1, min_net_profit_usd=0.0)
    assert opp is None


def test_key_and_ranking() -> None:
    detector = OpportunityDetector()
    small = detector.detect(PAIR, [q("A", 1000.0), q("B", 1001.0)], min_spread_pct=0.0, min_net_profit_usd=0.0)
    big = detector.detect(PAIR, [q("A", 1000.0), q("C", 1010.0)], min_spread_pct=0.0, min_net_profit_usd=0.0)
    assert isinstance(small, ArbitrageOpportunity) and isinstance(big, ArbitrageOpportunity)

    assert big.key == "WETH/USDC:A:C:100"
    assert [o.key for o in rank_opportunities([small, big])] == [big.key, small.key]

    named = detector.detect(
        PAIR, [q("A", 1000.0), q("C", 1010.0)], min_spread_pct=0.0, min_net_profit_usd=0.0, opportunity_id="opp-1"
    )
    assert named is not None and named.key == "opp-1"
    assert named.to_dict()["key"] == "opp-1"
