"""
Per-DEX price quotes read from router `getAmountsOut`.

A DEX that does not list a pair, reverts, or fails at the RPC level simply
yields no quote for that scan. Failures are isolated per DEX and never
retried.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, List, Mapping, Optional

from .chain import ChainDataClient
from .contracts import ROUTER_ABI_NAME, load_abi
from .errors import NoQuoteError, RpcError
from .pairs import TokenPair, decimals_for, resolve_address

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPriceQuote:
    dex: str
    token_in: str
    token_out: str
    quoted_output_amount: float
    block_number: int
    input_amount: float = 1.0

    @property
    def price(self) -> float:
        """Output units received per unit of input."""
        if self.input_amount <= 0:
            return 0.0
        return self.quoted_output_amount / self.input_amount


def to_base_units(amount: float, decimals: int) -> int:
    return int(Decimal(str(amount)) * (Decimal(10) ** decimals))


def from_base_units(amount: int, decimals: int) -> float:
    return float(Decimal(int(amount)) / (Decimal(10) ** decimals))


class PriceQuoteSource:
    """
    Quotes `token_in -> token_out` on every configured DEX router.

    - chain: ChainDataClient used for the read-only router calls
    - routers: DEX name -> router address; iteration order is the quote order
    - token_addresses: symbol -> token address
    - token_decimals: symbol -> decimals (18 when absent)
    - test_amount: input amount (whole units) used to probe each router
    """

    def __init__(
        self,
        chain: ChainDataClient,
        routers: Mapping[str, str],
        token_addresses: Mapping[str, str],
        token_decimals: Optional[Mapping[str, int]] = None,
        test_amount: float = 1.0,
    ) -> None:
        self._chain = chain
        self._routers = routers
        self._tokens = token_addresses
        self._decimals = token_decimals
        self._test_amount = float(test_amount)
        self._router_abi: List[Any] = load_abi(ROUTER_ABI_NAME)

    @property
    def dexes(self) -> List[str]:
        return list(self._routers.keys())

    async def quote(
        self,
        dex: str,
        token_in: str,
        token_out: str,
        test_amount: Optional[float] = None,
        block_number: Optional[int] = None,
    ) -> Optional[float]:
        """
        Return the quoted output amount in whole `token_out` units, or None
        when the DEX offers no quote for this pair at this block.
        """
        try:
            return await self._quote_or_raise(dex, token_in, token_out, test_amount, block_number)
        except NoQuoteError as exc:
            logger.debug("no quote dex=%s pair=%s/%s block=%s: %s", dex, token_in, token_out, block_number, exc)
        except RpcError as exc:
            logger.debug("quote rpc error dex=%s pair=%s/%s block=%s: %s", dex, token_in, token_out, block_number, exc)
        return None

    async def _quote_or_raise(
        self,
        dex: str,
        token_in: str,
        token_out: str,
        test_amount: Optional[float],
        block_number: Optional[int],
    ) -> float:
        pair = f"{token_in}/{token_out}"
        router = self._routers.get(dex)
        if router is None:
            raise NoQuoteError(f"Unknown DEX {dex}", dex=dex, pair=pair)

        try:
            path = [resolve_address(token_in, self._tokens), resolve_address(token_out, self._tokens)]
        except ValueError as exc:
            raise NoQuoteError(str(exc), dex=dex, pair=pair) from exc

        amount = self._test_amount if test_amount is None else float(test_amount)
        amount_in = to_base_units(amount, decimals_for(token_in, self._decimals))

        amounts = await self._chain.call(
            router,
            self._router_abi,
            "getAmountsOut",
            [amount_in, path],
            block_tag=block_number,
        )
        if not amounts:
            raise NoQuoteError("empty getAmountsOut result", dex=dex, pair=pair)

        out = from_base_units(int(amounts[-1]), decimals_for(token_out, self._decimals))
        if out <= 0:
            raise NoQuoteError("zero output amount", dex=dex, pair=pair)
        return out

    async def quote_all(self, pair: TokenPair, block_number: int) -> List[TokenPriceQuote]:
        """
        Quote `pair` on every DEX concurrently.

        Results keep the configured DEX order; DEXes without a quote are left out.
        """
        dexes = self.dexes
        outputs = await asyncio.gather(
            *(
                self.quote(dex, pair.base, pair.quote, self._test_amount, block_number)
                for dex in dexes
            )
        )

        quotes: List[TokenPriceQuote] = []
        for dex, out in zip(dexes, outputs):
            if out is None:
                continue
            quotes.append(
                TokenPriceQuote(
                    dex=dex,
                    token_in=pair.base,
                    token_out=pair.quote,
                    quoted_output_amount=out,
                    block_number=block_number,
                    input_amount=self._test_amount,
                )
            )

        logger.debug(
            "quotes pair=%s block=%s ok=%s/%s", pair.symbol, block_number, len(quotes), len(dexes)
        )
        return quotes
