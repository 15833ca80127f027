# src/flashloan_arb/pairs.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

# Base mainnet token addresses used by the reference deployment.
TOKEN_ADDRESS_MAP: Dict[str, str] = {
    "WETH": "0x4200000000000000000000000000000000000006",
    "USDC": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
    "USDT": "0xfde4C96c8593536E31F229EA8f37b2ADa2699bb2",
    "DAI": "0x50c5725949A6F0c72E6C4a641F24049A917DB0Cb",
    "LINK": "0x88Fb150BDc53A65fe94Dea0c9BA0a6dAf8C6e196",
    "UNI": "0xc3De830EA07524a0761646a6a4e4be0e114a3C83",
    "cbETH": "0x2Ae3F1Ec7F1F5012CFEab0185bfc7aa3cf0DEc22",
}

# Tokens not listed here use 18 decimals.
TOKEN_DECIMALS: Dict[str, int] = {
    "USDC": 6,
    "USDT": 6,
}

DEX_ROUTER_MAP: Dict[str, str] = {
    "Uniswap V3": "0x2626664c2603336E57B271c5C0b26F421741e481",
    "SushiSwap": "0x6BDED42c6DA8FBf0d2bA55B2fa120C5e0c8D7891",
    "BaseSwap": "0x327Df1E6de05895d2ab08513aaDD9313Fe505d86",
    "Aerodrome": "0xcF77a3Ba9A5CA399B7c97c74d54e5b1Beb874E43",
}

DEFAULT_PAIRS: List[Tuple[str, str]] = [
    ("WETH", "USDC"),
    ("WETH", "USDT"),
    ("LINK", "USDC"),
    ("UNI", "USDC"),
    ("USDC", "USDT"),
]


@dataclass(frozen=True)
class TokenPair:
    """A tracked pair. Quotes are taken as `base -> quote`."""

    base: str
    quote: str

    @property
    def symbol(self) -> str:
        return f"{self.base}/{self.quote}"

    def __str__(self) -> str:
        return self.symbol


def parse_pair(text: str) -> TokenPair:
    """
    Parse "WETH/USDC" or "WETH-USDC" into a TokenPair.
    """
    s = text.strip().replace("-", "/")
    if "/" not in s:
        raise ValueError(f"Cannot split pair={text}. expected BASE/QUOTE")
    base, quote = (p.strip() for p in s.split("/", 1))
    if not base or not quote:
        raise ValueError(f"Cannot split pair={text}. expected BASE/QUOTE")
    return TokenPair(base=base, quote=quote)


def resolve_address(symbol: str, addresses: Mapping[str, str]) -> str:
    if symbol in addresses:
        return addresses[symbol]
    # Symbols are matched case-insensitively (cbETH vs CBETH).
    upper = symbol.upper()
    for sym, addr in addresses.items():
        if sym.upper() == upper:
            return addr
    raise ValueError(f"Unknown token symbol={symbol}")


def symbol_for_address(address: str, addresses: Mapping[str, str]) -> Optional[str]:
    target = address.lower()
    for sym, addr in addresses.items():
        if addr.lower() == target:
            return sym
    return None


def decimals_for(symbol: str, decimals: Optional[Mapping[str, int]] = None) -> int:
    table = TOKEN_DECIMALS if decimals is None else decimals
    return int(table.get(symbol, table.get(symbol.upper(), 18)))


def unresolved_symbols(pairs: Iterable[TokenPair], addresses: Mapping[str, str]) -> List[str]:
    missing: List[str] = []
    for pair in pairs:
        for sym in (pair.base, pair.quote):
            try:
                resolve_address(sym, addresses)
            except ValueError:
                if sym not in missing:
                    missing.append(sym)
    return missing
