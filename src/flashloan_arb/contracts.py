from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, List

ABI_DIR = Path(__file__).resolve().parent / "abi"

ROUTER_ABI_NAME = "UniswapV2Router"
ARBITRAGE_ABI_NAME = "ArbitrageExecutor"
VAULT_ABI_NAME = "BalancerVault"
ERC20_ABI_NAME = "ERC20"


@lru_cache(maxsize=None)
def _load_abi_text(name: str) -> str:
    return (ABI_DIR / f"{name}.json").read_text()


def load_abi(name: str) -> List[Any]:
    """
    Load a contract ABI shipped under flashloan_arb/abi/.

    Accepts both a bare ABI list and a Hardhat/Foundry artifact with an
    "abi" key.
    """
    data = json.loads(_load_abi_text(name))
    if isinstance(data, dict) and "abi" in data:
        data = data["abi"]
    return data
