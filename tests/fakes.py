"""
In-memory stand-ins for ChainDataClient used across the test modules.

FakeChain records every call so tests can assert on what was (not) sent.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

# Ensure "src" is on sys.path when running directly with python.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from flashloan_arb.chain import FeeData  # noqa: E402

SIGNER = "0x000000000000000000000000000000000000dEaD"


class FakeSubmitted:
    def __init__(self, tx_hash: str, receipt: Optional[Dict[str, Any]] = None, error: Optional[Exception] = None):
        self.hash = tx_hash
        self._receipt = receipt if receipt is not None else {"status": 1, "blockNumber": 101, "gasUsed": 210_000}
        self._error = error
        self.wait_calls: List[Optional[float]] = []

    async def wait(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        self.wait_calls.append(timeout)
        if self._error is not None:
            raise self._error
        return self._receipt


class FakeSubscription:
    def __init__(self, handler) -> None:
        self.handler = handler
        self.unsubscribed = False

    @property
    def active(self) -> bool:
        return not self.unsubscribed

    async def unsubscribe(self) -> None:
        self.unsubscribed = True


class FakeChain:
    """
    ChainDataClient look-alike.

    - call_handler(contract_address, method, args, block_tag) answers `call`
    - gas_price_wei / balance_wei / head feed the pre-flight reads
    - send_error / receipt shape the submission outcome
    """

    def __init__(
        self,
        call_handler: Optional[Callable[..., Any]] = None,
        gas_price_wei: int = 100_000_000,
        balance_wei: int = 10**18,
        head: int = 100,
        signer: Optional[str] = SIGNER,
    ) -> None:
        self.call_handler = call_handler
        self.gas_price_wei = gas_price_wei
        self.balance_wei = balance_wei
        self.head = head
        self.signer_address = signer

        self.fee_error: Optional[Exception] = None
        self.send_error: Optional[Exception] = None
        self.receipt: Optional[Dict[str, Any]] = None
        self.wait_error: Optional[Exception] = None

        self.calls: List[Dict[str, Any]] = []
        self.built: List[Dict[str, Any]] = []
        self.sent: List[Dict[str, Any]] = []
        self.subscriptions: List[FakeSubscription] = []
        self.submitted: List[FakeSubmitted] = []

    async def get_block_number(self) -> int:
        return self.head

    async def get_balance(self, address: str) -> int:
        return self.balance_wei

    async def get_fee_data(self) -> FeeData:
        if self.fee_error is not None:
            raise self.fee_error
        return FeeData(gas_price=self.gas_price_wei)

    async def call(self, contract_address, abi, method, args=None, block_tag=None):
        self.calls.append(
            {"address": contract_address, "method": method, "args": list(args or []), "block_tag": block_tag}
        )
        if self.call_handler is None:
            raise AssertionError(f"unexpected call {method}")
        return self.call_handler(contract_address, method, list(args or []), block_tag)

    async def build_transaction(self, contract_address, abi, method, args, tx_params=None):
        tx = {"to": contract_address, "method": method, "args": list(args), **dict(tx_params or {})}
        self.built.append(tx)
        return tx

    async def send_transaction(self, tx):
        self.sent.append(tx)
        if self.send_error is not None:
            raise self.send_error
        submitted = FakeSubmitted(f"0x{len(self.sent):064x}", receipt=self.receipt, error=self.wait_error)
        self.submitted.append(submitted)
        return submitted

    def subscribe_blocks(self, handler) -> FakeSubscription:
        sub = FakeSubscription(handler)
        self.subscriptions.append(sub)
        return sub
