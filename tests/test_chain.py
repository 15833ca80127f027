import asyncio
import sys
from pathlib import Path
from typing import List
from unittest.mock import MagicMock

import pytest

# Ensure "src" is on sys.path when running directly with python.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from flashloan_arb.chain import BlockSubscription, ChainDataClient
from flashloan_arb.errors import RpcError

# Well-known local development key (anvil / hardhat account #0).
DEV_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
DEV_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


class ScriptedHeads:
    """Returns the scripted head numbers in order, then repeats the last one."""

    def __init__(self, script: List[object]) -> None:
        self.script = list(script)
        self.last = None

    async def get_block_number(self) -> int:
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, Exception):
                raise item
            self.last = item
        return self.last


async def collect(
    script: List[object], until: int, handler_error_on=None, queue_size: int = 64
) -> List[int]:
    seen: List[int] = []

    async def handler(block_number: int) -> None:
        seen.append(block_number)
        if block_number == handler_error_on:
            raise ValueError("handler blew up")

    sub = BlockSubscription(
        ScriptedHeads(script), handler, poll_interval=0, queue_size=queue_size  # type: ignore[arg-type]
    )
    sub.start()
    try:
        for _ in range(500):
            if seen and seen[-1] >= until:
                break
            await asyncio.sleep(0)
    finally:
        await sub.unsubscribe()
    assert not sub.active
    return seen


def test_block_numbers_are_delivered_strictly_increasing() -> None:
    script = [5, 5, 7, RpcError("timeout", method="eth_blockNumber"), 6, 9]
    seen = asyncio.run(collect(script, until=9))

    assert seen == [5, 6, 7, 8, 9]
    assert all(a < b for a, b in zip(seen, seen[1:]))


def test_blocks_between_polls_are_not_skipped() -> None:
    assert asyncio.run(collect([5, 8], until=8)) == [5, 6, 7, 8]


def test_backlog_larger_than_the_queue_keeps_the_newest_blocks(caplog) -> None:
    seen = asyncio.run(collect([1, 10], until=10, queue_size=3))

    assert seen == [1, 8, 9, 10]
    assert "skipping blocks=2..7" in caplog.text


def test_handler_failure_does_not_stop_delivery() -> None:
    seen = asyncio.run(collect([1, 2, 3], until=3, handler_error_on=2))
    assert seen == [1, 2, 3]


def test_rpc_failures_are_wrapped() -> None:
    web3 = MagicMock()
    web3.eth.get_balance.side_effect = ConnectionError("connection refused")
    client = ChainDataClient(web3)

    with pytest.raises(RpcError) as excinfo:
        asyncio.run(client.get_balance(DEV_ADDRESS))
    assert excinfo.value.method == "eth_getBalance"


def test_fee_data_reads_gas_price_and_fee_history() -> None:
    web3 = MagicMock()
    web3.eth.gas_price = 5 * 10**9
    web3.eth.fee_history.return_value = {"baseFeePerGas": [100, 200], "reward": [[7]]}
    fee = asyncio.run(ChainDataClient(web3).get_fee_data())

    assert fee.gas_price == 5 * 10**9
    assert fee.gas_price_gwei == 5.0
    assert fee.max_priority_fee_per_gas == 7
    assert fee.max_fee_per_gas == 407


def test_send_transaction_requires_a_key() -> None:
    client = ChainDataClient(MagicMock())
    assert client.signer_address is None
    with pytest.raises(RpcError):
        asyncio.run(client.send_transaction({"to": DEV_ADDRESS, "value": 0}))


def test_send_transaction_signs_with_pending_nonce() -> None:
    web3 = MagicMock()
    web3.eth.chain_id = 8453
    web3.eth.get_transaction_count.return_value = 3
    web3.eth.send_raw_transaction.return_value = b"\x12" * 32
    client = ChainDataClient(web3, private_key=DEV_KEY)

    tx = {
        "to": "0x675f26375aB7E5a35279CF3AE37C26a3004b9ae4",
        "value": 0,
        "gas": 350_000,
        "gasPrice": 10**8,
        "data": "0x",
    }
    submitted = asyncio.run(client.send_transaction(tx))

    assert client.signer_address == DEV_ADDRESS
    assert submitted.hash == "0x" + "12" * 32
    web3.eth.get_transaction_count.assert_called_once_with(DEV_ADDRESS, "pending")
    (raw,), _ = web3.eth.send_raw_transaction.call_args
    assert len(raw) > 0
