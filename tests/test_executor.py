import asyncio
import sys
from pathlib import Path

# Ensure "src" is on sys.path when running directly with python.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from fakes import FakeChain

from flashloan_arb.config import ARBITRAGE_CONTRACT_ADDRESS
from flashloan_arb.detector import ArbitrageOpportunity
from flashloan_arb.errors import ErrorKind, RpcError
from flashloan_arb.executor import ExecutionResult, TradeExecutor
from flashloan_arb.pairs import DEX_ROUTER_MAP, TOKEN_ADDRESS_MAP, TOKEN_DECIMALS, TokenPair

GWEI = 10**9


def make_opportunity(block_number: int = 100, net_profit: float = 34.0) -> ArbitrageOpportunity:
    return ArbitrageOpportunity(
        pair=TokenPair("WETH", "USDC"),
        buy_dex="SushiSwap",
        sell_dex="Aerodrome",
        buy_price=3400.0,
        sell_price=3410.0,
        spread_pct=0.294,
        flashloan_amount=1.5,
        gross_profit=51.0,
        gas_cost_estimate=0.12,
        flashloan_fee=2.55,
        net_profit=net_profit,
        block_number=block_number,
    )


def make_executor(chain: FakeChain, **kwargs) -> TradeExecutor:
    return TradeExecutor(
        chain=chain,  # type: ignore[arg-type]
        contract_address=ARBITRAGE_CONTRACT_ADDRESS,
        router_addresses=DEX_ROUTER_MAP,
        token_addresses=TOKEN_ADDRESS_MAP,
        token_decimals=TOKEN_DECIMALS,
        max_gas_price_gwei=kwargs.pop("max_gas_price_gwei", 1.0),
        min_wallet_balance_wei=kwargs.pop("min_wallet_balance_wei", 10**15),
        max_block_lag=kwargs.pop("max_block_lag", 2),
        asset_usd_price=kwargs.pop("asset_usd_price", 3400.0),
        **kwargs,
    )


def run(executor: TradeExecutor, opp: ArbitrageOpportunity) -> ExecutionResult:
    return asyncio.run(executor.execute(opp))


def test_gas_above_ceiling_is_rejected_without_sending() -> None:
    chain = FakeChain(gas_price_wei=5 * GWEI)
    result = run(make_executor(chain, max_gas_price_gwei=1.0), make_opportunity())

    assert result.success is False
    assert result.error_kind is ErrorKind.GAS_TOO_HIGH
    assert chain.sent == []
    assert chain.built == []


def test_low_balance_is_rejected_without_sending() -> None:
    chain = FakeChain(balance_wei=10**14)
    result = run(make_executor(chain), make_opportunity())

    assert result.error_kind is ErrorKind.INSUFFICIENT_BALANCE
    assert chain.sent == []


def test_head_too_far_ahead_is_stale() -> None:
    chain = FakeChain(head=103)
    result = run(make_executor(chain, max_block_lag=2), make_opportunity(block_number=100))

    assert result.error_kind is ErrorKind.STALE_OPPORTUNITY
    assert chain.sent == []

    chain.head = 102
    assert run(make_executor(chain, max_block_lag=2), make_opportunity(block_number=100)).success is True


def test_successful_execution_submits_execute_arbitrage() -> None:
    chain = FakeChain(gas_price_wei=GWEI // 2)
    executor = make_executor(chain, gas_units=400_000, confirmation_timeout=30)
    opp = make_opportunity()

    result = run(executor, opp)

    assert result.success is True
    assert result.error_kind is None
    assert result.tx_hash == chain.submitted[0].hash
    assert result.block_number == 101
    assert result.gas_used == 210_000
    assert result.profit_realized == opp.net_profit
    assert chain.submitted[0].wait_calls == [30]

    (tx,) = chain.built
    assert tx["to"] == ARBITRAGE_CONTRACT_ADDRESS
    assert tx["method"] == "executeArbitrage"
    assert tx["gas"] == 400_000
    assert tx["gasPrice"] == GWEI // 2
    assert tx["value"] == 0
    token_a, token_b, amount_in, buy_router, sell_router, min_profit = tx["args"]
    assert token_a == TOKEN_ADDRESS_MAP["WETH"]
    assert token_b == TOKEN_ADDRESS_MAP["USDC"]
    assert amount_in == 1_500_000_000_000_000_000
    assert buy_router == DEX_ROUTER_MAP["SushiSwap"]
    assert sell_router == DEX_ROUTER_MAP["Aerodrome"]
    # 34 USD / 3400 USD per ETH = 0.01 ETH
    assert min_profit == 10**16


def test_reverted_receipt_maps_to_reverted() -> None:
    chain = FakeChain()
    chain.receipt = {"status": 0, "blockNumber": 101, "gasUsed": 90_000}
    result = run(make_executor(chain), make_opportunity())

    assert result.success is False
    assert result.error_kind is ErrorKind.REVERTED
    assert result.tx_hash is not None
    assert result.gas_used == 90_000


def test_send_failure_maps_to_submission_failed() -> None:
    chain = FakeChain()
    chain.send_error = RpcError("nonce too low", method="eth_sendRawTransaction")
    result = run(make_executor(chain), make_opportunity())

    assert result.error_kind is ErrorKind.SUBMISSION_FAILED
    assert "nonce too low" in result.detail
    assert result.tx_hash is None


def test_confirmation_timeout_keeps_tx_hash() -> None:
    chain = FakeChain()
    chain.wait_error = RpcError("timed out", method="eth_getTransactionReceipt")
    result = run(make_executor(chain), make_opportunity())

    assert result.error_kind is ErrorKind.SUBMISSION_FAILED
    assert result.tx_hash == chain.submitted[0].hash


def test_preflight_rpc_failure_maps_to_submission_failed() -> None:
    chain = FakeChain()
    chain.fee_error = RpcError("connection refused", method="eth_gasPrice")
    result = run(make_executor(chain), make_opportunity())

    assert result.error_kind is ErrorKind.SUBMISSION_FAILED
    assert chain.sent == []


def test_min_profit_is_zero_for_non_positive_profit() -> None:
    executor = make_executor(FakeChain())
    assert executor.min_profit_wei(make_opportunity(net_profit=0.0)) == 0
    assert executor.min_profit_wei(make_opportunity(net_profit=-3.0)) == 0


def test_result_to_dict_uses_error_kind_value() -> None:
    result = ExecutionResult.failure(ErrorKind.GAS_TOO_HIGH, "too high")
    assert result.to_dict()["error_kind"] == "GasTooHigh"
    assert result.to_dict()["success"] is False
