"""
Live automation example for the flashloan arbitrage engine.

This script:
- Builds an EngineConfig from ARB_* environment variables
- Prints every opportunity / execution / status event to stdout
- Runs run_arbitrage_bot until Ctrl+C

Required env:
    ARB_RPC_URL       HTTP JSON-RPC endpoint (Base mainnet or a fork)
    ARB_PRIVATE_KEY   signer for executeArbitrage (omit for detection only)
"""

import asyncio
import signal
from typing import Any, Dict

from flashloan_arb.bot import run_arbitrage_bot
from flashloan_arb.broadcaster import EventBroadcaster
from flashloan_arb.config import EngineConfig


def print_event(message: Dict[str, Any]) -> None:
    payload = message.get("payload") or {}
    kind = message.get("type")

    if kind == "opportunity":
        print(
            f"[{message['timestamp']}] OPP {payload.get('pair')} "
            f"buy={payload.get('buy_dex')} sell={payload.get('sell_dex')} "
            f"spread={payload.get('spread_pct', 0.0):.4f}% "
            f"net=${payload.get('net_profit', 0.0):.2f} block={payload.get('block_number')}"
        )
    elif kind == "execution":
        result = payload.get("result") or {}
        opp = payload.get("opportunity") or {}
        status = "OK" if result.get("success") else result.get("error_kind")
        print(f"[{message['timestamp']}] EXEC {opp.get('key')} {status} tx={result.get('tx_hash')}")
    else:
        print(f"[{message['timestamp']}] {kind} {payload}")


async def main() -> None:
    config = EngineConfig.from_env()

    # Tighter thresholds for watching a quiet market
    config.min_spread_pct = 0.05
    config.min_net_profit_usd = 1.0

    broadcaster = EventBroadcaster()
    broadcaster.add_subscriber(print_event)

    stop_event = asyncio.Event()

    def _handle_sigint(signum, frame):
        """
        First Ctrl+C sets stop_event so the engine shuts down cleanly.
        Second Ctrl+C forces exit.
        """
        if not stop_event.is_set():
            print("\n\n✅ Stopping automation gracefully...")
            stop_event.set()
        else:
            print("\n\n⛔ Force exit.")
            raise KeyboardInterrupt()

    signal.signal(signal.SIGINT, _handle_sigint)

    await run_arbitrage_bot(config=config, stop_event=stop_event, broadcaster=broadcaster)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n\n✅ Stopped automation example")
