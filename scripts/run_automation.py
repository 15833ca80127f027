# scripts/run_automation.py
"""
CLI entrypoint to run the flashloan arbitrage engine from ARB_* env vars.

Usage:
    ARB_RPC_URL=... ARB_PRIVATE_KEY=0x... python scripts/run_automation.py
"""

import asyncio
import signal
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from flashloan_arb.bot import run_arbitrage_bot  # noqa: E402
from flashloan_arb.config import EngineConfig  # noqa: E402


async def main() -> None:
    config = EngineConfig.from_env()
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no add_signal_handler
            signal.signal(sig, lambda signum, frame: stop_event.set())

    await run_arbitrage_bot(config=config, stop_event=stop_event)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n\n✅ Stopped automation")
