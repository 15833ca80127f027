"""
Reads Balancer vault pools once and prints the flashloan capacity per token.

Required env:
    ARB_RPC_URL   HTTP JSON-RPC endpoint on Base
"""

import asyncio

from flashloan_arb.chain import ChainDataClient
from flashloan_arb.config import EngineConfig
from flashloan_arb.flashloan import FlashloanRegistry
from flashloan_arb.logging_config import configure_logging


async def main() -> None:
    configure_logging()
    config = EngineConfig.from_env().validate()

    chain = ChainDataClient.from_rpc_url(config.rpc_url, request_timeout=config.request_timeout)
    registry = FlashloanRegistry(
        chain=chain,
        vault_address=config.vault_address,
        pool_ids=config.flashloan_pools,
        token_addresses=config.token_addresses,
        token_decimals=config.token_decimals,
        size_policy=config.size_policy,
        default_size_cap=config.default_size_cap,
    )

    updated = await registry.discover()
    print(f"\n✅ discovered {updated} capability entries\n")

    for cap in sorted(registry.all_capabilities(), key=lambda c: c.symbol):
        print(
            f"{cap.symbol:<8} max={cap.max_amount:>18.6f} "
            f"optimal={registry.get_optimal_amount(cap.symbol):>14.6f} "
            f"pool={cap.source_pool_id[:18]}..."
        )


if __name__ == "__main__":
    asyncio.run(main())
