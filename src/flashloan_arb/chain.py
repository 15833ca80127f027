"""
Chain data client.

Wraps a synchronous web3 HTTP connection and exposes the handful of calls the
engine needs as coroutines. Each call runs in the default executor so the
event loop keeps serving block events while an RPC is in flight.

Every failure surfaces as RpcError. Nothing here retries: callers decide.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from eth_account import Account
from hexbytes import HexBytes
from web3 import Web3

from .errors import RpcError
from .web3_compat import apply_poa_middleware

logger = logging.getLogger(__name__)

BlockHandler = Callable[[int], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class FeeData:
    gas_price: int
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None

    @property
    def gas_price_gwei(self) -> float:
        return float(self.gas_price) / 1e9


def _to_hex(value: Any) -> str:
    return Web3.to_hex(HexBytes(value))


def _receipt_to_dict(receipt: Any) -> Dict[str, Any]:
    if receipt is None:
        return {}
    # AttributeDict is a Mapping; plain dicts pass through unchanged.
    return dict(receipt)


class SubmittedTransaction:
    """
    Handle for a transaction that was accepted by the node.

    `wait()` blocks (in the executor) until the receipt is mined and returns
    it as a plain dict.
    """

    def __init__(self, client: "ChainDataClient", tx_hash: str) -> None:
        self._client = client
        self.hash = tx_hash

    async def wait(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        return await self._client.wait_for_receipt(self.hash, timeout=timeout)

    def __repr__(self) -> str:
        return f"SubmittedTransaction(hash={self.hash})"


class ChainDataClient:
    """
    Async facade over a sync `Web3` instance.

    - web3: connected Web3 (HTTPProvider)
    - private_key: optional signer; required for send_transaction
    - poll_interval: seconds between head polls for block subscriptions
    """

    def __init__(
        self,
        web3: Web3,
        private_key: Optional[str] = None,
        poll_interval: float = 2.0,
    ) -> None:
        self._web3 = web3
        self._account = Account.from_key(private_key) if private_key else None
        self._poll_interval = float(poll_interval)
        self._chain_id: Optional[int] = None

    @classmethod
    def from_rpc_url(
        cls,
        rpc_url: str,
        private_key: Optional[str] = None,
        poll_interval: float = 2.0,
        request_timeout: float = 10.0,
        poa_chain: bool = False,
    ) -> "ChainDataClient":
        w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout}))
        if poa_chain:
            apply_poa_middleware(w3)
        return cls(w3, private_key=private_key, poll_interval=poll_interval)

    @property
    def web3(self) -> Web3:
        return self._web3

    @property
    def signer_address(self) -> Optional[str]:
        if self._account is None:
            return None
        return Web3.to_checksum_address(self._account.address)

    async def _run(self, method: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))
        except RpcError:
            raise
        except Exception as exc:
            raise RpcError(f"{method} failed: {exc}", method=method) from exc

    # --------------- queries ---------------
    async def get_block_number(self) -> int:
        return int(await self._run("eth_blockNumber", lambda: self._web3.eth.block_number))

    async def get_chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = int(await self._run("eth_chainId", lambda: self._web3.eth.chain_id))
        return self._chain_id

    async def get_balance(self, address: str) -> int:
        addr = Web3.to_checksum_address(address)
        return int(await self._run("eth_getBalance", self._web3.eth.get_balance, addr))

    async def get_fee_data(self) -> FeeData:
        return await self._run("eth_gasPrice", self._get_fee_data_sync)

    def _get_fee_data_sync(self) -> FeeData:
        gas_price = int(self._web3.eth.gas_price)

        # EIP-1559 fields are optional; nodes without eth_feeHistory still quote gasPrice.
        max_fee: Optional[int] = None
        max_priority: Optional[int] = None
        try:
            history = self._web3.eth.fee_history(1, "latest", [50])
            base_fees = list(history.get("baseFeePerGas") or [])
            rewards = list(history.get("reward") or [])
            if base_fees:
                max_priority = int(rewards[0][0]) if rewards and rewards[0] else 0
                max_fee = 2 * int(base_fees[-1]) + max_priority
        except Exception as exc:
            logger.debug("eth_feeHistory unavailable: %s", exc)

        return FeeData(
            gas_price=gas_price,
            max_fee_per_gas=max_fee,
            max_priority_fee_per_gas=max_priority,
        )

    async def call(
        self,
        contract_address: str,
        abi: List[Any],
        method: str,
        args: Optional[List[Any]] = None,
        block_tag: Optional[Union[int, str]] = None,
    ) -> Any:
        """Invoke a read-only contract method, optionally at a historical block."""
        return await self._run(
            f"eth_call:{method}",
            self._call_sync,
            contract_address,
            abi,
            method,
            list(args or []),
            block_tag,
        )

    def _call_sync(
        self,
        contract_address: str,
        abi: List[Any],
        method: str,
        args: List[Any],
        block_tag: Optional[Union[int, str]],
    ) -> Any:
        contract = self._web3.eth.contract(
            address=Web3.to_checksum_address(contract_address), abi=abi
        )
        fn = getattr(contract.functions, method)(*args)
        if block_tag is None:
            return fn.call()
        return fn.call(block_identifier=block_tag)

    # --------------- transactions ---------------
    async def build_transaction(
        self,
        contract_address: str,
        abi: List[Any],
        method: str,
        args: List[Any],
        tx_params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Encode a contract call into a transaction dict (no signing, no sending)."""
        params = dict(tx_params or {})
        if self.signer_address and "from" not in params:
            params["from"] = self.signer_address
        return await self._run(
            f"build_transaction:{method}",
            self._build_transaction_sync,
            contract_address,
            abi,
            method,
            list(args),
            params,
        )

    def _build_transaction_sync(
        self,
        contract_address: str,
        abi: List[Any],
        method: str,
        args: List[Any],
        params: Dict[str, Any],
    ) -> Dict[str, Any]:
        contract = self._web3.eth.contract(
            address=Web3.to_checksum_address(contract_address), abi=abi
        )
        return dict(getattr(contract.functions, method)(*args).build_transaction(params))

    async def send_transaction(self, tx: Dict[str, Any]) -> SubmittedTransaction:
        """
        Sign `tx` with the configured key and broadcast it.

        Fills `from`, `chainId` and the pending `nonce` when missing.
        """
        if self._account is None:
            raise RpcError("send_transaction requires a private key", method="eth_sendRawTransaction")
        tx_hash = await self._run("eth_sendRawTransaction", self._send_transaction_sync, dict(tx))
        return SubmittedTransaction(self, tx_hash)

    def _send_transaction_sync(self, tx: Dict[str, Any]) -> str:
        sender = self.signer_address
        tx.setdefault("from", sender)
        tx.setdefault("chainId", int(self._web3.eth.chain_id))
        if "nonce" not in tx:
            tx["nonce"] = int(self._web3.eth.get_transaction_count(sender, "pending"))

        signed = Account.sign_transaction(tx, self._account.key)  # type: ignore[union-attr]
        raw_tx = getattr(signed, "rawTransaction", None) or getattr(signed, "raw_transaction", None)
        tx_hash = self._web3.eth.send_raw_transaction(raw_tx)
        return _to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {}
        if timeout is not None:
            kwargs["timeout"] = timeout
        receipt = await self._run(
            "eth_getTransactionReceipt",
            self._web3.eth.wait_for_transaction_receipt,
            HexBytes(tx_hash),
            **kwargs,
        )
        return _receipt_to_dict(receipt)

    # --------------- blocks ---------------
    def subscribe_blocks(self, handler: BlockHandler) -> "BlockSubscription":
        sub = BlockSubscription(self, handler, poll_interval=self._poll_interval)
        sub.start()
        return sub


class BlockSubscription:
    """
    Delivers new block numbers to one handler.

    A poller pushes heads into a queue; a single consumer drains it in order,
    so the handler sees each block number at most once and never a number
    lower than one it has already seen. If the head advances by several
    blocks between polls every block in between is delivered, up to the
    queue size; an older backlog is logged and skipped.

    Poll failures are logged and polling resumes on the next tick.
    """

    def __init__(
        self,
        client: ChainDataClient,
        handler: BlockHandler,
        poll_interval: float = 2.0,
        queue_size: int = 64,
    ) -> None:
        self._client = client
        self._handler = handler
        self._poll_interval = poll_interval
        self._queue: "asyncio.Queue[int]" = asyncio.Queue(maxsize=queue_size)
        self._last_seen: Optional[int] = None
        self._last_delivered: Optional[int] = None
        self._tasks: List[asyncio.Task] = []
        self._consecutive_errors = 0

    @property
    def active(self) -> bool:
        return any(not t.done() for t in self._tasks)

    @property
    def last_delivered(self) -> Optional[int]:
        return self._last_delivered

    def start(self) -> None:
        if self.active:
            return
        self._tasks = [
            asyncio.create_task(self._poll(), name="block-poller"),
            asyncio.create_task(self._consume(), name="block-consumer"),
        ]

    async def unsubscribe(self) -> None:
        tasks, self._tasks = self._tasks, []
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _poll(self) -> None:
        while True:
            try:
                head = await self._client.get_block_number()
            except RpcError as exc:
                self._consecutive_errors += 1
                logger.warning(
                    "block poll failed errors=%s error=%s", self._consecutive_errors, exc
                )
            else:
                if self._consecutive_errors:
                    logger.info("block poll recovered head=%s", head)
                    self._consecutive_errors = 0
                if self._last_seen is None:
                    self._last_seen = head
                    await self._queue.put(head)
                elif head > self._last_seen:
                    first = self._last_seen + 1
                    backlog = self._queue.maxsize
                    if backlog > 0 and head - first + 1 > backlog:
                        skipped_to = head - backlog
                        logger.warning(
                            "block backlog too large, skipping blocks=%s..%s", first, skipped_to
                        )
                        first = skipped_to + 1
                    self._last_seen = head
                    for number in range(first, head + 1):
                        await self._queue.put(number)
            await asyncio.sleep(self._poll_interval)

    async def _consume(self) -> None:
        while True:
            block_number = await self._queue.get()
            try:
                if self._last_delivered is not None and block_number <= self._last_delivered:
                    continue
                self._last_delivered = block_number
                result = self._handler(block_number)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("block handler failed block=%s", block_number)
            finally:
                self._queue.task_done()
