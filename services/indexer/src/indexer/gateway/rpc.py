"""JSON-RPC ChainReader over httpx."""

import itertools
import logging
from typing import Any, Sequence

import httpx

from services.indexer.src.indexer.config import settings
from services.indexer.src.indexer.domain.models import Block, RawLog
from services.indexer.src.indexer.errors import RemoteReadError
from services.indexer.src.indexer.gateway.base import ChainReader, FunctionLike, as_function
from services.indexer.src.indexer.utils.retry import (
    GET_LOGS_POLICY,
    LATEST_BLOCK_POLICY,
    REMOTE_READ_POLICY,
    RetryPolicy,
    is_retryable,
)

logger = logging.getLogger(__name__)

# Calls per JSON-RPC batch request
BATCH_SIZE = 100


class RpcError(RemoteReadError):
    def __init__(self, method: str, error: dict[str, Any]):
        self.method = method
        self.code = error.get("code")
        self.rpc_message = str(error.get("message", ""))
        super().__init__(f"{method} failed ({self.code}): {self.rpc_message}")

    @property
    def is_revert(self) -> bool:
        return self.code == 3 or "revert" in self.rpc_message.lower()


def is_retryable_rpc_error(error: BaseException) -> bool:
    """Reverts are deterministic, everything else (timeouts, rate limits, 5xx) may pass later."""
    if isinstance(error, RpcError) and error.is_revert:
        return False
    return is_retryable(error)


def _block_tag(block: int | None) -> str:
    return "latest" if block is None else hex(block)


class JsonRpcChainReader(ChainReader):
    def __init__(
        self,
        rpc_urls: dict[str, str] | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
        call_policy: RetryPolicy = REMOTE_READ_POLICY,
        logs_policy: RetryPolicy = GET_LOGS_POLICY,
        latest_policy: RetryPolicy = LATEST_BLOCK_POLICY,
    ):
        self.rpc_urls = rpc_urls or {}
        self.timeout = timeout or settings.rpc_timeout
        self._client = client
        self._ids = itertools.count(1)
        self.call_policy = call_policy.with_options(retryable=is_retryable_rpc_error)
        self.logs_policy = logs_policy.with_options(retryable=is_retryable_rpc_error)
        self.latest_policy = latest_policy.with_options(retryable=is_retryable_rpc_error)

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def _url(self, chain: str) -> str:
        return self.rpc_urls.get(chain) or settings.get_rpc_url(chain)

    async def _request(self, chain: str, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await self.client.post(self._url(chain), json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise RemoteReadError(f"{method} on {chain} failed: {e}") from e

        data = response.json()
        if data.get("error"):
            raise RpcError(method, data["error"])
        return data.get("result")

    async def _batch(self, chain: str, method: str, params_list: list[list[Any]]) -> list[Any]:
        """One JSON-RPC batch request; results are matched back to requests by id."""
        payload = [
            {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
            for params in params_list
        ]
        try:
            response = await self.client.post(self._url(chain), json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise RemoteReadError(f"batch {method} on {chain} failed: {e}") from e

        data = response.json()
        if isinstance(data, dict):
            raise RpcError(method, data.get("error") or {"message": "batch request rejected"})

        by_id = {item.get("id"): item for item in data}
        results = []
        for request in payload:
            item = by_id.get(request["id"])
            if item is None:
                raise RemoteReadError(f"Missing response for batch {method} id {request['id']}")
            if item.get("error"):
                raise RpcError(method, item["error"])
            results.append(item.get("result"))
        return results

    async def call(
        self,
        chain: str,
        target: str,
        function: FunctionLike,
        args: Sequence[Any] = (),
        block: int | None = None,
    ) -> Any:
        fn = as_function(function)
        params = [{"to": target, "data": fn.encode(args)}, _block_tag(block)]
        result = await self.call_policy.run(self._request, chain, "eth_call", params)
        return fn.decode(result)

    async def multi_call(
        self,
        chain: str,
        function: FunctionLike,
        calls: Sequence[tuple[str, Sequence[Any]]],
        block: int | None = None,
    ) -> list[Any]:
        fn = as_function(function)
        tag = _block_tag(block)
        params_list = [[{"to": target, "data": fn.encode(args)}, tag] for target, args in calls]

        decoded: list[Any] = []
        for i in range(0, len(params_list), BATCH_SIZE):
            chunk = params_list[i:i + BATCH_SIZE]
            results = await self.call_policy.run(self._batch, chain, "eth_call", chunk)
            decoded.extend(fn.decode(r) for r in results)
        return decoded

    async def get_logs(
        self, chain: str, target: str, topic: str, from_block: int, to_block: int
    ) -> list[RawLog]:
        params = [{
            "address": target,
            "topics": [topic],
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
        }]
        result = await self.logs_policy.run(self._request, chain, "eth_getLogs", params)
        return [
            RawLog(
                address=log["address"].lower(),
                topics=list(log.get("topics", [])),
                data=log.get("data", "0x"),
                block_number=int(log["blockNumber"], 16),
                tx_hash=log["transactionHash"],
                log_index=int(log["logIndex"], 16),
            )
            for log in result or []
            if not log.get("removed")
        ]

    async def latest_block(self, chain: str) -> Block:
        result = await self.latest_policy.run(
            self._request, chain, "eth_getBlockByNumber", ["latest", False]
        )
        if result is None:
            raise RemoteReadError(f"No latest block returned for {chain}")
        return Block(number=int(result["number"], 16), timestamp=int(result["timestamp"], 16))

    async def get_block(self, chain: str, number: int) -> Block | None:
        result = await self.call_policy.run(
            self._request, chain, "eth_getBlockByNumber", [hex(number), False]
        )
        if result is None:
            return None
        return Block(number=int(result["number"], 16), timestamp=int(result["timestamp"], 16))

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
