from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any, Callable, Sequence

from services.indexer.src.indexer.domain.models import Block, RawLog
from services.indexer.src.indexer.errors import RemoteReadError
from services.indexer.src.indexer.gateway.abi import ContractFunction
from services.indexer.src.indexer.utils.concurrency import gather_with_concurrency

FunctionLike = ContractFunction | str


@lru_cache(maxsize=512)
def _parse(signature: str) -> ContractFunction:
    return ContractFunction.parse(signature)


def as_function(function: FunctionLike) -> ContractFunction:
    if isinstance(function, ContractFunction):
        return function
    return _parse(function)


class ChainReader(ABC):
    """Read-only access to EVM chains.

    ``block=None`` reads at the latest block. Integers are returned as decimal
    strings and addresses as lowercase hex.
    """

    @abstractmethod
    async def call(
        self,
        chain: str,
        target: str,
        function: FunctionLike,
        args: Sequence[Any] = (),
        block: int | None = None,
    ) -> Any:
        ...

    async def multi_call(
        self,
        chain: str,
        function: FunctionLike,
        calls: Sequence[tuple[str, Sequence[Any]]],
        block: int | None = None,
    ) -> list[Any]:
        """Call ``function`` once per ``(target, args)``; results keep the order of ``calls``."""
        fn = as_function(function)
        return await gather_with_concurrency(
            self.call(chain, target, fn, args, block) for target, args in calls
        )

    async def fetch_list(
        self,
        chain: str,
        target: str,
        length_fn: FunctionLike,
        item_fn: FunctionLike,
        block: int | None = None,
    ) -> list[Any]:
        """Read ``item_fn(i)`` for every ``i`` below ``length_fn()``."""
        length = int(await self.call(chain, target, length_fn, (), block))
        if length == 0:
            return []
        return await self.multi_call(chain, item_fn, [(target, (i,)) for i in range(length)], block)

    @abstractmethod
    async def get_logs(
        self, chain: str, target: str, topic: str, from_block: int, to_block: int
    ) -> list[RawLog]:
        ...

    @abstractmethod
    async def latest_block(self, chain: str) -> Block:
        ...

    @abstractmethod
    async def get_block(self, chain: str, number: int) -> Block | None:
        ...

    async def block_for_timestamp(self, chain: str, timestamp: int) -> Block:
        """Latest block whose timestamp is at or before ``timestamp`` (binary search)."""
        latest = await self.latest_block(chain)
        if latest.timestamp <= timestamp:
            return latest

        lo, hi = 0, latest.number
        best: Block | None = None
        while lo <= hi:
            mid = (lo + hi) // 2
            block = await self.get_block(chain, mid)
            if block is None:
                hi = mid - 1
                continue
            if block.timestamp <= timestamp:
                best = block
                lo = mid + 1
            else:
                hi = mid - 1

        if best is None:
            raise RemoteReadError(f"No {chain} block at or before timestamp {timestamp}")
        return best

    async def close(self) -> None:
        return None


class MockChainReader(ChainReader):
    """In-memory chain for tests.

    Responses are keyed by ``(chain, target, function name, args)``; a value
    that is an exception instance is raised instead of returned.
    """

    def __init__(self) -> None:
        self._calls: dict[tuple, Any] = {}
        self._logs: dict[tuple[str, str, str], list[RawLog]] = {}
        self._blocks: dict[str, dict[int, int]] = {}
        self._latest: dict[str, Block] = {}
        self.get_logs_error: Callable[[str, int, int], BaseException | None] | None = None
        self.call_history: list[tuple[str, tuple]] = []

    def set_call(
        self, chain: str, target: str, function: str, value: Any, args: Sequence[Any] = ()
    ) -> None:
        self._calls[(chain, target.lower(), function, tuple(str(a) for a in args))] = value

    def set_logs(self, chain: str, target: str, topic: str, logs: list[RawLog]) -> None:
        self._logs[(chain, target.lower(), topic.lower())] = logs

    def set_latest_block(self, chain: str, number: int, timestamp: int) -> None:
        self._latest[chain] = Block(number=number, timestamp=timestamp)
        self._blocks.setdefault(chain, {})[number] = timestamp

    def set_blocks(self, chain: str, blocks: dict[int, int]) -> None:
        self._blocks.setdefault(chain, {}).update(blocks)

    async def call(
        self,
        chain: str,
        target: str,
        function: FunctionLike,
        args: Sequence[Any] = (),
        block: int | None = None,
    ) -> Any:
        fn = as_function(function)
        key = (chain, target.lower(), fn.name, tuple(str(a) for a in args))
        self.call_history.append(("call", key + (block,)))
        if key not in self._calls:
            raise RemoteReadError(f"execution reverted: {fn.signature} on {target} ({chain})")
        value = self._calls[key]
        if isinstance(value, BaseException):
            raise value
        return value

    async def get_logs(
        self, chain: str, target: str, topic: str, from_block: int, to_block: int
    ) -> list[RawLog]:
        self.call_history.append(("get_logs", (chain, target.lower(), topic, from_block, to_block)))
        if self.get_logs_error is not None:
            error = self.get_logs_error(chain, from_block, to_block)
            if error is not None:
                raise error
        logs = self._logs.get((chain, target.lower(), topic.lower()), [])
        return [log for log in logs if from_block <= log.block_number <= to_block]

    async def latest_block(self, chain: str) -> Block:
        self.call_history.append(("latest_block", (chain,)))
        if chain not in self._latest:
            raise RemoteReadError(f"No latest block for {chain}")
        return self._latest[chain]

    async def get_block(self, chain: str, number: int) -> Block | None:
        self.call_history.append(("get_block", (chain, number)))
        timestamp = self._blocks.get(chain, {}).get(number)
        if timestamp is None:
            return None
        return Block(number=number, timestamp=timestamp)
