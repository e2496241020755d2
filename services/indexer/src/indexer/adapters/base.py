from abc import ABC, abstractmethod

from services.indexer.src.indexer.domain.models import (
    CoreImmutablesEntry,
    CorePoolDataEntry,
    EventDataEntry,
    TroveDataEntry,
    TroveOwnerEntry,
)


class ProtocolAdapter(ABC):
    """Reads one protocol's on-chain state.

    Every fetch is pinned to an explicit block so that all reads of a batch
    describe the same chain state. Deployments are per chain; asking for a
    chain the protocol is not deployed on raises ConfigurationError.
    """

    protocol_id: int
    name: str

    @property
    @abstractmethod
    def chains(self) -> list[str]:
        ...

    @abstractmethod
    async def fetch_troves(self, chain: str, block: int) -> list[TroveDataEntry]:
        ...

    @abstractmethod
    async def fetch_trove_owners(
        self, chain: str, block: int, troves: list[TroveDataEntry]
    ) -> list[TroveOwnerEntry]:
        ...

    @abstractmethod
    async def fetch_immutables(self, chain: str, block: int) -> CoreImmutablesEntry:
        ...

    @abstractmethod
    async def fetch_pool_data(
        self, chain: str, block: int, immutables: CoreImmutablesEntry | None = None
    ) -> CorePoolDataEntry:
        ...

    @abstractmethod
    async def fetch_events(
        self, chain: str, from_block: int, to_block: int
    ) -> list[EventDataEntry]:
        ...
