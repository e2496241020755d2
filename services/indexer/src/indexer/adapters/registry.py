"""Adapter lookup keyed by protocol id."""

from typing import Callable

from services.indexer.src.indexer.adapters.base import ProtocolAdapter
from services.indexer.src.indexer.adapters.liquity_v2 import (
    IndexerConfig,
    LiquityV2Adapter,
    ProtocolConfig,
    get_default_config,
)
from services.indexer.src.indexer.errors import ConfigurationError
from services.indexer.src.indexer.gateway.base import ChainReader
from services.indexer.src.indexer.gateway.explorer import CreationCodeFetcher
from services.indexer.src.indexer.utils.error_log import ErrorLogger

AdapterFactory = Callable[..., ProtocolAdapter]

ADAPTERS: dict[str, AdapterFactory] = {
    "liquity_v2": LiquityV2Adapter,
}


def get_adapter(
    protocol_id: int,
    reader: ChainReader,
    config: IndexerConfig | None = None,
    creation_code_fetcher: CreationCodeFetcher | None = None,
    error_logger: ErrorLogger | None = None,
) -> ProtocolAdapter:
    config = config or get_default_config()
    protocol: ProtocolConfig | None = config.get_protocol(protocol_id)
    if protocol is None:
        raise ConfigurationError(f"No protocol configured with id {protocol_id}")

    factory = ADAPTERS.get(protocol.adapter)
    if factory is None:
        raise ConfigurationError(
            f"Unknown adapter {protocol.adapter!r} for protocol {protocol.name}"
        )
    return factory(
        protocol,
        reader,
        creation_code_fetcher=creation_code_fetcher,
        error_logger=error_logger,
    )
