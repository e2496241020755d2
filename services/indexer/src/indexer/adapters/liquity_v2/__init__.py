from services.indexer.src.indexer.adapters.liquity_v2.adapter import LiquityV2Adapter
from services.indexer.src.indexer.adapters.liquity_v2.config import (
    IndexerConfig,
    ProtocolConfig,
    get_default_config,
)

__all__ = ["LiquityV2Adapter", "IndexerConfig", "ProtocolConfig", "get_default_config"]
