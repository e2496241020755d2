import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from services.indexer.src.indexer.errors import ConfigurationError


def _find_env_file() -> str | None:
    """Find .env file, preferring .env.local for local development."""
    for env_file in [".env.local", ".env"]:
        for base in [".", os.environ.get("REPO_ROOT", "")]:
            if base:
                path = Path(base) / env_file
                if path.exists():
                    return str(path)
    return None


# Roughly 90 minutes of blocks per chain; also bounds eth_getLogs ranges
MAX_BLOCKS_TO_QUERY_BY_CHAIN: dict[str, int] = {
    "default": 400,
    "ethereum": 450,
    "polygon": 2700,
    "base": 2700,
    "arbitrum": 18000,
    "avalanche": 2700,
    "avax": 2700,
    "bsc": 1800,
    "optimism": 2700,
    "gnosis": 1080,
    "hyperliquid": 900,
}

# Etherscan v2 multichain API chain ids
EXPLORER_CHAIN_IDS: dict[str, int] = {
    "ethereum": 1,
    "optimism": 10,
    "bsc": 56,
    "gnosis": 100,
    "polygon": 137,
    "hyperliquid": 999,
    "base": 8453,
    "arbitrum": 42161,
    "avalanche": 43114,
    "avax": 43114,
}

# Default lower bound for chart queries (2025-02-28 16:00 UTC)
DEFAULT_START_TIMESTAMP = 1740758400


def get_max_blocks(chain: str) -> int:
    return MAX_BLOCKS_TO_QUERY_BY_CHAIN.get(chain, MAX_BLOCKS_TO_QUERY_BY_CHAIN["default"])


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=_find_env_file(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # DATABASE_URL from environment (production/CI)
    # Falls back to SQLite for local development if not set
    database_url: str = "sqlite:///./local.db"

    ethereum_rpc_url: str = "https://ethereum.publicnode.com"
    hyperliquid_rpc_url: str = "https://rpc.hyperliquid.xyz/evm"
    arbitrum_rpc_url: str = "https://arbitrum-one.publicnode.com"
    base_rpc_url: str = "https://base.publicnode.com"
    # JSON object, e.g. RPC_URLS='{"gnosis": "https://..."}'
    rpc_urls: dict[str, str] = {}
    rpc_timeout: float = 30.0

    explorer_api_url: str = "https://api.etherscan.io/v2/api"
    explorer_api_key: str = ""

    # Blocks to backfill when a protocol/chain has no watermark yet (0 = one window)
    history_horizon_blocks: int = 0

    persist_error_logs: bool = True

    def get_rpc_url(self, chain: str) -> str:
        if chain in self.rpc_urls:
            return self.rpc_urls[chain]
        url = getattr(self, f"{chain}_rpc_url", None)
        if not url:
            raise ConfigurationError(f"No RPC URL configured for chain: {chain}")
        return url


settings = Settings()
