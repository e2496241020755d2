"""Contract creation bytecode from the Etherscan v2 multichain API."""

import logging
from typing import Any

import httpx

from services.indexer.src.indexer.config import EXPLORER_CHAIN_IDS, settings
from services.indexer.src.indexer.errors import ConfigurationError, RemoteReadError
from services.indexer.src.indexer.utils.retry import REMOTE_READ_POLICY, RetryPolicy

logger = logging.getLogger(__name__)


class CreationCodeFetcher:
    def __init__(
        self,
        api_url: str | None = None,
        api_key: str | None = None,
        timeout: float = 30.0,
        policy: RetryPolicy = REMOTE_READ_POLICY,
    ):
        self.api_url = api_url or settings.explorer_api_url
        self.api_key = api_key if api_key is not None else settings.explorer_api_key
        self.timeout = timeout
        self.policy = policy
        self._cache: dict[tuple[str, str], str] = {}

    async def fetch_creation_bytecode(self, chain: str, address: str) -> str:
        """Creation bytecode (init code plus constructor arguments) of a contract."""
        key = (chain, address.lower())
        if key not in self._cache:
            self._cache[key] = await self.policy.run(self._fetch, chain, address)
        return self._cache[key]

    async def _fetch(self, chain: str, address: str) -> str:
        chain_id = EXPLORER_CHAIN_IDS.get(chain)
        if chain_id is None:
            raise ConfigurationError(f"No explorer chain id for chain: {chain}")

        params = {
            "chainid": chain_id,
            "module": "contract",
            "action": "getcontractcreation",
            "contractaddresses": address,
            "apikey": self.api_key,
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(self.api_url, params=params)
            response.raise_for_status()
            data: dict[str, Any] = response.json()

        result = data.get("result")
        if data.get("status") != "1" or not isinstance(result, list) or not result:
            raise RemoteReadError(
                f"getcontractcreation failed for {address} on {chain}: {data.get('message')}"
            )
        bytecode = result[0].get("creationBytecode")
        if not bytecode:
            raise RemoteReadError(f"No creation bytecode for {address} on {chain}")
        return bytecode


class MockCreationCodeFetcher(CreationCodeFetcher):
    """Mock fetcher for testing without network calls."""

    def __init__(self, bytecodes: dict[str, str] | None = None):
        super().__init__(api_url="http://mock", api_key="")
        self.bytecodes = {k.lower(): v for k, v in (bytecodes or {}).items()}
        self.call_history: list[tuple[str, str]] = []

    async def fetch_creation_bytecode(self, chain: str, address: str) -> str:
        self.call_history.append((chain, address.lower()))
        if address.lower() not in self.bytecodes:
            raise RemoteReadError(f"No creation bytecode for {address} on {chain}")
        return self.bytecodes[address.lower()]
