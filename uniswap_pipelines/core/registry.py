from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from eth_utils import to_checksum_address
from loguru import logger

from uniswap_pipelines.core.chain_reader import Web3ChainReader
from uniswap_pipelines.core.config import get_contract_overrides
from uniswap_pipelines.core.constants.contracts import (
    CONTRACT_NAMES,
    PERMIT2_ADDRESS,
    UNISWAP_V4_CONTRACTS,
)
from uniswap_pipelines.core.interfaces import ChainReader, TokenMetadata
from uniswap_pipelines.core.utils.tokens import get_erc20_metadata, is_native_token

NATIVE_METADATA = {"symbol": "ETH", "name": "Ether", "decimals": 18}

ReaderFactory = Callable[[int, dict[str, str]], ChainReader]
MetadataFetcher = Callable[[str, int], Awaitable[tuple[str, str, int]]]


def _default_reader_factory(chain_id: int, contracts: dict[str, str]) -> ChainReader:
    return Web3ChainReader(chain_id, contracts)


class ClientRegistry:
    """Process-wide cache of per-chain readers and token metadata.

    Entries are created on first use and live as long as the registry. Readers
    and metadata are read-only and may be shared by concurrently running
    pipelines; signature and transaction state never live here.
    """

    def __init__(
        self,
        *,
        reader_factory: ReaderFactory | None = None,
        metadata_fetcher: MetadataFetcher | None = None,
    ):
        self._reader_factory = reader_factory or _default_reader_factory
        self._metadata_fetcher = metadata_fetcher or get_erc20_metadata
        self._readers: dict[int, ChainReader] = {}
        self._token_metadata: dict[tuple[int, str], TokenMetadata] = {}
        self._metadata_lock = asyncio.Lock()

    def contracts(self, chain_id: int) -> dict[str, str]:
        chain_id = int(chain_id)
        resolved = dict(UNISWAP_V4_CONTRACTS.get(chain_id, {}))
        resolved.setdefault("permit2", PERMIT2_ADDRESS)
        for name, address in get_contract_overrides(chain_id).items():
            if name not in CONTRACT_NAMES:
                raise ValueError(f"Unknown contract override {name!r}")
            resolved[name] = to_checksum_address(address)
        return resolved

    def contract_address(self, chain_id: int, name: str) -> str:
        address = self.contracts(chain_id).get(name)
        if not address:
            raise ValueError(f"No {name} contract known for chain {chain_id}")
        return address

    def reader(self, chain_id: int) -> ChainReader:
        chain_id = int(chain_id)
        reader = self._readers.get(chain_id)
        if reader is None:
            reader = self._reader_factory(chain_id, self.contracts(chain_id))
            self._readers[chain_id] = reader
            logger.debug(f"Created chain reader for chain {chain_id}")
        return reader

    async def token_metadata(self, chain_id: int, address: str) -> TokenMetadata:
        key = (int(chain_id), str(address).lower())
        cached = self._token_metadata.get(key)
        if cached is not None:
            return cached

        if is_native_token(address):
            metadata = TokenMetadata(chain_id=key[0], address=address, **NATIVE_METADATA)
        else:
            async with self._metadata_lock:
                cached = self._token_metadata.get(key)
                if cached is not None:
                    return cached
                symbol, name, decimals = await self._metadata_fetcher(address, key[0])
                metadata = TokenMetadata(
                    chain_id=key[0],
                    address=to_checksum_address(address),
                    symbol=symbol,
                    name=name,
                    decimals=int(decimals),
                )
        self._token_metadata[key] = metadata
        return metadata


_DEFAULT_REGISTRY: ClientRegistry | None = None


def default_registry() -> ClientRegistry:
    """The registry used when callers do not pass one; lives for the process."""
    global _DEFAULT_REGISTRY
    if _DEFAULT_REGISTRY is None:
        _DEFAULT_REGISTRY = ClientRegistry()
    return _DEFAULT_REGISTRY
