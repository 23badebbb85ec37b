from uniswap_pipelines.core.adapters.BaseAdapter import BaseAdapter
from uniswap_pipelines.core.interfaces import (
    Calldata,
    CalldataSDK,
    ChainReader,
    PoolKey,
    Wallet,
)

__all__ = [
    "BaseAdapter",
    "Calldata",
    "CalldataSDK",
    "ChainReader",
    "PoolKey",
    "Wallet",
]
