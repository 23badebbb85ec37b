__version__ = "0.1.0"

from uniswap_pipelines.core import (
    BaseAdapter,
    Calldata,
    CalldataSDK,
    ChainReader,
    PoolKey,
    Wallet,
)
from uniswap_pipelines.pipeline.orchestrator import StepPipeline
from uniswap_pipelines.pipeline.swap import SwapPipeline
from uniswap_pipelines.pipeline.types import PipelineStep, TransactionStatus

__all__ = [
    "__version__",
    "BaseAdapter",
    "Calldata",
    "CalldataSDK",
    "ChainReader",
    "PipelineStep",
    "PoolKey",
    "StepPipeline",
    "SwapPipeline",
    "TransactionStatus",
    "Wallet",
]
