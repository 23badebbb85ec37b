from uniswap_pipelines.core.constants.base import (
    MAX_UINT48,
    MAX_UINT160,
    MAX_UINT256,
    NATIVE_SENTINEL,
    ZERO_ADDRESS,
)
from uniswap_pipelines.core.constants.chains import SUPPORTED_CHAINS

__all__ = [
    "MAX_UINT48",
    "MAX_UINT160",
    "MAX_UINT256",
    "NATIVE_SENTINEL",
    "SUPPORTED_CHAINS",
    "ZERO_ADDRESS",
]
