ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
# Uniswap v4 represents the native currency as the zero address.
NATIVE_SENTINEL = ZERO_ADDRESS

GAS_BUFFER_MULTIPLIER = 1.1
SUGGESTED_PRIORITY_FEE_MULTIPLIER = 1.5
SUGGESTED_GAS_PRICE_MULTIPLIER = 1.5
MAX_BASE_FEE_GROWTH_MULTIPLIER = 2

MAX_UINT48 = 2**48 - 1
MAX_UINT128 = 2**128 - 1
MAX_UINT160 = 2**160 - 1
MAX_UINT256 = 2**256 - 1

DEFAULT_TRANSACTION_TIMEOUT = 180  # seconds
DEFAULT_RECEIPT_POLL_INTERVAL = 0.5  # seconds

ADAPTER_UNISWAP_V4 = "UNISWAP_V4"
