CHAIN_ID_ETHEREUM = 1
CHAIN_ID_OPTIMISM = 10
CHAIN_ID_UNICHAIN = 130
CHAIN_ID_BASE = 8453
CHAIN_ID_ARBITRUM = 42161
CHAIN_ID_BSC = 56
CHAIN_ID_POLYGON = 137

CHAIN_CODE_TO_ID = {
    "ethereum": CHAIN_ID_ETHEREUM,
    "mainnet": CHAIN_ID_ETHEREUM,
    "optimism": CHAIN_ID_OPTIMISM,
    "unichain": CHAIN_ID_UNICHAIN,
    "base": CHAIN_ID_BASE,
    "arbitrum": CHAIN_ID_ARBITRUM,
    "arbitrum-one": CHAIN_ID_ARBITRUM,
    "bsc": CHAIN_ID_BSC,
    "polygon": CHAIN_ID_POLYGON,
}

CHAIN_ID_TO_CODE: dict[int, str] = {
    v: k for k, v in CHAIN_CODE_TO_ID.items() if k not in ("arbitrum-one", "mainnet")
}

SUPPORTED_CHAINS = [
    CHAIN_ID_ETHEREUM,
    CHAIN_ID_OPTIMISM,
    CHAIN_ID_UNICHAIN,
    CHAIN_ID_BASE,
    CHAIN_ID_ARBITRUM,
    CHAIN_ID_BSC,
    CHAIN_ID_POLYGON,
]

POA_MIDDLEWARE_CHAIN_IDS: set[int] = {
    CHAIN_ID_BSC,
    CHAIN_ID_POLYGON,
}

PRE_EIP_1559_CHAIN_IDS: set[int] = {
    CHAIN_ID_BSC,
    CHAIN_ID_ARBITRUM,
}
