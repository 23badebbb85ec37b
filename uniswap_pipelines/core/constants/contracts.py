from eth_utils import to_checksum_address

from uniswap_pipelines.core.constants.chains import (
    CHAIN_ID_ARBITRUM,
    CHAIN_ID_BASE,
    CHAIN_ID_ETHEREUM,
    CHAIN_ID_UNICHAIN,
)

# Permit2 is deployed at the same address on every chain.
PERMIT2_ADDRESS = to_checksum_address("0x000000000022d473030f116ddee9f6b43ac78ba3")

UNISWAP_V4_CONTRACTS: dict[int, dict[str, str]] = {
    CHAIN_ID_ETHEREUM: {
        "pool_manager": to_checksum_address(
            "0x000000000004444c5dc75cb358380d2e3de08a90"
        ),
        "position_manager": to_checksum_address(
            "0xbd216513d74c8cf14cf4747e6aaa6420ff64ee9e"
        ),
        "state_view": to_checksum_address("0x7ffe42c4a5deea5b0fec41c94c136cf115597227"),
        "quoter": to_checksum_address("0x52f0e24d1c21c8a0cb1e5a5dd6198556bd9e1203"),
        "universal_router": to_checksum_address(
            "0x66a9893cc07d91d95644aedd05d03f95e1dba8af"
        ),
    },
    CHAIN_ID_UNICHAIN: {
        "pool_manager": to_checksum_address(
            "0x1f98400000000000000000000000000000000004"
        ),
        "position_manager": to_checksum_address(
            "0x4529a01c7a0410167c5740c487a8de60232617bf"
        ),
        "state_view": to_checksum_address("0x86e8631a016f9068c3f085faf484ee3f5fdee8f2"),
        "quoter": to_checksum_address("0x333e3c607b141b18ff6de9f258db6e77fe7491e0"),
        "universal_router": to_checksum_address(
            "0xef740bf23acae26f6492b10de645d6b98dc8eaf3"
        ),
    },
    CHAIN_ID_BASE: {
        "pool_manager": to_checksum_address(
            "0x498581ff718922c3f8e6a244956af099b2652b2b"
        ),
        "position_manager": to_checksum_address(
            "0x7c5f5a4bbd8fd63184577525326123b519429bdc"
        ),
        "state_view": to_checksum_address("0xa3c0c9b65bad0b08107aa264b0f3db444b867a71"),
        "quoter": to_checksum_address("0x0d5e0f971ed27fbff6c2837bf31316121532048d"),
        "universal_router": to_checksum_address(
            "0x6ff5693b99212da76ad316178a184ab56d299b43"
        ),
    },
    CHAIN_ID_ARBITRUM: {
        "pool_manager": to_checksum_address(
            "0x360e68faccca8ca495c1b759fd9eee466db9fb32"
        ),
        "position_manager": to_checksum_address(
            "0xd88f38f930b7952f2db2432cb002e7abbf3dd869"
        ),
        "state_view": to_checksum_address("0x76fd297e2d437cd7f76d50f01afe6160f86e9990"),
        "quoter": to_checksum_address("0x3972c00f7ed4885e145823eb7c655375d275a1c5"),
        "universal_router": to_checksum_address(
            "0xa51afafe0263b40edaef0df8781ea9aa03e381a3"
        ),
    },
}

CONTRACT_NAMES = (
    "pool_manager",
    "position_manager",
    "state_view",
    "quoter",
    "universal_router",
    "permit2",
)
