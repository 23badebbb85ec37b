import asyncio
import math
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger
from web3 import AsyncWeb3

from uniswap_pipelines.core.constants.base import (
    DEFAULT_RECEIPT_POLL_INTERVAL,
    DEFAULT_TRANSACTION_TIMEOUT,
    GAS_BUFFER_MULTIPLIER,
    MAX_BASE_FEE_GROWTH_MULTIPLIER,
    SUGGESTED_GAS_PRICE_MULTIPLIER,
    SUGGESTED_PRIORITY_FEE_MULTIPLIER,
)
from uniswap_pipelines.core.constants.chains import PRE_EIP_1559_CHAIN_IDS
from uniswap_pipelines.core.errors import TransactionRevertedError
from uniswap_pipelines.core.utils.web3 import (
    get_transaction_chain_id,
    web3_from_chain_id,
    web3s_from_chain_id,
)

SignCallback = Callable[[dict[str, Any]], Awaitable[bytes]]


def _normalize_hash(txn_hash: Any) -> str:
    if isinstance(txn_hash, (bytes, bytearray)):
        txn_hash = bytes(txn_hash).hex()
    txn_hash = str(txn_hash)
    return txn_hash if txn_hash.startswith("0x") else f"0x{txn_hash}"


def _get_transaction_from_address(transaction: dict) -> str:
    if "from" not in transaction:
        raise ValueError("Transaction does not contain from address")
    return AsyncWeb3.to_checksum_address(transaction["from"])


def _revert_error(
    txn_hash: str, receipt: dict[str, Any], transaction: dict[str, Any] | None
) -> TransactionRevertedError:
    gas_used = int(receipt.get("gasUsed") or 0)
    gas_limit = int((transaction or {}).get("gas") or 0)
    oogs = bool(gas_used and gas_limit and gas_used >= gas_limit)
    suffix = (
        f" gasUsed={gas_used} gasLimit={gas_limit}"
        + (" (likely out of gas)" if oogs else "")
        if gas_used or gas_limit
        else ""
    )
    return TransactionRevertedError(
        txn_hash,
        receipt,
        message=f"Transaction reverted (status=0): {txn_hash}{suffix}",
    )


async def nonce_transaction(transaction: dict) -> dict:
    transaction = transaction.copy()
    from_address = _get_transaction_from_address(transaction)

    async with web3s_from_chain_id(get_transaction_chain_id(transaction)) as web3s:
        nonces = await asyncio.gather(
            *[
                web3.eth.get_transaction_count(from_address, block_identifier="pending")
                for web3 in web3s
            ]
        )
        transaction["nonce"] = max(nonces)

    return transaction


async def gas_price_transaction(transaction: dict) -> dict:
    transaction = transaction.copy()

    async def _get_base_fee(web3: AsyncWeb3) -> int:
        latest_block = await web3.eth.get_block("latest")
        return latest_block.baseFeePerGas

    async def _get_priority_fee(web3: AsyncWeb3) -> int:
        fee_history = await web3.eth.fee_history(10, "latest", [80])
        historical_priority_fees = [i[0] for i in fee_history.reward]
        return sum(historical_priority_fees) // len(historical_priority_fees)

    chain_id = get_transaction_chain_id(transaction)
    async with web3s_from_chain_id(chain_id) as web3s:
        if chain_id in PRE_EIP_1559_CHAIN_IDS:
            gas_prices = await asyncio.gather(*[web3.eth.gas_price for web3 in web3s])
            transaction["gasPrice"] = int(
                max(gas_prices) * SUGGESTED_GAS_PRICE_MULTIPLIER
            )
        else:
            base_fees = await asyncio.gather(*[_get_base_fee(web3) for web3 in web3s])
            priority_fees = await asyncio.gather(
                *[_get_priority_fee(web3) for web3 in web3s]
            )
            base_fee = max(base_fees)
            priority_fee = max(priority_fees)

            transaction["maxFeePerGas"] = int(
                base_fee * MAX_BASE_FEE_GROWTH_MULTIPLIER
                + priority_fee * SUGGESTED_PRIORITY_FEE_MULTIPLIER
            )
            transaction["maxPriorityFeePerGas"] = int(
                priority_fee * SUGGESTED_PRIORITY_FEE_MULTIPLIER
            )

    return transaction


async def gas_limit_transaction(transaction: dict) -> dict:
    transaction = transaction.copy()
    # prevents RPCs from taking this as a serious limit
    transaction.pop("gas", None)

    async def _estimate_gas(web3: AsyncWeb3) -> int:
        try:
            return await web3.eth.estimate_gas(transaction, block_identifier="latest")
        except Exception as e:  # noqa: BLE001
            logger.info(
                f"Failed to estimate gas using {web3.provider.endpoint_uri}. Error: {e}"
            )
            return 0

    async with web3s_from_chain_id(get_transaction_chain_id(transaction)) as web3s:
        gas_limits = await asyncio.gather(*[_estimate_gas(web3) for web3 in web3s])

        gas_limit = max(gas_limits)
        if gas_limit == 0:
            logger.error("Gas estimation failed on all RPCs")
            raise RuntimeError("Gas estimation failed on all RPCs")

        transaction["gas"] = int(math.ceil(gas_limit * GAS_BUFFER_MULTIPLIER))

    return transaction


async def broadcast_transaction(chain_id: int, signed_transaction: bytes) -> str:
    async with web3_from_chain_id(chain_id) as web3:
        tx_hash = await web3.eth.send_raw_transaction(signed_transaction)
        return _normalize_hash(tx_hash)


async def wait_for_transaction_receipt(
    chain_id: int,
    txn_hash: str,
    *,
    confirmations: int = 1,
    poll_interval: float = DEFAULT_RECEIPT_POLL_INTERVAL,
    timeout: int = DEFAULT_TRANSACTION_TIMEOUT,
    transaction: dict[str, Any] | None = None,
) -> dict:
    """Wait until ``txn_hash`` is mined and ``confirmations`` blocks deep.

    Raises ``TransactionRevertedError`` when the receipt carries ``status == 0``.
    """
    txn_hash = _normalize_hash(txn_hash)

    async with web3s_from_chain_id(chain_id) as web3s:
        tasks = [
            asyncio.create_task(
                web3.eth.wait_for_transaction_receipt(
                    txn_hash, poll_latency=poll_interval, timeout=timeout
                )
            )
            for web3 in web3s
        ]
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        receipt = dict(done.pop().result())

        if int(receipt.get("status", 1)) == 0:
            raise _revert_error(txn_hash, receipt, transaction)

        target_block = receipt["blockNumber"] + confirmations - 1
        while (
            max(await asyncio.gather(*[w.eth.block_number for w in web3s]))
            < target_block
        ):
            await asyncio.sleep(poll_interval)
        return receipt


async def send_transaction(
    transaction: dict,
    sign_callback: SignCallback,
    *,
    wait_for_receipt: bool = False,
    confirmations: int = 1,
) -> str:
    """Estimate, price, sign and broadcast ``transaction``.

    Returns the hash as soon as the node accepts it unless ``wait_for_receipt``.
    """
    if sign_callback is None:
        raise ValueError("sign_callback must be provided to send transaction")

    logger.info(f"Broadcasting transaction {transaction}...")
    chain_id = get_transaction_chain_id(transaction)
    transaction = await gas_limit_transaction(transaction)
    transaction = await nonce_transaction(transaction)
    transaction = await gas_price_transaction(transaction)
    signed_transaction = await sign_callback(transaction)
    txn_hash = await broadcast_transaction(chain_id, signed_transaction)
    logger.info(f"Transaction broadcasted: {txn_hash}")
    if wait_for_receipt:
        await wait_for_transaction_receipt(
            chain_id,
            txn_hash,
            confirmations=confirmations,
            transaction=transaction,
        )
    return txn_hash
