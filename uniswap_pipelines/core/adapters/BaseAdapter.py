from __future__ import annotations

import functools
from abc import ABC
from collections.abc import Callable
from typing import Any

from loguru import logger

from uniswap_pipelines.core.errors import PipelineError, user_facing_error


def require_wallet(fn: Callable) -> Callable:
    """Return ``(False, ...)`` early if the adapter has no connected wallet."""

    @functools.wraps(fn)
    async def wrapper(self: BaseAdapter, *args: Any, **kwargs: Any) -> Any:
        if not getattr(self, "wallet_address", None):
            return False, "wallet address not configured"
        return await fn(self, *args, **kwargs)

    return wrapper


def status_tuple(fn: Callable) -> Callable:
    """Turn pipeline errors raised by ``fn`` into ``(False, message)``.

    Wallet rejections surface as ``(False, None)`` so callers can skip
    displaying them.
    """

    @functools.wraps(fn)
    async def wrapper(self: BaseAdapter, *args: Any, **kwargs: Any) -> Any:
        try:
            return await fn(self, *args, **kwargs)
        except PipelineError as exc:
            visible = user_facing_error(exc)
            self.logger.warning(f"{fn.__name__} failed: {exc}")
            return False, str(visible) if visible is not None else None

    return wrapper


class BaseAdapter(ABC):
    adapter_type: str | None = None

    def __init__(self, name: str, config: dict[str, Any] | None = None):
        self.name = name
        self.config = config or {}
        self.logger = logger.bind(adapter=self.__class__.__name__)

    async def close(self) -> None:
        pass
