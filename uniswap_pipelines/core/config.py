import json
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

_CONFIG_ENV_KEYS = ("UNISWAP_PIPELINES_CONFIG_PATH", "UNISWAP_PIPELINES_CONFIG")
_DEFAULT_CONFIG_FILENAME = "config.json"

BIPS_BASE = 10_000


def _find_project_root(start: Path) -> Path | None:
    cur = start.resolve()
    for parent in [cur, *cur.parents]:
        if (parent / "pyproject.toml").exists():
            return parent
    return None


def _project_root() -> Path | None:
    return _find_project_root(Path.cwd()) or _find_project_root(Path(__file__).parent)


def resolve_config_path(path: str | Path | None = None) -> Path:
    if path is not None:
        return Path(path).expanduser()

    env_path = next(
        (os.getenv(k, "").strip() for k in _CONFIG_ENV_KEYS if os.getenv(k)), ""
    )
    if env_path:
        p = Path(env_path).expanduser()
        if p.is_absolute():
            return p
        root = _project_root()
        return (root / p) if root else p

    root = _project_root()
    return (root / _DEFAULT_CONFIG_FILENAME) if root else Path(_DEFAULT_CONFIG_FILENAME)


def load_config_json(
    path: str | Path | None = None, *, require_exists: bool = False
) -> dict[str, Any]:
    cfg_path = resolve_config_path(path)
    if not cfg_path.exists():
        if require_exists:
            raise FileNotFoundError(f"Config file not found: {cfg_path}")
        return {}
    try:
        parsed = json.loads(cfg_path.read_text())
    except json.JSONDecodeError as exc:
        raise ValueError(f"Config file is not valid JSON: {cfg_path}") from exc
    return parsed if isinstance(parsed, dict) else {}


CONFIG: dict[str, Any] = load_config_json()


def set_config(config: dict[str, Any]) -> None:
    """Replace the global CONFIG dict in-place.

    Modules that imported CONFIG at import time keep seeing the current values.
    """
    CONFIG.clear()
    CONFIG.update(config)


def load_config(
    path: str | Path | None = None, *, require_exists: bool = False
) -> None:
    """Load config from disk into the global CONFIG dict."""
    set_config(load_config_json(path, require_exists=require_exists))


def set_rpc_urls(rpc_urls: dict[str, Any]) -> None:
    CONFIG["rpc_urls"] = dict(rpc_urls)


def get_rpc_urls() -> dict[str, Any]:
    return CONFIG.get("rpc_urls", {})


def get_contract_overrides(chain_id: int) -> dict[str, str]:
    contracts = CONFIG.get("contracts", {})
    overrides = contracts.get(str(chain_id))
    if overrides is None:
        overrides = contracts.get(chain_id)  # allow int keys
    return dict(overrides or {})


def get_wallet_config() -> dict[str, Any]:
    wallet = CONFIG.get("wallet", {})
    return wallet if isinstance(wallet, dict) else {}


class PipelineSettings(BaseModel):
    slippage_bps: int = Field(default=50, ge=0, le=BIPS_BASE)
    deadline_seconds: int = Field(default=600, gt=0)
    confirmations: int = Field(default=1, ge=1)
    quote_refresh_interval_s: float = Field(default=30.0, gt=0)
    permit_sig_deadline_seconds: int = Field(default=3600, gt=0)
    max_rpc_attempts: int = Field(default=3, ge=1)

    @field_validator("slippage_bps", mode="before")
    @classmethod
    def _reject_fractional_bps(cls, value: Any) -> Any:
        if isinstance(value, float) and not value.is_integer():
            raise ValueError("slippage_bps must be a whole number of basis points")
        return value


def get_pipeline_settings(**overrides: Any) -> PipelineSettings:
    raw = dict(CONFIG.get("pipeline", {}) or {})
    raw.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return PipelineSettings(**raw)
    except ValidationError as exc:
        raise ValueError(f"Invalid pipeline settings: {exc}") from exc
