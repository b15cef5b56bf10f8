from __future__ import annotations

import os
import re
from dataclasses import dataclass, fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Optional

from dotenv import load_dotenv

from cl_market_maker.errors import ConfigError
from cl_market_maker.models import Coin
from cl_market_maker.positions import DefaultSizing
from cl_market_maker.submitter import parse_coins
from cl_market_maker.ticks import TICK_SPACING

ENV_PREFIX = "CLMM_"


@dataclass(frozen=True)
class MarketMakerConfig:
    # chain endpoints
    lcd_url: str
    rpc_url: str
    power_contract_address: str

    # quoted pool
    power_pool_id: int
    base_asset: str
    quote_asset: str

    # signer identity (owner of the positions)
    signer_address: str

    websocket_path: str = "/websocket"

    # position sizing
    default_token0_amount: int = 0
    default_token1_amount: int = 0
    spread: Decimal = Decimal("0.1")
    tick_spacing: int = TICK_SPACING

    # submission
    signer_url: str = ""
    dry_run: bool = True
    chain_id: str = ""
    key_name: str = ""
    keyring_backend: str = "test"
    keyring_dir: str = ""
    chain_binary: str = "osmosisd"
    memo: str = ""
    fees: str = ""
    gas: str = "auto"
    gas_adjustment: float = 1.5

    # timeouts / resilience
    query_timeout_s: float = 10.0
    submit_timeout_s: float = 30.0
    ws_max_reconnects: int = 10

    # status API (0 disables)
    status_host: str = "127.0.0.1"
    status_port: int = 0

    @property
    def websocket_url(self) -> str:
        base = self.rpc_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return base + self.websocket_path

    @property
    def subscription_query(self) -> str:
        return f"token_swapped.module = 'gamm' AND token_swapped.pool_id = '{self.power_pool_id}'"

    def default_sizing(self) -> DefaultSizing:
        return DefaultSizing(
            token0=Coin(self.base_asset, self.default_token0_amount),
            token1=Coin(self.quote_asset, self.default_token1_amount),
        )


REQUIRED_KEYS = (
    "lcd_url",
    "rpc_url",
    "power_contract_address",
    "power_pool_id",
    "base_asset",
    "quote_asset",
    "signer_address",
)


_FLOAT_RE = re.compile(r"^-?\d+\.\d+$")
_INT_RE = re.compile(r"^-?\d+$")


def _parse_value(raw: str) -> Any:
    value = raw.strip()
    if not value:
        return ""
    lower = value.lower()
    if lower in {"true", "false"}:
        return lower == "true"
    if lower in {"null", "none"}:
        return None
    if _INT_RE.match(value):
        return int(value)
    if _FLOAT_RE.match(value):
        return float(value)
    if (value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'")):
        return value[1:-1]
    return value


def load_simple_yaml(path: str | Path) -> dict[str, Any]:
    data: dict[str, Any] = {}
    for raw_line in Path(path).read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        data[key.strip()] = _parse_value(value)
    return data


def _env_overrides(env: Callable[[str], Optional[str]]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for f in fields(MarketMakerConfig):
        raw = env(ENV_PREFIX + f.name.upper())
        if raw is None or raw == "":
            continue
        overrides[f.name] = _parse_value(raw)
    return overrides


def _as_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in {"1", "true", "yes", "y"}:
        return True
    if lowered in {"0", "false", "no", "n", ""}:
        return False
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


def _as_decimal(name: str, value: Any) -> Decimal:
    try:
        parsed = Decimal(str(value))
    except InvalidOperation:
        raise ConfigError(f"{name} must be a decimal, got {value!r}") from None
    if not parsed.is_finite():
        raise ConfigError(f"{name} must be finite, got {value!r}")
    return parsed


def build_config(values: dict[str, Any]) -> MarketMakerConfig:
    missing = [key for key in REQUIRED_KEYS if values.get(key) in (None, "")]
    if missing:
        raise ConfigError(f"missing required config keys: {', '.join(missing)}")

    spread = _as_decimal("spread", values.get("spread", MarketMakerConfig.spread))
    if not (0 <= spread < 1):
        raise ConfigError(f"spread must be in [0, 1), got {spread}")

    try:
        config = MarketMakerConfig(
            lcd_url=str(values["lcd_url"]),
            rpc_url=str(values["rpc_url"]),
            power_contract_address=str(values["power_contract_address"]),
            power_pool_id=int(values["power_pool_id"]),
            base_asset=str(values["base_asset"]),
            quote_asset=str(values["quote_asset"]),
            signer_address=str(values["signer_address"]),
            websocket_path=str(values.get("websocket_path", MarketMakerConfig.websocket_path)),
            default_token0_amount=int(values.get("default_token0_amount", MarketMakerConfig.default_token0_amount)),
            default_token1_amount=int(values.get("default_token1_amount", MarketMakerConfig.default_token1_amount)),
            spread=spread,
            tick_spacing=int(values.get("tick_spacing", MarketMakerConfig.tick_spacing)),
            signer_url=str(values.get("signer_url") or ""),
            dry_run=_as_bool("dry_run", values.get("dry_run", MarketMakerConfig.dry_run)),
            chain_id=str(values.get("chain_id") or ""),
            key_name=str(values.get("key_name") or ""),
            keyring_backend=str(values.get("keyring_backend") or MarketMakerConfig.keyring_backend),
            keyring_dir=str(values.get("keyring_dir") or ""),
            chain_binary=str(values.get("chain_binary") or MarketMakerConfig.chain_binary),
            memo=str(values.get("memo") or ""),
            fees=str(values.get("fees") or ""),
            gas=str(values.get("gas", MarketMakerConfig.gas)),
            gas_adjustment=float(values.get("gas_adjustment", MarketMakerConfig.gas_adjustment)),
            query_timeout_s=float(values.get("query_timeout_s", MarketMakerConfig.query_timeout_s)),
            submit_timeout_s=float(values.get("submit_timeout_s", MarketMakerConfig.submit_timeout_s)),
            ws_max_reconnects=int(values.get("ws_max_reconnects", MarketMakerConfig.ws_max_reconnects)),
            status_host=str(values.get("status_host", MarketMakerConfig.status_host)),
            status_port=int(values.get("status_port", MarketMakerConfig.status_port)),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid config value: {exc}") from None

    if config.tick_spacing <= 0:
        raise ConfigError(f"tick_spacing must be positive, got {config.tick_spacing}")
    if not config.dry_run and not config.signer_url:
        # signing from the local keyring
        if not (config.key_name and config.chain_id):
            raise ConfigError("key_name and chain_id (or signer_url) are required when dry_run is false")
        if config.gas != "auto" and not _INT_RE.match(config.gas):
            raise ConfigError(f"gas must be \"auto\" or an integer, got {config.gas!r}")
    try:
        parse_coins(config.fees)
    except ValueError as exc:
        raise ConfigError(f"invalid fees: {exc}") from None
    return config


def load_config(
    path: str | Path,
    env: Callable[[str], Optional[str]] = os.getenv,
) -> MarketMakerConfig:
    """
    Read the flat key: value file at `path`, then apply CLMM_* environment
    overrides (a .env file in the working directory is loaded first).
    """
    load_dotenv()
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"missing config file: {path}")

    values = load_simple_yaml(path)
    values.update(_env_overrides(env))
    return build_config(values)
