import configparser
import math
import os
import re
import tomllib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from tickfolio.constants import (
    CONFIG_PATH, ENV_PATH, PORTFOLIO_PATH, PORTFOLIO_ENV,
    REFRESH_INTERVAL, DEFAULT_FETCH_TIMEOUT, MIN_FETCH_TIMEOUT,
    DEFAULT_ENDPOINTS,
)


class ConfigError(Exception):
    """Portfolio or settings could not be loaded; the dashboard must not start."""


class AssetKind(str, Enum):
    STOCK = "stock"
    CRYPTO = "crypto"
    COMMODITY = "commodity"

    @property
    def label(self) -> str:
        return self.value.capitalize()


@dataclass(frozen=True)
class AssetDescriptor:
    kind: AssetKind
    symbol: str
    quantity: float
    override_endpoint: Optional[str] = None


def parse_interval(value: str, default: int) -> int:
    """Convert interval string like '10s', '1m', '5m', '1h' to seconds."""
    value = value.strip().lower()
    m = re.match(r"^(\d+)\s*(s|m|h)?$", value)
    if not m:
        print(f"[warning] Invalid interval '{value}', using {default}s")
        return default
    num, unit = int(m.group(1)), m.group(2) or "s"
    multipliers = {"s": 1, "m": 60, "h": 3600}
    return num * multipliers[unit]


@dataclass
class Config:
    fetch_timeout: int = DEFAULT_FETCH_TIMEOUT
    endpoints: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_ENDPOINTS))


def parse_config(path: str = CONFIG_PATH) -> Config:
    """Read config.ini and return a Config object."""
    cfg_obj = Config()
    if not os.path.exists(path):
        return cfg_obj

    cfg = configparser.RawConfigParser()
    try:
        cfg.read(path)
    except configparser.Error as e:
        raise ConfigError(f"{path}: {e}") from e

    sect = cfg["dashboard"] if "dashboard" in cfg else {}
    timeout = parse_interval(sect.get("fetch_timeout", f"{DEFAULT_FETCH_TIMEOUT}s"), DEFAULT_FETCH_TIMEOUT)
    # A fetch must never outlive the tick it belongs to
    if timeout >= REFRESH_INTERVAL:
        print(f"[warning] fetch_timeout {timeout}s is not shorter than the {REFRESH_INTERVAL}s refresh, "
              f"using {REFRESH_INTERVAL - 1}s")
        timeout = REFRESH_INTERVAL - 1
    cfg_obj.fetch_timeout = max(timeout, MIN_FETCH_TIMEOUT)

    if "endpoints" in cfg:
        for kind, template in cfg["endpoints"].items():
            kind = kind.strip().lower()
            if kind not in DEFAULT_ENDPOINTS:
                print(f"[warning] Unknown endpoint kind '{kind}' in {os.path.basename(path)}, ignoring")
                continue
            if "{symbol}" not in template:
                raise ConfigError(f"endpoint template for '{kind}' has no {{symbol}} placeholder")
            cfg_obj.endpoints[kind] = template.strip()

    return cfg_obj


def load_env(path: str = ENV_PATH):
    """Load KEY=VALUE lines from a .env file without overriding the real environment."""
    if not os.path.exists(path):
        return
    with open(path) as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#") and "=" in line:
                key, _, val = line.partition("=")
                os.environ.setdefault(key.strip(), val.strip().strip("'\""))


def portfolio_path() -> str:
    return os.environ.get(PORTFOLIO_ENV) or PORTFOLIO_PATH


def _parse_asset(idx: int, raw: Any) -> AssetDescriptor:
    where = f"assets[{idx}]"
    if not isinstance(raw, dict):
        raise ConfigError(f"{where}: expected a table")

    kind_raw = raw.get("kind")
    try:
        kind = AssetKind(str(kind_raw).lower())
    except ValueError:
        valid = ", ".join(k.value for k in AssetKind)
        raise ConfigError(f"{where}: unknown kind {kind_raw!r} (expected one of {valid})") from None

    symbol = raw.get("symbol")
    if not isinstance(symbol, str) or not symbol.strip():
        raise ConfigError(f"{where}: symbol must be a non-empty string")

    quantity = raw.get("quantity")
    if isinstance(quantity, bool) or not isinstance(quantity, (int, float)):
        raise ConfigError(f"{where}: quantity must be a number")
    if not math.isfinite(quantity):
        raise ConfigError(f"{where}: quantity must be finite")

    api = raw.get("api")
    if api is not None and (not isinstance(api, str) or not api.strip()):
        raise ConfigError(f"{where}: api must be a non-empty string")

    return AssetDescriptor(
        kind=kind,
        symbol=symbol.strip(),
        quantity=float(quantity),
        override_endpoint=api.strip() if api else None,
    )


def load_portfolio(path: str) -> List[AssetDescriptor]:
    """Parse a TOML portfolio file into asset descriptors.

    Any problem with the file rejects the whole portfolio; there is no
    partial load.
    """
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError:
        raise ConfigError(f"{path} not found") from None
    except OSError as e:
        raise ConfigError(f"reading {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"parsing {path}: {e}") from e

    assets = data.get("assets")
    if assets is None:
        raise ConfigError(f"{path}: no [[assets]] entries")
    if not isinstance(assets, list):
        raise ConfigError(f"{path}: 'assets' must be an array of tables")

    return [_parse_asset(i, raw) for i, raw in enumerate(assets)]
