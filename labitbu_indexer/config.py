"""Shared configuration loader for the labitbu indexer."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

import yaml


class ConfigurationError(RuntimeError):
    """Raised when configuration is invalid."""


DEFAULT_CONFIG_PATH = Path.home() / ".labitbu.yaml"
_CONFIG_PATH_OVERRIDE: Path | None = None

DEFAULT_ORD_URL = "http://0.0.0.0"
DEFAULT_ESPLORA_URL = "https://mempool.space/api"
DEFAULT_DB_PATH = Path("data") / "labitbu.db"
GENESIS_HEIGHT = 908070


@dataclass
class RPCConfig:
    """Connection details for the Bitcoin Core JSON-RPC endpoint."""

    user: str | None = None
    password: str | None = None
    host: str = "127.0.0.1"
    port: int = 8332
    use_https: bool = False

    @property
    def base_url(self) -> str:
        scheme = "https" if self.use_https else "http"
        return f"{scheme}://{self.host}:{self.port}"

    def require_credentials(self) -> None:
        if not self.user or not self.password:
            raise ConfigurationError(
                "RPC credentials must be provided via LABITBU_RPC_* environment variables or a config file"
            )


@dataclass
class IndexerConfig:
    """Everything the indexer needs to reach its services and its database."""

    rpc: RPCConfig = field(default_factory=RPCConfig)
    ord_url: str = DEFAULT_ORD_URL
    esplora_url: str = DEFAULT_ESPLORA_URL
    db_path: Path = DEFAULT_DB_PATH
    start_height: int = GENESIS_HEIGHT
    poll_interval: float = 1.0
    error_retry_delay: float = 5.0
    lookup_timeout: float = 10.0
    tip_timeout: float = 30.0


def set_default_config_path(path: str | Path | None) -> None:
    """Remember a user-supplied config path for future loads."""

    global _CONFIG_PATH_OVERRIDE
    _CONFIG_PATH_OVERRIDE = Path(path).expanduser() if path else None


def _load_config_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigurationError(f"Config file not found: {path}")
        return {}

    try:
        loaded = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
        raise ConfigurationError(f"Invalid YAML in config file {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Expected {path} to contain a YAML mapping")
    return loaded


def _section(file_config: Mapping[str, Any], name: str, path: Path) -> dict[str, Any]:
    section = file_config.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Expected '{name}' to be a mapping in {path}")
    return section


def _coerce_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "y", "on"}:
            return True
        if normalized in {"0", "false", "no", "n", "off"}:
            return False
    return None


def _coerce_int(raw: Any, *, source: str) -> int | None:
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid integer in {source}: {raw}") from exc


def _coerce_float(raw: Any, *, source: str) -> float | None:
    if raw is None:
        return None
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid number in {source}: {raw}") from exc


def _first_value(*values: Any, default: Any = None) -> Any:
    for value in values:
        if value is not None:
            return value
    return default


def _parse_endpoint(raw: str | None) -> tuple[str | None, int | None, bool | None]:
    if not raw:
        return None, None, None
    parsed = urlparse(raw)
    if not parsed.scheme and not parsed.hostname:
        raise ConfigurationError(f"Invalid RPC endpoint URL: {raw}")
    host = parsed.hostname or None
    port = parsed.port
    use_https = parsed.scheme.lower() == "https" if parsed.scheme else None
    return host, port, use_https


def load_indexer_config(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> IndexerConfig:
    """Load indexer configuration from overrides, environment and optional YAML."""

    env_map = os.environ if env is None else env
    explicit_path = config_path is not None or _CONFIG_PATH_OVERRIDE is not None
    path = (
        Path(config_path).expanduser()
        if config_path is not None
        else _CONFIG_PATH_OVERRIDE or DEFAULT_CONFIG_PATH
    )

    file_config = _load_config_file(path, required=explicit_path)
    rpc_section = _section(file_config, "rpc", path)
    ord_section = _section(file_config, "ord", path)
    esplora_section = _section(file_config, "esplora", path)
    indexer_section = _section(file_config, "indexer", path)

    override_map = dict(overrides or {})

    endpoint_host, endpoint_port, endpoint_use_https = _parse_endpoint(
        _first_value(
            override_map.get("rpc_endpoint"),
            env_map.get("LABITBU_RPC_URL"),
            rpc_section.get("endpoint"),
        )
    )

    rpc = RPCConfig(
        user=_first_value(
            override_map.get("rpc_user"), env_map.get("LABITBU_RPC_USER"), rpc_section.get("user")
        ),
        password=_first_value(
            override_map.get("rpc_password"),
            env_map.get("LABITBU_RPC_PASSWORD"),
            rpc_section.get("password"),
        ),
        host=_first_value(
            override_map.get("rpc_host"),
            endpoint_host,
            env_map.get("LABITBU_RPC_HOST"),
            rpc_section.get("host"),
            "127.0.0.1",
        ),
        port=_first_value(
            _coerce_int(override_map.get("rpc_port"), source="overrides"),
            endpoint_port,
            _coerce_int(env_map.get("LABITBU_RPC_PORT"), source="environment"),
            _coerce_int(rpc_section.get("port"), source=f"{path} rpc.port"),
            8332,
        ),
        use_https=bool(
            _first_value(
                _coerce_bool(override_map.get("rpc_use_https")),
                endpoint_use_https,
                _coerce_bool(env_map.get("LABITBU_RPC_USE_HTTPS")),
                _coerce_bool(rpc_section.get("use_https")),
                False,
            )
        ),
    )

    db_path = _first_value(
        override_map.get("db_path"),
        env_map.get("LABITBU_DB_PATH"),
        indexer_section.get("db_path"),
        DEFAULT_DB_PATH,
    )

    return IndexerConfig(
        rpc=rpc,
        ord_url=str(
            _first_value(
                override_map.get("ord_url"),
                env_map.get("LABITBU_ORD_URL"),
                ord_section.get("url"),
                DEFAULT_ORD_URL,
            )
        ).rstrip("/"),
        esplora_url=str(
            _first_value(
                override_map.get("esplora_url"),
                env_map.get("LABITBU_ESPLORA_URL"),
                esplora_section.get("url"),
                DEFAULT_ESPLORA_URL,
            )
        ).rstrip("/"),
        db_path=Path(db_path).expanduser(),
        start_height=_first_value(
            _coerce_int(override_map.get("start_height"), source="overrides"),
            _coerce_int(env_map.get("LABITBU_START_HEIGHT"), source="environment"),
            _coerce_int(indexer_section.get("start_height"), source=f"{path} indexer.start_height"),
            GENESIS_HEIGHT,
        ),
        poll_interval=_first_value(
            _coerce_float(override_map.get("poll_interval"), source="overrides"),
            _coerce_float(env_map.get("LABITBU_POLL_INTERVAL"), source="environment"),
            _coerce_float(indexer_section.get("poll_interval"), source=f"{path} indexer.poll_interval"),
            1.0,
        ),
        error_retry_delay=_first_value(
            _coerce_float(override_map.get("error_retry_delay"), source="overrides"),
            _coerce_float(env_map.get("LABITBU_ERROR_RETRY_DELAY"), source="environment"),
            _coerce_float(
                indexer_section.get("error_retry_delay"), source=f"{path} indexer.error_retry_delay"
            ),
            5.0,
        ),
        lookup_timeout=_first_value(
            _coerce_float(indexer_section.get("lookup_timeout"), source=f"{path} indexer.lookup_timeout"),
            10.0,
        ),
        tip_timeout=_first_value(
            _coerce_float(indexer_section.get("tip_timeout"), source=f"{path} indexer.tip_timeout"),
            30.0,
        ),
    )
