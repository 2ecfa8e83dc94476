"""Client configuration for paysync."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from paysync._constants import (
    DEFAULT_BALANCE_FALLBACK_DELAY,
    DEFAULT_PULL_TIMEOUT,
    DEFAULT_TRANSACTIONS_FALLBACK_DELAY,
    MAX_ITEMS,
)
from paysync.exceptions import ConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class SyncConfig:
    """Client configuration.

    Parameters
    ----------
    base_url : str
        REST API base URL used by the pull fallback.
    mqtt_host : str
        Push broker host name.
    mqtt_port : int
        Push broker port.
    mqtt_tls : bool
        Wrap the broker connection in TLS.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    mqtt_topic_prefix : str
        Prefix of the per-user broker topics
        (``<prefix>/<user_id>/events`` and ``<prefix>/<user_id>/requests``).
    push_enabled : bool
        Open the push channel at all. When disabled every topic is
        populated by its pull fallback.
    balance_fallback_delay : float
        Seconds to wait for a pushed balance before pulling it.
    transactions_fallback_delay : float
        Seconds to wait for a pushed transaction list before pulling it.
    pull_timeout : float
        Upper bound in seconds for a single pull request.
    max_transactions : int
        Cap of the client-side transaction feed.
    """

    base_url: str = "http://localhost:9003/api"
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_tls: bool = False
    mqtt_keepalive: int = 60
    mqtt_topic_prefix: str = "paysync"
    push_enabled: bool = True
    balance_fallback_delay: float = DEFAULT_BALANCE_FALLBACK_DELAY
    transactions_fallback_delay: float = DEFAULT_TRANSACTIONS_FALLBACK_DELAY
    pull_timeout: float = DEFAULT_PULL_TIMEOUT
    max_transactions: int = MAX_ITEMS

    def __post_init__(self) -> None:
        if self.max_transactions <= 0:
            raise ConfigError(f"max_transactions must be positive, got {self.max_transactions}")
        if self.balance_fallback_delay < 0 or self.transactions_fallback_delay < 0:
            raise ConfigError("fallback delays must not be negative")
        if self.pull_timeout <= 0:
            raise ConfigError(f"pull_timeout must be positive, got {self.pull_timeout}")
        if not self.mqtt_topic_prefix.strip("/"):
            raise ConfigError("mqtt_topic_prefix must not be empty")

    @classmethod
    def from_env(cls, **overrides: Any) -> SyncConfig:
        """Create configuration from ``PAYSYNC_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        _ENV_STR_MAP = {
            "PAYSYNC_BASE_URL": "base_url",
            "PAYSYNC_MQTT_HOST": "mqtt_host",
            "PAYSYNC_MQTT_TOPIC_PREFIX": "mqtt_topic_prefix",
        }
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_NUMERIC_MAP: dict[str, tuple[str, type]] = {
            "PAYSYNC_MQTT_PORT": ("mqtt_port", int),
            "PAYSYNC_MQTT_KEEPALIVE": ("mqtt_keepalive", int),
            "PAYSYNC_BALANCE_FALLBACK_DELAY": ("balance_fallback_delay", float),
            "PAYSYNC_TRANSACTIONS_FALLBACK_DELAY": ("transactions_fallback_delay", float),
            "PAYSYNC_PULL_TIMEOUT": ("pull_timeout", float),
            "PAYSYNC_MAX_TRANSACTIONS": ("max_transactions", int),
        }
        for env_key, (field_name, cast) in _ENV_NUMERIC_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = cast(val)
            except ValueError as exc:
                raise ConfigError(f"{env_key} is not a valid {cast.__name__}: {val!r}") from exc

        if "mqtt_tls" not in overrides:
            config_kwargs["mqtt_tls"] = _env_bool(env.get("PAYSYNC_MQTT_TLS"), False)
        if "push_enabled" not in overrides:
            config_kwargs["push_enabled"] = _env_bool(env.get("PAYSYNC_PUSH_ENABLED"), True)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
