"""Runtime configuration for the bridge, read from environment variables."""

from __future__ import annotations

import os

from pydantic import BaseModel, ConfigDict, Field

_TRUE_VALUES = {"1", "true", "yes", "on"}


class BridgeSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    webhook_url: str = Field(min_length=1)
    bridge_url: str = "ws://127.0.0.1:8081"
    bridge_token: str | None = None
    host: str = "0.0.0.0"
    port: int = Field(default=3001, ge=1, le=65535)
    log_level: str = "info"

    relay_timeout: float = Field(default=10.0, gt=0)
    relay_max_retries: int = Field(default=0, ge=0)
    send_timeout: float = Field(default=20.0, gt=0)

    reconnect_delay: float = Field(default=5.0, ge=0)
    setup_retry_delay: float = Field(default=10.0, ge=0)
    reconnect_backoff_factor: float = Field(default=1.0, ge=1.0)
    reconnect_max_delay: float = Field(default=60.0, gt=0)
    logout_on_shutdown: bool = True

    api_token: str | None = None
    send_rate_limit: int = Field(default=60, ge=1)
    audit_log_path: str | None = None

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> BridgeSettings:
        """Build settings from the process environment.

        Only variables that are set (and non-empty) override the defaults.
        ``WEBHOOK_URL`` is required; a missing value raises ``KeyError``.
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {"webhook_url": env["WEBHOOK_URL"]}

        optional = {
            "bridge_url": "BRIDGE_URL",
            "bridge_token": "BRIDGE_TOKEN",
            "host": "HOST",
            "port": "PORT",
            "log_level": "LOG_LEVEL",
            "relay_timeout": "RELAY_TIMEOUT",
            "relay_max_retries": "RELAY_MAX_RETRIES",
            "send_timeout": "SEND_TIMEOUT",
            "reconnect_delay": "RECONNECT_DELAY",
            "setup_retry_delay": "SETUP_RETRY_DELAY",
            "reconnect_backoff_factor": "RECONNECT_BACKOFF_FACTOR",
            "reconnect_max_delay": "RECONNECT_MAX_DELAY",
            "api_token": "API_TOKEN",
            "send_rate_limit": "SEND_RATE_LIMIT",
            "audit_log_path": "AUDIT_LOG_PATH",
        }
        for field_name, var in optional.items():
            raw = env.get(var, "").strip()
            if raw:
                values[field_name] = raw

        logout = env.get("LOGOUT_ON_SHUTDOWN", "").strip().lower()
        if logout:
            values["logout_on_shutdown"] = logout in _TRUE_VALUES

        return cls.model_validate(values)
