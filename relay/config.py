"""Relay server configuration — read from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

_TRUE = {"1", "true", "yes", "on"}


@dataclass
class RelayConfig:
    """All tunables for one relay process."""

    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    # Liveness (seconds)
    probe_interval: float = 30.0
    sweep_interval: float = 10.0
    stale_after: float = 30.0

    # Operator notifications
    notify_on_disconnect: bool = False

    # Remote channel
    channel: str = "telegram"
    telegram_token: str = ""
    telegram_api_url: str = "https://api.telegram.org"
    target_user: str = ""  # numeric Telegram user id
    target_group: str = ""

    @property
    def targets(self) -> list[str]:
        return [t for t in (self.target_user, self.target_group) if t]

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> RelayConfig:
        env = os.environ if env is None else env
        defaults = cls()
        return cls(
            host=env.get("RELAY_HOST", defaults.host),
            port=int(env.get("RELAY_PORT", env.get("PORT", defaults.port))),
            log_level=env.get("RELAY_LOG_LEVEL", defaults.log_level).upper(),
            probe_interval=float(env.get("RELAY_PROBE_INTERVAL", defaults.probe_interval)),
            sweep_interval=float(env.get("RELAY_SWEEP_INTERVAL", defaults.sweep_interval)),
            stale_after=float(env.get("RELAY_STALE_AFTER", defaults.stale_after)),
            notify_on_disconnect=(
                env.get("RELAY_NOTIFY_ON_DISCONNECT", "").strip().lower() in _TRUE
            ),
            channel=env.get("RELAY_CHANNEL", defaults.channel),
            telegram_token=env.get("TELEGRAM_BOT_TOKEN", ""),
            telegram_api_url=env.get("TELEGRAM_API_URL", defaults.telegram_api_url),
            target_user=env.get("TARGET_PERSONAL_USERNAME", ""),
            target_group=env.get("TARGET_GROUP_ID001", ""),
        )
