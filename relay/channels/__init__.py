"""Remote channel factory.

Usage::

    from relay.channels import get_channel
    channel = get_channel(config)      # None when RELAY_CHANNEL=none
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import (
    ChannelAuthError,
    ChannelConnectionError,
    ChannelError,
    ChannelMessage,
    RemoteChannel,
)
from .telegram import TelegramChannel

if TYPE_CHECKING:
    from relay.config import RelayConfig

__all__ = [
    "ChannelAuthError",
    "ChannelConnectionError",
    "ChannelError",
    "ChannelMessage",
    "RemoteChannel",
    "TelegramChannel",
    "get_channel",
]

_CHANNELS = ("telegram", "none")


def get_channel(config: RelayConfig) -> RemoteChannel | None:
    """Build the channel named by ``config.channel``."""
    name = config.channel.lower()
    if name == "none":
        return None
    if name == "telegram":
        return TelegramChannel(
            token=config.telegram_token,
            base_url=config.telegram_api_url,
        )
    raise ValueError(f"Unknown channel '{name}'. Choose from: {list(_CHANNELS)}")
