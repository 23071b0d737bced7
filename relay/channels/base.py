"""Abstract remote channel interface.

A remote channel is the chat platform the operator uses.  Any backend
(Telegram today) implements this interface; the bridge only ever talks to
it through these methods.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import AsyncIterator


class ChannelError(Exception):
    """Base error for remote channel failures."""


class ChannelConnectionError(ChannelError):
    """Raised when the chat platform is network-unreachable."""


class ChannelAuthError(ChannelError):
    """Raised when the platform rejects our credentials."""


@dataclass(frozen=True)
class ChannelMessage:
    """One inbound text message from the chat platform."""

    chat_id: str
    sender_id: str
    text: str


class RemoteChannel(abc.ABC):
    """Opaque inbound/outbound chat transport."""

    name: str = "base"

    @abc.abstractmethod
    async def verify(self) -> dict:
        """Check credentials.  Returns the platform's description of us."""
        raise NotImplementedError

    @abc.abstractmethod
    async def resolve(self, target: str) -> str:
        """Resolve a username or chat id to the canonical chat id."""
        raise NotImplementedError

    @abc.abstractmethod
    async def send_message(self, chat_id: str, text: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def messages(self) -> AsyncIterator[ChannelMessage]:
        """Yield inbound messages until cancelled.

        Transient network failures are retried internally; only
        :class:`ChannelAuthError` ends the stream.
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release any network resources."""
