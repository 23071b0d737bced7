"""Wire messages exchanged with devices.

Device → Server:
    connect, heartbeat (anything else decodes to :class:`UnknownMessage`)

Server → Device:
    connected, command/ping, unicast command, broadcast relay

Decoding never raises: a frame that is not a JSON object with a string
``type`` comes back as a :class:`MalformedMessage` describing why.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Literal, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)


# ── Inbound (device → server) ─────────────────────────────────────


class _Inbound(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ConnectMessage(_Inbound):
    """Registration.  Older firmware sends ``ip`` / ``location_device``."""

    type: Literal["connect"]
    address: str | None = Field(
        default=None, validation_alias=AliasChoices("address", "ip")
    )
    label: str | None = Field(
        default=None, validation_alias=AliasChoices("label", "location_device")
    )

    @field_validator("address", "label", mode="before")
    @classmethod
    def _scalar_to_str(cls, value):
        # Firmware may send numbers or booleans; falsy ones count as absent.
        if isinstance(value, (bool, int, float)):
            return str(value) if value else None
        return value


class HeartbeatMessage(_Inbound):
    type: Literal["heartbeat"]


class UnknownMessage(_Inbound):
    type: str


@dataclass(frozen=True)
class MalformedMessage:
    """A frame that could not be decoded."""

    reason: str
    raw: str


DeviceMessage = Union[ConnectMessage, HeartbeatMessage, UnknownMessage]

_VARIANTS: dict[str, type[_Inbound]] = {
    "connect": ConnectMessage,
    "heartbeat": HeartbeatMessage,
}


def decode_device_message(raw: str | bytes) -> DeviceMessage | MalformedMessage:
    """Decode one text frame from a device."""
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return MalformedMessage("not valid UTF-8", repr(raw[:64]))

    try:
        data = json.loads(raw)
    except ValueError as exc:
        return MalformedMessage(f"invalid JSON: {exc}", raw)

    if not isinstance(data, dict):
        return MalformedMessage("payload is not an object", raw)
    msg_type = data.get("type")
    if not isinstance(msg_type, str):
        return MalformedMessage("missing or non-string 'type'", raw)

    model = _VARIANTS.get(msg_type, UnknownMessage)
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        return MalformedMessage(f"invalid '{msg_type}' fields: {exc.error_count()} error(s)", raw)


# ── Outbound (server → device) ────────────────────────────────────


class _Outbound(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class ConnectedMessage(_Outbound):
    type: Literal["connected"] = "connected"
    id: str


class PingCommand(_Outbound):
    type: Literal["command"] = "command"
    action: Literal["ping"] = "ping"


class UnicastCommand(_Outbound):
    """Point-to-point command text for a single device."""

    id: str
    message: str


class BroadcastRelay(_Outbound):
    """Operator chat text relayed to every device."""

    from_: str = Field(alias="from")
    sender: str
    message: str


OutboundMessage = Union[ConnectedMessage, PingCommand, UnicastCommand, BroadcastRelay]
