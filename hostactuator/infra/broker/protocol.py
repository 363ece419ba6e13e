"""Broker wire protocol: JSON text frames over the actuator WebSocket."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union
from urllib.parse import quote

from hostactuator.models.outcome import ResultStatus

ACTUATOR_ROLE = "actuator"


class ProtocolError(ValueError):
    """An inbound frame is not valid JSON or lacks required fields."""


# --- Broker -> actuator ---


@dataclass(frozen=True)
class CommandDelivery:
    id: str
    capability: str
    payload: Any = None


@dataclass(frozen=True)
class Ping:
    ts: Any = None


@dataclass(frozen=True)
class BrokerError:
    code: str
    message: str
    ref_id: str | None = None


@dataclass(frozen=True)
class Wake:
    text: str
    source: str = ""
    ts: Any = None


@dataclass(frozen=True)
class UnknownMessage:
    type: str
    raw: dict[str, Any] = field(default_factory=dict)


Inbound = Union[CommandDelivery, Ping, BrokerError, Wake, UnknownMessage]


# --- Actuator -> broker ---


@dataclass(frozen=True)
class CommandResult:
    id: str
    status: ResultStatus
    result: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failed(cls, command_id: str, error: str) -> CommandResult:
        return cls(id=command_id, status=ResultStatus.FAILED, result={"error": error})

    def to_dict(self) -> dict:
        return {
            "type": "command_result",
            "id": self.id,
            "status": self.status.value,
            "result": self.result,
        }


@dataclass(frozen=True)
class Pong:
    ts: Any = None

    def to_dict(self) -> dict:
        return {"type": "pong", "ts": self.ts}


Outbound = Union[CommandResult, Pong]


def encode(msg: Outbound) -> str:
    """Encode an outbound message as a JSON text frame."""
    return json.dumps(msg.to_dict(), default=str)


def _require(data: dict, key: str, kind: type = str) -> Any:
    value = data.get(key)
    if not isinstance(value, kind):
        raise ProtocolError(f"{data.get('type')} message missing '{key}'")
    return value


def decode(raw: str | bytes) -> Inbound:
    """Decode a text frame into an inbound message.

    Unrecognized message types come back as UnknownMessage rather than
    raising, so the caller can log and ignore them.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolError(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ProtocolError("Message must be a JSON object")

    msg_type = data.get("type")
    if msg_type == "command_delivery":
        return CommandDelivery(
            id=_require(data, "id"),
            capability=_require(data, "capability"),
            payload=data.get("payload"),
        )
    if msg_type == "ping":
        return Ping(ts=data.get("ts"))
    if msg_type == "error":
        return BrokerError(
            code=str(data.get("code", "")),
            message=str(data.get("message", "")),
            ref_id=data.get("ref_id"),
        )
    if msg_type == "wake":
        return Wake(
            text=str(data.get("text", "")),
            source=str(data.get("source", "")),
            ts=data.get("ts"),
        )
    return UnknownMessage(type=str(msg_type), raw=data)


def build_socket_url(broker_url: str, token: str, actuator_id: str) -> str:
    """Derive the WebSocket endpoint from the broker's HTTP base URL."""
    base = broker_url.rstrip("/")
    if base.startswith("http"):
        base = "ws" + base[len("http"):]
    return (
        f"{base}/ws?token={quote(token, safe='')}"
        f"&role={ACTUATOR_ROLE}&actuator_id={quote(actuator_id, safe='')}"
    )
