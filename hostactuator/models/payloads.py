"""Capability payloads: validated, typed views of command_delivery payloads.

Every inbound payload is parsed here before any handler sees it. The
capability name is the discriminant; ``parse_payload`` returns one of the
frozen payload classes below or raises ``PayloadError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union


class PayloadError(ValueError):
    """A command payload is missing fields or has the wrong shape."""


class UnsupportedCapability(PayloadError):
    """The broker asked for a capability this actuator does not provide."""


class Capability(str, Enum):
    EXEC = "exec"
    PROCESS = "process"
    READ = "read"
    WRITE = "write"
    EDIT = "edit"


# Old broker builds send shell commands under these names.
LEGACY_SHELL_CAPABILITIES = frozenset({"actuator/shell", "shell"})


class ProcessAction(str, Enum):
    LIST = "list"
    POLL = "poll"
    LOG = "log"
    WRITE = "write"
    SEND_KEYS = "send-keys"
    KILL = "kill"


def _optional_str(data: dict, key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise PayloadError(f"'{key}' must be a string")
    return value


def _required_str(data: dict, key: str) -> str:
    value = _optional_str(data, key)
    if value is None:
        raise PayloadError(f"'{key}' is required")
    return value


def _optional_int(data: dict, key: str, minimum: int | None = None) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise PayloadError(f"'{key}' must be a number")
    if isinstance(value, float):
        if not value.is_integer():
            raise PayloadError(f"'{key}' must be an integer")
        value = int(value)
    if minimum is not None and value < minimum:
        raise PayloadError(f"'{key}' must be >= {minimum}")
    return value


def _optional_number(data: dict, key: str) -> float | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise PayloadError(f"'{key}' must be a number")
    if value < 0:
        raise PayloadError(f"'{key}' must not be negative")
    return float(value)


def _optional_bool(data: dict, key: str) -> bool:
    value = data.get(key, False)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise PayloadError(f"'{key}' must be a boolean")
    return value


def _optional_env(data: dict) -> dict[str, str] | None:
    env = data.get("env")
    if env is None:
        return None
    if not isinstance(env, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in env.items()
    ):
        raise PayloadError("'env' must be a mapping of strings to strings")
    return dict(env)


@dataclass(frozen=True)
class ExecPayload:
    """Shell command request."""

    command: str
    cwd: str | None = None
    timeout: float | None = None
    env: dict[str, str] | None = None
    pty: bool = False
    background: bool = False
    yield_ms: float | None = None

    def __post_init__(self) -> None:
        if not self.command:
            raise PayloadError("No command specified")
        if self.timeout is not None and self.timeout <= 0:
            raise PayloadError("'timeout' must be positive")

    @classmethod
    def from_dict(cls, data: dict) -> ExecPayload:
        return cls(
            command=_optional_str(data, "command") or "",
            cwd=_optional_str(data, "cwd"),
            timeout=_optional_number(data, "timeout"),
            env=_optional_env(data),
            pty=_optional_bool(data, "pty"),
            background=_optional_bool(data, "background"),
            yield_ms=_optional_number(data, "yieldMs"),
        )

    @classmethod
    def from_legacy(cls, data: dict) -> ExecPayload:
        """Legacy shell payloads only carry command, cwd, timeout and env."""
        return cls(
            command=_optional_str(data, "command") or "",
            cwd=_optional_str(data, "cwd"),
            timeout=_optional_number(data, "timeout"),
            env=_optional_env(data),
        )


@dataclass(frozen=True)
class ProcessPayload:
    """Session control request against an already spawned command."""

    action: ProcessAction
    session_id: str | None = None
    data: str | None = None
    keys: tuple[str, ...] | None = None
    offset: int | None = None
    limit: int | None = None

    @classmethod
    def from_dict(cls, data: dict) -> ProcessPayload:
        raw_action = data.get("action")
        try:
            action = ProcessAction(raw_action)
        except ValueError:
            raise PayloadError(f"Unknown process action: {raw_action}") from None

        keys = data.get("keys")
        if keys is not None:
            if not isinstance(keys, list) or not all(isinstance(k, str) for k in keys):
                raise PayloadError("'keys' must be a list of strings")
            keys = tuple(keys)

        return cls(
            action=action,
            session_id=_optional_str(data, "sessionId"),
            data=_optional_str(data, "data"),
            keys=keys,
            offset=_optional_int(data, "offset", minimum=1),
            limit=_optional_int(data, "limit", minimum=0),
        )


@dataclass(frozen=True)
class ReadPayload:
    path: str
    offset: int | None = None
    limit: int | None = None

    @classmethod
    def from_dict(cls, data: dict) -> ReadPayload:
        return cls(
            path=_required_str(data, "path"),
            offset=_optional_int(data, "offset", minimum=1),
            limit=_optional_int(data, "limit", minimum=0),
        )


@dataclass(frozen=True)
class WritePayload:
    path: str
    content: str

    @classmethod
    def from_dict(cls, data: dict) -> WritePayload:
        return cls(
            path=_required_str(data, "path"),
            content=_required_str(data, "content"),
        )


@dataclass(frozen=True)
class EditPayload:
    path: str
    old_text: str
    new_text: str

    def __post_init__(self) -> None:
        if not self.old_text:
            raise PayloadError("'oldText' must not be empty")

    @classmethod
    def from_dict(cls, data: dict) -> EditPayload:
        return cls(
            path=_required_str(data, "path"),
            old_text=_required_str(data, "oldText"),
            new_text=_required_str(data, "newText"),
        )


CapabilityPayload = Union[ExecPayload, ProcessPayload, ReadPayload, WritePayload, EditPayload]

_PARSERS = {
    Capability.EXEC: ExecPayload.from_dict,
    Capability.PROCESS: ProcessPayload.from_dict,
    Capability.READ: ReadPayload.from_dict,
    Capability.WRITE: WritePayload.from_dict,
    Capability.EDIT: EditPayload.from_dict,
}


def parse_payload(capability: str, payload: Any) -> CapabilityPayload:
    """Validate a raw payload for the given capability name.

    Legacy shell capabilities are rewritten into an ExecPayload. Raises
    UnsupportedCapability for unknown names and PayloadError for bad shapes.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise PayloadError("Payload must be an object")

    if capability in LEGACY_SHELL_CAPABILITIES:
        return ExecPayload.from_legacy(payload)

    try:
        cap = Capability(capability)
    except ValueError:
        raise UnsupportedCapability(f"Unsupported capability: {capability}") from None
    return _PARSERS[cap](payload)
