"""Schemas for SSH local-forward tunnels."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class TunnelState(str, Enum):
    INACTIVE = "inactive"
    CREATING = "creating"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


# creating -> inactive is a failed spawn; the handle can be retried afterwards
_TRANSITIONS: dict[TunnelState, frozenset[TunnelState]] = {
    TunnelState.INACTIVE: frozenset({TunnelState.CREATING, TunnelState.ACTIVE}),
    TunnelState.CREATING: frozenset({TunnelState.ACTIVE, TunnelState.INACTIVE}),
    TunnelState.ACTIVE: frozenset({TunnelState.CLOSING}),
    TunnelState.CLOSING: frozenset({TunnelState.CLOSED}),
    TunnelState.CLOSED: frozenset(),
}


def endpoint_for(local_port: int) -> str:
    return f"http://localhost:{local_port}"


class TunnelHandle(BaseModel):
    """Per-call view of one (alias, service) tunnel.

    ``state`` is what this call observed; the authoritative answer is always a fresh
    control-channel probe.
    """

    alias: str
    service: str
    local_port: int
    remote_port: int
    socket_path: Path
    state: TunnelState = TunnelState.INACTIVE
    history: list[TunnelState] = Field(default_factory=list)

    def advance(self, target: TunnelState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise ValueError(f"Illegal tunnel transition {self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)

    @property
    def endpoint(self) -> str:
        return endpoint_for(self.local_port)


class TunnelOpened(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: Literal[True] = True
    alias: str
    service: str
    local_port: int
    remote_port: int
    endpoint: str
    created: bool = False
    message: str | None = None
    handle: TunnelHandle | None = None


class TunnelFailed(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: Literal[False] = False
    alias: str
    service: str
    local_port: int
    error: str


TunnelResult = Union[TunnelOpened, TunnelFailed]


class TunnelClosed(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    alias: str
    closed: int = 0
    message: str
    handles: list[TunnelHandle] = Field(default_factory=list)


class TunnelInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    alias: str
    local_port: int
    active: bool

    @property
    def endpoint(self) -> str:
        return endpoint_for(self.local_port)
