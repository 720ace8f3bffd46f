"""Schemas for host descriptors resolved from an alias."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class HostDescriptor(BaseModel):
    """Read-only connection parameters for one alias."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    # no leading "-": the alias is passed to ssh as an argument
    alias: str = Field(min_length=1, pattern=r"^[A-Za-z0-9_.][^/\s]*$")
    hostname: str = Field(min_length=1)
    port: int = Field(default=22, ge=1, le=65535)
    user: str = Field(default="root", min_length=1)
    identity_file: str | None = None
    jump_host: str | None = None
    is_active: bool = True
    is_reachable: bool | None = None

    @property
    def is_root_login(self) -> bool:
        return self.user == "root"


class HostOut(HostDescriptor):
    description: str | None = None
    last_tested_at: datetime | None = None
    last_error: str | None = None
