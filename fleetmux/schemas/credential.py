"""Schemas for mailbox credential provisioning."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class ProvisionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    alias: str
    identity: str
    rotated_at: datetime | None = None
    # Only set when the password was generated for the caller
    generated_password: str | None = None
    error: str | None = None
    dry_run: bool = False
    description: str | None = None


class CredentialOut(BaseModel):
    """Local credential row without the secret."""

    model_config = ConfigDict(from_attributes=True)

    email: str
    host_alias: str
    vhost_domain: str
    hint: str | None = None
    is_active: bool
    last_rotated_at: datetime
    created_at: datetime | None = None
