"""Application configuration via Pydantic BaseSettings."""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_log = logging.getLogger(__name__)

_DEFAULT_SECRETS = {
    "secret_key": "change-me-in-production",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Controller-side store (hosts, mail credentials)
    database_url: str = Field(
        default="sqlite+aiosqlite:///./fleetmux.db",
        description="Async SQLAlchemy connection URL",
    )

    # Application
    app_debug: bool = Field(default=False)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO"
    )

    # Fernet key material for secrets stored on the controller
    secret_key: str = Field(default="change-me-in-production")

    # OpenSSH transport
    ssh_binary: str = Field(default="ssh", description="OpenSSH client executable")
    mux_dir: Path = Field(
        default=Path("~/.ssh/mux"),
        description="Runtime directory holding one control socket per alias / tunnel",
    )
    ssh_connect_timeout: int = Field(default=10, description="ConnectTimeout in seconds")
    control_persist: str = Field(
        default="10m", description="ControlPersist for alias master connections"
    )
    strict_host_key_checking: str = Field(default="accept-new")

    # Timeouts (seconds)
    probe_timeout: float = Field(default=5.0, description="-O check / -O exit requests")
    master_wait_timeout: float = Field(
        default=15.0, description="Wait for a master or tunnel socket to appear"
    )
    command_timeout: float = Field(
        default=300.0, description="Default timeout for remote commands and scripts"
    )
    connect_retries: int = Field(
        default=0, ge=0, description="Extra attempts when establishing a master connection"
    )

    # Remote mail store
    remote_mail_db: str = Field(
        default="/var/lib/sqlite/sysadm/sysadm.db",
        description="SQLite file on each vnode holding the vmails table",
    )

    @field_validator("mux_dir")
    @classmethod
    def _expand_mux_dir(cls, value: Path) -> Path:
        return value.expanduser()

    @model_validator(mode="after")
    def _warn_default_secrets(self) -> "Settings":
        """Emit a warning when production-dangerous default secrets are detected."""
        if not self.app_debug:
            for field, default in _DEFAULT_SECRETS.items():
                if getattr(self, field) == default:
                    _log.warning(
                        "Default secret detected for '%s', change it before storing real credentials",
                        field,
                    )
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
