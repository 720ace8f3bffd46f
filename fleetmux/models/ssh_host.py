"""SshHost model: one row per fleet node alias the controller can reach."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fleetmux.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class SshHost(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "ssh_hosts"

    # Logical name used everywhere else (socket names, tunnel ports)
    alias: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)

    # Connection parameters
    hostname: Mapped[str] = mapped_column(String(255), nullable=False)
    port: Mapped[int] = mapped_column(Integer, nullable=False, default=22)
    user: Mapped[str] = mapped_column(String(100), nullable=False, default="root")
    identity_file: Mapped[str | None] = mapped_column(String(512), nullable=True)
    # Alias of another ssh_hosts row used as ProxyJump
    jump_host: Mapped[str | None] = mapped_column(String(100), nullable=True)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Status
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_reachable: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    last_tested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<SshHost alias={self.alias!r} hostname={self.hostname!r}>"
