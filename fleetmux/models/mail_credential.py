"""MailCredential model: controller-side copy of a mailbox secret.

The vnode only ever receives a SHA512-CRYPT hash; the cleartext lives here,
Fernet-encrypted, for support and recovery.
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fleetmux.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class MailCredential(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "mail_credentials"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)

    # Owning vnode alias and virtual host (both live outside this store)
    host_alias: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    vhost_domain: Mapped[str] = mapped_column(String(255), nullable=False)

    # Encrypted cleartext, never returned unless explicitly revealed
    password_enc: Mapped[str] = mapped_column(Text, nullable=False)
    hint: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_rotated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<MailCredential email={self.email!r} host={self.host_alias!r}>"
