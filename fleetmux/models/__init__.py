"""SQLAlchemy ORM models."""

from fleetmux.models.base import Base
from fleetmux.models.mail_credential import MailCredential
from fleetmux.models.ssh_host import SshHost

__all__ = ["Base", "MailCredential", "SshHost"]
