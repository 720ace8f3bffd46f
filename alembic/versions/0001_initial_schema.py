"""Initial schema: ssh_hosts, mail_credentials.

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    # ── ssh_hosts ────────────────────────────────────────────────────────────
    op.create_table(
        "ssh_hosts",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("alias", sa.String(100), nullable=False),
        sa.Column("hostname", sa.String(255), nullable=False),
        sa.Column("port", sa.Integer(), nullable=False, server_default="22"),
        sa.Column("user", sa.String(100), nullable=False, server_default="root"),
        sa.Column("identity_file", sa.String(512), nullable=True),
        sa.Column("jump_host", sa.String(100), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_reachable", sa.Boolean(), nullable=True),
        sa.Column("last_tested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_ssh_hosts"),
    )
    op.create_index("ix_ssh_hosts_alias", "ssh_hosts", ["alias"], unique=True)

    # ── mail_credentials ─────────────────────────────────────────────────────
    op.create_table(
        "mail_credentials",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("host_alias", sa.String(100), nullable=False),
        sa.Column("vhost_domain", sa.String(255), nullable=False),
        sa.Column("password_enc", sa.Text(), nullable=False),
        sa.Column("hint", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_rotated_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_mail_credentials"),
    )
    op.create_index("ix_mail_credentials_email", "mail_credentials", ["email"], unique=True)
    op.create_index("ix_mail_credentials_host_alias", "mail_credentials", ["host_alias"])


def downgrade() -> None:
    op.drop_index("ix_mail_credentials_host_alias", table_name="mail_credentials")
    op.drop_index("ix_mail_credentials_email", table_name="mail_credentials")
    op.drop_table("mail_credentials")
    op.drop_index("ix_ssh_hosts_alias", table_name="ssh_hosts")
    op.drop_table("ssh_hosts")
