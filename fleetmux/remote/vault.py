"""Mailbox credentials: hash-only on the vnode, encrypted cleartext on the controller.

``provision`` and ``rotate`` hash the password locally (Dovecot ``SHA512-CRYPT``),
write the hash into the vnode's ``vmails`` table through a parameterised script,
then store the Fernet-encrypted cleartext in ``mail_credentials``.  There is no
transaction spanning the two hosts: when the local write fails after the remote
one succeeded, :class:`PartialProvisionError` is raised so an operator can
reconcile.  Nothing here ever reads a password back from the vnode.
"""

from __future__ import annotations

import secrets
import string
from collections.abc import Callable
from datetime import datetime, timezone

from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fleetmux.core.config import Settings
from fleetmux.core.crypto import decrypt, encrypt
from fleetmux.core.exceptions import PartialProvisionError
from fleetmux.core.logging import get_logger
from fleetmux.models.mail_credential import MailCredential
from fleetmux.remote.executor import RemoteExecutor
from fleetmux.schemas.credential import CredentialOut, ProvisionResult
from fleetmux.schemas.execution import ExecutionResult

logger = get_logger(__name__)

PASSWORD_ALPHABET = string.ascii_letters + string.digits

# Exit codes of the remote scripts below
EXIT_USER_EXISTS = 3
EXIT_USER_MISSING = 4

_SQL_QUOTE = """\
sql_quote() {
    printf '%s' "$1" | sed "s/'/''/g"
}
"""

PROVISION_SCRIPT = _SQL_QUOTE + """\
db="$1"
user="$2"
hash="$3"
uid="${4:-}"
gid="${5:-}"
domain="${user#*@}"
local_part="${user%@*}"

if [ -z "$uid" ] || [ -z "$gid" ]; then
    uid="$(stat -c %u "/srv/$domain")"
    gid="$(stat -c %g "/srv/$domain")"
fi
case "$uid$gid" in
    *[!0-9]*) echo "Invalid uid/gid: $uid/$gid" >&2; exit 2 ;;
esac

q_user="$(sql_quote "$user")"
count="$(sqlite3 "$db" "SELECT COUNT(*) FROM vmails WHERE user = '$q_user';")"
if [ "$count" != "0" ]; then
    echo "Mailbox $user already exists" >&2
    exit 3
fi

sqlite3 "$db" "INSERT INTO vmails (user, password, maildir, uid, gid, active, created_at, updated_at) \
VALUES ('$q_user', '$(sql_quote "$hash")', '$(sql_quote "$domain/msg/$local_part")', $uid, $gid, 1, \
datetime('now'), datetime('now'));"
echo "Created mailbox $user"
"""

ROTATE_SCRIPT = _SQL_QUOTE + """\
db="$1"
user="$2"
hash="$3"

q_user="$(sql_quote "$user")"
count="$(sqlite3 "$db" "SELECT COUNT(*) FROM vmails WHERE user = '$q_user';")"
if [ "$count" = "0" ]; then
    echo "Mailbox $user does not exist" >&2
    exit 4
fi

sqlite3 "$db" "UPDATE vmails SET password = '$(sql_quote "$hash")', updated_at = datetime('now') \
WHERE user = '$q_user';"
echo "Updated password for $user"
"""


def generate_password(length: int = 16) -> str:
    if length < 8:
        raise ValueError("Generated passwords must be at least 8 characters")
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def mail_domain(identity: str) -> str:
    local_part, sep, domain = identity.partition("@")
    if not sep or not local_part or not domain:
        raise ValueError(f"Mailbox identity must look like user@domain: {identity!r}")
    return domain


class DovecotHasher:
    """``{SHA512-CRYPT}`` hashes as produced by ``doveadm pw -s SHA512-CRYPT``."""

    scheme = "SHA512-CRYPT"

    def __init__(self, rounds: int = 5000) -> None:
        self._context = CryptContext(
            schemes=["sha512_crypt"],
            sha512_crypt__default_rounds=rounds,
        )

    @property
    def prefix(self) -> str:
        return f"{{{self.scheme}}}"

    def hash(self, password: str) -> str:
        return self.prefix + self._context.hash(password)

    def verify(self, password: str, stored: str) -> bool:
        if stored.startswith(self.prefix):
            stored = stored[len(self.prefix):]
        try:
            return self._context.verify(password, stored)
        except ValueError:
            return False


class CredentialStore:
    """Local, encrypted-at-rest copy of mailbox passwords."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        secret_key: str | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._secret_key = secret_key

    async def _row(self, session: AsyncSession, email: str) -> MailCredential | None:
        return (
            await session.execute(select(MailCredential).where(MailCredential.email == email))
        ).scalar_one_or_none()

    async def save(
        self,
        email: str,
        password: str,
        host_alias: str,
        vhost_domain: str,
        hint: str | None = None,
        rotated_at: datetime | None = None,
    ) -> CredentialOut:
        """Insert or overwrite the credential for *email*."""
        async with self._session_factory() as session:
            row = await self._row(session, email)
            if row is None:
                row = MailCredential(email=email)
                session.add(row)
            row.host_alias = host_alias
            row.vhost_domain = vhost_domain
            row.password_enc = encrypt(password, self._secret_key)
            if hint is not None:
                row.hint = hint
            row.is_active = True
            row.last_rotated_at = rotated_at or _utcnow()
            await session.commit()
            await session.refresh(row)
            return CredentialOut.model_validate(row)

    async def get(self, email: str) -> CredentialOut | None:
        async with self._session_factory() as session:
            row = await self._row(session, email)
            return CredentialOut.model_validate(row) if row is not None else None

    async def reveal(self, email: str) -> str | None:
        """Decrypt the stored cleartext (local store only)."""
        async with self._session_factory() as session:
            row = await self._row(session, email)
        if row is None:
            return None
        logger.info("Credential revealed", email=email)
        return decrypt(row.password_enc, self._secret_key)

    async def deactivate(self, email: str) -> bool:
        async with self._session_factory() as session:
            row = await self._row(session, email)
            if row is None:
                return False
            row.is_active = False
            await session.commit()
        return True


class CredentialVault:
    def __init__(
        self,
        executor: RemoteExecutor,
        store: CredentialStore,
        hasher: DovecotHasher | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.executor = executor
        self.store = store
        self.hasher = hasher or DovecotHasher()
        self.settings = settings or executor.settings
        self._clock = clock

    @staticmethod
    def _remote_error(alias: str, identity: str, result: ExecutionResult) -> str:
        if result.exit_code == EXIT_USER_EXISTS:
            return f"Mailbox {identity} already exists on {alias}"
        if result.exit_code == EXIT_USER_MISSING:
            return f"Mailbox {identity} does not exist on {alias}"
        return result.error or f"Remote update failed on {alias}"

    async def _store_locally(
        self,
        alias: str,
        identity: str,
        password: str,
        hint: str | None,
        rotated_at: datetime,
    ) -> None:
        try:
            await self.store.save(
                identity,
                password,
                host_alias=alias,
                vhost_domain=mail_domain(identity),
                hint=hint,
                rotated_at=rotated_at,
            )
        except Exception as exc:
            logger.error(
                "Local credential write failed after remote write",
                alias=alias,
                identity=identity,
                error=str(exc),
            )
            raise PartialProvisionError(
                f"Remote hash for {identity} written on {alias} but the local copy was not saved: {exc}",
                identity=identity,
                alias=alias,
                remote_written=True,
                local_written=False,
            ) from exc

    async def provision(
        self,
        alias: str,
        identity: str,
        password: str | None = None,
        uid: int | None = None,
        gid: int | None = None,
        hint: str | None = None,
        dry_run: bool = False,
    ) -> ProvisionResult:
        """Create the mailbox on *alias* and keep the cleartext locally.

        A password is generated when none is given and handed back once in
        ``generated_password``.  uid/gid default to the owner of ``/srv/<domain>``.
        """
        domain = mail_domain(identity)
        generated = password is None
        secret = generate_password() if password is None else password

        if dry_run:
            description = f"[DRY RUN] Would create mailbox {identity} on {alias} (maildir {domain}/msg/)"
            logger.info("[DRY RUN] Would provision mailbox", alias=alias, identity=identity)
            return ProvisionResult(
                success=True, alias=alias, identity=identity, dry_run=True, description=description
            )

        result = await self.executor.execute_script(
            alias,
            PROVISION_SCRIPT,
            [
                self.settings.remote_mail_db,
                identity,
                self.hasher.hash(secret),
                "" if uid is None else uid,
                "" if gid is None else gid,
            ],
            as_root=True,
        )
        if not result.success:
            error = self._remote_error(alias, identity, result)
            logger.warning("Mailbox provisioning failed", alias=alias, identity=identity, exit_code=result.exit_code)
            return ProvisionResult(success=False, alias=alias, identity=identity, error=error)

        rotated_at = self._clock()
        await self._store_locally(alias, identity, secret, hint, rotated_at)
        logger.info("Mailbox provisioned", alias=alias, identity=identity, generated=generated)
        return ProvisionResult(
            success=True,
            alias=alias,
            identity=identity,
            rotated_at=rotated_at,
            generated_password=secret if generated else None,
        )

    async def rotate(
        self,
        alias: str,
        identity: str,
        new_password: str | None = None,
        dry_run: bool = False,
    ) -> ProvisionResult:
        """Replace the password on both sides and stamp the rotation time."""
        mail_domain(identity)
        generated = new_password is None
        secret = generate_password() if new_password is None else new_password

        if dry_run:
            logger.info("[DRY RUN] Would rotate mailbox password", alias=alias, identity=identity)
            return ProvisionResult(
                success=True,
                alias=alias,
                identity=identity,
                dry_run=True,
                description=f"[DRY RUN] Would update the password of {identity} on {alias}",
            )

        result = await self.executor.execute_script(
            alias,
            ROTATE_SCRIPT,
            [self.settings.remote_mail_db, identity, self.hasher.hash(secret)],
            as_root=True,
        )
        if not result.success:
            logger.warning("Password rotation failed", alias=alias, identity=identity, exit_code=result.exit_code)
            return ProvisionResult(
                success=False,
                alias=alias,
                identity=identity,
                error=self._remote_error(alias, identity, result),
            )

        rotated_at = self._clock()
        await self._store_locally(alias, identity, secret, None, rotated_at)
        logger.info("Mailbox password rotated", alias=alias, identity=identity)
        return ProvisionResult(
            success=True,
            alias=alias,
            identity=identity,
            rotated_at=rotated_at,
            generated_password=secret if generated else None,
        )
