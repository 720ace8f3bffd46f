"""Remote OS identity: parse ``/etc/os-release`` and normalise it.

Provisioning scripts only care about three variables (``OSTYP``, ``OSREL``,
``OSMIR``).  Parsing and mapping are pure; :class:`OsProber` adds the remote read.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from enum import Enum
from typing import TYPE_CHECKING

from fleetmux.core.exceptions import RemoteConnectionError
from fleetmux.core.logging import get_logger
from fleetmux.schemas.osinfo import UNKNOWN, OsIdentity

if TYPE_CHECKING:
    from fleetmux.remote.executor import RemoteExecutor

logger = get_logger(__name__)

OS_RELEASE_PATH = "/etc/os-release"

_RELEASE_LINE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)=(.*?)\s*$")


class Distribution(str, Enum):
    DEBIAN = "debian"
    UBUNTU = "ubuntu"
    ALPINE = "alpine"


DEFAULT_MIRRORS: dict[Distribution, str] = {
    Distribution.DEBIAN: "deb.debian.org",
    Distribution.UBUNTU: "archive.ubuntu.com",
    Distribution.ALPINE: "dl-cdn.alpinelinux.org",
}

# Keys tried in order for OSREL
RELEASE_KEYS: dict[Distribution, tuple[str, ...]] = {
    Distribution.DEBIAN: ("VERSION_CODENAME", "VERSION_ID"),
    Distribution.UBUNTU: ("VERSION_CODENAME", "VERSION_ID"),
    Distribution.ALPINE: ("VERSION_ID",),
}


def parse_os_release(text: str) -> dict[str, str]:
    """Parse ``KEY=value`` / ``KEY="value"`` lines; anything else is ignored."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        if line.lstrip().startswith("#"):
            continue
        match = _RELEASE_LINE.match(line)
        if not match:
            continue
        key, value = match.groups()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        values[key] = value
    return values


def map_os_identity(release: Mapping[str, str] | None) -> OsIdentity:
    """Project parsed os-release values onto OSTYP / OSREL / OSMIR."""
    if not release:
        return OsIdentity()

    try:
        distro = Distribution(release.get("ID", "").strip().lower())
    except ValueError:
        return OsIdentity()

    osrel = next(
        (release[key] for key in RELEASE_KEYS[distro] if release.get(key)),
        UNKNOWN,
    )
    return OsIdentity(ostyp=distro.value, osrel=osrel, osmir=DEFAULT_MIRRORS[distro])


class OsProber:
    def __init__(self, executor: RemoteExecutor) -> None:
        self.executor = executor

    async def probe(self, alias: str) -> OsIdentity:
        """Detect the OS of *alias*; any detection failure yields all-unknown."""
        try:
            identity = await self.executor.detect_remote_os(alias)
        except RemoteConnectionError as exc:
            logger.warning("OS detection failed", alias=alias, error=str(exc))
            identity = None

        if identity is None:
            return OsIdentity()
        logger.debug("OS detected", alias=alias, **identity.as_env())
        return identity
