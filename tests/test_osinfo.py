"""Tests for os-release parsing, OS mapping and the prober."""

import pytest

from fleetmux.remote.osinfo import (
    DEFAULT_MIRRORS,
    RELEASE_KEYS,
    Distribution,
    OsProber,
    map_os_identity,
    parse_os_release,
)
from fleetmux.schemas.osinfo import OsIdentity

DEBIAN_TRIXIE = """\
PRETTY_NAME="Debian GNU/Linux 13 (trixie)"
NAME="Debian GNU/Linux"
VERSION_ID="13"
VERSION="13 (trixie)"
VERSION_CODENAME=trixie
ID=debian
HOME_URL="https://www.debian.org/"
"""

UBUNTU_NOBLE = """\
PRETTY_NAME="Ubuntu 24.04.1 LTS"
NAME="Ubuntu"
VERSION_ID="24.04"
VERSION_CODENAME=noble
ID=ubuntu
ID_LIKE=debian
UBUNTU_CODENAME=noble
"""

ALPINE = """\
NAME="Alpine Linux"
ID=alpine
VERSION_ID=3.19.1
PRETTY_NAME="Alpine Linux v3.19"
"""


def test_parse_strips_quotes_and_ignores_junk():
    parsed = parse_os_release(
        '# comment\nNAME="Debian GNU/Linux"\nnot a pair\nID=debian\nEMPTY=\nSINGLE=\'x y\'\n'
    )
    assert parsed == {"NAME": "Debian GNU/Linux", "ID": "debian", "EMPTY": "", "SINGLE": "x y"}


@pytest.mark.parametrize(
    "text, expected",
    [
        (DEBIAN_TRIXIE, OsIdentity(ostyp="debian", osrel="trixie", osmir="deb.debian.org")),
        (UBUNTU_NOBLE, OsIdentity(ostyp="ubuntu", osrel="noble", osmir="archive.ubuntu.com")),
        (ALPINE, OsIdentity(ostyp="alpine", osrel="3.19.1", osmir="dl-cdn.alpinelinux.org")),
        ("ID=arch\nBUILD_ID=rolling\n", OsIdentity()),
        ("", OsIdentity()),
    ],
)
def test_mapping_table(text, expected):
    assert map_os_identity(parse_os_release(text)) == expected


def test_unknown_identity_env():
    assert map_os_identity(None).as_env() == {"OSTYP": "unknown", "OSREL": "unknown", "OSMIR": "unknown"}


def test_debian_without_codename_falls_back_to_version_id():
    identity = map_os_identity({"ID": "debian", "VERSION_ID": "12"})
    assert identity.osrel == "12"
    assert map_os_identity({"ID": "debian"}).osrel == "unknown"


def test_tables_cover_every_distribution():
    assert set(DEFAULT_MIRRORS) == set(Distribution)
    assert set(RELEASE_KEYS) == set(Distribution)


@pytest.mark.asyncio
async def test_prober_reads_remote_os_release(executor, fake_ssh):
    fake_ssh.handler = lambda host, command, stdin: (0, DEBIAN_TRIXIE, "")

    identity = await OsProber(executor).probe("markc")

    assert identity.as_env() == {"OSTYP": "debian", "OSREL": "trixie", "OSMIR": "deb.debian.org"}
    assert fake_ssh.commands() == ["cat /etc/os-release"]


@pytest.mark.asyncio
async def test_unreadable_os_release_is_none_then_unknown(executor, fake_ssh):
    fake_ssh.handler = lambda host, command, stdin: (1, "", "cat: /etc/os-release: No such file or directory\n")

    assert await executor.detect_remote_os("markc") is None
    assert await OsProber(executor).probe("markc") == OsIdentity()


@pytest.mark.asyncio
async def test_prober_unreachable_host_is_unknown(executor):
    identity = await OsProber(executor).probe("down")
    assert not identity.is_known
