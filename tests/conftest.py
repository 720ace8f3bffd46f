"""pytest fixtures shared across all tests."""

from __future__ import annotations

import re
import shlex
from collections.abc import Callable
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from fleetmux.core.config import Settings
from fleetmux.core.process import ProcessResult
from fleetmux.core.sockets import DirectoryArena
from fleetmux.models import Base
from fleetmux.remote.executor import RemoteExecutor
from fleetmux.remote.multiplexer import ConnectionMultiplexer
from fleetmux.remote.registry import StaticHostRegistry
from fleetmux.remote.tunnels import TunnelManager
from fleetmux.schemas.host import HostDescriptor

# Use SQLite in-memory for tests; each test function gets its own fresh DB.
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

UNREACHABLE_IP = "192.0.2.99"

RemoteHandler = Callable[[str, str, str | None], tuple[int, str, str]]


def script_args(remote_command: str) -> list[str]:
    """Positional parameters of a ``bash -s -- ...`` remote command line."""
    parts = shlex.split(remote_command)
    start = parts.index("-s")
    return parts[start + 2:]


class FakeSsh:
    """Stand-in for the OpenSSH client.

    Masters (``-M``) create their socket file and stay "alive" until ``-O exit``
    or :meth:`kill`.  ``-L`` forwards claim their local port.  Remote commands are
    answered by ``handler(hostname, remote_command, stdin)``.
    """

    def __init__(self, unreachable: set[str] | None = None) -> None:
        self.unreachable = unreachable or {UNREACHABLE_IP}
        self.calls: list[list[str]] = []
        self.stdin: list[str | None] = []
        self.captured_stdout: list[bool] = []
        self.live: dict[str, int | None] = {}     # socket path -> forwarded port
        self.foreign_ports: set[int] = set()
        self.create_socket = True
        self.timeout_commands = False
        self.handler: RemoteHandler = lambda host, command, stdin: (0, "", "")

    # ── helpers for tests ────────────────────────────────────────────────────

    def kill(self, socket_path: Path | str) -> None:
        """The master dies but leaves its socket file behind."""
        self.live.pop(str(socket_path), None)

    def forwarded_ports(self) -> set[int]:
        return {port for port in self.live.values() if port is not None}

    def port_available(self, port: int) -> bool:
        return port not in self.foreign_ports and port not in self.forwarded_ports()

    def masters_started(self) -> list[list[str]]:
        return [argv for argv in self.calls if "-M" in argv]

    def commands(self) -> list[str]:
        return [argv[-1] for argv in self.calls if "-M" not in argv and "-O" not in argv]

    # ── ProcessRunner interface ──────────────────────────────────────────────

    async def run(self, argv, *, input=None, timeout=None, capture_stdout=True) -> ProcessResult:
        argv = list(argv)
        self.calls.append(argv)
        self.stdin.append(input)
        self.captured_stdout.append(capture_stdout)

        if "-O" in argv:
            return self._control(argv)
        if "-M" in argv:
            return self._master(argv)
        return self._command(argv, input)

    @staticmethod
    def _result(returncode: int, stdout: str = "", stderr: str = "") -> ProcessResult:
        return ProcessResult(returncode=returncode, stdout=stdout, stderr=stderr, elapsed=0.01)

    def _control(self, argv: list[str]) -> ProcessResult:
        path = argv[argv.index("-S") + 1]
        operation = argv[argv.index("-O") + 1]
        if path not in self.live or not Path(path).exists():
            return self._result(255, stderr=f"Control socket connect({path}): No such file or directory\n")
        if operation == "exit":
            del self.live[path]
            Path(path).unlink(missing_ok=True)
            return self._result(0, stderr="Exit request sent.\n")
        return self._result(0, stderr="Master running (pid=4242)\n")

    def _master(self, argv: list[str]) -> ProcessResult:
        path = argv[argv.index("-S") + 1]
        hostname = argv[argv.index("--") + 1]
        if hostname in self.unreachable:
            return self._result(255, stderr=f"ssh: connect to host {hostname} port 22: Connection refused\n")

        port = None
        if "-L" in argv:
            port = int(argv[argv.index("-L") + 1].split(":")[0])
            if not self.port_available(port):
                return self._result(
                    255,
                    stderr=(
                        f"bind [127.0.0.1]:{port}: Address already in use\n"
                        f"channel_setup_fwd_listener_tcpip: cannot listen to port: {port}\n"
                        "Could not request local forwarding.\n"
                    ),
                )

        if self.create_socket:
            Path(path).touch()
            self.live[path] = port
        return self._result(0)

    def _command(self, argv: list[str], stdin: str | None) -> ProcessResult:
        if self.timeout_commands:
            raise TimeoutError("ssh did not finish")
        separator = argv.index("--")
        hostname, remote_command = argv[separator + 1], argv[separator + 2]
        if hostname in self.unreachable:
            return self._result(255, stderr=f"ssh: connect to host {hostname} port 22: Connection refused\n")
        returncode, stdout, stderr = self.handler(hostname, remote_command, stdin)
        return self._result(returncode, stdout, stderr)


class RemoteMailDb:
    """Simulated ``vmails`` table driven by the provision / rotate scripts."""

    def __init__(self) -> None:
        self.rows: dict[str, dict[str, str]] = {}
        self.scripts: list[str] = []

    def __call__(self, host: str, remote_command: str, stdin: str | None) -> tuple[int, str, str]:
        if stdin is None:
            return 0, "", ""
        self.scripts.append(stdin)
        _db, user, password_hash, *rest = script_args(remote_command)
        if re.search(r"INSERT INTO vmails", stdin):
            if user in self.rows:
                return 3, "", f"Mailbox {user} already exists\n"
            domain = user.split("@", 1)[1]
            self.rows[user] = {"password": password_hash, "maildir": f"{domain}/msg/{user.split('@')[0]}"}
            return 0, f"Created mailbox {user}\n", ""
        if re.search(r"UPDATE vmails", stdin):
            if user not in self.rows:
                return 4, "", f"Mailbox {user} does not exist\n"
            self.rows[user]["password"] = password_hash
            return 0, f"Updated password for {user}\n", ""
        return 1, "", "unexpected script\n"


async def _no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=TEST_DB_URL,
        secret_key="test-secret-key",
        mux_dir=tmp_path / "mux",
        probe_timeout=1.0,
        master_wait_timeout=0.5,
        command_timeout=5.0,
    )


@pytest.fixture
def hosts() -> list[HostDescriptor]:
    return [
        HostDescriptor(alias="markc", hostname="192.0.2.10"),
        HostDescriptor(alias="web1", hostname="192.0.2.20", user="admin", port=2222),
        HostDescriptor(alias="down", hostname=UNREACHABLE_IP),
        HostDescriptor(alias="bastion", hostname="198.51.100.1", user="jump"),
        HostDescriptor(alias="inner", hostname="10.0.0.5", jump_host="bastion"),
        HostDescriptor(alias="retired", hostname="192.0.2.30", is_active=False),
    ]


@pytest.fixture
def registry(hosts) -> StaticHostRegistry:
    return StaticHostRegistry(hosts)


@pytest.fixture
def fake_ssh() -> FakeSsh:
    return FakeSsh()


@pytest.fixture
def arena(settings) -> DirectoryArena:
    return DirectoryArena(settings.mux_dir)


@pytest.fixture
def multiplexer(registry, fake_ssh, arena, settings) -> ConnectionMultiplexer:
    return ConnectionMultiplexer(registry, fake_ssh, arena, settings, sleep=_no_sleep)


@pytest.fixture
def executor(multiplexer) -> RemoteExecutor:
    return RemoteExecutor(multiplexer)


@pytest.fixture
def tunnels(multiplexer, fake_ssh) -> TunnelManager:
    return TunnelManager(multiplexer, port_available=fake_ssh.port_available)


@pytest_asyncio.fixture
async def engine():
    """Create a fresh in-memory SQLite engine per test function."""
    eng = create_async_engine(
        TEST_DB_URL,
        echo=False,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=True)
