"""Remote command and script execution over the multiplexed connection.

Only transport problems raise (``RemoteConnectionError`` / ``RemoteTimeoutError``,
``ConfigurationError`` for bad host data).  Whatever the remote command itself does
comes back as an :class:`ExecutionResult`.

Scripts travel on the ssh session's stdin and are run by ``bash -s``; their
positional parameters are shell-quoted onto the remote command line and never
spliced into the script text.
"""

from __future__ import annotations

import base64
import re
import shlex
from collections.abc import Iterable, Sequence

from fleetmux.core.config import Settings
from fleetmux.core.exceptions import (
    ConfigurationError,
    RemoteConnectionError,
    RemoteTimeoutError,
)
from fleetmux.core.logging import get_logger
from fleetmux.core.process import ProcessRunner
from fleetmux.remote.multiplexer import ConnectionMultiplexer
from fleetmux.remote.osinfo import OS_RELEASE_PATH, map_os_identity, parse_os_release
from fleetmux.schemas.execution import ExecutionResult, SequenceResult
from fleetmux.schemas.host import HostDescriptor
from fleetmux.schemas.osinfo import OsIdentity

logger = get_logger(__name__)

# ssh reserves this status for its own failures
SSH_TRANSPORT_FAILURE = 255

STRICT_MODE = "set -euo pipefail"
DEFAULT_SHEBANG = "#!/bin/bash"
_ERREXIT = re.compile(r"^\s*set\s+-[A-Za-z]*e", re.MULTILINE)

_CONNECTION_MARKER = "fleetmux-connection-ok"
_PAYLOAD_DELIMITER = "FLEETMUX_PAYLOAD"

_WRITE_FILE_SCRIPT = """\
target="$1"
mode="${{2:-}}"
mkdir -p "$(dirname "$target")"
base64 -d > "$target" <<'{delimiter}'
{payload}{delimiter}
if [ -n "$mode" ]; then
    chmod "$mode" "$target"
fi
"""


def with_strict_mode(script: str) -> str:
    """Make sure *script* fails fast unless it already sets ``-e`` itself."""
    if _ERREXIT.search(script):
        return script

    lines = script.splitlines()
    if lines and lines[0].startswith("#!"):
        shebang, body = lines[0], lines[1:]
    else:
        shebang, body = DEFAULT_SHEBANG, lines
    return "\n".join([shebang, STRICT_MODE, *body]) + "\n"


def script_command(args: Iterable[object] = ()) -> str:
    """Remote command line that runs a script from stdin with *args* as ``$1..$n``."""
    return " ".join(["bash", "-s", "--", *(shlex.quote(str(arg)) for arg in args)])


class RemoteExecutor:
    def __init__(
        self,
        multiplexer: ConnectionMultiplexer,
        runner: ProcessRunner | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.multiplexer = multiplexer
        self.runner = runner or multiplexer.runner
        self.settings = settings or multiplexer.settings

    # ── Invocation ───────────────────────────────────────────────────────────

    @staticmethod
    def _needs_sudo(host: HostDescriptor, as_root: bool) -> bool:
        return as_root and not host.is_root_login

    async def _invoke(
        self,
        alias: str,
        host: HostDescriptor,
        remote_command: str,
        *,
        stdin: str | None = None,
        timeout: float | None = None,
        retries: int | None = None,
    ) -> ExecutionResult:
        socket = await self.multiplexer.ensure_master(alias, retries=retries)
        base_args = await self.multiplexer.ssh_args(host)
        timeout = self.settings.command_timeout if timeout is None else timeout

        argv = [
            self.settings.ssh_binary,
            "-S", str(socket),
            "-o", "ControlMaster=no",
            *base_args,
            "--", host.hostname,
            remote_command,
        ]
        try:
            result = await self.runner.run(argv, input=stdin, timeout=timeout)
        except TimeoutError as exc:
            raise RemoteTimeoutError(
                f"Command on {alias} did not finish within {timeout}s", alias=alias
            ) from exc
        except FileNotFoundError as exc:
            raise ConfigurationError(f"SSH client not found: {self.settings.ssh_binary}") from exc

        if result.returncode == SSH_TRANSPORT_FAILURE:
            detail = result.stderr.strip() or "ssh exited with status 255"
            raise RemoteConnectionError(f"Connection to {alias} failed: {detail}", alias=alias)

        logger.debug(
            "Remote command finished",
            alias=alias,
            exit_code=result.returncode,
            elapsed=round(result.elapsed, 3),
        )
        return ExecutionResult(
            alias=alias,
            success=result.ok,
            stdout=result.stdout,
            stderr=result.stderr,
            exit_code=result.returncode,
            elapsed=result.elapsed,
        )

    async def exec(
        self,
        alias: str,
        command: str,
        as_root: bool = False,
        timeout: float | None = None,
        retries: int | None = None,
        dry_run: bool = False,
    ) -> ExecutionResult:
        """Run a single command line on *alias*.

        With ``as_root`` and a non-root login the command is wrapped as
        ``sudo -n -- bash -c '<command>'``; ``sudo -n`` fails instead of prompting.
        """
        if dry_run:
            logger.info("[DRY RUN] Would execute command", alias=alias, as_root=as_root)
            return ExecutionResult(
                alias=alias,
                success=True,
                stdout=f"[DRY RUN] Would execute on {alias}: {command}",
                exit_code=0,
                dry_run=True,
            )

        host = await self.multiplexer.registry.resolve(alias)
        remote_command = command
        if self._needs_sudo(host, as_root):
            remote_command = f"sudo -n -- bash -c {shlex.quote(command)}"
        return await self._invoke(alias, host, remote_command, timeout=timeout, retries=retries)

    async def execute_script(
        self,
        alias: str,
        script: str,
        args: Sequence[object] = (),
        as_root: bool = False,
        timeout: float | None = None,
        strict: bool = True,
        retries: int | None = None,
        dry_run: bool = False,
    ) -> ExecutionResult:
        """Run a multi-line *script* with *args* bound as ``$1``, ``$2``, ...

        Argument values are passed through as literals whatever they contain.
        ``strict`` prepends ``set -euo pipefail`` unless the script sets ``-e``.
        """
        body = with_strict_mode(script) if strict else script
        line_count = len(body.splitlines())

        if dry_run:
            logger.info("[DRY RUN] Would run script", alias=alias, lines=line_count, args=len(args))
            return ExecutionResult(
                alias=alias,
                success=True,
                stdout=(
                    f"[DRY RUN] Would run a {line_count}-line script on {alias} "
                    f"with {len(args)} argument(s)"
                ),
                exit_code=0,
                dry_run=True,
            )

        host = await self.multiplexer.registry.resolve(alias)
        remote_command = script_command(args)
        if self._needs_sudo(host, as_root):
            remote_command = f"sudo -n -- {remote_command}"

        logger.debug("Running script", alias=alias, lines=line_count, as_root=as_root)
        return await self._invoke(
            alias, host, remote_command, stdin=body, timeout=timeout, retries=retries
        )

    async def execute_sequence(
        self,
        alias: str,
        commands: Sequence[str],
        as_root: bool = False,
        stop_on_error: bool = True,
    ) -> SequenceResult:
        results: list[ExecutionResult] = []
        for command in commands:
            result = await self.exec(alias, command, as_root=as_root)
            results.append(result)
            if not result.success and stop_on_error:
                logger.warning(
                    "Command sequence stopped",
                    alias=alias,
                    step=len(results),
                    total=len(commands),
                    exit_code=result.exit_code,
                )
                break

        return SequenceResult(
            results=results,
            success=len(results) == len(commands) and all(r.success for r in results),
            completed=len(results),
            total=len(commands),
        )

    # ── Probes and helpers ───────────────────────────────────────────────────

    async def detect_remote_os(self, alias: str) -> OsIdentity | None:
        """Read the remote os-release file; ``None`` when it cannot be read."""
        result = await self.exec(alias, f"cat {OS_RELEASE_PATH}")
        if not result.success or not result.output:
            logger.info("os-release not readable", alias=alias, exit_code=result.exit_code)
            return None
        return map_os_identity(parse_os_release(result.stdout))

    async def test_connection(self, alias: str) -> bool:
        try:
            result = await self.exec(alias, f"echo {_CONNECTION_MARKER}", timeout=self.settings.probe_timeout)
        except RemoteConnectionError as exc:
            logger.info("Connection test failed", alias=alias, error=str(exc))
            return False
        return result.success and result.output == _CONNECTION_MARKER

    async def test_root_access(self, alias: str) -> bool:
        try:
            result = await self.exec(alias, "whoami", as_root=True, timeout=self.settings.probe_timeout)
        except RemoteConnectionError as exc:
            logger.info("Root access test failed", alias=alias, error=str(exc))
            return False
        return result.success and result.output == "root"

    async def read_file(self, alias: str, path: str) -> str | None:
        result = await self.exec(alias, f"cat {shlex.quote(path)}", as_root=True)
        return result.stdout if result.success else None

    async def write_file(
        self,
        alias: str,
        path: str,
        content: str,
        mode: str | None = None,
    ) -> ExecutionResult:
        """Write *content* to *path* as root, creating parent directories."""
        payload = base64.encodebytes(content.encode()).decode()
        script = _WRITE_FILE_SCRIPT.format(delimiter=_PAYLOAD_DELIMITER, payload=payload)
        return await self.execute_script(alias, script, [path, mode or ""], as_root=True)

    async def path_exists(self, alias: str, path: str) -> bool:
        result = await self.exec(alias, f"test -e {shlex.quote(path)}", as_root=True)
        return result.success
