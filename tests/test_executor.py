"""Tests for remote command / script execution."""

import shlex
import shutil

import pytest

from fleetmux.core.exceptions import ConfigurationError, RemoteConnectionError, RemoteTimeoutError
from fleetmux.core.process import ProcessRunner
from fleetmux.remote.executor import script_command, with_strict_mode

from conftest import script_args

requires_bash = pytest.mark.skipif(shutil.which("bash") is None, reason="bash not installed")


@pytest.mark.asyncio
async def test_exec_returns_structured_result(executor, fake_ssh):
    fake_ssh.handler = lambda host, command, stdin: (0, "up 3 days\n", "")

    result = await executor.exec("markc", "uptime")

    assert result.success
    assert result.exit_code == 0
    assert result.output == "up 3 days"
    assert result.error is None
    assert fake_ssh.commands() == ["uptime"]


@pytest.mark.asyncio
async def test_exec_goes_through_the_alias_master(executor, fake_ssh, settings):
    await executor.exec("markc", "true")
    await executor.exec("markc", "true")

    assert len(fake_ssh.masters_started()) == 1
    argv = fake_ssh.calls[-1]
    assert argv[argv.index("-S") + 1] == str(settings.mux_dir / "markc.ctl")
    assert "ControlMaster=no" in argv


@pytest.mark.asyncio
async def test_remote_failure_is_data_not_exception(executor, fake_ssh):
    fake_ssh.handler = lambda host, command, stdin: (2, "", "grep: missing\n")

    result = await executor.exec("markc", "grep x /missing")

    assert not result.success
    assert result.exit_code == 2
    assert result.error == "grep: missing"


@pytest.mark.asyncio
async def test_ssh_255_is_connection_error(executor, fake_ssh):
    await executor.exec("markc", "true")
    fake_ssh.handler = lambda host, command, stdin: (255, "", "Connection reset by peer\n")

    with pytest.raises(RemoteConnectionError, match="Connection reset"):
        await executor.exec("markc", "true")


@pytest.mark.asyncio
async def test_unreachable_host_raises(executor):
    with pytest.raises(RemoteConnectionError):
        await executor.exec("down", "true")


@pytest.mark.asyncio
async def test_unknown_alias_raises_configuration_error(executor):
    with pytest.raises(ConfigurationError):
        await executor.exec("ghost", "true")


@pytest.mark.asyncio
async def test_timeout_is_reported_not_hung(executor, fake_ssh):
    fake_ssh.timeout_commands = True

    with pytest.raises(RemoteTimeoutError) as exc_info:
        await executor.exec("markc", "sleep 600", timeout=0.1)
    assert isinstance(exc_info.value, TimeoutError)


@pytest.mark.asyncio
async def test_as_root_uses_sudo_for_non_root_login(executor, fake_ssh):
    await executor.exec("web1", "apt-get update", as_root=True)
    await executor.exec("markc", "apt-get update", as_root=True)

    sudo_cmd, direct_cmd = fake_ssh.commands()
    assert sudo_cmd == "sudo -n -- bash -c 'apt-get update'"
    assert direct_cmd == "apt-get update"


@pytest.mark.asyncio
async def test_dry_run_has_no_side_effects(executor, fake_ssh):
    result = await executor.exec("markc", "rm -rf /srv/old", dry_run=True)
    script = await executor.execute_script("markc", "echo hi", ["a"], dry_run=True)

    assert result.dry_run and result.success
    assert "[DRY RUN]" in result.stdout
    assert script.dry_run
    assert fake_ssh.calls == []


@pytest.mark.asyncio
async def test_script_args_are_bound_not_interpolated(executor, fake_ssh):
    hostile = "; rm -rf /"
    await executor.execute_script("markc", 'echo "$1"', [hostile, "it's"])

    remote_command = fake_ssh.commands()[0]
    body = fake_ssh.stdin[-1]
    assert script_args(remote_command) == [hostile, "it's"]
    assert hostile not in body
    assert body.startswith("#!/bin/bash\nset -euo pipefail\n")


@pytest.mark.asyncio
async def test_script_as_root_prefixes_sudo(executor, fake_ssh):
    await executor.execute_script("web1", "id -u", as_root=True)
    assert fake_ssh.commands()[0] == "sudo -n -- bash -s --"


def test_strict_mode_respects_existing_settings():
    assert with_strict_mode("#!/bin/sh\necho hi\n") == "#!/bin/sh\nset -euo pipefail\necho hi\n"
    assert with_strict_mode("echo hi") == "#!/bin/bash\nset -euo pipefail\necho hi\n"
    already = "#!/bin/bash\nset -eu\necho hi\n"
    assert with_strict_mode(already) == already


@requires_bash
@pytest.mark.asyncio
async def test_metacharacters_do_not_change_control_flow(tmp_path):
    marker = tmp_path / "pwned"
    hostile = f"; touch {marker}; $(touch {marker}) `touch {marker}`"
    script = 'printf "%s\\n" "$1"\nprintf "%s\\n" "$#"\n'

    result = await ProcessRunner().run(
        ["bash", "-c", script_command([hostile, "second arg"])],
        input=with_strict_mode(script),
        timeout=10,
    )

    assert result.ok, result.stderr
    assert result.stdout.splitlines() == [hostile, "2"]
    assert not marker.exists()


@pytest.mark.asyncio
async def test_execute_sequence_stops_on_error(executor, fake_ssh):
    fake_ssh.handler = lambda host, command, stdin: (1, "", "nope\n") if command == "false" else (0, "", "")

    result = await executor.execute_sequence("markc", ["true", "false", "true"])

    assert not result.success
    assert result.completed == 2
    assert result.total == 3


@pytest.mark.asyncio
async def test_execute_sequence_can_continue(executor, fake_ssh):
    fake_ssh.handler = lambda host, command, stdin: (1, "", "") if command == "false" else (0, "", "")

    result = await executor.execute_sequence("markc", ["false", "true"], stop_on_error=False)

    assert result.completed == 2
    assert [r.success for r in result.results] == [False, True]


@pytest.mark.asyncio
async def test_connection_and_root_checks(executor, fake_ssh):
    def handler(host, command, stdin):
        if command.startswith("echo "):
            return 0, command.split(" ", 1)[1] + "\n", ""
        if command.startswith("sudo "):
            return 1, "", "sudo: a password is required\n"
        return 0, "root\n", ""

    fake_ssh.handler = handler

    assert await executor.test_connection("markc")
    assert await executor.test_root_access("markc")
    assert not await executor.test_root_access("web1")
    assert not await executor.test_connection("down")


@pytest.mark.asyncio
async def test_file_helpers(executor, fake_ssh):
    files = {"/etc/hostname": "markc\n"}

    def handler(host, command, stdin):
        if command.startswith("cat "):
            path = shlex.split(command)[1]
            return (0, files[path], "") if path in files else (1, "", "No such file\n")
        if command.startswith("test -e "):
            return (0, "", "") if shlex.split(command)[2] in files else (1, "", "")
        return 0, "", ""

    fake_ssh.handler = handler

    assert await executor.read_file("markc", "/etc/hostname") == "markc\n"
    assert await executor.read_file("markc", "/etc/missing") is None
    assert await executor.path_exists("markc", "/etc/hostname")
    assert not await executor.path_exists("markc", "/etc/missing")


@pytest.mark.asyncio
async def test_write_file_sends_base64_payload(executor, fake_ssh):
    await executor.write_file("markc", "/etc/motd; reboot", "hello 'world'\n", mode="0644")

    body = fake_ssh.stdin[-1]
    assert script_args(fake_ssh.commands()[-1]) == ["/etc/motd; reboot", "0644"]
    assert "aGVsbG8gJ3dvcmxkJwo=" in body
    assert "reboot" not in body


@requires_bash
@pytest.mark.asyncio
async def test_write_file_script_runs_locally(executor, fake_ssh, tmp_path):
    target = tmp_path / "sub dir" / "file.txt"
    runner = ProcessRunner()

    await executor.write_file("markc", str(target), "line one\nline 'two'\n")
    remote_command, body = fake_ssh.commands()[-1], fake_ssh.stdin[-1]

    result = await runner.run(["bash", "-c", remote_command], input=body, timeout=10)
    assert result.ok, result.stderr
    assert target.read_text() == "line one\nline 'two'\n"
