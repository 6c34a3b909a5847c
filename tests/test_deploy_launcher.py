"""Tests for the remote launcher.

ssh is never executed: the control master, the remote command and the
teardown are all mocked at the subprocess boundary.
"""

import shlex
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from crossdeploy.config import Settings
from crossdeploy.deploy.launcher import (
    client_environ,
    compose_remote_command,
    deployment_target_from_settings,
    remote_session,
    run,
)
from crossdeploy.errors import SessionFailure
from crossdeploy.types import DeploymentTarget

LAUNCHER = "crossdeploy.deploy.launcher"


@pytest.fixture
def target() -> DeploymentTarget:
    return DeploymentTarget(
        host="iaa34.local",
        user="pi",
        path="/home/pi/pidj",
        forward_env=("RUST_LOG", "RUST_BACKTRACE"),
    )


@pytest.fixture
def settings(tmp_path):
    return Settings(cache_dir=tmp_path / "cache", connect_timeout=5)


def remote_env(command: str) -> dict[str, str]:
    """Parse the `env NAME=value ... path` prefix of a remote command."""
    words = shlex.split(command)
    assert words[0] == "env"
    return dict(word.split("=", 1) for word in words[1:-1])


class TestComposeRemoteCommand:
    """Tests for compose_remote_command function."""

    def test_display_always_set(self):
        """The display target is set even with nothing to forward."""
        command = compose_remote_command("/home/pi/pidj", [], ":0", environ={})
        assert command == "env DISPLAY=:0 /home/pi/pidj"

    def test_only_whitelisted_forwarded(self):
        """Unlisted variables must stay local."""
        environ = {
            "RUST_LOG": "debug",
            "AWS_SECRET_ACCESS_KEY": "hunter2",
            "PATH": "/usr/bin",
        }
        command = compose_remote_command(
            "/home/pi/pidj", ["RUST_LOG", "RUST_BACKTRACE"], ":0", environ
        )
        env = remote_env(command)
        assert env == {"DISPLAY": ":0", "RUST_LOG": "debug"}
        assert "hunter2" not in command

    def test_exact_values(self):
        """Values with spaces and shell metacharacters arrive unchanged."""
        environ = {
            "RUST_LOG": "pidj=trace,hyper=info warn",
            "RUST_BACKTRACE": "$(reboot); `id`",
        }
        command = compose_remote_command(
            "/home/pi/pidj", ["RUST_LOG", "RUST_BACKTRACE"], ":0", environ
        )
        env = remote_env(command)
        assert env["RUST_LOG"] == "pidj=trace,hyper=info warn"
        assert env["RUST_BACKTRACE"] == "$(reboot); `id`"

    def test_empty_value_forwarded(self):
        """A variable set to the empty string is still set."""
        command = compose_remote_command("/p", ["RUST_LOG"], ":0", {"RUST_LOG": ""})
        assert remote_env(command)["RUST_LOG"] == ""

    def test_sorted_order(self):
        """Forwarded variables appear in a stable order."""
        environ = {"B": "2", "A": "1"}
        command = compose_remote_command("/p", ["B", "A"], ":1", environ)
        assert command == "env DISPLAY=:1 A=1 B=2 /p"

    def test_path_quoted(self):
        """Paths with spaces are quoted."""
        command = compose_remote_command("/home/pi/my app", [], ":0", {})
        assert shlex.split(command)[-1] == "/home/pi/my app"


def ssh_ok() -> MagicMock:
    return MagicMock(returncode=0)


def control_path_of(cmd: list[str]) -> Path:
    return Path(cmd[cmd.index("-S") + 1])


class TestRemoteSession:
    """Tests for the remote_session context manager."""

    def test_open_and_release(self, target, settings):
        """Should open a control master and always close it."""
        with (
            patch(f"{LAUNCHER}.subprocess.run", return_value=ssh_ok()) as mock_open,
            patch(f"{LAUNCHER}.run_quiet", return_value=ssh_ok()) as mock_close,
        ):
            with remote_session(target, settings) as session:
                socket_dir = session.control_path.parent
                assert socket_dir.is_dir()

        open_cmd = mock_open.call_args.args[0]
        assert open_cmd[:2] == ["ssh", "-M"]
        assert "ControlPersist=yes" in open_cmd
        assert "ConnectTimeout=5" in open_cmd
        assert "-f" in open_cmd and "-N" in open_cmd
        assert open_cmd[-1] == "pi@iaa34.local"

        close_cmd = mock_close.call_args.args[0]
        assert close_cmd[close_cmd.index("-O") + 1] == "exit"
        assert control_path_of(close_cmd) == control_path_of(open_cmd)
        assert not socket_dir.exists()

    def test_session_failure(self, target, settings):
        """A failed connection raises before anything runs remotely."""
        with (
            patch(f"{LAUNCHER}.subprocess.run", return_value=MagicMock(returncode=255)) as mock_open,
            patch(f"{LAUNCHER}.subprocess.Popen") as mock_popen,
            patch(f"{LAUNCHER}.run_quiet") as mock_close,
        ):
            with pytest.raises(SessionFailure) as exc_info:
                with remote_session(target, settings):
                    pytest.fail("session body must not run")

        assert exc_info.value.exit_code == 255
        assert exc_info.value.cli_exit_code == 255
        mock_popen.assert_not_called()
        mock_close.assert_not_called()
        assert not control_path_of(mock_open.call_args.args[0]).parent.exists()

    def test_ssh_missing(self, target, settings):
        """A missing ssh binary is a session failure."""
        with patch(f"{LAUNCHER}.subprocess.run", side_effect=FileNotFoundError("ssh")):
            with pytest.raises(SessionFailure) as exc_info:
                with remote_session(target, settings):
                    pass

        assert exc_info.value.cli_exit_code == 255

    def test_released_on_error(self, target, settings):
        """The session is released when the body raises."""
        with (
            patch(f"{LAUNCHER}.subprocess.run", return_value=ssh_ok()),
            patch(f"{LAUNCHER}.run_quiet", return_value=ssh_ok()) as mock_close,
        ):
            with pytest.raises(RuntimeError):
                with remote_session(target, settings):
                    raise RuntimeError("boom")

        mock_close.assert_called_once()

    def test_execute_command(self, target, settings):
        """Commands run over the control socket with a TTY and X11."""
        proc = MagicMock()
        proc.wait.return_value = 0
        with (
            patch(f"{LAUNCHER}.subprocess.run", return_value=ssh_ok()),
            patch(f"{LAUNCHER}.subprocess.Popen", return_value=proc) as mock_popen,
            patch(f"{LAUNCHER}.run_quiet", return_value=ssh_ok()),
        ):
            with remote_session(target, settings) as session:
                status = session.execute("env DISPLAY=:0 /home/pi/pidj")

        cmd = mock_popen.call_args.args[0]
        assert cmd[0] == "ssh"
        assert "-X" in cmd
        assert "-t" in cmd
        assert cmd[-2:] == ["pi@iaa34.local", "env DISPLAY=:0 /home/pi/pidj"]
        assert status.code == 0
        assert status.succeeded

    def test_config_send_env_cleared(self, target, settings):
        """ssh_config SendEnv patterns are cleared on both ssh invocations."""
        proc = MagicMock()
        proc.wait.return_value = 0
        with (
            patch(f"{LAUNCHER}.subprocess.run", return_value=ssh_ok()) as mock_open,
            patch(f"{LAUNCHER}.subprocess.Popen", return_value=proc) as mock_popen,
            patch(f"{LAUNCHER}.run_quiet", return_value=ssh_ok()),
        ):
            with remote_session(target, settings) as session:
                session.execute("env")

        for cmd in (mock_open.call_args.args[0], mock_popen.call_args.args[0]):
            assert "SendEnv=-*" in cmd
            assert cmd[cmd.index("SendEnv=-*") - 1] == "-o"

    def test_locale_not_passed_to_ssh_client(self, target, settings, monkeypatch):
        """Local locale variables never reach the ssh client process."""
        monkeypatch.setenv("LANG", "de_DE.UTF-8")
        monkeypatch.setenv("LC_ALL", "de_DE.UTF-8")
        monkeypatch.setenv("RUST_LOG", "debug")
        monkeypatch.delenv("RUST_BACKTRACE", raising=False)
        proc = MagicMock()
        proc.wait.return_value = 0
        with (
            patch(f"{LAUNCHER}.subprocess.run", return_value=ssh_ok()) as mock_open,
            patch(f"{LAUNCHER}.subprocess.Popen", return_value=proc) as mock_popen,
            patch(f"{LAUNCHER}.run_quiet", return_value=ssh_ok()),
        ):
            run(target, settings=settings)

        for call in (mock_open.call_args, mock_popen.call_args):
            env = call.kwargs["env"]
            assert "LANG" not in env
            assert "LC_ALL" not in env
        env = remote_env(mock_popen.call_args.args[0][-1])
        assert env == {"DISPLAY": ":0", "RUST_LOG": "debug"}

    def test_no_x11(self, target, settings):
        """X11 forwarding can be disabled."""
        no_x = settings.model_copy(update={"x11_forwarding": False})
        proc = MagicMock()
        proc.wait.return_value = 0
        with (
            patch(f"{LAUNCHER}.subprocess.run", return_value=ssh_ok()),
            patch(f"{LAUNCHER}.subprocess.Popen", return_value=proc) as mock_popen,
            patch(f"{LAUNCHER}.run_quiet", return_value=ssh_ok()),
        ):
            with remote_session(target, no_x) as session:
                session.execute("true")

        assert "-X" not in mock_popen.call_args.args[0]


class TestRun:
    """Tests for the run function."""

    def test_exit_status_fidelity(self, target, settings):
        """A remote exit code of 7 is reported as 7, as data."""
        proc = MagicMock()
        proc.wait.return_value = 7
        with (
            patch(f"{LAUNCHER}.subprocess.run", return_value=ssh_ok()),
            patch(f"{LAUNCHER}.subprocess.Popen", return_value=proc),
            patch(f"{LAUNCHER}.run_quiet", return_value=ssh_ok()),
        ):
            status = run(target, settings=settings, environ={})

        assert status.code == 7
        assert status.interrupted is False
        assert not status.succeeded

    def test_forwards_target_whitelist(self, target, settings):
        """Defaults come from the target's whitelist and display."""
        proc = MagicMock()
        proc.wait.return_value = 0
        environ = {"RUST_LOG": "info", "HOME": "/home/dev"}
        with (
            patch(f"{LAUNCHER}.subprocess.run", return_value=ssh_ok()),
            patch(f"{LAUNCHER}.subprocess.Popen", return_value=proc) as mock_popen,
            patch(f"{LAUNCHER}.run_quiet", return_value=ssh_ok()),
        ):
            run(target, settings=settings, environ=environ)

        env = remote_env(mock_popen.call_args.args[0][-1])
        assert env == {"DISPLAY": ":0", "RUST_LOG": "info"}

    def test_interrupt(self, target, settings):
        """Interrupting reports 130 as interrupted and closes the session."""
        proc = MagicMock()
        proc.wait.side_effect = [KeyboardInterrupt, 0]
        with (
            patch(f"{LAUNCHER}.subprocess.run", return_value=ssh_ok()),
            patch(f"{LAUNCHER}.subprocess.Popen", return_value=proc),
            patch(f"{LAUNCHER}.run_quiet", return_value=ssh_ok()) as mock_close,
        ):
            status = run(target, settings=settings, environ={})

        proc.terminate.assert_called_once()
        assert status.code == 130
        assert status.interrupted is True
        assert not status.succeeded
        mock_close.assert_called_once()


class TestDeploymentTarget:
    """Tests for target construction and remote naming."""

    def test_from_settings(self):
        """Should mirror the configured device."""
        settings = Settings(remote_host="board", remote_user="dev", remote_port=2200)
        target = deployment_target_from_settings(settings)
        assert target.login == "dev@board"
        assert target.port == 2200
        assert target.forward_env == ("RUST_LOG", "RUST_BACKTRACE")

    def test_with_remote_name(self, target):
        """The one-shot path keeps the directory and swaps the filename."""
        renamed = target.with_remote_name("pidj-test")
        assert renamed.path == "/home/pi/pidj-test"
        assert renamed.destination == "pi@iaa34.local:/home/pi/pidj-test"
        assert target.path == "/home/pi/pidj"


class TestClientEnviron:
    """Tests for the local ssh client environment."""

    def test_strips_locale(self):
        environ = {
            "LANG": "C.UTF-8",
            "LANGUAGE": "en",
            "LC_ALL": "C",
            "LC_CTYPE": "C",
            "HOME": "/home/dev",
            "SSH_AUTH_SOCK": "/tmp/agent",
            "RUST_LOG": "info",
        }
        assert client_environ(environ) == {
            "HOME": "/home/dev",
            "SSH_AUTH_SOCK": "/tmp/agent",
            "RUST_LOG": "info",
        }
