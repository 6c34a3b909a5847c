"""Remote launcher for running the deployed artifact on the device.

The remote session is an OpenSSH control master held for the duration of a
`with remote_session(...)` block. Opening it authenticates once; commands
are multiplexed over its socket; closing it always tears the master down,
including when the operator interrupts the remote process.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import tempfile
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from crossdeploy.config import get_settings
from crossdeploy.errors import INTERRUPTED_EXIT_CODE, SessionFailure
from crossdeploy.process import run_quiet
from crossdeploy.types import DeploymentTarget, RemoteExitStatus

if TYPE_CHECKING:
    from crossdeploy.config import Settings

logger = logging.getLogger(__name__)

SSH = "ssh"

# Seconds to wait for the local ssh client after an interrupt
TERMINATE_GRACE_SECONDS = 5

# Clears every SendEnv pattern picked up from ssh_config
NO_SEND_ENV = "SendEnv=-*"

# Locale variables the stock Debian ssh_config forwards with SendEnv
LOCALE_ENV_PREFIXES = ("LANG", "LC_")


def deployment_target_from_settings(settings: Settings) -> DeploymentTarget:
    """Build the configured DeploymentTarget."""
    return DeploymentTarget(
        host=settings.remote_host,
        user=settings.remote_user,
        path=settings.remote_path,
        forward_env=tuple(settings.forward_env),
        display=settings.display,
        port=settings.remote_port,
        ssh_options=tuple(settings.ssh_options),
    )


def _connection_options(target: DeploymentTarget) -> list[str]:
    opts: list[str] = []
    if target.port is not None:
        opts.extend(["-p", str(target.port)])
    for option in target.ssh_options:
        opts.extend(["-o", option])
    opts.extend(["-o", NO_SEND_ENV])
    return opts


def client_environ(environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return the environment for the local ssh client.

    Locale variables are dropped so ssh has nothing to send implicitly;
    whitelisted values reach the device only through the `env` prefix.
    """
    source = os.environ if environ is None else environ
    return {
        name: value
        for name, value in source.items()
        if not name.startswith(LOCALE_ENV_PREFIXES)
    }


def compose_remote_command(
    path: str,
    env_whitelist: Iterable[str],
    display: str,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Compose the command line executed on the device.

    Only whitelisted variables that are set locally are forwarded, with
    their exact values. Everything else in the local environment stays
    local.

    Args:
        path: Remote executable path.
        env_whitelist: Names of variables to forward.
        display: Display target for the remote process.
        environ: Local environment (defaults to os.environ).

    Returns:
        Shell command string, e.g. `env DISPLAY=:0 RUST_LOG=debug /home/pi/pidj`.
    """
    if environ is None:
        environ = os.environ

    parts = ["env", f"DISPLAY={shlex.quote(display)}"]
    for name in sorted(set(env_whitelist)):
        if name == "DISPLAY" or name not in environ:
            continue
        parts.append(f"{name}={shlex.quote(environ[name])}")
    parts.append(shlex.quote(path))
    return " ".join(parts)


@dataclass
class RemoteSession:
    """An open control-master connection to the device.

    Attributes:
        target: Device the session is connected to.
        control_path: Control socket of the master connection.
        x11_forwarding: Request X11 forwarding for executed commands.
    """

    target: DeploymentTarget
    control_path: Path
    x11_forwarding: bool = True

    def compose_execute_command(self, command: str) -> list[str]:
        """Compose the ssh invocation running `command` over the session."""
        cmd = [SSH, "-S", str(self.control_path)]
        if self.x11_forwarding:
            cmd.append("-X")
        cmd.append("-t")
        cmd.extend(_connection_options(self.target))
        cmd.append(self.target.login)
        cmd.append(command)
        return cmd

    def execute(self, command: str) -> RemoteExitStatus:
        """Run a command on the device with the operator's terminal attached.

        Args:
            command: Remote shell command.

        Returns:
            RemoteExitStatus of the remote process. An operator interrupt
            yields `RemoteExitStatus(130, interrupted=True)`.
        """
        cmd = self.compose_execute_command(command)
        logger.debug("Executing remotely: %s", command)
        proc = subprocess.Popen(cmd, env=client_environ())
        try:
            code = proc.wait()
        except KeyboardInterrupt:
            logger.warning("Interrupted, stopping remote process")
            proc.terminate()
            try:
                proc.wait(timeout=TERMINATE_GRACE_SECONDS)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()
            return RemoteExitStatus(code=INTERRUPTED_EXIT_CODE, interrupted=True)
        logger.info("Remote process exited with code %d", code)
        return RemoteExitStatus(code=code)


def _open_master(target: DeploymentTarget, control_path: Path, connect_timeout: int) -> None:
    cmd = [
        SSH,
        "-M",
        "-S",
        str(control_path),
        "-o",
        "ControlPersist=yes",
        "-o",
        f"ConnectTimeout={connect_timeout}",
        "-f",
        "-N",
    ]
    cmd.extend(_connection_options(target))
    cmd.append(target.login)

    logger.info("Opening session to %s", target.login)
    try:
        # stderr is inherited; a forked master would hold a captured pipe open
        result = subprocess.run(
            cmd, stdout=subprocess.DEVNULL, env=client_environ(), check=False
        )
    except OSError as e:
        raise SessionFailure(f"failed to execute ssh: {e}", code="execution_error") from e
    if result.returncode != 0:
        raise SessionFailure(
            f"could not connect to {target.login} (ssh exited with code {result.returncode})",
            exit_code=result.returncode,
        )


def _close_master(target: DeploymentTarget, control_path: Path) -> None:
    cmd = [SSH, "-S", str(control_path), "-O", "exit"]
    cmd.extend(_connection_options(target))
    cmd.append(target.login)
    try:
        result = run_quiet(cmd, timeout=30)
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning("Failed to close session to %s: %s", target.login, e)
        return
    if result.returncode != 0:
        logger.debug("Control master exit returned %d: %s", result.returncode, result.stderr.strip())


@contextmanager
def remote_session(
    target: DeploymentTarget,
    settings: Settings | None = None,
) -> Iterator[RemoteSession]:
    """Hold an authenticated session to the device.

    Args:
        target: Device to connect to.
        settings: Application settings.

    Yields:
        RemoteSession usable for `execute`.

    Raises:
        SessionFailure: If the session cannot be established. Nothing has
            run remotely in that case.
    """
    if settings is None:
        settings = get_settings()

    socket_dir = Path(tempfile.mkdtemp(prefix="crossdeploy-ssh-"))
    control_path = socket_dir / "control.sock"
    opened = False
    try:
        _open_master(target, control_path, settings.connect_timeout)
        opened = True
        yield RemoteSession(
            target=target,
            control_path=control_path,
            x11_forwarding=settings.x11_forwarding,
        )
    finally:
        if opened:
            _close_master(target, control_path)
        shutil.rmtree(socket_dir, ignore_errors=True)


def run(
    target: DeploymentTarget,
    env_whitelist: Iterable[str] | None = None,
    display: str | None = None,
    settings: Settings | None = None,
    environ: Mapping[str, str] | None = None,
) -> RemoteExitStatus:
    """Launch the deployed executable on the device and wait for it.

    Args:
        target: Deployment target; `target.path` is executed.
        env_whitelist: Variables to forward (defaults to `target.forward_env`).
        display: Display target (defaults to `target.display`).
        settings: Application settings.
        environ: Local environment (defaults to os.environ).

    Returns:
        RemoteExitStatus of the remote process.

    Raises:
        SessionFailure: If the session cannot be established.
    """
    if env_whitelist is None:
        env_whitelist = target.forward_env
    if display is None:
        display = target.display

    command = compose_remote_command(target.path, env_whitelist, display, environ)
    with remote_session(target, settings) as session:
        return session.execute(command)


__all__ = [
    "LOCALE_ENV_PREFIXES",
    "NO_SEND_ENV",
    "TERMINATE_GRACE_SECONDS",
    "RemoteSession",
    "client_environ",
    "compose_remote_command",
    "deployment_target_from_settings",
    "remote_session",
    "run",
]
