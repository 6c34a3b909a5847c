"""Build runner for executing cargo inside toolchain containers.

This module handles:
- Composing the cargo command for build and fix modes
- Composing `docker run` with the source and cache mount topology
- Executing the container with verbatim output teed to a log file
- Tearing the container down when the operator interrupts
"""

from __future__ import annotations

import logging
import sys
import uuid
from dataclasses import dataclass
from pathlib import Path

from crossdeploy.builds.cache import DependencyRegistryCache
from crossdeploy.errors import BuildFailure
from crossdeploy.process import ProcessResult, run_quiet, run_streaming
from crossdeploy.types import BuildMode

logger = logging.getLogger(__name__)

DOCKER = "docker"
CONTAINER_PREFIX = "crossdeploy-"


@dataclass
class ContainerRun:
    """Everything needed to start one build container.

    Attributes:
        image: Toolchain image tag.
        source_dir: Host source tree.
        cache: Dependency cache handle.
        command: Command run inside the container.
        workdir: Mount point of the source tree in the container.
        name: Container name, used for teardown.
        tty: Allocate a pseudo-terminal so cargo renders progress and color.
    """

    image: str
    source_dir: Path
    cache: DependencyRegistryCache
    command: list[str]
    workdir: str = "/app"
    name: str = ""
    tty: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            self.name = f"{CONTAINER_PREFIX}{uuid.uuid4().hex[:12]}"


def compose_cargo_command(
    mode: BuildMode,
    target_triple: str,
    profile: str = "debug",
    fix_args: list[str] | None = None,
) -> list[str]:
    """Compose the cargo command run inside the container.

    Args:
        mode: Plain build or automated fix.
        target_triple: Rust target triple.
        profile: 'debug' or 'release'.
        fix_args: Extra arguments for `cargo fix`.

    Returns:
        Command as list of strings.
    """
    if mode == BuildMode.FIX:
        cmd = ["cargo", "fix", "--target", target_triple]
        if fix_args:
            cmd.extend(fix_args)
    else:
        cmd = ["cargo", "build", "--target", target_triple]
    if profile == "release":
        cmd.append("--release")
    return cmd


def compose_run_command(run: ContainerRun) -> list[str]:
    """Compose the `docker run` command for a build container.

    The source tree is mounted read-write so cargo can keep incremental
    build state in it; the cache directories are mounted at fixed paths
    under the build user's Cargo home.

    Args:
        run: ContainerRun description.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = [DOCKER, "run", "--rm", "--init", "--name", run.name]
    cmd.extend(["-v", f"{run.source_dir.resolve()}:{run.workdir}"])
    for host_path, container_path in run.cache.mounts():
        cmd.extend(["-v", f"{host_path}:{container_path}"])
    cmd.extend(["-w", run.workdir])
    if run.tty:
        cmd.append("-t")
    cmd.append(run.image)
    cmd.extend(run.command)
    return cmd


def remove_container(name: str) -> None:
    """Force-remove a build container, ignoring a missing one."""
    try:
        result = run_quiet([DOCKER, "rm", "-f", name], timeout=60)
    except OSError as e:
        logger.warning("Failed to remove container %s: %s", name, e)
        return
    if result.returncode == 0:
        logger.info("Removed build container %s", name)


def run_container(
    run: ContainerRun,
    stage: str,
    log_path: Path | None = None,
    timeout: int | None = None,
) -> ProcessResult:
    """Run a build container to completion.

    Args:
        run: ContainerRun description.
        stage: Stage name reported on failure ('compile' or 'fix').
        log_path: Log file the output is teed to.
        timeout: Timeout in seconds (None = no timeout).

    Returns:
        ProcessResult of a successful run.

    Raises:
        BuildFailure: If the container exits non-zero, times out or
            cannot be started.
        KeyboardInterrupt: Re-raised after the container is removed.
    """
    cmd = compose_run_command(run)
    logger.info("Running %s in %s", " ".join(run.command), run.image)

    try:
        result = run_streaming(cmd, log_path=log_path, timeout=timeout)
    except KeyboardInterrupt:
        logger.warning("Interrupted, tearing down container %s", run.name)
        remove_container(run.name)
        raise
    except OSError as e:
        raise BuildFailure(
            stage=stage,
            diagnostic=f"Failed to execute docker: {e}",
            code="execution_error",
        ) from e

    if result.timed_out:
        remove_container(run.name)
        raise BuildFailure(
            stage=stage,
            diagnostic=result.tail + f"\nTimed out after {timeout} seconds",
            exit_code=result.exit_code,
            code="build_timeout",
        )
    if not result.success:
        logger.error("%s failed with exit code %d", stage, result.exit_code)
        raise BuildFailure(
            stage=stage,
            diagnostic=result.tail,
            exit_code=result.exit_code,
        )
    return result


def stdout_is_terminal() -> bool:
    """Whether output goes to an interactive terminal."""
    return sys.stdout.isatty()


__all__ = [
    "ContainerRun",
    "compose_cargo_command",
    "compose_run_command",
    "remove_container",
    "run_container",
    "stdout_is_terminal",
]
