"""Toolchain image builder for executing Docker builds.

This module handles:
- Composing `docker build` commands for each recipe stage
- Building stages in dependency order with verbatim output
- Mapping a failing stage to a BuildFailure
- Querying and removing images in the local image store
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path

from crossdeploy.errors import BuildFailure
from crossdeploy.process import run_quiet, run_streaming
from crossdeploy.toolchain.fingerprint import DEFAULT_RECIPE, build_args
from crossdeploy.toolchain.schema import ToolchainSpec

logger = logging.getLogger(__name__)

# Recipe stages in dependency order; each stage's sysroot output feeds the next
TOOLCHAIN_STAGES: tuple[str, ...] = ("binutils", "kernel-headers", "libc", "compiler")

# Final stage, the only one that is tagged
FINAL_STAGE = "toolchain"

DOCKER = "docker"


def compose_stage_command(
    spec: ToolchainSpec,
    stage: str,
    context_dir: Path,
    recipe: Path = DEFAULT_RECIPE,
    tag: str | None = None,
    no_cache: bool = False,
) -> list[str]:
    """Compose the `docker build` command for one recipe stage.

    Args:
        spec: ToolchainSpec instance.
        stage: Recipe stage name (`--target`).
        context_dir: Build context directory.
        recipe: Path to the Dockerfile recipe.
        tag: Tag to apply (only for the final stage).
        no_cache: Disable Docker's layer cache.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = [DOCKER, "build", "--target", stage, "-f", str(recipe)]
    for name, value in build_args(spec).items():
        cmd.extend(["--build-arg", f"{name}={value}"])
    if no_cache:
        cmd.append("--no-cache")
    if tag:
        cmd.extend(["-t", tag])
    cmd.append(str(context_dir))
    return cmd


def build_toolchain_image(
    spec: ToolchainSpec,
    tag: str,
    log_path: Path,
    recipe: Path = DEFAULT_RECIPE,
    no_cache: bool = False,
    timeout: int | None = None,
) -> None:
    """Build every recipe stage in order, then tag the final stage.

    Intermediate stages are never tagged, so a failure leaves nothing
    published under `tag`.

    Args:
        spec: ToolchainSpec instance.
        tag: Tag for the finished image.
        log_path: Log file the build output is teed to.
        recipe: Path to the Dockerfile recipe.
        no_cache: Rebuild from scratch. Only the first stage bypasses the
            layer cache; later stages reuse the layers it produced.
        timeout: Per-stage timeout in seconds (None = no timeout).

    Raises:
        BuildFailure: Naming the first stage that failed.
    """
    with tempfile.TemporaryDirectory(prefix="crossdeploy_ctx_") as ctx:
        context_dir = Path(ctx)
        for index, stage in enumerate((*TOOLCHAIN_STAGES, FINAL_STAGE)):
            cmd = compose_stage_command(
                spec,
                stage,
                context_dir,
                recipe=recipe,
                tag=tag if stage == FINAL_STAGE else None,
                # Later stages reuse the layers the first uncached stage rebuilt
                no_cache=no_cache and index == 0,
            )
            logger.info("Building toolchain stage %s for %s", stage, spec.name)
            try:
                result = run_streaming(cmd, log_path=log_path, timeout=timeout)
            except OSError as e:
                raise BuildFailure(
                    stage=stage,
                    diagnostic=f"Failed to execute docker: {e}",
                    code="execution_error",
                ) from e

            if result.timed_out:
                raise BuildFailure(
                    stage=stage,
                    diagnostic=result.tail + f"\nTimed out after {timeout} seconds",
                    exit_code=result.exit_code,
                    code="build_timeout",
                )
            if not result.success:
                logger.error(
                    "Toolchain stage %s failed with exit code %d. See log: %s",
                    stage,
                    result.exit_code,
                    log_path,
                )
                raise BuildFailure(
                    stage=stage,
                    diagnostic=result.tail,
                    exit_code=result.exit_code,
                )


def image_exists(tag: str) -> bool:
    """Check whether the local image store has `tag`."""
    try:
        result = run_quiet([DOCKER, "image", "inspect", "--format", "{{.Id}}", tag])
    except OSError as e:
        logger.warning("Failed to run docker image inspect: %s", e)
        return False
    return result.returncode == 0


def remove_docker_image(tag: str) -> bool:
    """Remove `tag` from the local image store.

    Returns:
        True if docker removed the image.
    """
    result = run_quiet([DOCKER, "image", "rm", tag])
    if result.returncode != 0:
        logger.warning("docker image rm %s failed: %s", tag, result.stderr.strip())
        return False
    return True


__all__ = [
    "FINAL_STAGE",
    "TOOLCHAIN_STAGES",
    "build_toolchain_image",
    "compose_stage_command",
    "image_exists",
    "remove_docker_image",
]
