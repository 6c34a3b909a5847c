"""Build service module.

This module provides the high-level build API:
- compile_source(): Run cargo inside a toolchain image and collect the binary
- default_artifact_path(): Where a build places its binary

No change detection happens here: every call runs cargo and relies on
cargo's own incremental compilation.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from crossdeploy.builds.artifacts import (
    generate_manifest,
    inspect_artifact,
    manifest_path_for,
    write_manifest,
)
from crossdeploy.builds.cache import DependencyRegistryCache
from crossdeploy.builds.runner import (
    ContainerRun,
    compose_cargo_command,
    run_container,
    stdout_is_terminal,
)
from crossdeploy.config import get_settings
from crossdeploy.errors import BuildFailure, ImageNotFoundError
from crossdeploy.toolchain.builder import image_exists
from crossdeploy.types import BuildArtifact, BuildMode

if TYPE_CHECKING:
    from crossdeploy.config import Settings
    from crossdeploy.toolchain.models import ToolchainImageRecord

logger = logging.getLogger(__name__)


def cargo_output_path(
    source_dir: Path,
    target_triple: str,
    profile: str,
    binary_name: str,
) -> Path:
    """Return where cargo writes the binary inside the source tree."""
    return source_dir / "target" / target_triple / profile / binary_name


def default_artifact_path(settings: Settings, target_triple: str) -> Path:
    """Return the configured artifact path, or cargo's own output path."""
    if settings.artifact_path is not None:
        return settings.artifact_path
    return cargo_output_path(
        settings.source_dir,
        target_triple,
        settings.build_profile,
        settings.binary_name,
    )


def compile_source(
    image: ToolchainImageRecord,
    source_dir: Path,
    cache: DependencyRegistryCache,
    output_path: Path,
    settings: Settings | None = None,
    mode: BuildMode = BuildMode.BUILD,
    expected_float_abi: str | None = None,
) -> BuildArtifact | None:
    """Compile a source tree inside a toolchain image.

    Args:
        image: Ready toolchain image record.
        source_dir: Source tree, mounted read-write.
        cache: Dependency registry cache handle.
        output_path: Where the binary is placed on success.
        settings: Application settings.
        mode: BUILD runs `cargo build`, FIX runs `cargo fix`.
        expected_float_abi: Float ABI the artifact must report when
            `settings.verify_abi` is enabled.

    Returns:
        BuildArtifact for BUILD mode, None for FIX mode.

    Raises:
        ImageNotFoundError: If the image is missing from the local store.
        CacheUnavailableError: If the cache cannot be written.
        BuildFailure: If cargo fails or the binary is missing.
    """
    if settings is None:
        settings = get_settings()

    if not image_exists(image.tag):
        raise ImageNotFoundError(image.tag)

    cache.ensure()

    command = compose_cargo_command(
        mode,
        image.target_triple,
        profile=settings.build_profile,
        fix_args=settings.fix_args,
    )
    run = ContainerRun(
        image=image.tag,
        source_dir=source_dir,
        cache=cache,
        command=command,
        workdir=settings.container_workdir,
        tty=stdout_is_terminal(),
    )
    stage = "fix" if mode == BuildMode.FIX else "compile"
    log_path = settings.cache_dir / "logs" / f"{stage}.log"

    with cache.lock():
        run_container(run, stage, log_path=log_path, timeout=settings.compile_timeout)

    if mode == BuildMode.FIX:
        logger.info("cargo fix finished for %s", source_dir)
        return None

    built = cargo_output_path(
        source_dir,
        image.target_triple,
        settings.build_profile,
        settings.binary_name,
    )
    if not built.is_file():
        raise BuildFailure(
            stage="artifact",
            diagnostic=f"Build finished but binary is missing: {built}",
            code="artifact_missing",
        )

    if built.resolve() != output_path.resolve():
        output_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(built, output_path)

    artifact = inspect_artifact(output_path, image.target_triple)
    write_manifest(
        generate_manifest(
            artifact,
            image_tag=image.tag,
            fingerprint=image.fingerprint,
            target_name=image.target_name,
        ),
        manifest_path_for(output_path),
    )
    logger.info(
        "Built %s (%d bytes, %s, float ABI %s)",
        output_path,
        artifact.size_bytes,
        artifact.elf_machine or "not ELF",
        artifact.float_abi or "unknown",
    )

    if (
        settings.verify_abi
        and expected_float_abi is not None
        and artifact.float_abi != expected_float_abi
    ):
        raise BuildFailure(
            stage="abi",
            diagnostic=(
                f"Artifact {output_path} reports float ABI "
                f"'{artifact.float_abi}', expected '{expected_float_abi}'"
            ),
            code="abi_mismatch",
        )

    return artifact


__all__ = ["cargo_output_path", "compile_source", "default_artifact_path"]
