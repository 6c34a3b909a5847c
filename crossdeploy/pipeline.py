"""Pipeline sequencing for crossdeploy.

Each stage is a strict prerequisite of the next:

    ToolchainSpec -> image -> artifact -> transfer -> remote run

Stage failures propagate as exceptions and halt the pipeline; a later stage
is never started after an earlier one fails. The remote process's own exit
status is returned as data.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path

from sqlalchemy.orm import Session

from crossdeploy.builds.cache import DependencyRegistryCache
from crossdeploy.builds.service import compile_source, default_artifact_path
from crossdeploy.config import Settings
from crossdeploy.deploy.launcher import deployment_target_from_settings, run
from crossdeploy.deploy.transport import transfer
from crossdeploy.errors import BuildFailure
from crossdeploy.toolchain.io import get_toolchain_spec
from crossdeploy.toolchain.schema import ToolchainSpec
from crossdeploy.toolchain.service import ensure_image
from crossdeploy.types import BuildArtifact, BuildMode, RemoteExitStatus, TransferAck

logger = logging.getLogger(__name__)


def resolve_spec(settings: Settings, target_name: str | None = None) -> ToolchainSpec:
    """Return the named toolchain spec, or the configured default."""
    return get_toolchain_spec(target_name or settings.default_target, settings.spec_dir)


def build_stage(
    session: Session,
    settings: Settings,
    target_name: str | None = None,
    rebuild_image: bool = False,
    mode: BuildMode = BuildMode.BUILD,
    output_path: Path | None = None,
) -> BuildArtifact | None:
    """Ensure the toolchain image, then compile the source tree in it.

    Args:
        session: Database session for the image catalog.
        settings: Application settings.
        target_name: Toolchain spec name (defaults to `settings.default_target`).
        rebuild_image: Rebuild the image without Docker's layer cache.
        mode: Plain build or `cargo fix`.
        output_path: Where to place the binary (defaults to the configured
            artifact path).

    Returns:
        BuildArtifact, or None in fix mode.

    Raises:
        UnknownTargetError: If the spec name is unknown.
        BuildFailure: If the image or the compile fails.
        CacheUnavailableError: If the dependency cache cannot be used.
    """
    spec = resolve_spec(settings, target_name)
    image = ensure_image(session, spec, settings, force_rebuild=rebuild_image)
    session.commit()

    cache = DependencyRegistryCache(settings.cargo_home, settings.container_home)
    if output_path is None:
        output_path = default_artifact_path(settings, spec.target_triple)

    return compile_source(
        image,
        settings.source_dir,
        cache,
        output_path,
        settings,
        mode=mode,
        expected_float_abi=spec.float_abi,
    )


def fix_stage(
    session: Session,
    settings: Settings,
    target_name: str | None = None,
    rebuild_image: bool = False,
) -> None:
    """Run `cargo fix` with the same environment and mounts as a build."""
    build_stage(session, settings, target_name, rebuild_image, mode=BuildMode.FIX)


def copy_stage(settings: Settings, artifact_path: Path | None = None) -> TransferAck:
    """Transfer the artifact to the configured deployment target.

    Raises:
        TransferFailure: If the artifact is missing or the copy fails.
    """
    if artifact_path is None:
        spec = resolve_spec(settings)
        artifact_path = default_artifact_path(settings, spec.target_triple)
    target = deployment_target_from_settings(settings)
    return transfer(artifact_path, target, settings)


def run_stage(
    settings: Settings,
    environ: Mapping[str, str] | None = None,
) -> RemoteExitStatus:
    """Launch the deployed executable on the configured target.

    Raises:
        SessionFailure: If the session cannot be established.
    """
    target = deployment_target_from_settings(settings)
    return run(target, settings=settings, environ=environ)


def deploy_artifact(
    artifact_path: Path,
    settings: Settings,
    environ: Mapping[str, str] | None = None,
) -> RemoteExitStatus:
    """Copy an explicit artifact and run it in one step.

    The remote filename is the artifact's basename, placed in the directory
    of the configured remote path.

    Raises:
        TransferFailure: If the copy fails; nothing runs remotely.
        SessionFailure: If the session cannot be established.
    """
    target = deployment_target_from_settings(settings).with_remote_name(artifact_path.name)
    transfer(artifact_path, target, settings)
    return run(target, settings=settings, environ=environ)


def run_pipeline(
    session: Session,
    settings: Settings,
    artifact_path: Path | None = None,
    target_name: str | None = None,
    rebuild_image: bool = False,
    environ: Mapping[str, str] | None = None,
) -> RemoteExitStatus:
    """Build, transfer and run in order, halting at the first failure.

    Args:
        session: Database session for the image catalog.
        settings: Application settings.
        artifact_path: Explicit artifact path; its basename becomes the
            remote filename. Defaults to the configured paths.
        target_name: Toolchain spec name.
        rebuild_image: Rebuild the image without Docker's layer cache.
        environ: Local environment for variable forwarding.

    Returns:
        RemoteExitStatus of the remote process.
    """
    artifact = build_stage(
        session,
        settings,
        target_name=target_name,
        rebuild_image=rebuild_image,
        output_path=artifact_path,
    )
    if artifact is None:
        raise BuildFailure(
            stage="artifact",
            diagnostic="Build produced no artifact",
            code="artifact_missing",
        )
    if artifact_path is not None:
        return deploy_artifact(artifact.path, settings, environ)

    copy_stage(settings, artifact.path)
    return run_stage(settings, environ)


__all__ = [
    "build_stage",
    "copy_stage",
    "deploy_artifact",
    "fix_stage",
    "resolve_spec",
    "run_pipeline",
    "run_stage",
]
