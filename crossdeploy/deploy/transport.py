"""Artifact transport to the remote device.

Copies a built binary with `scp -p` so the executable bit survives. The
device is not required to exist until this step; nothing here is retried.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING

from crossdeploy.config import get_settings
from crossdeploy.errors import TransferFailure
from crossdeploy.process import run_streaming
from crossdeploy.types import DeploymentTarget, TransferAck

if TYPE_CHECKING:
    from crossdeploy.config import Settings

logger = logging.getLogger(__name__)

SCP = "scp"


def compose_scp_command(
    artifact: Path,
    target: DeploymentTarget,
    connect_timeout: int = 10,
) -> list[str]:
    """Compose the scp command copying `artifact` to `target`.

    Args:
        artifact: Local binary.
        target: Deployment target.
        connect_timeout: ConnectTimeout in seconds.

    Returns:
        Command as list of strings.
    """
    cmd = [SCP, "-p", "-o", f"ConnectTimeout={connect_timeout}"]
    if target.port is not None:
        cmd.extend(["-P", str(target.port)])
    for option in target.ssh_options:
        cmd.extend(["-o", option])
    cmd.append(str(artifact))
    cmd.append(target.destination)
    return cmd


def transfer(
    artifact: Path,
    target: DeploymentTarget,
    settings: Settings | None = None,
) -> TransferAck:
    """Copy an artifact to the remote device, preserving its mode bits.

    Args:
        artifact: Local binary to copy.
        target: Deployment target; the binary lands at `target.path`.
        settings: Application settings.

    Returns:
        TransferAck describing the completed copy.

    Raises:
        TransferFailure: If the artifact is missing or scp fails.
    """
    if settings is None:
        settings = get_settings()

    if not artifact.is_file():
        raise TransferFailure(
            f"artifact not found: {artifact}",
            code="artifact_missing",
        )

    size_bytes = artifact.stat().st_size
    cmd = compose_scp_command(artifact, target, settings.connect_timeout)
    log_path = settings.cache_dir / "logs" / "transfer.log"

    logger.info("Copying %s to %s", artifact, target.destination)
    started = time.monotonic()
    try:
        result = run_streaming(cmd, log_path=log_path, timeout=settings.transfer_timeout)
    except OSError as e:
        raise TransferFailure(f"failed to execute scp: {e}", code="execution_error") from e

    if result.timed_out:
        raise TransferFailure(
            f"timed out after {settings.transfer_timeout} seconds",
            exit_code=result.exit_code,
            code="transfer_timeout",
        )
    if not result.success:
        cause = result.tail.strip() or f"scp exited with code {result.exit_code}"
        raise TransferFailure(cause, exit_code=result.exit_code)

    duration = time.monotonic() - started
    logger.info("Copied %d bytes in %.1fs", size_bytes, duration)
    return TransferAck(
        artifact=artifact,
        destination=target.destination,
        size_bytes=size_bytes,
        duration_s=duration,
    )


__all__ = ["compose_scp_command", "transfer"]
