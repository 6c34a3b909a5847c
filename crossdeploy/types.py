"""Shared type definitions for crossdeploy.

This module contains dataclasses and enums shared across subpackages to
avoid circular imports.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from pathlib import Path


class ImageState(str, Enum):
    """State of a toolchain image in the catalog."""

    PENDING = "pending"
    READY = "ready"
    BROKEN = "broken"


class BuildMode(str, Enum):
    """What to run inside the build container."""

    BUILD = "build"
    FIX = "fix"


@dataclass(frozen=True)
class DeploymentTarget:
    """Remote device that receives and runs the artifact.

    Attributes:
        host: Device hostname or address.
        user: Login principal on the device.
        path: Remote path of the executable.
        forward_env: Names of local variables forwarded to the remote process.
        display: Display target set for the remote process.
        port: Optional SSH port.
        ssh_options: Extra `-o` options for ssh/scp.
    """

    host: str
    user: str
    path: str
    forward_env: tuple[str, ...] = ()
    display: str = ":0"
    port: int | None = None
    ssh_options: tuple[str, ...] = ()

    @property
    def login(self) -> str:
        """Return the `user@host` login string."""
        return f"{self.user}@{self.host}"

    @property
    def destination(self) -> str:
        """Return the scp destination `user@host:path`."""
        return f"{self.login}:{self.path}"

    def with_remote_name(self, name: str) -> DeploymentTarget:
        """Return a copy whose executable sits next to `path` under `name`."""
        parent = posixpath.dirname(self.path) or "."
        return replace(self, path=posixpath.join(parent, name))


@dataclass
class RemoteExitStatus:
    """Termination of the remote process. This is data, not an error."""

    code: int
    interrupted: bool = False

    @property
    def succeeded(self) -> bool:
        """Whether the remote process exited cleanly."""
        return self.code == 0 and not self.interrupted


@dataclass
class TransferAck:
    """Acknowledgement of a completed artifact transfer."""

    artifact: Path
    destination: str
    size_bytes: int
    duration_s: float


@dataclass
class BuildArtifact:
    """A compiled binary produced by a build.

    Attributes:
        path: Filesystem path of the binary.
        target_triple: Triple the binary was compiled for.
        size_bytes: File size in bytes.
        sha256: SHA-256 hash of the file.
        elf_machine: ELF machine name (e.g. 'ARM'), None if not ELF.
        float_abi: 'hard', 'soft' or None when not determinable.
        built_at: Completion time of the build.
    """

    path: Path
    target_triple: str
    size_bytes: int
    sha256: str
    elf_machine: str | None = None
    float_abi: str | None = None
    built_at: datetime | None = None


__all__ = [
    "BuildArtifact",
    "BuildMode",
    "DeploymentTarget",
    "ImageState",
    "RemoteExitStatus",
    "TransferAck",
]
