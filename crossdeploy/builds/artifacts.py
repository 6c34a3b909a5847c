"""Artifact inspection and manifest generation.

This module handles:
- Computing checksums of built binaries
- Reading the ELF header to identify machine and float ABI
- Generating and writing artifact manifests
"""

from __future__ import annotations

import hashlib
import json
import logging
import struct
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from crossdeploy.types import BuildArtifact

logger = logging.getLogger(__name__)

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB

ELF_MAGIC = b"\x7fELF"

# e_machine values
ELF_MACHINES = {
    3: "x86",
    40: "ARM",
    62: "x86-64",
    183: "AArch64",
    243: "RISC-V",
}

EM_ARM = 40
EM_AARCH64 = 183

# ARM EABI e_flags
EF_ARM_ABI_FLOAT_SOFT = 0x200
EF_ARM_ABI_FLOAT_HARD = 0x400

MANIFEST_SUFFIX = ".manifest.json"


@dataclass
class ElfHeader:
    """The parts of an ELF header relevant to ABI checks."""

    elf_class: int
    little_endian: bool
    machine: int
    flags: int

    @property
    def machine_name(self) -> str:
        """Human-readable machine name."""
        return ELF_MACHINES.get(self.machine, f"unknown({self.machine})")

    @property
    def float_abi(self) -> str | None:
        """Float calling convention, or None when the header does not say."""
        if self.machine == EM_AARCH64:
            return "hard"
        if self.machine != EM_ARM:
            return None
        if self.flags & EF_ARM_ABI_FLOAT_HARD:
            return "hard"
        if self.flags & EF_ARM_ABI_FLOAT_SOFT:
            return "soft"
        return None


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def read_elf_header(file_path: Path) -> ElfHeader | None:
    """Read the ELF header of a file.

    Args:
        file_path: Path to the file.

    Returns:
        ElfHeader, or None if the file is not ELF.
    """
    with file_path.open("rb") as f:
        data = f.read(64)

    if len(data) < 52 or data[:4] != ELF_MAGIC:
        return None

    elf_class = data[4]
    little_endian = data[5] == 1
    order = "<" if little_endian else ">"

    (machine,) = struct.unpack_from(f"{order}H", data, 18)
    if elf_class == 1:
        flags_offset = 36
    elif elf_class == 2 and len(data) >= 64:
        flags_offset = 48
    else:
        return None
    (flags,) = struct.unpack_from(f"{order}I", data, flags_offset)

    return ElfHeader(
        elf_class=elf_class,
        little_endian=little_endian,
        machine=machine,
        flags=flags,
    )


def inspect_artifact(file_path: Path, target_triple: str) -> BuildArtifact:
    """Describe a built binary.

    Args:
        file_path: Path to the binary.
        target_triple: Triple it was built for.

    Returns:
        BuildArtifact with size, hash, and ELF details.
    """
    header = read_elf_header(file_path)
    if header is None:
        logger.warning("Artifact is not an ELF file: %s", file_path)

    return BuildArtifact(
        path=file_path,
        target_triple=target_triple,
        size_bytes=file_path.stat().st_size,
        sha256=compute_file_hash(file_path),
        elf_machine=header.machine_name if header else None,
        float_abi=header.float_abi if header else None,
        built_at=datetime.now(timezone.utc),
    )


def manifest_path_for(artifact_path: Path) -> Path:
    """Return the manifest path written next to an artifact."""
    return artifact_path.with_name(artifact_path.name + MANIFEST_SUFFIX)


def generate_manifest(
    artifact: BuildArtifact,
    image_tag: str | None = None,
    fingerprint: str | None = None,
    target_name: str | None = None,
) -> dict[str, Any]:
    """Generate an artifact manifest.

    Args:
        artifact: The inspected artifact.
        image_tag: Toolchain image used for the build.
        fingerprint: Fingerprint of that image.
        target_name: Toolchain spec name.

    Returns:
        Manifest dictionary suitable for JSON serialization.
    """
    now = datetime.now(timezone.utc)
    data = asdict(artifact)
    data["path"] = str(artifact.path)
    data["built_at"] = artifact.built_at.isoformat() if artifact.built_at else None

    manifest: dict[str, Any] = {
        "version": "1.0",
        "generated_at": now.isoformat(),
        "artifact": data,
    }
    if image_tag:
        manifest["image_tag"] = image_tag
    if fingerprint:
        manifest["fingerprint"] = fingerprint
    if target_name:
        manifest["target_name"] = target_name
    return manifest


def write_manifest(manifest: dict[str, Any], output_path: Path) -> None:
    """Write a manifest to a JSON file."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, sort_keys=True)
        f.write("\n")
    logger.debug("Wrote manifest to %s", output_path)


__all__ = [
    "ElfHeader",
    "compute_file_hash",
    "generate_manifest",
    "inspect_artifact",
    "manifest_path_for",
    "read_elf_header",
    "write_manifest",
]
