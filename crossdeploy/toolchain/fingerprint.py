"""Toolchain image fingerprinting.

This module handles:
- Canonical snapshot of the spec fields that affect the image
- Docker build-arg mapping for a spec
- Deterministic hash over spec, recipe and schema version
- Content-addressed image tags

Same spec and recipe produce the same fingerprint, hence the same image tag,
which is what lets the image builder skip work it has already done.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from crossdeploy.toolchain.schema import ToolchainSpec

# Schema version for fingerprint format; bump when the format changes
FINGERPRINT_SCHEMA_VERSION = "1"

# Recipe shipped with the package
DEFAULT_RECIPE = Path(__file__).parent / "Dockerfile"

# Hex characters of the fingerprint used in image tags
TAG_HASH_LENGTH = 12


@dataclass
class ImageInputs:
    """Canonical representation of all inputs that shape a toolchain image.

    Attributes:
        schema_version: Version of the fingerprint schema.
        spec_snapshot: Normalized spec data.
        build_args: Docker build arguments derived from the spec.
        recipe_hash: SHA-256 of the Dockerfile recipe.
    """

    schema_version: str = FINGERPRINT_SCHEMA_VERSION
    spec_snapshot: dict[str, Any] = field(default_factory=dict)
    build_args: dict[str, str] = field(default_factory=dict)
    recipe_hash: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


def normalize_spec_snapshot(spec: ToolchainSpec) -> dict[str, Any]:
    """Create a normalized spec snapshot.

    `description` is excluded since it does not affect the image. Flag
    sequences keep their order: later flags override earlier ones.
    """
    snapshot = spec.model_dump(mode="json", exclude={"description"})
    snapshot["compiler_configure_flags"] = list(spec.compiler_configure_flags)
    snapshot["target_compiler_flags"] = list(spec.target_compiler_flags)
    return snapshot


def build_args(spec: ToolchainSpec) -> dict[str, str]:
    """Return the Docker build arguments for a spec.

    Args:
        spec: ToolchainSpec instance.

    Returns:
        Ordered mapping of build-arg name to value.
    """
    return {
        "GLIBC_VERSION": spec.libc_version,
        "BINUTILS_VERSION": spec.binutils_version,
        "LINUX_SERIES": spec.kernel_series,
        "LINUX_VERSION": spec.kernel_version,
        "GCC_VERSION": spec.compiler_version,
        "GCC_MULTILIBS": spec.multilib_profile or "",
        "GCC_CONFIGURE_FLAGS": " ".join(spec.compiler_configure_flags),
        "TARGET_GCC": spec.gcc_triple,
        "TARGET_LINUX": spec.linux_arch,
        "TARGET_DEBIAN": spec.debian_arch_name,
        "TARGET_PKGCONFIG": spec.pkg_config_triple,
        "TARGET_RUST": spec.target_triple,
        "CPPFLAGS": " ".join(spec.target_compiler_flags),
        "RUST_VERSION": spec.rust_version,
        "BASE_IMAGE": spec.base_image,
    }


def hash_recipe(recipe: Path = DEFAULT_RECIPE) -> str:
    """Return the SHA-256 hex digest of a recipe file."""
    return hashlib.sha256(recipe.read_bytes()).hexdigest()


def create_image_inputs(
    spec: ToolchainSpec,
    recipe: Path = DEFAULT_RECIPE,
) -> ImageInputs:
    """Create canonical image inputs from a spec and recipe."""
    return ImageInputs(
        schema_version=FINGERPRINT_SCHEMA_VERSION,
        spec_snapshot=normalize_spec_snapshot(spec),
        build_args=build_args(spec),
        recipe_hash=hash_recipe(recipe),
    )


def compute_fingerprint(inputs: ImageInputs) -> str:
    """Compute a fingerprint from image inputs.

    The fingerprint is a SHA-256 hash of the canonical JSON representation
    of the inputs.

    Args:
        inputs: ImageInputs instance.

    Returns:
        Fingerprint as hex string (sha256:...).
    """
    canonical_json = json.dumps(
        inputs.to_dict(),
        sort_keys=True,
        separators=(",", ":"),
    )
    digest = hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()
    return f"sha256:{digest}"


def fingerprint_spec(
    spec: ToolchainSpec,
    recipe: Path = DEFAULT_RECIPE,
) -> tuple[str, ImageInputs]:
    """Convenience function to fingerprint a spec directly.

    Returns:
        Tuple of (fingerprint, ImageInputs).
    """
    inputs = create_image_inputs(spec, recipe)
    return compute_fingerprint(inputs), inputs


def image_tag(spec: ToolchainSpec, fingerprint: str, repository: str) -> str:
    """Return the content-addressed image tag for a spec.

    Args:
        spec: ToolchainSpec instance.
        fingerprint: Fingerprint from compute_fingerprint().
        repository: Docker repository (e.g. 'pidj/x-compiler').

    Returns:
        Tag of the form '<repository>:<name>-<hash prefix>'.
    """
    digest = fingerprint.split(":", 1)[-1]
    return f"{repository}:{spec.name}-{digest[:TAG_HASH_LENGTH]}"


__all__ = [
    "DEFAULT_RECIPE",
    "FINGERPRINT_SCHEMA_VERSION",
    "ImageInputs",
    "build_args",
    "compute_fingerprint",
    "create_image_inputs",
    "fingerprint_spec",
    "hash_recipe",
    "image_tag",
    "normalize_spec_snapshot",
]
