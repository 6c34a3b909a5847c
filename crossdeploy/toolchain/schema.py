"""Pydantic model for toolchain spec validation.

A toolchain spec pins every component of one cross-compilation target:
binutils, kernel headers, C library and compiler versions, plus the
compiler flags that fix the target ABI. Validation here is syntactic only;
whether the flags jointly describe one consistent ABI is only proven by
building the image (see `crossdeploy.toolchain.abi`).
"""

import re
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_.\-]+$")
VERSION_PATTERN = re.compile(r"^\d+(\.\d+)+$")
KERNEL_SERIES_PATTERN = re.compile(r"^(\d+)\.x$")
TRIPLE_PATTERN = re.compile(r"^[a-z0-9_.]+(-[a-z0-9_.]+){1,3}$")
IMAGE_REF_PATTERN = re.compile(
    r"^[a-z0-9][a-z0-9._/\-]*(:[A-Za-z0-9_.\-]+)?(@sha256:[0-9a-f]{64})?$"
)

# Pinned defaults for specs that do not name their own
DEFAULT_RUST_VERSION = "1.75.0"
DEFAULT_BASE_IMAGE = "debian:bullseye-20240513"


def _last_flag_value(flags: list[str], prefix: str) -> str | None:
    value: str | None = None
    for flag in flags:
        if flag.startswith(prefix):
            value = flag[len(prefix) :]
    return value


class ToolchainSpec(BaseModel):
    """Immutable description of one embedded build target.

    Attributes:
        name: Target identifier, also the image tag prefix.
        description: Optional longer description.
        target_triple: Rust/LLVM target triple.
        gcc_triple: GNU triple the cross binutils/GCC are built for.
        linux_arch: Kernel ARCH used when installing headers.
        libc_version: glibc version.
        binutils_version: binutils version.
        kernel_series: kernel.org series directory (e.g. '5.x').
        kernel_version: Linux version for headers.
        compiler_version: GCC version.
        multilib_profile: GCC --with-multilib-list profile, if any.
        compiler_configure_flags: Extra GCC configure flags, in order.
        target_compiler_flags: Flags encoding float ABI, FPU and ISA level.
        debian_arch_name: Debian architecture name for target packages.
        pkg_config_triple: Triple used for the pkg-config search path.
        rust_version: Rust toolchain installed with rustup.
        base_image: Build host image every stage starts from.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: Annotated[str, Field(min_length=1, max_length=100)]
    description: str | None = Field(default=None)

    target_triple: str = Field(description="Rust target triple")
    gcc_triple: str = Field(description="GNU target triple")
    linux_arch: str = Field(default="arm", description="Kernel ARCH")

    libc_version: str
    binutils_version: str
    kernel_series: str
    kernel_version: str
    compiler_version: str
    multilib_profile: str | None = Field(default=None)

    compiler_configure_flags: tuple[str, ...] = Field(default=())
    target_compiler_flags: tuple[str, ...] = Field(default=())

    debian_arch_name: str
    pkg_config_triple: str

    rust_version: str = Field(default=DEFAULT_RUST_VERSION)
    base_image: str = Field(default=DEFAULT_BASE_IMAGE)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate name is usable in a Docker tag."""
        if not NAME_PATTERN.match(v):
            raise ValueError(
                f"name must contain only alphanumerics, '.', '_', '-', got '{v}'"
            )
        return v

    @field_validator(
        "libc_version",
        "binutils_version",
        "kernel_version",
        "compiler_version",
        "rust_version",
    )
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate versions are dotted numbers."""
        if not VERSION_PATTERN.match(v):
            raise ValueError(f"version must be dotted numbers (e.g. '2.28'), got '{v}'")
        return v

    @field_validator("kernel_series")
    @classmethod
    def validate_kernel_series(cls, v: str) -> str:
        """Validate kernel series looks like '5.x'."""
        if not KERNEL_SERIES_PATTERN.match(v):
            raise ValueError(f"kernel_series must look like '5.x', got '{v}'")
        return v

    @field_validator("target_triple", "gcc_triple", "pkg_config_triple")
    @classmethod
    def validate_triple(cls, v: str) -> str:
        """Validate triples are dash-separated identifiers."""
        if not TRIPLE_PATTERN.match(v):
            raise ValueError(f"invalid target triple '{v}'")
        return v

    @field_validator("base_image")
    @classmethod
    def validate_base_image(cls, v: str) -> str:
        """Validate the base image is a tagged or digest-pinned reference."""
        if not IMAGE_REF_PATTERN.match(v) or (":" not in v and "@" not in v):
            raise ValueError(f"base_image must be a pinned image reference, got '{v}'")
        return v

    @field_validator("compiler_configure_flags", "target_compiler_flags")
    @classmethod
    def validate_flags(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Validate every flag is a dash option without whitespace."""
        for flag in v:
            if not flag.startswith("-") or any(c.isspace() for c in flag):
                raise ValueError(f"invalid compiler flag '{flag}'")
        return v

    @model_validator(mode="after")
    def validate_kernel_version_in_series(self) -> "ToolchainSpec":
        """Kernel version must belong to the declared series."""
        match = KERNEL_SERIES_PATTERN.match(self.kernel_series)
        if match and self.kernel_version.split(".")[0] != match.group(1):
            raise ValueError(
                f"kernel_version '{self.kernel_version}' is not in series "
                f"'{self.kernel_series}'"
            )
        return self

    @property
    def float_abi(self) -> str:
        """Float ABI from -mfloat-abi (GCC default is 'soft')."""
        return _last_flag_value(list(self.target_compiler_flags), "-mfloat-abi=") or "soft"

    @property
    def fpu(self) -> str | None:
        """FPU variant from -mfpu, if given."""
        return _last_flag_value(list(self.target_compiler_flags), "-mfpu=")

    @property
    def arch_level(self) -> str | None:
        """Instruction-set level from -march, if given."""
        return _last_flag_value(list(self.target_compiler_flags), "-march=")


__all__ = ["ToolchainSpec"]
