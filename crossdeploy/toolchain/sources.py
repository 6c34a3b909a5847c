"""Toolchain source distribution URLs and availability probes.

Every version pinned in a spec must name a retrievable source tarball;
the image recipe downloads them from these locations. Probing them up front
turns a typo in a version into an immediate error instead of a failure deep
inside a Docker stage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from crossdeploy.toolchain.schema import ToolchainSpec

logger = logging.getLogger(__name__)

GNU_MIRROR_BASE = "https://ftp.gnu.org/gnu"
KERNEL_MIRROR_BASE = "https://cdn.kernel.org/pub/linux/kernel"

# Timeout for HEAD requests (seconds)
HEAD_TIMEOUT = 30


@dataclass
class SourceURL:
    """One source tarball required by a toolchain image."""

    stage: str
    component: str
    version: str
    url: str


@dataclass
class SourceCheck:
    """Result of probing one source URL."""

    source: SourceURL
    available: bool
    status_code: int | None = None
    error: str | None = None


def source_urls(
    spec: ToolchainSpec,
    gnu_base: str = GNU_MIRROR_BASE,
    kernel_base: str = KERNEL_MIRROR_BASE,
) -> list[SourceURL]:
    """Return the source tarball URLs for a spec, in build order.

    Args:
        spec: ToolchainSpec instance.
        gnu_base: Base URL of a GNU mirror.
        kernel_base: Base URL of a kernel.org mirror.

    Returns:
        List of SourceURL, one per component.
    """
    gcc = spec.compiler_version
    return [
        SourceURL(
            stage="binutils",
            component="binutils",
            version=spec.binutils_version,
            url=f"{gnu_base}/binutils/binutils-{spec.binutils_version}.tar.xz",
        ),
        SourceURL(
            stage="kernel-headers",
            component="linux",
            version=spec.kernel_version,
            url=(
                f"{kernel_base}/v{spec.kernel_series}/"
                f"linux-{spec.kernel_version}.tar.xz"
            ),
        ),
        SourceURL(
            stage="libc",
            component="glibc",
            version=spec.libc_version,
            url=f"{gnu_base}/glibc/glibc-{spec.libc_version}.tar.xz",
        ),
        SourceURL(
            stage="compiler",
            component="gcc",
            version=gcc,
            url=f"{gnu_base}/gcc/gcc-{gcc}/gcc-{gcc}.tar.xz",
        ),
    ]


def check_source(client: httpx.Client, source: SourceURL) -> SourceCheck:
    """Probe one source URL with a HEAD request.

    Args:
        client: HTTPX client instance.
        source: SourceURL to probe.

    Returns:
        SourceCheck describing availability.
    """
    try:
        response = client.head(source.url, timeout=HEAD_TIMEOUT)
    except httpx.HTTPError as e:
        logger.warning("Failed to probe %s: %s", source.url, e)
        return SourceCheck(source=source, available=False, error=str(e))

    available = response.status_code < 400
    if not available:
        logger.warning("Source not available (%d): %s", response.status_code, source.url)
    return SourceCheck(
        source=source,
        available=available,
        status_code=response.status_code,
    )


def check_sources(
    spec: ToolchainSpec,
    client: httpx.Client | None = None,
) -> list[SourceCheck]:
    """Probe every source URL for a spec.

    Args:
        spec: ToolchainSpec instance.
        client: HTTPX client (creates one if not provided).

    Returns:
        One SourceCheck per component, in build order.
    """
    manage_client = client is None
    http_client: httpx.Client = (
        httpx.Client(follow_redirects=True) if manage_client else client  # type: ignore[assignment]
    )
    try:
        return [check_source(http_client, source) for source in source_urls(spec)]
    finally:
        if manage_client:
            http_client.close()


__all__ = [
    "GNU_MIRROR_BASE",
    "KERNEL_MIRROR_BASE",
    "SourceCheck",
    "SourceURL",
    "check_source",
    "check_sources",
    "source_urls",
]
