"""Toolchain image service module.

This module provides high-level APIs for toolchain image management:
- ensure_image(): Build an image for a spec, or reuse the one already built
- list_images(): List cataloged images
- get_image(): Get a specific image record
- remove_image(): Remove an image from the store and the catalog

Images are content-addressed by spec fingerprint. A per-fingerprint lock
prevents concurrent builds of the same image.
"""

from __future__ import annotations

import fcntl
import logging
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from crossdeploy.config import get_settings
from crossdeploy.errors import BuildFailure, ImageNotFoundError
from crossdeploy.toolchain.builder import (
    build_toolchain_image,
    image_exists,
    remove_docker_image,
)
from crossdeploy.toolchain.fingerprint import (
    DEFAULT_RECIPE,
    fingerprint_spec,
    image_tag,
)
from crossdeploy.toolchain.models import ToolchainImageRecord
from crossdeploy.types import ImageState

if TYPE_CHECKING:
    from crossdeploy.config import Settings
    from crossdeploy.toolchain.schema import ToolchainSpec

logger = logging.getLogger(__name__)


@contextmanager
def image_lock(
    lock_dir: Path,
    fingerprint: str,
    timeout: float | None = None,
) -> Iterator[None]:
    """Acquire a lock for building the image with `fingerprint`.

    Args:
        lock_dir: Directory for lock files.
        fingerprint: Image fingerprint to lock on.
        timeout: Lock acquisition timeout in seconds (None = blocking).

    Yields:
        None when lock is acquired.

    Raises:
        TimeoutError: If lock cannot be acquired within timeout.
    """
    lock_dir.mkdir(parents=True, exist_ok=True)

    safe_key = fingerprint.replace(":", "_").replace("/", "_")[:64]
    lock_file = lock_dir / f"image_{safe_key}.lock"

    logger.debug("Acquiring image lock for %s", fingerprint[:32])

    fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o600)
    lock_acquired = False
    try:
        if timeout is not None:
            start = time.monotonic()
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    lock_acquired = True
                    break
                except BlockingIOError:
                    if time.monotonic() - start >= timeout:
                        raise TimeoutError(
                            f"Timeout waiting for image lock on {fingerprint[:32]}"
                        ) from None
                    time.sleep(0.1)
        else:
            fcntl.flock(fd, fcntl.LOCK_EX)
            lock_acquired = True

        logger.debug("Image lock acquired for %s", fingerprint[:32])
        yield
    finally:
        if lock_acquired:
            fcntl.flock(fd, fcntl.LOCK_UN)
            logger.debug("Image lock released for %s", fingerprint[:32])
        os.close(fd)


def _get_record(session: Session, tag: str) -> ToolchainImageRecord | None:
    stmt = select(ToolchainImageRecord).where(ToolchainImageRecord.tag == tag)
    return session.execute(stmt).scalars().first()


def _reusable(record: ToolchainImageRecord, tag: str) -> bool:
    """Whether a ready record still has its image in the store."""
    if not record.is_ready():
        return False
    if image_exists(tag):
        return True
    logger.warning("Toolchain image %s missing from image store, rebuilding", tag)
    record.mark_broken(message="image missing from local store")
    return False


def ensure_image(
    session: Session,
    spec: ToolchainSpec,
    settings: Settings | None = None,
    force_rebuild: bool = False,
    recipe: Path = DEFAULT_RECIPE,
) -> ToolchainImageRecord:
    """Ensure a toolchain image exists for a spec.

    This is the main entry point for toolchain images. It:
    1. Fingerprints the spec and recipe to get the image tag
    2. Returns the cataloged image if it is ready and still present
    3. Otherwise acquires the image lock, re-checks, and builds the
       recipe stages in order
    4. Marks the record ready only after the final stage is tagged

    Args:
        session: Database session.
        spec: ToolchainSpec to build.
        settings: Application settings (uses defaults if not provided).
        force_rebuild: Rebuild without Docker's layer cache even if present.
        recipe: Dockerfile recipe.

    Returns:
        ToolchainImageRecord in ready state.

    Raises:
        BuildFailure: If any stage fails.
    """
    if settings is None:
        settings = get_settings()

    fingerprint, inputs = fingerprint_spec(spec, recipe)
    tag = image_tag(spec, fingerprint, settings.image_repository)

    record = _get_record(session, tag)
    if not force_rebuild and record is not None and _reusable(record, tag):
        logger.info("Using cached toolchain image: %s", tag)
        record.last_used_at = datetime.now(timezone.utc)
        return record

    with image_lock(settings.cache_dir / ".locks", fingerprint):
        # Re-check after acquiring lock (another process may have built it)
        record = _get_record(session, tag)
        if not force_rebuild:
            if record is not None and _reusable(record, tag):
                logger.info("Toolchain image became available while waiting: %s", tag)
                record.last_used_at = datetime.now(timezone.utc)
                return record
            if record is None and image_exists(tag):
                # Built by an earlier catalog; the tag is content-addressed
                logger.info("Adopting existing toolchain image: %s", tag)
                record = ToolchainImageRecord(
                    tag=tag,
                    target_name=spec.name,
                    target_triple=spec.target_triple,
                    fingerprint=fingerprint,
                    spec_snapshot=inputs.to_dict(),
                    state=ImageState.READY.value,
                    last_used_at=datetime.now(timezone.utc),
                )
                session.add(record)
                session.flush()
                return record

        if record is None:
            record = ToolchainImageRecord(
                tag=tag,
                target_name=spec.name,
                target_triple=spec.target_triple,
                fingerprint=fingerprint,
                spec_snapshot=inputs.to_dict(),
                state=ImageState.PENDING.value,
            )
            session.add(record)

        digest = fingerprint.split(":", 1)[-1]
        log_path = settings.cache_dir / "logs" / f"{spec.name}-{digest[:12]}.log"
        record.log_path = str(log_path)
        record.mark_pending()
        session.flush()

        logger.info("Building toolchain image %s", tag)
        try:
            build_toolchain_image(
                spec,
                tag,
                log_path,
                recipe=recipe,
                no_cache=force_rebuild,
                timeout=settings.image_build_timeout,
            )
        except BuildFailure as e:
            record.mark_broken(stage=e.stage, message=str(e))
            # Persist the failure before the caller rolls back
            session.commit()
            raise

        record.mark_ready()
        record.last_used_at = datetime.now(timezone.utc)
        session.flush()
        logger.info("Toolchain image ready: %s", tag)
        return record


def get_image(session: Session, tag: str) -> ToolchainImageRecord:
    """Get an image record by tag.

    Raises:
        ImageNotFoundError: If the tag is not cataloged.
    """
    record = _get_record(session, tag)
    if record is None:
        raise ImageNotFoundError(tag)
    return record


def list_images(
    session: Session,
    target_name: str | None = None,
    state: ImageState | None = None,
) -> list[ToolchainImageRecord]:
    """List cataloged toolchain images.

    Args:
        session: Database session.
        target_name: Filter by spec name (optional).
        state: Filter by state (optional).

    Returns:
        List of records matching the filters.
    """
    stmt = select(ToolchainImageRecord)
    if target_name is not None:
        stmt = stmt.where(ToolchainImageRecord.target_name == target_name)
    if state is not None:
        stmt = stmt.where(ToolchainImageRecord.state == state.value)
    stmt = stmt.order_by(ToolchainImageRecord.target_name, ToolchainImageRecord.id)
    return list(session.execute(stmt).scalars().all())


def remove_image(session: Session, tag: str) -> None:
    """Remove an image from the local store and the catalog.

    Raises:
        ImageNotFoundError: If the tag is not cataloged.
    """
    record = get_image(session, tag)
    if image_exists(tag):
        remove_docker_image(tag)
    session.delete(record)
    session.flush()
    logger.info("Removed toolchain image: %s", tag)


__all__ = [
    "ensure_image",
    "get_image",
    "image_lock",
    "list_images",
    "remove_image",
]
