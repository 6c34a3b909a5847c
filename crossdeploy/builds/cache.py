"""Dependency registry cache shared by build containers.

The cache is the host's Cargo home: `registry/` (crate index and sources)
and `git/` (git dependencies) are bind-mounted into every build container so
dependencies are fetched once per developer, not once per build. It is the
only state shared across pipeline invocations, so container runs that may
write it hold an advisory lock.
"""

from __future__ import annotations

import fcntl
import logging
import os
import tempfile
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from crossdeploy.errors import CacheUnavailableError

logger = logging.getLogger(__name__)

CACHE_SUBDIRS: tuple[str, ...] = ("registry", "git")

LOCK_FILENAME = ".crossdeploy.lock"


@dataclass(frozen=True)
class DependencyRegistryCache:
    """Handle on the persistent dependency cache.

    Attributes:
        root: Host directory holding the cache (a Cargo home).
        container_home: Home directory of the build user in the image.
    """

    root: Path
    container_home: str = "/home/ccuser"

    def ensure(self) -> None:
        """Create the cache directories and check they are writable.

        Raises:
            CacheUnavailableError: If the cache cannot be created or written.
        """
        for name in CACHE_SUBDIRS:
            path = self.root / name
            try:
                path.mkdir(parents=True, exist_ok=True)
                with tempfile.TemporaryFile(dir=path):
                    pass
            except OSError as e:
                raise CacheUnavailableError(str(path), e.strerror or str(e)) from e

    def mounts(self) -> list[tuple[Path, str]]:
        """Return (host path, container path) pairs to bind-mount."""
        cargo_home = f"{self.container_home.rstrip('/')}/.cargo"
        return [(self.root / name, f"{cargo_home}/{name}") for name in CACHE_SUBDIRS]

    @contextmanager
    def lock(self, timeout: float | None = None) -> Iterator[None]:
        """Hold the advisory cache lock.

        Args:
            timeout: Lock acquisition timeout in seconds (None = blocking).

        Raises:
            CacheUnavailableError: If the lock file cannot be opened.
            TimeoutError: If lock cannot be acquired within timeout.
        """
        lock_file = self.root / LOCK_FILENAME
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o600)
        except OSError as e:
            raise CacheUnavailableError(str(lock_file), e.strerror or str(e)) from e

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
                                f"Timeout waiting for dependency cache lock {lock_file}"
                            ) from None
                        time.sleep(0.1)
            else:
                fcntl.flock(fd, fcntl.LOCK_EX)
                lock_acquired = True

            logger.debug("Dependency cache lock acquired: %s", lock_file)
            yield
        finally:
            if lock_acquired:
                fcntl.flock(fd, fcntl.LOCK_UN)
                logger.debug("Dependency cache lock released: %s", lock_file)
            os.close(fd)


__all__ = ["CACHE_SUBDIRS", "DependencyRegistryCache"]
