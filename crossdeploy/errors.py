"""Error taxonomy for crossdeploy.

Every pipeline stage failure is one of these exceptions. Each carries a
stable `code` for structured handling and the exit status the CLI maps it
to. A remote process exiting non-zero is not an error; see
`crossdeploy.types.RemoteExitStatus`.
"""

from __future__ import annotations

# Exit code reported when the remote session itself could not be established
SESSION_FAILURE_EXIT_CODE = 255

# Exit code reported when the operator interrupted the remote process
INTERRUPTED_EXIT_CODE = 130


class CrossDeployError(Exception):
    """Base error for crossdeploy operations."""

    def __init__(
        self,
        message: str,
        code: str = "crossdeploy_error",
        exit_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.exit_code = exit_code

    @property
    def cli_exit_code(self) -> int:
        """Exit status the CLI should report for this error."""
        if self.exit_code is None or self.exit_code <= 0:
            return 1
        return self.exit_code


class BuildFailure(CrossDeployError):
    """Toolchain image construction or compile/link failed.

    Attributes:
        stage: Name of the failing stage (e.g. 'binutils', 'compile').
        diagnostic: Tail of the underlying tool's output, verbatim.
    """

    def __init__(
        self,
        stage: str,
        diagnostic: str,
        exit_code: int | None = None,
        code: str = "build_failure",
    ) -> None:
        super().__init__(
            f"Build failed at stage '{stage}'"
            + (f" (exit code {exit_code})" if exit_code is not None else ""),
            code=code,
            exit_code=exit_code,
        )
        self.stage = stage
        self.diagnostic = diagnostic


class TransferFailure(CrossDeployError):
    """Artifact could not be copied to the device."""

    def __init__(
        self,
        cause: str,
        exit_code: int | None = None,
        code: str = "transfer_failure",
    ) -> None:
        super().__init__(f"Transfer failed: {cause}", code=code, exit_code=exit_code)
        self.cause = cause


class SessionFailure(CrossDeployError):
    """Remote session could not be established."""

    def __init__(
        self,
        cause: str,
        exit_code: int | None = None,
        code: str = "session_failure",
    ) -> None:
        super().__init__(f"Remote session failed: {cause}", code=code, exit_code=exit_code)
        self.cause = cause

    @property
    def cli_exit_code(self) -> int:
        """Session failures always map to the distinguished exit code."""
        return SESSION_FAILURE_EXIT_CODE


class ImageNotFoundError(CrossDeployError):
    """Toolchain image is missing from the local image store."""

    def __init__(self, tag: str, code: str = "image_not_found") -> None:
        super().__init__(
            f"Toolchain image not found: {tag}. Build it first.",
            code=code,
        )
        self.tag = tag


class CacheUnavailableError(CrossDeployError):
    """Dependency registry cache cannot be created or written."""

    def __init__(self, path: str, reason: str, code: str = "cache_unavailable") -> None:
        super().__init__(
            f"Dependency cache unavailable at {path}: {reason}",
            code=code,
        )
        self.path = path
        self.reason = reason


class UnknownTargetError(CrossDeployError):
    """No toolchain spec with the requested name."""

    def __init__(
        self,
        name: str,
        known: list[str],
        code: str = "unknown_target",
    ) -> None:
        choices = ", ".join(sorted(known)) or "(none)"
        super().__init__(
            f"Unknown target '{name}'; target must be one of: {choices}",
            code=code,
        )
        self.name = name
        self.known = sorted(known)


__all__ = [
    "INTERRUPTED_EXIT_CODE",
    "SESSION_FAILURE_EXIT_CODE",
    "BuildFailure",
    "CacheUnavailableError",
    "CrossDeployError",
    "ImageNotFoundError",
    "SessionFailure",
    "TransferFailure",
    "UnknownTargetError",
]
