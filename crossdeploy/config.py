"""Configuration settings for crossdeploy.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_cache_dir() -> Path:
    """Return the default cache directory (locks and logs)."""
    return Path.home() / ".cache" / "crossdeploy"


def _default_cargo_home() -> Path:
    """Return the host Cargo home shared with build containers."""
    return Path.home() / ".cargo"


def _default_db_url() -> str:
    """Return the default database URL (SQLite)."""
    db_path = Path.home() / ".local" / "share" / "crossdeploy" / "db.sqlite"
    return f"sqlite:///{db_path}"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the CROSSDEPLOY_
    prefix. CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="CROSSDEPLOY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Toolchain
    default_target: str = Field(
        default="rpi3-raspbian-v1",
        description="Toolchain spec used when no --target is given",
    )
    spec_dir: Path | None = Field(
        default=None,
        description="Extra directory of toolchain spec YAML files",
    )
    image_repository: str = Field(
        default="pidj/x-compiler",
        description="Docker repository for toolchain images",
    )

    # Paths
    cache_dir: Path = Field(
        default_factory=_default_cache_dir,
        description="Root directory for locks and build logs",
    )
    cargo_home: Path = Field(
        default_factory=_default_cargo_home,
        description="Host Cargo home holding the dependency registry cache",
    )
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Database connection URL for the image catalog",
    )
    source_dir: Path = Field(
        default_factory=Path.cwd,
        description="Source tree mounted into the build container",
    )
    artifact_path: Path | None = Field(
        default=None,
        description="Where the built binary is placed (defaults to cargo's path)",
    )

    # Build container
    container_home: str = Field(
        default="/home/ccuser",
        description="Home directory of the build user inside the image",
    )
    container_workdir: str = Field(
        default="/app",
        description="Mount point of the source tree inside the container",
    )
    binary_name: str = Field(default="pidj", description="Cargo binary name")
    build_profile: Literal["debug", "release"] = Field(
        default="debug",
        description="Cargo profile to build",
    )
    fix_args: list[str] = Field(
        default_factory=lambda: ["--allow-dirty"],
        description="Extra arguments passed to `cargo fix`",
    )
    verify_abi: bool = Field(
        default=False,
        description="Fail the build when the artifact float ABI differs from the toolchain spec",
    )

    # Deployment target
    remote_host: str = Field(default="iaa34.local", description="Device hostname")
    remote_user: str = Field(default="pi", description="Login user on the device")
    remote_port: int | None = Field(default=None, ge=1, le=65535)
    remote_path: str = Field(
        default="/home/pi/pidj",
        description="Remote path of the deployed executable",
    )
    display: str = Field(default=":0", description="X display for the remote process")
    forward_env: list[str] = Field(
        default_factory=lambda: ["RUST_LOG", "RUST_BACKTRACE"],
        description="Local environment variables forwarded to the remote process",
    )
    x11_forwarding: bool = Field(default=True, description="Pass -X to ssh")
    ssh_options: list[str] = Field(
        default_factory=list,
        description="Extra `-o` options for ssh and scp",
    )

    # Operational modes
    offline: bool = Field(
        default=False,
        description="Offline mode - skip toolchain source availability probes",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Timeouts (in seconds)
    connect_timeout: int = Field(
        default=10,
        ge=1,
        description="SSH/SCP connection timeout",
    )
    transfer_timeout: int = Field(
        default=600,
        ge=1,
        description="Timeout for artifact transfer",
    )
    image_build_timeout: int | None = Field(
        default=None,
        description="Timeout per toolchain image stage (None = no timeout)",
    )
    compile_timeout: int | None = Field(
        default=None,
        description="Timeout for a compile run (None = no timeout)",
    )


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
