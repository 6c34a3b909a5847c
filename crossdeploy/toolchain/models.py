"""Toolchain image ORM model.

Each record catalogs one content-addressed toolchain image in the local
Docker image store.
"""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from crossdeploy.db import Base
from crossdeploy.types import ImageState


class ToolchainImageRecord(Base):
    """ORM model for built toolchain images.

    Attributes:
        id: Primary key.
        tag: Docker image tag (unique, content-addressed).
        target_name: Name of the toolchain spec.
        target_triple: Rust target triple of the spec.
        fingerprint: Hash of all image inputs.
        spec_snapshot: JSON snapshot of the image inputs.
        state: Current state (pending, ready, broken).
        log_path: Path to the image build log.
        failed_stage: Stage that failed, if broken.
        error_message: Error details, if broken.
        created_at: Timestamp the record was created.
        last_used_at: Timestamp of most recent use.
    """

    __tablename__ = "toolchain_images"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    tag: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    target_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    target_triple: Mapped[str] = mapped_column(String(100), nullable=False)
    fingerprint: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    spec_snapshot: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)

    state: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ImageState.PENDING.value
    )
    log_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    failed_stage: Mapped[str | None] = mapped_column(String(50), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        """Return string representation of ToolchainImageRecord."""
        return (
            f"<ToolchainImageRecord(id={self.id}, tag='{self.tag}', "
            f"state='{self.state}')>"
        )

    def mark_pending(self) -> None:
        """Mark this image as being built."""
        self.state = ImageState.PENDING.value
        self.failed_stage = None
        self.error_message = None

    def mark_ready(self) -> None:
        """Mark this image as ready for use."""
        self.state = ImageState.READY.value
        self.failed_stage = None
        self.error_message = None

    def mark_broken(self, stage: str | None = None, message: str | None = None) -> None:
        """Mark this image as broken.

        Args:
            stage: Stage that failed.
            message: Error message details.
        """
        self.state = ImageState.BROKEN.value
        if stage:
            self.failed_stage = stage
        if message:
            self.error_message = message

    def is_ready(self) -> bool:
        """Check if this image is ready for use."""
        return self.state == ImageState.READY.value


__all__ = ["ToolchainImageRecord"]
