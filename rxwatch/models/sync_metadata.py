"""Per-job sync status, read by the health endpoint."""

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from rxwatch.models.base import Base


class SyncMetadata(Base):
    __tablename__ = "sync_metadata"

    job_id: Mapped[str] = mapped_column(
        String,
        primary_key=True,  # dsc | dpd
    )

    last_run_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    last_success_at: Mapped[DateTime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    last_error: Mapped[str | None] = mapped_column(String, nullable=True)

    consecutive_failures: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
