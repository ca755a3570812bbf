"""Raw tables keep upstream payloads verbatim, keyed by the upstream identity."""

from sqlalchemy import DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from rxwatch.models.base import Base, JSONPayload


class RawDSCReport(Base):
    __tablename__ = "raw_dsc_reports"

    report_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)

    din: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)

    kind: Mapped[str] = mapped_column(
        String(20),
        nullable=False,  # shortage | discontinuance
    )

    status: Mapped[str] = mapped_column(String(40), nullable=False, index=True)

    company_name: Mapped[str | None] = mapped_column(String, nullable=True)

    payload: Mapped[dict] = mapped_column(JSONPayload, nullable=False)

    api_created_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    api_updated_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    ingested_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    updated_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


class RawDPDDrug(Base):
    __tablename__ = "raw_dpd_drugs"

    din: Mapped[str] = mapped_column(String(8), primary_key=True)

    drug_code: Mapped[int] = mapped_column(Integer, nullable=False)

    brand_name: Mapped[str | None] = mapped_column(String, nullable=True)

    company_name: Mapped[str | None] = mapped_column(String, nullable=True)

    # Upstream last_update_date as sent (YYYY-MM-DD), compared verbatim for change detection
    last_update_date: Mapped[str | None] = mapped_column(String(10), nullable=True)

    # {"drug": <listing row>, "details": <detail endpoints>}
    payload: Mapped[dict] = mapped_column(JSONPayload, nullable=False)

    ingested_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    updated_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
