# credit_engine/models/assignment_download.py
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, DateTime

from credit_engine.core.database import Base


class AssignmentDownload(Base):
    """Audit trail of downloads. Gating reads the counters on Assignment instead."""
    __tablename__ = "assignment_downloads"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    assignment_id: Mapped[str] = mapped_column(String(36), index=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True)
    credits_charged: Mapped[int] = mapped_column(Integer, default=0)
    # docx, pdf, txt
    download_type: Mapped[str] = mapped_column(String(20), default="docx")
    # Ledger key of the charge, if any
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(190), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
