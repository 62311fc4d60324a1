"""SQLAlchemy ORM models.

One table: the latest analysis document per (project, user).  Projects,
documents and users live in the host application; only their ids are
stored here.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from qualmatrix.server.db import Base


class AnalysisRecord(Base):
    """The stored analysis document for one project and user.

    Re-running an analysis replaces ``analysis_data`` wholesale and bumps
    ``version``; callers pass the version they read to detect a concurrent
    run that finished first.
    """

    __tablename__ = "analysis_results"
    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_analysis_project_user"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    project_id: Mapped[str] = mapped_column(String(100), index=True)
    user_id: Mapped[str] = mapped_column(String(100))
    analysis_kind: Mapped[str] = mapped_column(String(50))
    analysis_data: Mapped[dict] = mapped_column(JSON)
    version: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(default=func.now())
    updated_at: Mapped[datetime] = mapped_column(default=func.now(), onupdate=func.now())
