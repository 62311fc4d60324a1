"""Result store: one analysis document per (project, user).

Writes replace the document wholesale.  Every write bumps ``version``;
passing ``expected_version`` turns the write into a compare-and-swap so two
analysis runs for the same key cannot silently overwrite each other.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from qualmatrix.errors import StaleRecordError
from qualmatrix.server.models import AnalysisRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredRecord:
    project_id: str
    user_id: str
    analysis_kind: str
    data: dict[str, Any]
    version: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: AnalysisRecord) -> StoredRecord:
        return cls(
            project_id=row.project_id,
            user_id=row.user_id,
            analysis_kind=row.analysis_kind,
            data=row.analysis_data,
            version=row.version,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


class ResultStore:
    """Persistence adapter over a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _find(db: Session, project_id: str, user_id: str) -> AnalysisRecord | None:
        return db.scalars(
            select(AnalysisRecord).where(
                AnalysisRecord.project_id == project_id,
                AnalysisRecord.user_id == user_id,
            )
        ).first()

    def get(self, project_id: str, user_id: str) -> StoredRecord | None:
        db = self._session_factory()
        try:
            row = self._find(db, project_id, user_id)
            return StoredRecord.from_row(row) if row else None
        finally:
            db.close()

    def upsert(
        self,
        project_id: str,
        user_id: str,
        data: dict[str, Any],
        analysis_kind: str,
        expected_version: int | None = None,
    ) -> StoredRecord:
        """Insert at version 1, or replace the document and bump the version.

        Args:
            expected_version: The version the caller last read (``0`` for
                "no record yet").  ``None`` writes unconditionally.

        Raises:
            StaleRecordError: The stored version differs from
                *expected_version*, or another writer inserted first.
        """
        db = self._session_factory()
        try:
            row = self._find(db, project_id, user_id)
            if row is None:
                if expected_version not in (None, 0):
                    raise StaleRecordError(project_id, user_id, expected_version, 0)
                db.add(
                    AnalysisRecord(
                        project_id=project_id,
                        user_id=user_id,
                        analysis_kind=analysis_kind,
                        analysis_data=data,
                        version=1,
                    )
                )
                try:
                    db.commit()
                except IntegrityError as exc:
                    # Lost the insert race on the (project_id, user_id) constraint
                    db.rollback()
                    current = self._find(db, project_id, user_id)
                    raise StaleRecordError(
                        project_id,
                        user_id,
                        expected_version or 0,
                        current.version if current else 0,
                    ) from exc
            else:
                stmt = update(AnalysisRecord).where(AnalysisRecord.id == row.id)
                if expected_version is not None:
                    stmt = stmt.where(AnalysisRecord.version == expected_version)
                result = db.execute(
                    stmt.values(
                        analysis_kind=analysis_kind,
                        analysis_data=data,
                        version=AnalysisRecord.version + 1,
                        updated_at=func.now(),
                    )
                )
                if result.rowcount != 1:
                    db.rollback()
                    current = self._find(db, project_id, user_id)
                    raise StaleRecordError(
                        project_id,
                        user_id,
                        expected_version if expected_version is not None else row.version,
                        current.version if current else 0,
                    )
                db.commit()

            db.expire_all()
            stored = self._find(db, project_id, user_id)
            assert stored is not None
            logger.info(
                "Stored %s analysis for project=%s user=%s version=%d",
                analysis_kind,
                project_id,
                user_id,
                stored.version,
            )
            return StoredRecord.from_row(stored)
        finally:
            db.close()
