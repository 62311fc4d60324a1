"""Tests for the versioned analysis result store."""

from __future__ import annotations

import pytest

from qualmatrix.errors import StaleRecordError
from qualmatrix.server.db import create_session_factory, get_engine, init_db, ping
from qualmatrix.server.models import AnalysisRecord
from qualmatrix.server.store import ResultStore


@pytest.fixture
def store() -> ResultStore:
    engine = get_engine("sqlite://")
    init_db(engine)
    return ResultStore(create_session_factory(engine))


def _doc(marker: str) -> dict:
    return {"content_analysis": {"title": marker, "description": "", "questions": []}}


class TestUpsert:
    def test_insert_starts_at_version_one(self, store: ResultStore) -> None:
        record = store.upsert("p1", "u1", _doc("first"), analysis_kind="content")
        assert record.version == 1
        assert record.analysis_kind == "content"
        assert record.data == _doc("first")
        assert record.created_at is not None

    def test_update_replaces_and_bumps_version(self, store: ResultStore) -> None:
        store.upsert("p1", "u1", _doc("first"), analysis_kind="content")
        record = store.upsert("p1", "u1", _doc("second"), analysis_kind="standard")
        assert record.version == 2
        assert record.analysis_kind == "standard"
        assert record.data == _doc("second")

    def test_keys_are_independent(self, store: ResultStore) -> None:
        store.upsert("p1", "u1", _doc("a"), analysis_kind="content")
        store.upsert("p1", "u2", _doc("b"), analysis_kind="content")
        store.upsert("p2", "u1", _doc("c"), analysis_kind="content")
        assert store.get("p1", "u2").data == _doc("b")  # type: ignore[union-attr]
        assert store.get("p2", "u1").version == 1  # type: ignore[union-attr]

    def test_one_row_per_project_and_user(self, store: ResultStore) -> None:
        for marker in ("a", "b", "c"):
            store.upsert("p1", "u1", _doc(marker), analysis_kind="content")
        db = store._session_factory()
        try:
            assert db.query(AnalysisRecord).count() == 1
        finally:
            db.close()


class TestOptimisticConcurrency:
    def test_matching_version_accepted(self, store: ResultStore) -> None:
        store.upsert("p1", "u1", _doc("a"), analysis_kind="content")
        record = store.upsert("p1", "u1", _doc("b"), analysis_kind="content", expected_version=1)
        assert record.version == 2

    def test_stale_version_rejected(self, store: ResultStore) -> None:
        store.upsert("p1", "u1", _doc("a"), analysis_kind="content")
        store.upsert("p1", "u1", _doc("b"), analysis_kind="content")

        with pytest.raises(StaleRecordError) as exc_info:
            store.upsert("p1", "u1", _doc("c"), analysis_kind="content", expected_version=1)

        assert exc_info.value.expected == 1
        assert exc_info.value.actual == 2
        # The losing write left the stored document alone
        assert store.get("p1", "u1").data == _doc("b")  # type: ignore[union-attr]

    def test_expect_no_record(self, store: ResultStore) -> None:
        record = store.upsert("p1", "u1", _doc("a"), analysis_kind="content", expected_version=0)
        assert record.version == 1
        with pytest.raises(StaleRecordError):
            store.upsert("p1", "u1", _doc("b"), analysis_kind="content", expected_version=0)

    def test_expected_version_without_record(self, store: ResultStore) -> None:
        with pytest.raises(StaleRecordError, match="expected version 3, found 0"):
            store.upsert("p1", "u1", _doc("a"), analysis_kind="content", expected_version=3)
        assert store.get("p1", "u1") is None


class TestGet:
    def test_missing(self, store: ResultStore) -> None:
        assert store.get("nope", "nobody") is None


class TestEngine:
    def test_memory_engine_shares_one_database(self) -> None:
        engine = get_engine("sqlite://")
        init_db(engine)
        first = ResultStore(create_session_factory(engine))
        second = ResultStore(create_session_factory(engine))
        first.upsert("p1", "u1", _doc("shared"), analysis_kind="content")
        assert second.get("p1", "u1") is not None

    def test_file_database_persists(self, tmp_path) -> None:  # type: ignore[no-untyped-def]
        url = f"sqlite:///{tmp_path / 'results.db'}"
        engine = get_engine(url)
        init_db(engine)
        ResultStore(create_session_factory(engine)).upsert(
            "p1", "u1", _doc("kept"), analysis_kind="content"
        )
        engine.dispose()

        reopened = get_engine(url)
        init_db(reopened)
        assert ResultStore(create_session_factory(reopened)).get("p1", "u1").version == 1  # type: ignore[union-attr]

    def test_ping(self) -> None:
        assert ping(get_engine("sqlite://")) is True
