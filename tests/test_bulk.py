"""벌크 플러시 엔진"""

from __future__ import annotations

import logging

import pytest
from elasticsearch import ApiError
from elasticsearch import ConnectionError as EsConnectionError

from issue_indexer.bulk import BulkIndexer, BulkSize
from issue_indexer.config import Config
from issue_indexer.documents import IssueDoc
from issue_indexer.queue import GroupingKind, RetryQueueItem
from issue_indexer.result import BulkOperation
from tests.conftest import api_error


def _op(key: str, project: str = "P1", *origins: RetryQueueItem) -> BulkOperation:
    return BulkOperation.index_doc(IssueDoc(key=key, project_uuid=project), origins)


class TestFlushThresholds:
    def test_flushes_on_action_count(self, es) -> None:
        bulk = BulkIndexer(es, "issues", BulkSize.REGULAR, Config(regular_bulk_actions=2))
        bulk.start()
        for i in range(5):
            bulk.add(_op(f"k{i}"))

        assert len(es.bulk_calls) == 2  # 2 + 2, 나머지 1건은 stop()에서
        result = bulk.stop()

        assert len(es.bulk_calls) == 3
        assert result.success == 5
        assert result.is_success

    def test_flushes_on_byte_budget(self, es) -> None:
        bulk = BulkIndexer(es, "issues", BulkSize.REGULAR, Config(regular_bulk_bytes=1))
        bulk.start()
        flushed = bulk.add(_op("k1"))

        assert flushed.success == 1
        assert len(es.bulk_calls) == 1
        bulk.stop()

    def test_large_uses_large_thresholds(self, es) -> None:
        config = Config(regular_bulk_actions=1, large_bulk_actions=3)
        bulk = BulkIndexer(es, "issues", BulkSize.LARGE, config)
        bulk.start()
        for i in range(3):
            bulk.add(_op(f"k{i}"))
        bulk.stop()

        assert [len(call) for call in es.bulk_calls] == [6]  # 3 x (header + source)

    def test_index_requests_are_routed_by_project(self, es) -> None:
        bulk = BulkIndexer(es, "issues")
        bulk.start()
        bulk.add(_op("k1", "P9"))
        bulk.stop()

        header = es.bulk_calls[0][0]["index"]
        assert header == {"_index": "issues", "_id": "k1", "routing": "P9"}
        assert es.docs["k1"]["projectUuid"] == "P9"


class TestOutcomeClassification:
    def test_soft_failures_carry_origins(self, es, caplog) -> None:
        item = RetryQueueItem.create(GroupingKind.BY_KEYS, "k2")
        es.fail_ids = {"k2"}
        bulk = BulkIndexer(es, "issues")
        bulk.start()
        bulk.add(_op("k1"))
        bulk.add(_op("k2", "P1", item))

        with caplog.at_level(logging.WARNING, logger="issue_indexer"):
            result = bulk.stop()

        assert (result.success, result.failure) == (1, 1)
        [failed] = result.failures
        assert failed.doc_id == "k2"
        assert failed.hard is False
        assert failed.status == 429
        assert failed.origins == (item,)
        assert any(r.levelno == logging.WARNING for r in caplog.records)

    def test_transport_error_fails_whole_batch(self, es, caplog) -> None:
        es.bulk_error = EsConnectionError("connection refused")
        bulk = BulkIndexer(es, "issues")
        bulk.start()
        bulk.add(_op("k1"))
        bulk.add(_op("k2"))

        with caplog.at_level(logging.ERROR, logger="issue_indexer"):
            result = bulk.stop()

        assert (result.success, result.failure) == (0, 2)
        assert all(f.hard for f in result.failures)
        assert any(r.levelno == logging.ERROR for r in caplog.records)

    def test_delete_of_missing_document_is_success(self, es) -> None:
        bulk = BulkIndexer(es, "issues")
        bulk.start()
        bulk.add(BulkOperation.delete("ghost", "P1"))
        result = bulk.stop()

        assert result.success == 1
        assert result.is_success

    def test_rejected_request_fails_whole_batch(self, es, caplog) -> None:
        es.bulk_error = api_error(503)
        bulk = BulkIndexer(es, "issues")
        bulk.start()
        bulk.add(_op("k1"))
        bulk.add(BulkOperation.delete("k2", "P1"))

        with caplog.at_level(logging.ERROR, logger="issue_indexer"):
            result = bulk.stop()

        assert (result.success, result.failure) == (0, 2)
        assert all(f.hard and f.status == 503 for f in result.failures)
        assert isinstance(result.failures[0].cause, ApiError)
        assert any(r.levelno == logging.ERROR for r in caplog.records)

    def test_missing_response_items_are_hard_failures(self, es, caplog) -> None:
        item = RetryQueueItem.create(GroupingKind.BY_KEYS, "k2")
        es.dropped_responses = 1
        bulk = BulkIndexer(es, "issues")
        bulk.start()
        bulk.add(_op("k1"))
        bulk.add(_op("k2", "P1", item))

        with caplog.at_level(logging.ERROR, logger="issue_indexer"):
            result = bulk.stop()

        assert (result.success, result.failure) == (1, 1)
        [failed] = result.failures
        assert failed.doc_id == "k2"
        assert failed.hard
        assert failed.origins == (item,)
        assert any("불일치" in r.getMessage() for r in caplog.records)


class TestLifecycle:
    def test_stop_refreshes_and_resets(self, es) -> None:
        bulk = BulkIndexer(es, "issues")
        bulk.start()
        bulk.add(_op("k1"))
        first = bulk.stop()

        bulk.start()
        second = bulk.stop()

        assert first.success == 1
        assert second.total == 0
        assert es.indices.refresh_calls == ["issues", "issues"]

    def test_large_toggles_refresh_interval(self, es) -> None:
        bulk = BulkIndexer(es, "issues", BulkSize.LARGE)
        bulk.start()
        bulk.stop()

        assert es.indices.settings_calls == [
            {"index.refresh_interval": "-1"},
            {"index.refresh_interval": "1s"},
        ]

    def test_regular_leaves_settings_alone(self, es) -> None:
        bulk = BulkIndexer(es, "issues", BulkSize.REGULAR)
        bulk.start()
        bulk.stop()

        assert es.indices.settings_calls == []

    def test_add_before_start_fails(self, es) -> None:
        with pytest.raises(RuntimeError, match="not started"):
            BulkIndexer(es, "issues").add(_op("k1"))

    def test_double_start_fails(self, es) -> None:
        bulk = BulkIndexer(es, "issues")
        bulk.start()
        with pytest.raises(RuntimeError, match="already started"):
            bulk.start()

    def test_max_actions_override(self, es) -> None:
        bulk = BulkIndexer(es, "issues", BulkSize.REGULAR, max_actions=2)
        bulk.start()
        for i in range(3):
            bulk.add(BulkOperation.delete(f"k{i}", "P1"))
        bulk.stop()

        assert [len(call) for call in es.bulk_calls] == [2, 1]

    def test_stop_without_refresh(self, es) -> None:
        bulk = BulkIndexer(es, "issues", BulkSize.LARGE)
        bulk.start()
        bulk.stop(refresh=False)

        assert es.indices.refresh_calls == []
        assert es.indices.settings_calls[-1] == {"index.refresh_interval": "1s"}


class TestDeletionByQuery:
    def test_flushes_pending_then_deletes_project(self, es) -> None:
        es.docs["old"] = {"projectUuid": "P1"}
        es.docs["other"] = {"projectUuid": "P2"}
        bulk = BulkIndexer(es, "issues")
        bulk.start()
        bulk.add(_op("new", "P1"))
        deleted = bulk.add_deletion("P1")
        result = bulk.stop()

        assert deleted.success == 2  # 먼저 flush된 "new" 포함
        assert set(es.docs) == {"other"}
        assert es.delete_by_query_calls[0]["routing"] == "P1"
        assert result.success == 3

    def test_query_failure_is_reported_with_origins(self, es) -> None:
        item = RetryQueueItem.create(GroupingKind.BY_KEYS, "gone")
        es.delete_by_query_error = EsConnectionError("connection refused")
        bulk = BulkIndexer(es, "issues")
        bulk.start()
        deleted = bulk.add_deletion_by_query({"terms": {"key": ["gone"]}}, origins=(item,))
        result = bulk.stop()

        [failed] = deleted.failures
        assert failed.hard
        assert failed.origins == (item,)
        assert isinstance(failed.cause, EsConnectionError)
        assert result.failed_item_ids() == {item.id}
        assert es.delete_by_query_calls[0]["routing"] is None
