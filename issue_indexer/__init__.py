"""
issue_indexer — 이슈 DB ↔ Elasticsearch 동기화 (재시도 큐 + 벌크 인덱싱)

전체 재인덱싱 (기동 시):
    from issue_indexer import Config, IssueIndexer
    indexer = IssueIndexer.from_config(Config(es_url="http://localhost:9200"))
    result = indexer.index_on_startup()

키 단위 즉시 동기화 (큐에 먼저 기록 → 실패 시 큐에 남음):
    indexer.index(["AX-1", "AX-2"])

큐 복구 (스케줄러에서 주기 호출):
    indexer.recover()

삭제:
    indexer.delete_project("PROJECT_UUID")
    indexer.delete_by_keys("PROJECT_UUID", ["AX-1", "AX-2"])
"""

from .bulk import BulkIndexer, BulkIndexingError, BulkSize
from .client import build_es_client
from .config import Config
from .documents import IssueDoc
from .indexer import Cause, IssueIndexer
from .log import get_logger, setup_logging
from .queue import EntityType, GroupingKind, RetryQueue, RetryQueueItem
from .result import BulkOperation, FailedOperation, IndexingResult
from .source import IssueSource

__all__ = [
    "Config", "build_es_client",
    "IssueIndexer", "Cause",
    "BulkIndexer", "BulkSize", "BulkIndexingError",
    "BulkOperation", "FailedOperation", "IndexingResult",
    "RetryQueue", "RetryQueueItem", "GroupingKind", "EntityType",
    "IssueSource", "IssueDoc",
    "setup_logging", "get_logger",
]
