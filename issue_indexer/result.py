"""벌크 연산 단위와 인덱싱 결과"""

from __future__ import annotations

import json
from dataclasses import dataclass, field

from .documents import IssueDoc
from .queue import RetryQueueItem

INDEX = "index"
DELETE = "delete"


@dataclass(frozen=True)
class BulkOperation:
    """
    벌크 요청 1건 (index upsert 또는 delete).

    origins: 이 연산을 발생시킨 큐 항목들. 실패 시 결과에 그대로 실려
    호출자가 큐 정리 여부를 판단한다.
    """

    action: str
    doc_id: str
    routing: str | None
    source: dict | None = None
    origins: tuple[RetryQueueItem, ...] = ()

    @classmethod
    def index_doc(cls, doc: IssueDoc, origins: tuple[RetryQueueItem, ...] = ()) -> BulkOperation:
        return cls(INDEX, doc.key, doc.project_uuid, doc.to_source(), origins)

    @classmethod
    def delete(cls, doc_id: str, routing: str | None,
               origins: tuple[RetryQueueItem, ...] = ()) -> BulkOperation:
        return cls(DELETE, doc_id, routing, None, origins)

    def to_action(self, index_name: str) -> dict:
        """elasticsearch.helpers 액션 형식 (_op_type / _index / _id / routing / _source)"""
        action = {"_op_type": self.action, "_index": index_name, "_id": self.doc_id}
        if self.routing:
            action["routing"] = self.routing
        if self.action == INDEX:
            action["_source"] = self.source or {}
        return action

    def estimated_bytes(self) -> int:
        size = len(self.doc_id) + len(self.routing or "") + 64
        if self.source:
            size += len(json.dumps(self.source, ensure_ascii=False).encode("utf-8"))
        return size


@dataclass(frozen=True)
class FailedOperation:
    doc_id: str
    routing: str | None
    reason: str
    hard: bool = False          # True = 전송/인증 오류로 배치 전체 실패
    status: int | None = None
    origins: tuple[RetryQueueItem, ...] = ()
    cause: BaseException | None = field(default=None, compare=False)  # hard 실패의 원인 예외


@dataclass
class IndexingResult:
    """
    성공/실패 집계. 두 결과를 합치면 카운트는 더해지고 실패 목록은 이어진다.

        total = IndexingResult()
        total.add(bulk.stop())
    """

    success: int = 0
    failure: int = 0
    failures: list[FailedOperation] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.success + self.failure

    @property
    def is_success(self) -> bool:
        return self.failure == 0

    @property
    def success_ratio(self) -> float:
        return 1.0 if self.total == 0 else self.success / self.total

    def increment_success(self, count: int = 1) -> IndexingResult:
        self.success += count
        return self

    def add_failure(self, failed: FailedOperation) -> IndexingResult:
        self.failure += 1
        self.failures.append(failed)
        return self

    def add(self, other: IndexingResult) -> IndexingResult:
        self.success += other.success
        self.failure += other.failure
        self.failures.extend(other.failures)
        return self

    def __add__(self, other: IndexingResult) -> IndexingResult:
        return IndexingResult(
            success=self.success + other.success,
            failure=self.failure + other.failure,
            failures=[*self.failures, *other.failures],
        )

    def failed_item_ids(self) -> set[str]:
        return {item.id for f in self.failures for item in f.origins}

    def __str__(self) -> str:
        return f"IndexingResult(success={self.success:,}, failure={self.failure:,})"
