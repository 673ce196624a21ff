"""ES 동기화 재시도 큐 (es_queue 테이블)

DB 쓰기와 같은 트랜잭션에서 항목을 넣고, ES 반영이 확인된 항목만 지운다.
같은 키가 여러 번 들어와도 된다. 재인덱싱은 멱등.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .models import EsQueueRow


class EntityType(str, Enum):
    ISSUE = "issue"

    @classmethod
    def parse(cls, label: str | None) -> EntityType | None:
        try:
            return cls(label)
        except ValueError:
            return None


class GroupingKind(str, Enum):
    """reference_id의 의미: 개별 이슈 키 / 프로젝트 uuid"""

    BY_KEYS = "issueKeys"
    BY_PROJECT = "projectUuid"

    @classmethod
    def parse(cls, label: str | None) -> GroupingKind | None:
        try:
            return cls(label)
        except ValueError:
            return None


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class RetryQueueItem:
    id: str
    entity_type: EntityType | None      # None = 다른 인덱서의 doc_type
    grouping_kind: GroupingKind | None  # None = 알 수 없는 라벨 (dead letter 대상)
    reference_id: str
    enqueued_at: int = field(default_factory=_now_ms, compare=False)
    kind_label: str | None = field(default=None, compare=False)  # DB에 저장된 원본 라벨
    routing: str | None = field(default=None, compare=False)
    raw_type: str | None = field(default=None, compare=False)   # DB에 저장된 원본 doc_type

    @classmethod
    def create(
        cls,
        grouping_kind: GroupingKind,
        reference_id: str,
        entity_type: EntityType = EntityType.ISSUE,
        routing: str | None = None,
    ) -> RetryQueueItem:
        return cls(
            id=uuid.uuid4().hex,
            entity_type=entity_type,
            grouping_kind=grouping_kind,
            reference_id=reference_id,
            kind_label=grouping_kind.value,
            routing=routing,
        )

    @classmethod
    def from_row(cls, row: EsQueueRow) -> RetryQueueItem:
        return cls(
            id=row.uuid,
            entity_type=EntityType.parse(row.doc_type),
            grouping_kind=GroupingKind.parse(row.doc_id_type),
            reference_id=row.doc_id,
            enqueued_at=row.created_at,
            kind_label=row.doc_id_type,
            routing=row.doc_routing,
            raw_type=row.doc_type,
        )

    @property
    def type_label(self) -> str | None:
        return self.entity_type.value if self.entity_type else self.raw_type

    def to_row(self) -> EsQueueRow:
        return EsQueueRow(
            uuid=self.id,
            doc_type=self.type_label,
            doc_id=self.reference_id,
            doc_id_type=self.kind_label,
            doc_routing=self.routing,
            created_at=self.enqueued_at,
        )


class RetryQueue:
    """es_queue 접근. 커밋은 호출자가 세션 단위로 결정한다."""

    def insert(self, session: Session, item: RetryQueueItem) -> RetryQueueItem:
        session.add(item.to_row())
        session.flush()
        return item

    def delete(self, session: Session, item: RetryQueueItem) -> None:
        row = session.get(EsQueueRow, item.id)
        if row is not None:
            session.delete(row)
            session.flush()

    def select_pending(
        self,
        session: Session,
        limit: int,
        created_before: int | None = None,
        entity_type: EntityType | None = None,
    ) -> list[RetryQueueItem]:
        """오래된 순으로 최대 limit개"""
        stmt = select(EsQueueRow).order_by(EsQueueRow.created_at, EsQueueRow.uuid).limit(limit)
        if created_before is not None:
            stmt = stmt.where(EsQueueRow.created_at < created_before)
        if entity_type is not None:
            stmt = stmt.where(EsQueueRow.doc_type == entity_type.value)
        return [RetryQueueItem.from_row(row) for row in session.execute(stmt).scalars()]

    def count(self, session: Session) -> int:
        return session.scalar(select(func.count()).select_from(EsQueueRow))
