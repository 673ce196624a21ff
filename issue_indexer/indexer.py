"""이슈 인덱서 — 무엇을 (재)인덱싱/삭제할지 결정하고 큐와 결과를 맞춘다.

진입점:
  - index_on_startup()            전체 재인덱싱 (LARGE, 큐 미사용)
  - index_project(uuid, cause)    프로젝트 생명주기 이벤트
  - index(keys)                   큐에 먼저 기록 → 즉시 동기화 → 큐 정리
  - index_queue_items(session, items)   큐 drain
  - create_queue_for_project(session, uuid)   비동기 인덱싱 예약
  - recover()                     오래된 큐 항목 주기적 drain
  - delete_project(uuid) / delete_by_keys(uuid, keys)

큐 경로의 실패는 예외로 올리지 않는다. 항목이 큐에 남아 다음 drain에서 재시도된다.
직접 삭제 경로는 큐 복구가 없으므로 BulkIndexingError를 올린다.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from collections.abc import Collection, Iterable, Iterator, Sequence
from enum import Enum

from elasticsearch import Elasticsearch
from sqlalchemy.orm import Session, sessionmaker

from .bulk import BulkIndexer, BulkIndexingError, BulkSize
from .client import build_es_client
from .config import Config
from .dead_letter import DeadLetterLog
from .documents import IssueDoc
from .log import get_logger
from .models import create_session_factory
from .queue import EntityType, GroupingKind, RetryQueue, RetryQueueItem
from .result import BulkOperation, IndexingResult
from .source import IssueSource

DELETE_ERROR_MESSAGE = "Fail to delete some issues of project [%s]"


class Cause(Enum):
    CREATED = "project_creation"
    KEY_UPDATED = "project_key_update"
    TAGS_UPDATED = "project_tags_update"
    NEW_ANALYSIS = "new_analysis"


class IssueIndexer:
    def __init__(
        self,
        es: Elasticsearch,
        session_factory: sessionmaker,
        config: Config | None = None,
        logger: logging.Logger | None = None,
        source: IssueSource | None = None,
        queue: RetryQueue | None = None,
        dead_letter: DeadLetterLog | None = None,
    ):
        self.config = config or Config()
        self.es = es
        self.index_name = self.config.index_name
        self.session_factory = session_factory
        self.logger = logger or get_logger("indexer")
        self.source = source or IssueSource(session_factory, self.config.key_page_size)
        self.queue = queue or RetryQueue()
        self.dead_letter = dead_letter or DeadLetterLog(self.config.dead_letter_path)

    @classmethod
    def from_config(cls, config: Config, logger: logging.Logger | None = None) -> IssueIndexer:
        """Config 하나로 ES 클라이언트 + DB 세션 팩토리까지 구성."""
        _, session_factory = create_session_factory(config.database_url)
        return cls(build_es_client(config), session_factory, config, logger)

    # ================================================================
    # 인덱싱
    # ================================================================

    def index_on_startup(self) -> IndexingResult:
        """전체 코퍼스 재인덱싱. 실패는 결과로만 반환, 치명 여부는 호출자 판단."""
        self.logger.info(f"[bold]전체 재인덱싱 시작[/bold] index={self.index_name}")
        result = self._index_project(None)
        self.logger.info(f"전체 재인덱싱 완료: {result}")
        return result

    def index_project(self, project_uuid: str, cause: Cause) -> IndexingResult:
        if cause in (Cause.CREATED, Cause.KEY_UPDATED, Cause.TAGS_UPDATED):
            # 생성 시점엔 이슈가 없고, 프로젝트 키/태그는 이 인덱스에 쓰이지 않는다
            return IndexingResult()
        if cause is Cause.NEW_ANALYSIS:
            return self._index_project(project_uuid)
        raise ValueError(f"Unsupported cause: {cause}")

    def index(self, issue_keys: Collection[str]) -> IndexingResult:
        """
        큐에 BY_KEYS 항목을 먼저 커밋한 뒤 즉시 동기화.

        동기화 도중 프로세스가 죽어도 큐 항목이 남아 다음 drain에서 처리된다.
        """
        if not issue_keys:
            return IndexingResult()
        routings = self.source.project_uuids_of(issue_keys)
        with self.session_factory() as session:
            items = [
                self.queue.insert(session, RetryQueueItem.create(
                    GroupingKind.BY_KEYS, key, routing=routings.get(key),
                ))
                for key in issue_keys
            ]
            session.commit()
            return self.index_queue_items(session, items)

    def index_documents(self, docs: Iterable[IssueDoc]) -> IndexingResult:
        """이미 만들어진 도큐먼트를 LARGE 프로파일로 적재 (벤치마크/초기 적재용)."""
        return self._write(iter(docs), BulkSize.LARGE)

    def create_queue_for_project(self, session: Session, project_uuid: str) -> RetryQueueItem:
        """프로젝트 전체를 나중에 인덱싱하도록 예약. 커밋은 호출자 세션이 한다."""
        item = RetryQueueItem.create(GroupingKind.BY_PROJECT, project_uuid, routing=project_uuid)
        return self.queue.insert(session, item)

    # ================================================================
    # 큐 drain / 복구
    # ================================================================

    def index_queue_items(self, session: Session, items: Sequence[RetryQueueItem]) -> IndexingResult:
        """
        큐 항목 묶음을 동기화하고 결과에 맞춰 큐를 정리.

        - grouping 라벨을 모르는 항목: 즉시 dead letter + 삭제
        - 문서가 모두 성공한 항목: 항목별로 바로 삭제 + 커밋
        - 하나라도 실패한 항목: 그대로 둔다 (다음 drain에서 재시도)
        - doc_type이 issue가 아닌 항목: 다른 인덱서 몫이므로 건드리지 않는다
        """
        result = IndexingResult()
        if not items:
            return result

        by_keys: list[RetryQueueItem] = []
        by_project: list[RetryQueueItem] = []
        for item in items:
            if item.entity_type is not EntityType.ISSUE:
                continue
            if item.grouping_kind is GroupingKind.BY_KEYS:
                by_keys.append(item)
            elif item.grouping_kind is GroupingKind.BY_PROJECT:
                by_project.append(item)
            else:
                self.dead_letter.write(item, "Unsupported es_queue.doc_id_type")
                self._delete_queue_item(session, item)

        if by_keys:
            keys_result = self._index_key_items(by_keys)
            self._reconcile(session, by_keys, keys_result)
            result.add(keys_result)
        if by_project:
            project_result = self._index_project_items(by_project)
            self._reconcile(session, by_project, project_result)
            result.add(project_result)
        return result

    def drain(self, limit: int | None = None) -> IndexingResult:
        """큐에서 한 페이지를 읽어 처리."""
        with self.session_factory() as session:
            items = self.queue.select_pending(
                session, limit or self.config.queue_page_size, entity_type=EntityType.ISSUE
            )
            return self.index_queue_items(session, items)

    def recover(self, min_age: float | None = None) -> IndexingResult:
        """
        min_age(초)보다 오래된 큐 항목을 페이지 단위로 drain.

        실시간 동기화가 아직 처리 중일 항목은 건드리지 않는다.
        실패가 나온 페이지에서 멈추고 나머지는 다음 주기로 넘긴다 (즉시 재시도 루프 방지).
        """
        min_age = self.config.recovery_min_age if min_age is None else min_age
        created_before = int((time.time() - min_age) * 1000)
        page_size = self.config.queue_page_size
        total = IndexingResult()
        pages = 0
        dead_before = self.dead_letter.count

        while True:
            with self.session_factory() as session:
                items = self.queue.select_pending(
                    session, page_size, created_before=created_before,
                    entity_type=EntityType.ISSUE,
                )
                if not items:
                    break
                page_result = self.index_queue_items(session, items)
            pages += 1
            total = total + page_result
            if not page_result.is_success or len(items) < page_size:
                break

        if pages:
            log = self.logger.info if total.is_success else self.logger.warning
            dead = self.dead_letter.count - dead_before
            log(f"recovery {pages}페이지 처리: {total} dead_letter={dead:,}")
        return total

    # ================================================================
    # 삭제
    # ================================================================

    def delete_project(self, project_uuid: str) -> IndexingResult:
        """프로젝트의 모든 이슈 삭제 (routed delete-by-query) + refresh."""
        bulk = self._new_bulk(BulkSize.REGULAR)
        bulk.start()
        try:
            bulk.add_deletion(project_uuid)
        finally:
            result = bulk.stop()
        self._check_deleted(project_uuid, result)
        return result

    def delete_by_keys(self, project_uuid: str, issue_keys: Sequence[str]) -> IndexingResult:
        """
        키 목록 삭제. delete_batch_size 단위 bulk → 마지막에 refresh 1회.

        한 배치라도 실패하면 refresh 없이 프로젝트를 명시한 BulkIndexingError.
        앞서 실행된 배치는 되돌리지 않는다 (삭제는 멱등).
        """
        if not issue_keys:
            return IndexingResult()

        bulk = self._new_bulk(BulkSize.REGULAR, max_actions=self.config.delete_batch_size)
        bulk.start()
        try:
            for key in issue_keys:
                self._check_deleted(project_uuid, bulk.add(BulkOperation.delete(key, project_uuid)))
            self._check_deleted(project_uuid, bulk.flush())
        except BulkIndexingError:
            bulk.stop(refresh=False)
            raise
        return bulk.stop()

    # ================================================================
    # 내부
    # ================================================================

    def _index_project(self, project_uuid: str | None) -> IndexingResult:
        size = BulkSize.LARGE if project_uuid is None else BulkSize.REGULAR
        with self.source.for_project(project_uuid) as docs:
            return self._write(docs, size)

    def _write(self, docs: Iterator[IssueDoc], size: BulkSize) -> IndexingResult:
        bulk = self._new_bulk(size)
        bulk.start()
        for doc in docs:
            bulk.add(BulkOperation.index_doc(doc))
        return bulk.stop()

    def _index_key_items(self, items: list[RetryQueueItem]) -> IndexingResult:
        items_by_key: dict[str, list[RetryQueueItem]] = defaultdict(list)
        for item in items:
            items_by_key[item.reference_id].append(item)

        bulk = self._new_bulk(BulkSize.REGULAR)
        bulk.start()
        found: set[str] = set()
        with self.source.for_keys(list(items_by_key)) as docs:
            for doc in docs:
                found.add(doc.key)
                bulk.add(BulkOperation.index_doc(doc, tuple(items_by_key.get(doc.key, ()))))
        missing = {key: origins for key, origins in items_by_key.items() if key not in found}
        if missing:
            self._delete_missing(bulk, missing)
        return bulk.stop()

    def _delete_missing(self, bulk: BulkIndexer, missing: dict[str, list[RetryQueueItem]]):
        """DB에서 사라진 이슈의 문서 삭제. routing을 모르는 키는 전 샤드 delete-by-query."""
        self.logger.debug(f"DB에 없는 이슈 키 {len(missing):,}개 → 인덱스에서 삭제")
        unrouted: list[str] = []
        for key, origins in missing.items():
            routing = next((item.routing for item in origins if item.routing), None)
            if routing:
                bulk.add(BulkOperation.delete(key, routing, tuple(origins)))
            else:
                unrouted.append(key)

        page_size = self.config.key_page_size
        for i in range(0, len(unrouted), page_size):
            page = unrouted[i : i + page_size]
            bulk.add_deletion_by_query(
                {"terms": {"key": page}},
                label=f"keys:{page[0]}..({len(page)})",
                origins=tuple(item for key in page for item in missing[key]),
            )

    def _index_project_items(self, items: list[RetryQueueItem]) -> IndexingResult:
        items_by_project: dict[str, list[RetryQueueItem]] = defaultdict(list)
        for item in items:
            items_by_project[item.reference_id].append(item)

        bulk = self._new_bulk(BulkSize.REGULAR)
        bulk.start()
        for project_uuid, origins in items_by_project.items():
            with self.source.for_project(project_uuid) as docs:
                for doc in docs:
                    bulk.add(BulkOperation.index_doc(doc, tuple(origins)))
        return bulk.stop()

    def _reconcile(self, session: Session, items: list[RetryQueueItem], result: IndexingResult):
        failed = result.failed_item_ids()
        for item in items:
            if item.id not in failed:
                self._delete_queue_item(session, item)
        if failed:
            self.logger.warning(
                f"[yellow]큐 항목 {len(failed):,}개 유지[/yellow] (다음 drain에서 재시도)"
            )

    def _delete_queue_item(self, session: Session, item: RetryQueueItem):
        self.queue.delete(session, item)
        session.commit()

    def _check_deleted(self, project_uuid: str, result: IndexingResult):
        if result.is_success:
            return
        first = result.failures[0]
        self.logger.error(
            f"[bold red]{DELETE_ERROR_MESSAGE % project_uuid}[/bold red]: "
            f"{result.failure:,}건 실패 (첫 실패: id={first.doc_id} {first.reason})"
        )
        raise BulkIndexingError(DELETE_ERROR_MESSAGE % project_uuid) from first.cause

    def _new_bulk(self, size: BulkSize, max_actions: int | None = None) -> BulkIndexer:
        return BulkIndexer(self.es, self.index_name, size, self.config, self.logger, max_actions)
