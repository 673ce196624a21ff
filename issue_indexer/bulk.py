"""벌크 플러시 엔진 — 연산을 모아 임계치마다 elasticsearch.helpers로 전송

    bulk = BulkIndexer(es, "issues", BulkSize.REGULAR)
    bulk.start()
    for doc in docs:
        bulk.add(BulkOperation.index_doc(doc))
    result = bulk.stop()      # 남은 연산 flush + refresh + 결과 반환

REGULAR: 증분/대상 동기화용, LARGE: 전체 재인덱싱용. 임계치만 다르고 의미는 같다.
LARGE는 적재 동안 refresh_interval을 끄고 stop()에서 복원한다.

개별 연산 결과:
  - 성공:      2xx (delete의 404 포함: 이미 없는 문서)
  - soft 실패: 배치는 수락됐지만 해당 항목만 거부됨 → WARNING
  - hard 실패: 전송/인증 오류로 bulk 호출 자체가 실패하거나 응답에 항목이 없음 → ERROR
두 실패 모두 결과에는 똑같이 "failed"로 실린다. 재시도 여부는 큐 쪽에서 결정.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict, deque
from enum import Enum

from elasticsearch import ApiError, Elasticsearch, TransportError
from elasticsearch.helpers import streaming_bulk

from .config import Config
from .log import get_logger
from .result import DELETE, BulkOperation, FailedOperation, IndexingResult

default_logger = get_logger("bulk")


def response_body(response) -> dict:
    """ObjectApiResponse → dict (테스트용 dict 응답은 그대로)"""
    return getattr(response, "body", response)


class BulkSize(Enum):
    REGULAR = "regular"
    LARGE = "large"


class BulkIndexingError(RuntimeError):
    """큐 복구가 없는 경로(직접 삭제 등)에서 호출자에게 올리는 오류"""


class BulkIndexer:
    def __init__(
        self,
        es: Elasticsearch,
        index_name: str,
        size: BulkSize = BulkSize.REGULAR,
        config: Config | None = None,
        logger: logging.Logger | None = None,
        max_actions: int | None = None,
    ):
        config = config or Config()
        self.es = es
        self.index_name = index_name
        self.size = size
        self.logger = logger or default_logger
        self._config = config
        if size is BulkSize.LARGE:
            self.max_actions = config.large_bulk_actions
            self.max_bytes = config.large_bulk_bytes
        else:
            self.max_actions = config.regular_bulk_actions
            self.max_bytes = config.regular_bulk_bytes
        if max_actions is not None:
            self.max_actions = max_actions

        self._pending: list[BulkOperation] = []
        self._pending_bytes = 0
        self._result = IndexingResult()
        self._started = False

    # ================================================================
    # 배치 컨텍스트
    # ================================================================

    def start(self):
        if self._started:
            raise RuntimeError("BulkIndexer already started")
        self._pending = []
        self._pending_bytes = 0
        self._result = IndexingResult()
        if self.size is BulkSize.LARGE:
            self.es.indices.put_settings(
                index=self.index_name,
                settings={"index.refresh_interval": self._config.large_refresh_interval},
            )
        self._started = True

    def add(self, operation: BulkOperation) -> IndexingResult:
        """연산 추가. 임계치를 넘기면 즉시 flush하고 그 flush의 결과를 반환."""
        self._check_started()
        self._pending.append(operation)
        self._pending_bytes += operation.estimated_bytes()
        if len(self._pending) >= self.max_actions or self._pending_bytes >= self.max_bytes:
            return self.flush()
        return IndexingResult()

    def add_deletion(self, project_uuid: str, origins: tuple = ()) -> IndexingResult:
        """프로젝트 단위 delete-by-query (routing=project_uuid)"""
        return self.add_deletion_by_query(
            {"bool": {"must": [{"term": {"projectUuid": project_uuid}}]}},
            routing=project_uuid,
            label=f"project:{project_uuid}",
            origins=origins,
        )

    def add_deletion_by_query(
        self,
        query: dict,
        routing: str | None = None,
        label: str = "delete_by_query",
        origins: tuple = (),
    ) -> IndexingResult:
        """
        delete-by-query 1회. 대기 중인 연산을 먼저 flush한 뒤 실행한다.

        전송 오류와 문서별 실패는 모두 origins를 실은 실패로 결과에 남는다.
        label은 쿼리 전체가 실패했을 때 FailedOperation.doc_id로 쓰인다.
        """
        self._check_started()
        self.flush()
        result = IndexingResult()
        try:
            response = self.es.delete_by_query(
                index=self.index_name,
                routing=routing,
                query=query,
                conflicts="proceed",
                refresh=False,
            )
        except (ApiError, TransportError) as e:
            self.logger.error(
                f"[bold red]delete_by_query 실패[/bold red] {label} "
                f"index={self.index_name}: {type(e).__name__}: {e}"
            )
            result.add_failure(FailedOperation(
                doc_id=label,
                routing=routing,
                reason=f"{type(e).__name__}: {e}",
                hard=True,
                origins=origins,
                cause=e,
            ))
            self._result.add(result)
            return result

        body = response_body(response)
        result.increment_success(body.get("deleted", 0))
        for failure in body.get("failures", []):
            result.add_failure(FailedOperation(
                doc_id=str(failure.get("id", label)),
                routing=routing,
                reason=str(failure.get("cause", failure)),
                status=failure.get("status"),
                origins=origins,
            ))
        if result.failure:
            self.logger.warning(
                f"[yellow]delete_by_query 일부 실패[/yellow] {label} "
                f"deleted={result.success:,} failed={result.failure:,}"
            )
        self._result.add(result)
        return result

    def stop(self, refresh: bool = True) -> IndexingResult:
        """
        남은 연산 flush → refresh → 결과 반환. 이후 내부 상태는 비워진다.

        refresh=False: 중단 경로용. LARGE의 refresh_interval 복원은 그대로 한다.
        """
        self._check_started()
        try:
            self.flush()
        finally:
            self._started = False
            self._finish_index(refresh)

        result, self._result = self._result, IndexingResult()
        self.logger.info(
            f"벌크 완료 index={self.index_name} size={self.size.value} "
            f"success={result.success:,} failure={result.failure:,}"
        )
        return result

    # ================================================================
    # Flush
    # ================================================================

    def flush(self) -> IndexingResult:
        if not self._pending:
            return IndexingResult()

        batch, self._pending, self._pending_bytes = self._pending, [], 0
        waiting: dict[str, deque[BulkOperation]] = defaultdict(deque)
        for op in batch:
            waiting[op.doc_id].append(op)

        result = IndexingResult()
        t0 = time.perf_counter()
        try:
            for ok, item in streaming_bulk(
                self.es,
                (op.to_action(self.index_name) for op in batch),
                chunk_size=len(batch),
                max_chunk_bytes=self.max_bytes,
                raise_on_error=False,
                raise_on_exception=False,
                max_retries=0,
            ):
                self._record(result, waiting, ok, item)
        except TransportError as e:
            self.logger.error(
                f"[bold red]bulk 호출 실패[/bold red] index={self.index_name}: "
                f"{type(e).__name__}: {e}"
            )
            self._fail_unanswered(result, waiting, f"{type(e).__name__}: {e}", e)
        else:
            rejected = [f for f in result.failures if f.cause is not None]
            if rejected:
                self.logger.error(
                    f"[bold red]bulk 요청 거부[/bold red] {len(rejected):,}건 전체 실패 "
                    f"index={self.index_name}: {rejected[0].reason}"
                )
            if any(waiting.values()):
                self.logger.error(
                    f"[bold red]bulk 응답 항목 수 불일치[/bold red] "
                    f"요청={len(batch)} 응답={result.total}"
                )
                self._fail_unanswered(result, waiting, "bulk 응답에 항목 없음")
        bulk_ms = (time.perf_counter() - t0) * 1000

        self.logger.debug(
            f"flush {len(batch):,}건 bulk={bulk_ms:.0f}ms "
            f"success={result.success:,} failure={result.failure:,}"
        )
        soft = [f for f in result.failures if not f.hard]
        if soft:
            first = soft[0]
            self.logger.warning(
                f"[yellow]벌크 일부 실패[/yellow] {len(soft):,}/{len(batch):,}건 "
                f"(첫 실패: id={first.doc_id} status={first.status} {first.reason})"
            )
        self._result.add(result)
        return result

    def _record(self, result: IndexingResult, waiting: dict, ok: bool, item: dict):
        _, info = next(iter(item.items()))
        pending = waiting.get(str(info.get("_id")))
        if not pending:
            self.logger.warning(f"요청하지 않은 bulk 응답 항목 무시: {item}")
            return
        op = pending.popleft()
        status = info.get("status", 500)

        if ok or (op.action == DELETE and status == 404):
            result.increment_success()
        elif "exception" in info:
            # 배치 전체가 ApiError로 거부됨
            error = info["exception"]
            result.add_failure(self._failed(
                op, f"{type(error).__name__}: {error}", hard=True, status=status, cause=error,
            ))
        else:
            result.add_failure(self._failed(op, str(info.get("error", status)), status=status))

    def _fail_unanswered(self, result: IndexingResult, waiting: dict, reason: str,
                         cause: BaseException | None = None):
        for pending in waiting.values():
            while pending:
                result.add_failure(self._failed(pending.popleft(), reason, hard=True, cause=cause))

    @staticmethod
    def _failed(op: BulkOperation, reason: str, hard: bool = False,
                status: int | None = None, cause: BaseException | None = None) -> FailedOperation:
        return FailedOperation(
            doc_id=op.doc_id,
            routing=op.routing,
            reason=reason,
            hard=hard,
            status=status,
            origins=op.origins,
            cause=cause,
        )

    def _finish_index(self, refresh: bool = True):
        """refresh + (LARGE) refresh_interval 복원. 이미 기록된 쓰기는 유효하므로 실패해도 로그만."""
        try:
            if self.size is BulkSize.LARGE:
                self.es.indices.put_settings(
                    index=self.index_name,
                    settings={"index.refresh_interval": self._config.restore_refresh_interval},
                )
            if refresh:
                self.es.indices.refresh(index=self.index_name)
        except (ApiError, TransportError) as e:
            self.logger.warning(
                f"[yellow]refresh 실패[/yellow] index={self.index_name}: {e}"
            )

    def _check_started(self):
        if not self._started:
            raise RuntimeError("BulkIndexer not started, call start() first")
