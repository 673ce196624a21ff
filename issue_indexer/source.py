"""원본 DB → IssueDoc 스트림

호출자마다 별도 세션(커서)을 열고, with 블록을 벗어나면 예외 여부와
관계없이 닫는다.

    source = IssueSource(session_factory)
    with source.for_project("PROJECT_UUID") as docs:
        for doc in docs:
            ...
"""

from __future__ import annotations

from collections.abc import Collection, Iterator
from contextlib import contextmanager

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from .documents import IssueDoc
from .log import get_logger
from .models import IssueRow

logger = get_logger("source")

STREAM_FETCH_SIZE = 500


class IssueSource:
    def __init__(self, session_factory: sessionmaker, key_page_size: int = 999):
        self._session_factory = session_factory
        self._key_page_size = key_page_size

    @contextmanager
    def for_keys(self, keys: Collection[str]) -> Iterator[Iterator[IssueDoc]]:
        """키 목록에 해당하는 이슈. 없는 키는 조용히 건너뛴다."""
        logger.debug(f"이슈 키 {len(keys):,}개 조회 (page={self._key_page_size})")
        session = self._session_factory()
        try:
            yield self._stream_keys(session, list(dict.fromkeys(keys)))
        finally:
            session.close()

    @contextmanager
    def for_project(self, project_uuid: str | None) -> Iterator[Iterator[IssueDoc]]:
        """프로젝트의 모든 이슈. project_uuid=None이면 전체."""
        session = self._session_factory()
        try:
            stmt = select(IssueRow)
            if project_uuid is not None:
                stmt = stmt.where(IssueRow.project_uuid == project_uuid)
            yield self._stream(session, stmt)
        finally:
            session.close()

    def project_uuids_of(self, keys: Collection[str]) -> dict[str, str]:
        """이슈 키 → project_uuid (routing). DB에 없는 키는 빠진다."""
        keys = list(dict.fromkeys(keys))
        found: dict[str, str] = {}
        with self._session_factory() as session:
            for i in range(0, len(keys), self._key_page_size):
                page = keys[i : i + self._key_page_size]
                stmt = select(IssueRow.kee, IssueRow.project_uuid).where(IssueRow.kee.in_(page))
                found.update({kee: project_uuid for kee, project_uuid in session.execute(stmt)})
        return found

    def _stream_keys(self, session: Session, keys: list[str]) -> Iterator[IssueDoc]:
        for i in range(0, len(keys), self._key_page_size):
            page = keys[i : i + self._key_page_size]
            yield from self._stream(session, select(IssueRow).where(IssueRow.kee.in_(page)))

    @staticmethod
    def _stream(session: Session, stmt) -> Iterator[IssueDoc]:
        rows = session.execute(stmt.execution_options(yield_per=STREAM_FETCH_SIZE)).scalars()
        for row in rows:
            yield IssueDoc.from_row(row)
