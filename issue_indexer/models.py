"""SQLAlchemy 테이블 정의 — 이슈 원본 + ES 동기화 큐."""
from __future__ import annotations

from sqlalchemy import BigInteger, Boolean, Float, Integer, String, Text, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, sessionmaker

Base = declarative_base()


class IssueRow(Base):
    """인덱싱에 필요한 컬럼만 비정규화해 둔 이슈 행."""

    __tablename__ = "issues"

    kee: Mapped[str] = mapped_column(String(50), primary_key=True)
    project_uuid: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    organization_uuid: Mapped[str | None] = mapped_column(String(40))
    component_uuid: Mapped[str | None] = mapped_column(String(50))
    module_uuid_path: Mapped[str | None] = mapped_column(Text)
    path: Mapped[str | None] = mapped_column(Text)
    scope: Mapped[str | None] = mapped_column(String(3))  # PRJ / DIR / FIL
    language: Mapped[str | None] = mapped_column(String(20))
    rule_repository: Mapped[str | None] = mapped_column(String(255))
    rule_key: Mapped[str | None] = mapped_column(String(200))
    issue_type: Mapped[int | None] = mapped_column(Integer)
    severity: Mapped[str | None] = mapped_column(String(10))
    manual_severity: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[str | None] = mapped_column(String(20))
    resolution: Mapped[str | None] = mapped_column(String(20))
    assignee: Mapped[str | None] = mapped_column(String(255))
    author_login: Mapped[str | None] = mapped_column(String(255))
    message: Mapped[str | None] = mapped_column(Text)
    line: Mapped[int | None] = mapped_column(Integer)
    gap: Mapped[float | None] = mapped_column(Float)
    effort: Mapped[int | None] = mapped_column(BigInteger)
    checksum: Mapped[str | None] = mapped_column(String(1000))
    tags: Mapped[str | None] = mapped_column(String(4000))  # 쉼표 구분
    issue_creation_date: Mapped[int | None] = mapped_column(BigInteger)  # epoch ms
    issue_update_date: Mapped[int | None] = mapped_column(BigInteger)
    issue_close_date: Mapped[int | None] = mapped_column(BigInteger)
    updated_at: Mapped[int | None] = mapped_column(BigInteger)


class EsQueueRow(Base):
    """ES 동기화 대기 항목. 성공이 확인된 뒤에만 삭제된다."""

    __tablename__ = "es_queue"

    uuid: Mapped[str] = mapped_column(String(40), primary_key=True)
    doc_type: Mapped[str] = mapped_column(String(40), nullable=False)
    doc_id: Mapped[str] = mapped_column(String(4000), nullable=False)
    doc_id_type: Mapped[str | None] = mapped_column(String(20))
    doc_routing: Mapped[str | None] = mapped_column(String(4000))
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)  # epoch ms


def create_session_factory(database_url: str) -> tuple[Engine, sessionmaker]:
    engine = create_engine(database_url, future=True, echo=False)
    return engine, sessionmaker(engine, expire_on_commit=False)


def create_schema(engine: Engine) -> None:
    Base.metadata.create_all(engine)
