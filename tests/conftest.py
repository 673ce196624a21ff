"""공용 테스트 fixture — SQLite 인메모리 DB + 기록용 가짜 ES 클라이언트"""

from __future__ import annotations

import json
from contextlib import contextmanager
from types import SimpleNamespace

import pytest
from elastic_transport import ApiResponseMeta, HttpHeaders, NodeConfig
from elasticsearch import ApiError
from elasticsearch.serializer import JsonSerializer
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from issue_indexer.config import Config
from issue_indexer.indexer import IssueIndexer
from issue_indexer.models import IssueRow, create_schema


class FakeIndices:
    def __init__(self):
        self.refresh_calls: list[str] = []
        self.settings_calls: list[dict] = []

    def refresh(self, index):
        self.refresh_calls.append(index)

    def put_settings(self, index, settings):
        self.settings_calls.append(settings)


class _DisabledTracing:
    """helpers가 쓰는 client._otel 자리. 스팬을 만들지 않는다."""

    @contextmanager
    def helpers_span(self, span_name):
        yield None

    @contextmanager
    def use_span(self, span):
        yield


class FakeResponse:
    def __init__(self, body: dict):
        self.body = body


class FakeElasticsearch:
    """
    elasticsearch.helpers가 부르는 bulk와 delete_by_query만 흉내내는 인메모리 ES.

    fail_ids:          해당 _id는 429로 거부 (soft 실패)
    bulk_error:        설정 시 bulk 호출 자체가 예외 (hard 실패)
    dropped_responses: 응답 items 끝에서 잘라낼 개수 (응답 누락 흉내)
    bulk_calls:        호출마다 역직렬화한 NDJSON 줄 목록
    """

    def __init__(self):
        self.docs: dict[str, dict] = {}
        self.routings: dict[str, str | None] = {}
        self.bulk_calls: list[list[dict]] = []
        self.delete_by_query_calls: list[dict] = []
        self.fail_ids: set[str] = set()
        self.bulk_error: Exception | None = None
        self.delete_by_query_error: Exception | None = None
        self.dropped_responses = 0
        self.indices = FakeIndices()
        self.transport = SimpleNamespace(
            serializers=SimpleNamespace(get_serializer=lambda mimetype: JsonSerializer())
        )
        self._otel = _DisabledTracing()
        self._client_meta = ()

    def options(self, **kwargs):
        return self

    def bulk(self, operations, refresh=None, **kwargs):
        lines = [json.loads(line) if isinstance(line, (bytes, str)) else line for line in operations]
        self.bulk_calls.append(lines)
        if self.bulk_error is not None:
            raise self.bulk_error

        items = []
        i = 0
        while i < len(lines):
            action, meta = next(iter(lines[i].items()))
            source = lines[i + 1] if action == "index" else None
            i += 2 if action == "index" else 1

            doc_id = meta["_id"]
            if doc_id in self.fail_ids:
                items.append({action: {
                    "_id": doc_id, "status": 429,
                    "error": {"type": "es_rejected_execution_exception"},
                }})
                continue
            if action == "index":
                status = 200 if doc_id in self.docs else 201
                self.docs[doc_id] = source
                self.routings[doc_id] = meta.get("routing")
            else:
                status = 200 if self.docs.pop(doc_id, None) is not None else 404
            items.append({action: {"_id": doc_id, "status": status}})

        if self.dropped_responses:
            items = items[: -self.dropped_responses]
        errors = any(next(iter(it.values()))["status"] >= 300 for it in items)
        return FakeResponse({"errors": errors, "items": items})

    def delete_by_query(self, index, query, routing=None, conflicts=None, refresh=None):
        self.delete_by_query_calls.append({"index": index, "routing": routing, "query": query})
        if self.delete_by_query_error is not None:
            raise self.delete_by_query_error
        clauses = query["bool"]["must"] if "bool" in query else [query]
        doomed = [k for k, v in self.docs.items() if all(_matches(c, v) for c in clauses)]
        for key in doomed:
            del self.docs[key]
        return FakeResponse({"deleted": len(doomed), "failures": []})


def api_error(status: int) -> ApiError:
    """ES가 요청 전체를 거부한 응답 (예: 503)"""
    meta = ApiResponseMeta(
        status=status, http_version="1.1", headers=HttpHeaders(), duration=0.0,
        node=NodeConfig("http", "localhost", 9200),
    )
    return ApiError("rejected", meta=meta, body={})


def _matches(clause: dict, source: dict) -> bool:
    kind, cond = next(iter(clause.items()))
    field, expected = next(iter(cond.items()))
    if kind == "terms":
        return source.get(field) in expected
    return source.get(field) == expected


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(engine, expire_on_commit=False)


@pytest.fixture()
def es() -> FakeElasticsearch:
    return FakeElasticsearch()


@pytest.fixture()
def config(tmp_path) -> Config:
    return Config(index_name="issues", dead_letter_path=tmp_path / "dead_letter.jsonl")


@pytest.fixture()
def indexer(es, session_factory, config) -> IssueIndexer:
    return IssueIndexer(es, session_factory, config)


def make_issue(kee: str, project_uuid: str = "P1", **fields) -> IssueRow:
    values = {
        "scope": "FIL",
        "path": f"src/{kee}.py",
        "module_uuid_path": f".{project_uuid}.",
        "status": "OPEN",
        "severity": "MAJOR",
        "tags": "bug, security",
        "issue_creation_date": 1_500_000_000_000,
    }
    values.update(fields)
    return IssueRow(kee=kee, project_uuid=project_uuid, **values)


@pytest.fixture()
def add_issues(session_factory):
    def _add(*rows: IssueRow):
        with session_factory() as session:
            session.add_all(rows)
            session.commit()

    return _add
