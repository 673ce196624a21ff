"""
이슈 인덱서 CLI

실행:
  # 전체 재인덱싱
  issue-indexer reindex --database_url postgresql+psycopg://... --es_url http://localhost:9200

  # 분석 완료된 프로젝트 재인덱싱
  issue-indexer reindex-project PROJECT_UUID --cause new_analysis

  # 키 단위 동기화 / 큐 처리
  issue-indexer index-keys AX-1 AX-2
  issue-indexer drain --limit 200
  issue-indexer recover --min_age 300

  # 삭제
  issue-indexer delete-project PROJECT_UUID
  issue-indexer delete-keys PROJECT_UUID AX-1 AX-2
"""

import argparse
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import Config
from .indexer import Cause, IssueIndexer
from .log import setup_logging
from .models import create_schema, create_session_factory
from .result import IndexingResult

console = Console()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="issue-indexer",
        description="이슈 DB → Elasticsearch 동기화",
    )

    # ── 연결 ──
    conn = parser.add_argument_group("연결")
    conn.add_argument("--database_url", default=Config.database_url)
    conn.add_argument("--create_schema", action="store_true", help="issues / es_queue 테이블 생성")
    conn.add_argument("--es_url", default=Config.es_url)
    conn.add_argument("--es_nodes", nargs="+", default=None, help="클러스터 노드 URL 목록 (설정 시 --es_url 무시)")
    conn.add_argument("--es_fingerprint", default=None)
    conn.add_argument("--es_username", default=None)
    conn.add_argument("--es_password", default=None)
    conn.add_argument("--es_api_key", default=None)
    conn.add_argument("--es_request_timeout", type=float, default=Config.es_request_timeout, help="초")
    conn.add_argument("--index", default=Config.index_name)

    # ── 로깅 / dead letter ──
    out = parser.add_argument_group("로깅")
    out.add_argument("--log_file", type=Path, default=None)
    out.add_argument("--dead_letter", type=Path, default=None, help="처리 불가 큐 항목 JSONL 경로")
    out.add_argument("--verbose", "-v", action="store_true")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("reindex", help="전체 재인덱싱 (LARGE)")

    p = sub.add_parser("reindex-project", help="프로젝트 생명주기 이벤트 처리")
    p.add_argument("project_uuid")
    p.add_argument("--cause", choices=[c.value for c in Cause], default=Cause.NEW_ANALYSIS.value)

    p = sub.add_parser("index-keys", help="큐 기록 후 즉시 동기화")
    p.add_argument("keys", nargs="+")

    p = sub.add_parser("enqueue-project", help="프로젝트를 큐에만 예약")
    p.add_argument("project_uuid")

    p = sub.add_parser("drain", help="큐 한 페이지 처리")
    p.add_argument("--limit", type=int, default=Config.queue_page_size)

    p = sub.add_parser("recover", help="오래된 큐 항목 전체 처리")
    p.add_argument("--min_age", type=float, default=Config.recovery_min_age, help="초")

    p = sub.add_parser("delete-project", help="프로젝트 이슈 전체 삭제")
    p.add_argument("project_uuid")

    p = sub.add_parser("delete-keys", help="키 목록 삭제")
    p.add_argument("project_uuid")
    p.add_argument("keys", nargs="+")

    return parser


def _summary_table(title: str, result: IndexingResult) -> Table:
    table = Table(title=title, show_header=False, border_style="dim")
    table.add_column("항목", style="bold")
    table.add_column("값", justify="right", style="cyan")
    table.add_row("성공", f"{result.success:,}")
    if result.failure:
        hard = sum(1 for f in result.failures if f.hard)
        table.add_row("실패", f"[red]{result.failure:,}건 (전송 오류 {hard:,})[/]")
    else:
        table.add_row("실패", "0")
    return table


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    setup_logging(args.log_file, verbose=args.verbose)

    config = Config(
        es_url=args.es_url,
        es_nodes=args.es_nodes,
        es_fingerprint=args.es_fingerprint,
        es_username=args.es_username,
        es_password=args.es_password,
        es_api_key=args.es_api_key,
        es_request_timeout=args.es_request_timeout,
        index_name=args.index,
        database_url=args.database_url,
        dead_letter_path=args.dead_letter,
    )
    if args.create_schema:
        engine, _ = create_session_factory(config.database_url)
        create_schema(engine)

    indexer = IssueIndexer.from_config(config)
    console.print(Panel.fit(f"[bold]{args.command}[/] — index={config.index_name}", border_style="green"))

    if args.command == "reindex":
        result = indexer.index_on_startup()
    elif args.command == "reindex-project":
        result = indexer.index_project(args.project_uuid, Cause(args.cause))
    elif args.command == "index-keys":
        result = indexer.index(args.keys)
    elif args.command == "enqueue-project":
        with indexer.session_factory() as session:
            item = indexer.create_queue_for_project(session, args.project_uuid)
            session.commit()
        console.print(f"큐 등록: {item.id} (project={args.project_uuid})")
        return 0
    elif args.command == "drain":
        result = indexer.drain(args.limit)
    elif args.command == "recover":
        result = indexer.recover(args.min_age)
    elif args.command == "delete-project":
        result = indexer.delete_project(args.project_uuid)
    else:
        result = indexer.delete_by_keys(args.project_uuid, args.keys)

    console.print(_summary_table("결과 요약", result))
    return 0 if result.is_success else 1


if __name__ == "__main__":
    raise SystemExit(main())
