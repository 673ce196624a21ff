"""이슈 인덱서 설정"""

from dataclasses import dataclass
from pathlib import Path


@dataclass
class Config:
    # Elasticsearch 연결
    es_url: str = "http://localhost:9200"
    es_nodes: list[str] | None = None       # 클러스터 노드 목록 (설정 시 es_url 무시)
    es_fingerprint: str | None = None       # TLS 인증서 SHA-256 fingerprint (클러스터 시 필수)
    es_username: str | None = None          # Basic Auth 사용자명
    es_password: str | None = None          # Basic Auth 비밀번호
    es_api_key: str | None = None           # API Key (basic_auth 대신 사용 가능)
    es_request_timeout: float = 60.0        # 요청당 타임아웃 (초). LARGE 배치 기준
    es_max_retries: int = 2                 # 노드 장애 시 다른 노드로 재전송 횟수
    es_retry_on_timeout: bool = True

    # 인덱스
    index_name: str = "issues"

    # 원본 DB (SQLAlchemy URL)
    database_url: str = "sqlite:///issues.db"

    # 벌크 프로파일: REGULAR: 증분/대상 동기화, LARGE: 전체 재인덱싱
    regular_bulk_actions: int = 500
    regular_bulk_bytes: int = 1 * 1024 * 1024
    large_bulk_actions: int = 5000
    large_bulk_bytes: int = 10 * 1024 * 1024

    # LARGE 적재 중 refresh 비활성 → 종료 시 복원
    large_refresh_interval: str = "-1"
    restore_refresh_interval: str = "1s"

    # 키 목록 삭제 시 벌크 1회당 최대 건수
    delete_batch_size: int = 1000

    # 큐 / 원본 조회
    queue_page_size: int = 500      # drain 1회에 읽는 큐 항목 수
    key_page_size: int = 999        # IN (...) 절 1회당 최대 키 수
    recovery_min_age: float = 300.0 # 이보다 오래된 큐 항목만 recovery 대상 (초)

    # Dead letter: 처리 불가 큐 항목 JSONL 경로 (None=로그만)
    dead_letter_path: Path | None = None
