"""이슈 행 → ES 도큐먼트 변환"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from .models import IssueRow

# 컴포넌트 scope
SCOPE_PROJECT = "PRJ"
SCOPE_DIRECTORY = "DIR"
SCOPE_FILE = "FIL"


def parse_tags(tags: str | None) -> list[str]:
    """쉼표 구분 문자열 → 태그 리스트 (공백 제거, 빈 토큰 제외, 순서 유지)

    예: "a, b ,,c" → ["a", "b", "c"]
    """
    if not tags:
        return []
    return [t.strip() for t in tags.split(",") if t.strip()]


def file_path_of(path: str | None, scope: str | None) -> str | None:
    """프로젝트 레벨 이슈에는 파일 경로가 없다."""
    if path is not None and scope != SCOPE_PROJECT:
        return path
    return None


def directory_path_of(path: str | None, scope: str | None) -> str | None:
    """
    디렉토리 경로 계산.

    - scope=DIR  → path 그대로
    - 그 외      → 마지막 '/' 앞까지, 슬래시가 맨 앞이거나 없으면 "/"
    - path 없음  → None
    """
    if path is None:
        return None
    if scope == SCOPE_DIRECTORY:
        return path
    if not path:
        return None
    last_slash = path.rfind("/")
    if last_slash > 0:
        return path[:last_slash]
    return "/"


def module_uuid_of(module_uuid_path: str | None) -> str | None:
    """".A.B.C." 형태의 모듈 경로에서 마지막 모듈 uuid"""
    if not module_uuid_path:
        return None
    segments = [s.strip() for s in module_uuid_path.split(".") if s.strip()]
    return segments[-1] if segments else None


def _iso_date(epoch_ms: int | None) -> str | None:
    if not epoch_ms:
        return None
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).isoformat()


@dataclass
class IssueDoc:
    """인덱스에 저장되는 이슈 1건. key는 실행 간 불변 (재인덱싱 멱등)."""

    key: str
    project_uuid: str
    organization_uuid: str | None = None
    component_uuid: str | None = None
    module_uuid: str | None = None
    module_path: str | None = None
    file_path: str | None = None
    directory_path: str | None = None
    language: str | None = None
    rule_key: str | None = None
    type: int | None = None
    severity: str | None = None
    manual_severity: bool = False
    status: str | None = None
    resolution: str | None = None
    assignee: str | None = None
    author_login: str | None = None
    line: int | None = None
    gap: float | None = None
    effort: int | None = None
    checksum: str | None = None
    tags: list[str] = field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None
    closed_at: str | None = None

    @classmethod
    def from_row(cls, row: IssueRow) -> IssueDoc:
        rule_key = None
        if row.rule_repository and row.rule_key:
            rule_key = f"{row.rule_repository}:{row.rule_key}"
        return cls(
            key=row.kee,
            project_uuid=row.project_uuid,
            organization_uuid=row.organization_uuid,
            component_uuid=row.component_uuid,
            module_uuid=module_uuid_of(row.module_uuid_path),
            module_path=row.module_uuid_path,
            file_path=file_path_of(row.path, row.scope),
            directory_path=directory_path_of(row.path, row.scope),
            language=row.language,
            rule_key=rule_key,
            type=row.issue_type,
            severity=row.severity,
            manual_severity=bool(row.manual_severity),
            status=row.status,
            resolution=row.resolution,
            assignee=row.assignee,
            author_login=row.author_login,
            line=row.line,
            gap=row.gap,
            effort=row.effort,
            checksum=row.checksum,
            tags=parse_tags(row.tags),
            created_at=_iso_date(row.issue_creation_date),
            updated_at=_iso_date(row.issue_update_date),
            closed_at=_iso_date(row.issue_close_date),
        )

    def to_source(self) -> dict:
        """ES _source 본문. None 필드는 제외."""
        source = {
            "key": self.key,
            "projectUuid": self.project_uuid,
            "organizationUuid": self.organization_uuid,
            "componentUuid": self.component_uuid,
            "moduleUuid": self.module_uuid,
            "modulePath": self.module_path,
            "filePath": self.file_path,
            "directoryPath": self.directory_path,
            "language": self.language,
            "ruleKey": self.rule_key,
            "type": self.type,
            "severity": self.severity,
            "manualSeverity": self.manual_severity,
            "status": self.status,
            "resolution": self.resolution,
            "assignee": self.assignee,
            "authorLogin": self.author_login,
            "line": self.line,
            "gap": self.gap,
            "effort": self.effort,
            "checksum": self.checksum,
            "tags": self.tags,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "closedAt": self.closed_at,
        }
        return {k: v for k, v in source.items() if v is not None}
