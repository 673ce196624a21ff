"""처리 불가능한 큐 항목 기록 (JSONL)"""

import json
import time
from pathlib import Path

from .log import get_logger
from .queue import RetryQueueItem

logger = get_logger("dead_letter")


class DeadLetterLog:
    """
    재시도해도 절대 성공할 수 없는 큐 항목을 기록.

    파일 형식 (1줄 = 1 항목):
        {"uuid": "...", "doc_type": "issue", "doc_id": "...", "doc_id_type": "...",
         "created_at": 1700000000000, "reason": "...", "timestamp": "..."}
    path=None이면 로그만 남긴다.
    """

    def __init__(self, path: Path | None = None):
        self.path = path
        self._count = 0
        if path:
            path.parent.mkdir(parents=True, exist_ok=True)

    def write(self, item: RetryQueueItem, reason: str):
        logger.error(
            f"[bold red]Dead letter[/bold red] es_queue 항목 제거: "
            f"uuid={item.id} doc_id={item.reference_id} "
            f"doc_id_type={item.kind_label!r} ({reason})"
        )
        self._count += 1
        if not self.path:
            return

        record = {
            "uuid": item.id,
            "doc_type": item.type_label,
            "doc_id": item.reference_id,
            "doc_id_type": item.kind_label,
            "created_at": item.enqueued_at,
            "reason": reason,
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S"),
        }
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False) + "\n")

    @property
    def count(self) -> int:
        return self._count
