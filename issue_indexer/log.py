"""
issue_indexer 로깅 (Rich console + plain-text file)

    from issue_indexer.log import setup_logging, get_logger

    setup_logging(log_file=Path("logs/recovery.log"), verbose=True)
    logger = get_logger("indexer")     # issue_indexer.indexer
    logger.info("[bold green]재인덱싱 완료[/bold green]")

elasticsearch 클라이언트는 요청마다 elastic_transport 로거에 INFO를 남긴다.
bulk flush마다 한 줄씩 쌓이므로 verbose가 아니면 WARNING 이상만 통과시킨다.
"""

import logging
from pathlib import Path

from rich.errors import MarkupError
from rich.logging import RichHandler
from rich.text import Text

PKG = "issue_indexer"
TRANSPORT_LOGGERS = ("elastic_transport", "elasticsearch")
FILE_FORMAT = "%(asctime)s  %(levelname)-7s  %(component)-11s  %(message)s"


class _MarkupStrippingFormatter(logging.Formatter):
    """파일 출력용: Rich markup 제거 + 패키지 접두어 없는 컴포넌트 이름"""

    def format(self, record: logging.LogRecord) -> str:
        record.component = record.name.removeprefix(f"{PKG}.")
        msg = record.getMessage()
        try:
            plain = Text.from_markup(msg).plain
        except MarkupError:  # 예: 사용자 입력의 "[/...]"
            plain = msg
        saved = record.msg, record.args
        record.msg, record.args = plain, None
        try:
            return super().format(record)
        finally:
            record.msg, record.args = saved


def setup_logging(
    log_file: Path | None = None,
    level: int | None = None,
    verbose: bool = False,
) -> logging.Logger:
    """
    패키지 루트 로거 구성. 여러 번 불러도 같은 핸들러가 중복되지 않는다.

    level을 생략하면 verbose에 따라 DEBUG / INFO.
    """
    if level is None:
        level = logging.DEBUG if verbose else logging.INFO
    logger = logging.getLogger(PKG)
    logger.setLevel(level)

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        logger.addHandler(RichHandler(
            rich_tracebacks=True,
            show_path=False,
            markup=True,
            log_time_format="[%H:%M:%S]",
        ))

    if log_file:
        path = log_file.resolve()
        if not any(
            isinstance(h, logging.FileHandler) and Path(h.baseFilename) == path
            for h in logger.handlers
        ):
            path.parent.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(path, encoding="utf-8")
            fh.setFormatter(_MarkupStrippingFormatter(FILE_FORMAT))
            logger.addHandler(fh)

    for name in TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)
    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    """get_logger("bulk") → issue_indexer.bulk, 생략하면 패키지 루트"""
    return logging.getLogger(f"{PKG}.{name}" if name else PKG)
