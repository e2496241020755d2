"""Structured error sink shared by the jobs.

An ``ErrorLogger`` is created per run and passed to every component that
reports degraded data. Records are mirrored to stdlib logging right away and
written to the ``error_logs`` table on ``flush()``.
"""

import logging
import os
import socket
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy.engine import Engine

from services.indexer.src.indexer.config import settings
from services.indexer.src.indexer.db.error_log_repository import ErrorLogRepository

logger = logging.getLogger(__name__)


class LogKeyword(str, Enum):
    TIMEOUT = "timeout"
    MISSING_VALUES = "missingValues"
    MISSING_BLOCKS = "missingBlocks"
    CRITICAL = "critical"


_LEVELS = {
    LogKeyword.TIMEOUT: logging.WARNING,
    LogKeyword.MISSING_VALUES: logging.WARNING,
    LogKeyword.MISSING_BLOCKS: logging.WARNING,
    LogKeyword.CRITICAL: logging.ERROR,
}


class ErrorLogger:
    def __init__(self, engine: Engine | None = None, name: str = "indexer"):
        self.engine = engine
        self.name = name
        self.records: list[dict] = []
        self._pending: list[dict] = []
        self._closed = False

    def init(self) -> "ErrorLogger":
        self._closed = False
        return self

    def __enter__(self) -> "ErrorLogger":
        return self.init()

    def __exit__(self, *exc) -> None:
        self.close()

    def error(
        self,
        error: BaseException | str,
        keyword: LogKeyword | str = LogKeyword.CRITICAL,
        chain: str | None = None,
        protocol_id: int | None = None,
        function: str | None = None,
        table: str | None = None,
    ) -> dict:
        if self._closed:
            raise RuntimeError(f"ErrorLogger '{self.name}' is closed")
        keyword = LogKeyword(keyword)
        msg = error if isinstance(error, str) else f"{type(error).__name__}: {error}"
        record = {
            "name": self.name,
            "level": logging.getLevelName(_LEVELS[keyword]).lower(),
            "host_name": socket.gethostname(),
            "keyword": keyword.value,
            "table_name": table,
            "chain": chain,
            "protocol_id": protocol_id,
            "function": function,
            "msg": msg,
            "pid": os.getpid(),
            "time": datetime.now(timezone.utc),
        }
        logger.log(
            _LEVELS[keyword],
            f"[{keyword.value}] {function or '-'} chain={chain} protocol={protocol_id}: {msg}",
        )
        self.records.append(record)
        self._pending.append(record)
        return record

    def count(self, keyword: LogKeyword | str | None = None) -> int:
        if keyword is None:
            return len(self.records)
        return sum(1 for r in self.records if r["keyword"] == LogKeyword(keyword).value)

    def flush(self) -> int:
        """Persist buffered records. Returns how many were written."""
        if not self._pending or self.engine is None or not settings.persist_error_logs:
            self._pending.clear()
            return 0

        pending, self._pending = self._pending, []
        try:
            return ErrorLogRepository(self.engine).insert_records(pending)
        except Exception as e:
            logger.error(f"Failed to persist {len(pending)} error log record(s): {e}")
            return 0

    def close(self) -> None:
        self.flush()
        self._closed = True
