from datetime import datetime
from typing import Sequence

from sqlalchemy import select

from services.indexer.src.indexer.db.base import BaseRepository
from services.indexer.src.indexer.db.models import error_logs


class ErrorLogRepository(BaseRepository):
    def insert_records(self, records: Sequence[dict]) -> int:
        if not records:
            return 0
        with self.engine.begin() as conn:
            result = conn.execute(error_logs.insert(), list(records))
            return result.rowcount

    def get_records_since(self, since: datetime, keyword: str | None = None) -> list[dict]:
        stmt = select(error_logs).where(error_logs.c.time >= since).order_by(error_logs.c.time)
        if keyword is not None:
            stmt = stmt.where(error_logs.c.keyword == keyword)
        with self.engine.connect() as conn:
            return [dict(row._mapping) for row in conn.execute(stmt)]
