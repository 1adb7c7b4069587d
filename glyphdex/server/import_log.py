"""Durable import log: a store plus a logging handler that feeds it."""

import itertools
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from glyphdex.server.db import DB
from glyphdex.server.models import ImportLog, LogLevel

_LEVELS = {
    logging.CRITICAL: LogLevel.ERROR,
    logging.ERROR: LogLevel.ERROR,
    logging.WARNING: LogLevel.WARN,
    logging.INFO: LogLevel.INFO,
    logging.DEBUG: LogLevel.DEBUG,
}


def _aware(date: datetime) -> datetime:
    # Naive datetimes are taken as UTC
    return date if date.tzinfo else date.replace(tzinfo=timezone.utc)


def log_level_of(levelno: int) -> LogLevel:
    for threshold in sorted(_LEVELS, reverse=True):
        if levelno >= threshold:
            return _LEVELS[threshold]
    return LogLevel.DEBUG


class ImportLogStore:
    """Import log entries, newest first."""

    def __init__(self, db: DB):
        self.logs = db.importlogs
        self._seq = itertools.count()

    def _next_id(self) -> str:
        # Sortable by creation time
        return f'{time.time_ns():020d}-{next(self._seq) % 1000000:06d}'

    @staticmethod
    def _query(level: Optional[LogLevel] = None,
               start_date: Optional[datetime] = None,
               end_date: Optional[datetime] = None,
               block_height: Optional[int] = None) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if level:
            query['level'] = LogLevel(level)
        if start_date or end_date:
            query['timestamp'] = {}
            if start_date:
                query['timestamp']['$gte'] = _aware(start_date)
            if end_date:
                query['timestamp']['$lte'] = _aware(end_date)
        if block_height is not None:
            query['block_height'] = block_height
        return query

    def create(self, message: str, level: LogLevel = LogLevel.INFO,
               details: Any = None, block_height: Optional[int] = None,
               txid: Optional[str] = None) -> ImportLog:
        entry = ImportLog(id=self._next_id(), message=message, level=level,
                          details=details, block_height=block_height, txid=txid)
        return self.logs.insert(entry)

    def find_by_id(self, log_id: str) -> Optional[ImportLog]:
        return self.logs.get(log_id)

    def find_all(self, limit: int = 100, skip: int = 0, level=None,
                 start_date=None, end_date=None, block_height=None) -> List[ImportLog]:
        query = self._query(level, start_date, end_date, block_height)
        return self.logs.find(query, sort=[('timestamp', -1), ('id', -1)],
                              skip=skip, limit=limit)

    def count(self, level=None, start_date=None, end_date=None,
              block_height=None) -> int:
        return self.logs.count(self._query(level, start_date, end_date, block_height))

    def delete_older_than(self, date: datetime) -> int:
        return self.logs.delete_many({'timestamp': {'$lt': _aware(date)}})


class ImportLogHandler(logging.Handler):
    """Mirrors log records into an ImportLogStore.

    ``block_height``, ``txid`` and ``details`` are picked up from the
    record's ``extra`` fields when present.
    """

    def __init__(self, store: ImportLogStore, level=logging.INFO):
        super().__init__(level)
        self.store = store

    def emit(self, record):
        try:
            details = getattr(record, 'details', None)
            if record.exc_info and details is None:
                details = {'error': self.format_exception(record)}
            self.store.create(
                record.getMessage(),
                level=log_level_of(record.levelno),
                details=details,
                block_height=getattr(record, 'block_height', None),
                txid=getattr(record, 'txid', None),
            )
        except Exception:
            self.handleError(record)

    @staticmethod
    def format_exception(record) -> str:
        return logging.Formatter().formatException(record.exc_info)


def install_log_handler(store: ImportLogStore, logger_names=('glyphdex',),
                        level=logging.INFO) -> ImportLogHandler:
    """Attach a handler for ``store`` to the named loggers."""
    handler = ImportLogHandler(store, level)
    for name in logger_names:
        logging.getLogger(name).addHandler(handler)
    return handler
