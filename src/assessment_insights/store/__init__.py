from .base import RecordSource, ReportHead, ReportStore, StaticRecordSource
from .sqlite import SqliteStore

__all__ = ["RecordSource", "ReportHead", "ReportStore", "SqliteStore", "StaticRecordSource"]
