"""
Database models package
"""
from assessment_engine.models.record import Record, RecordLock

__all__ = ["Record", "RecordLock"]
