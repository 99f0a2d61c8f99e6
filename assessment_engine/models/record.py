"""
Record model - generic keyed JSON document storage
"""
from sqlalchemy import Column, String, TIMESTAMP, JSON, func
from sqlalchemy.dialects.postgresql import JSONB
from assessment_engine.database import Base


class Record(Base):
    """
    Records table - one JSON document per store key
    (attempt:*, answer:*, questions:*, history:*, active:*, specs:*)
    """
    __tablename__ = "records"
    
    key = Column(String(255), primary_key=True)
    data = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False)
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
    
    def __repr__(self):
        return f"<Record(key={self.key})>"


class RecordLock(Base):
    """
    Lock rows - SELECT ... FOR UPDATE on these serializes writers per key
    """
    __tablename__ = "record_locks"
    
    key = Column(String(255), primary_key=True)
    
    def __repr__(self):
        return f"<RecordLock(key={self.key})>"
