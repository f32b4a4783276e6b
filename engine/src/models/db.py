"""
Database models for pipeline definitions and execution records.
"""

from sqlalchemy import Column, String, DateTime, Text, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB, "postgresql")

class PipelineRecord(Base):
    __tablename__ = "pipelines"

    id = Column(String(64), primary_key=True)
    project_id = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    definition = Column(JSONType, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

class ExecutionRecord(Base):
    __tablename__ = "pipeline_executions"

    id = Column(String(64), primary_key=True)
    pipeline_id = Column(String(64), nullable=False, index=True)
    project_id = Column(String(255), nullable=False)
    status = Column(String(50), default="pending")
    triggered_by = Column(String(255))
    started_at = Column(DateTime)
    finished_at = Column(DateTime)
    error = Column(Text)
    record = Column(JSONType, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
