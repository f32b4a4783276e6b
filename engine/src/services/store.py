"""
Persist pipeline definitions and execution records to the database.
"""

import logging
from typing import List, Optional

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from engine.src.config import get_settings
from engine.src.models.db import Base, ExecutionRecord, PipelineRecord
from engine.src.models.execution import ExecutionFilter, PipelineExecution
from engine.src.models.pipeline import Pipeline

logger = logging.getLogger(__name__)

class ExecutionStore:
    def __init__(self, database_url: Optional[str] = None):
        url = database_url or get_settings().database_url
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        self.engine = create_engine(url, connect_args=connect_args)
        self.SessionLocal = sessionmaker(bind=self.engine)

    def init_db(self):
        Base.metadata.create_all(self.engine)

    def save_pipeline(self, pipeline: Pipeline):
        """Insert or update a pipeline definition."""
        with self.SessionLocal() as session:
            session.merge(PipelineRecord(
                id=pipeline.id,
                project_id=pipeline.project_id,
                name=pipeline.name,
                definition=pipeline.model_dump(mode="json"),
            ))
            session.commit()
        logger.info(f"Saved pipeline {pipeline.id} ({pipeline.name})")

    def load_pipeline(self, pipeline_id: str) -> Optional[Pipeline]:
        with self.SessionLocal() as session:
            record = session.get(PipelineRecord, pipeline_id)
            if record is None:
                return None
            return Pipeline.model_validate(record.definition)

    def save_execution(self, execution: PipelineExecution):
        """Insert or update an execution record."""
        with self.SessionLocal() as session:
            session.merge(ExecutionRecord(
                id=execution.id,
                pipeline_id=execution.pipeline_id,
                project_id=execution.project_id,
                status=execution.status.value,
                triggered_by=execution.triggered_by,
                started_at=execution.started_at,
                finished_at=execution.finished_at,
                error=execution.error,
                record=execution.model_dump(mode="json"),
            ))
            session.commit()
        logger.debug(f"Saved execution {execution.id} with status {execution.status.value}")

    def load_execution(self, execution_id: str) -> Optional[PipelineExecution]:
        with self.SessionLocal() as session:
            record = session.get(ExecutionRecord, execution_id)
            if record is None:
                return None
            return PipelineExecution.model_validate(record.record)

    def list_executions(self, filter: Optional[ExecutionFilter] = None) -> List[PipelineExecution]:
        """List executions, newest first."""
        filter = filter or ExecutionFilter()
        query = select(ExecutionRecord).order_by(ExecutionRecord.started_at.desc())

        if filter.pipeline_id:
            query = query.where(ExecutionRecord.pipeline_id == filter.pipeline_id)
        if filter.project_id:
            query = query.where(ExecutionRecord.project_id == filter.project_id)
        if filter.status:
            query = query.where(ExecutionRecord.status == filter.status.value)
        if filter.triggered_by:
            query = query.where(ExecutionRecord.triggered_by == filter.triggered_by)
        if filter.started_after:
            query = query.where(ExecutionRecord.started_at >= filter.started_after)
        if filter.started_before:
            query = query.where(ExecutionRecord.started_at <= filter.started_before)

        query = query.limit(filter.limit).offset(filter.offset)

        with self.SessionLocal() as session:
            records = session.execute(query).scalars().all()
            return [PipelineExecution.model_validate(r.record) for r in records]
