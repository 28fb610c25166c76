"""SQLAlchemy ORM models for intelligence jobs and per-entity agent settings."""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, Integer, String, Text, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.types import JSON

from sales_intel.config import DATABASE_URL

Base = declarative_base()

JOB_STATUSES = ("pending", "running", "complete", "error", "cancelled")
TERMINAL_STATUSES = frozenset({"complete", "error", "cancelled"})


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return uuid.uuid4().hex


class IntelligenceJob(Base):
    __tablename__ = "intelligence_jobs"

    id = Column(String(32), primary_key=True, default=_new_id)
    entity_type = Column(String(20), nullable=False, index=True)
    entity_id = Column(String(64), nullable=False, index=True)
    entity_name = Column(String(255), nullable=False, default="")
    status = Column(String(20), nullable=False, default="pending", index=True)
    version = Column(Integer, nullable=False, default=1)
    previous_job_id = Column(String(32), nullable=True)

    logs = Column(JSON, nullable=False, default=list)  # append-only
    result = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    stats = Column(JSON, nullable=True)  # {iterations, toolCalls, durationMs}
    change_detection = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "entity_name": self.entity_name,
            "status": self.status,
            "version": self.version,
            "previous_job_id": self.previous_job_id,
            "logs": list(self.logs or []),
            "result": self.result,
            "error": self.error,
            "stats": self.stats,
            "change_detection": self.change_detection,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }


class AgentConfigRecord(Base):
    """Operator-editable prompt settings for one entity type."""

    __tablename__ = "agent_configs"

    entity_type = Column(String(20), primary_key=True)
    system_prompt = Column(Text, nullable=False)
    max_iterations = Column(Integer, nullable=False, default=10)
    general_guidelines = Column(Text, nullable=True)
    quality_standards = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


def make_engine(url: str = DATABASE_URL) -> Engine:
    """Engine for *url*; SQLite connections are shared across worker threads."""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(
        url,
        connect_args=connect_args,
        json_serializer=lambda obj: json.dumps(obj, default=str),
        echo=False,
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create all tables. Call once at startup."""
    Base.metadata.create_all(bind=engine)
