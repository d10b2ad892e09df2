from __future__ import annotations

import uuid
from collections.abc import Generator

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    String,
    Text,
    create_engine,
)
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.sql import func as sqlfunc

try:
    from .config import DATABASE_URL
except ImportError:
    from config import DATABASE_URL


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


engine = create_engine(DATABASE_URL, echo=False, future=True)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class User(Base):
    __tablename__ = "app_user"
    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(256), nullable=False)
    email = Column(String(256), unique=True, nullable=False, index=True)
    role = Column(String(32), nullable=False, default="student")  # admin | staff | panelist | student
    created_at = Column(DateTime(timezone=True), server_default=sqlfunc.now(), nullable=False)


class ThesisGroup(Base):
    __tablename__ = "thesis_group"
    id = Column(String(36), primary_key=True, default=_new_id)
    title = Column(String(512), nullable=False)
    program = Column(String(128), nullable=True)
    term = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=sqlfunc.now(), nullable=False)


class RubricTemplate(Base):
    __tablename__ = "rubric_template"
    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(256), nullable=False)
    version = Column(String(32), nullable=False, default="1")
    created_at = Column(DateTime(timezone=True), server_default=sqlfunc.now(), nullable=False)


class RubricCriterion(Base):
    __tablename__ = "rubric_criterion"
    id = Column(String(36), primary_key=True, default=_new_id)
    template_id = Column(String(36), ForeignKey("rubric_template.id", ondelete="CASCADE"), nullable=False, index=True)
    criterion = Column(String(256), nullable=False)
    description = Column(Text, nullable=True)
    weight = Column(Float, nullable=False, default=1.0)
    min_score = Column(Float, nullable=False, default=0.0)
    max_score = Column(Float, nullable=False, default=5.0)
    created_at = Column(DateTime(timezone=True), server_default=sqlfunc.now(), nullable=False)


class DefenseSchedule(Base):
    __tablename__ = "defense_schedule"
    id = Column(String(36), primary_key=True, default=_new_id)
    group_id = Column(String(36), ForeignKey("thesis_group.id", ondelete="CASCADE"), nullable=False, index=True)
    scheduled_at = Column(DateTime(timezone=True), nullable=True)
    room = Column(String(64), nullable=True)
    status = Column(String(32), nullable=False, default="scheduled")  # scheduled | ongoing | completed | cancelled
    rubric_template_id = Column(String(36), ForeignKey("rubric_template.id", ondelete="SET NULL"), nullable=True)


class Evaluation(Base):
    __tablename__ = "evaluation"
    id = Column(String(36), primary_key=True, default=_new_id)
    schedule_id = Column(String(36), ForeignKey("defense_schedule.id", ondelete="CASCADE"), nullable=False, index=True)
    evaluator_id = Column(String(36), ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(16), nullable=False, default="pending")  # pending | submitted | locked
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    locked_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=sqlfunc.now(), nullable=False)


class EvaluationScore(Base):
    __tablename__ = "evaluation_score"
    id = Column(String(36), primary_key=True, default=_new_id)
    evaluation_id = Column(String(36), ForeignKey("evaluation.id", ondelete="CASCADE"), nullable=False, index=True)
    criterion_id = Column(String(36), ForeignKey("rubric_criterion.id", ondelete="CASCADE"), nullable=False)
    target_type = Column(String(16), nullable=False)  # group | student
    target_id = Column(String(36), nullable=False)
    score = Column(Float, nullable=True)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=sqlfunc.now(), nullable=False)

    # Retried writes may leave duplicate rows; the ranking engine deduplicates them.
    __table_args__ = (
        Index("ix_evaluation_score_target", "target_type", "target_id"),
    )


def init_db() -> None:
    Base.metadata.create_all(bind=engine)
