"""
Read-only access to the scoring tables.

`ScoreStore` is the one interface the ranking engine reads through.
Implementations receive ids in any letter case and return dicts keyed by
the lower-cased id, so lookups never depend on how an id was typed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar

from sqlalchemy import func, select
from sqlalchemy.orm import Session

try:
    from .db import DefenseSchedule, Evaluation, EvaluationScore, RubricCriterion, ThesisGroup, User
except ImportError:
    from db import DefenseSchedule, Evaluation, EvaluationScore, RubricCriterion, ThesisGroup, User


SCORE_STORE_INTERFACE_VERSION = 1

# Upper bound of ids per IN (...) list.
_ID_BATCH_SIZE = 500


def normalize_key(value: Any) -> str:
    return str(value if value is not None else "").strip().lower()


@dataclass(frozen=True)
class EvaluationRecord:
    id: str
    schedule_id: str | None
    evaluator_id: str | None
    status: str
    created_at: datetime | str | None = None


@dataclass(frozen=True)
class ScoreRecord:
    evaluation_id: str
    criterion_id: str
    target_type: str
    target_id: str
    score: Any
    comment: str | None = None


@dataclass(frozen=True)
class CriterionRecord:
    id: str
    weight: Any = None
    min_score: Any = None
    max_score: Any = None


@dataclass(frozen=True)
class ScheduleRecord:
    id: str
    group_id: str | None
    scheduled_at: datetime | str | None


@dataclass(frozen=True)
class GroupRecord:
    id: str
    title: str | None


@dataclass(frozen=True)
class UserRecord:
    id: str
    name: str | None
    email: str | None


class ScoreStore(ABC):
    """Versioned read interface over evaluations, scores and rubric data."""

    interface_version: ClassVar[int] = SCORE_STORE_INTERFACE_VERSION

    @abstractmethod
    def list_evaluations(self, status: str, limit: int) -> list[EvaluationRecord]:
        """Evaluations with the given status, at most `limit` rows."""

    @abstractmethod
    def list_scores(self, target_type: str, limit: int) -> list[ScoreRecord]:
        """Score rows for one target type in storage order, at most `limit` rows."""

    @abstractmethod
    def list_criteria(self, limit: int) -> list[CriterionRecord]:
        pass

    @abstractmethod
    def list_target_ids(self, target_type: str, limit: int) -> list[str]:
        """Every rankable target of one type, scored or not."""

    @abstractmethod
    def get_schedules(self, ids: Iterable[str]) -> dict[str, ScheduleRecord]:
        pass

    @abstractmethod
    def get_groups(self, ids: Iterable[str]) -> dict[str, GroupRecord]:
        pass

    @abstractmethod
    def get_users(self, ids: Iterable[str]) -> dict[str, UserRecord]:
        pass


class RankingView(ABC):
    """Precomputed leaderboard for one target type."""

    @abstractmethod
    def leaderboard(self, limit: int | None = None) -> list[dict[str, Any]]:
        pass

    @abstractmethod
    def by_id(self, target_id: str) -> dict[str, Any] | None:
        pass


def _unique_keys(ids: Iterable[str]) -> list[str]:
    keys = {normalize_key(v) for v in ids if v is not None}
    keys.discard("")
    return sorted(keys)


def _batched(values: Sequence[str], size: int) -> Iterable[Sequence[str]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


class SqlScoreStore(ScoreStore):
    """ScoreStore over the SQLAlchemy tables declared in db.py."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def list_evaluations(self, status: str, limit: int) -> list[EvaluationRecord]:
        rows = self.session.execute(
            select(Evaluation).where(Evaluation.status == status).order_by(Evaluation.created_at).limit(limit)
        ).scalars()
        return [
            EvaluationRecord(
                id=r.id,
                schedule_id=r.schedule_id,
                evaluator_id=r.evaluator_id,
                status=r.status,
                created_at=r.created_at,
            )
            for r in rows
        ]

    def list_scores(self, target_type: str, limit: int) -> list[ScoreRecord]:
        rows = self.session.execute(
            select(EvaluationScore)
            .where(EvaluationScore.target_type == target_type)
            .order_by(EvaluationScore.created_at, EvaluationScore.id)
            .limit(limit)
        ).scalars()
        return [
            ScoreRecord(
                evaluation_id=r.evaluation_id,
                criterion_id=r.criterion_id,
                target_type=r.target_type,
                target_id=r.target_id,
                score=r.score,
                comment=r.comment,
            )
            for r in rows
        ]

    def list_criteria(self, limit: int) -> list[CriterionRecord]:
        rows = self.session.execute(select(RubricCriterion).limit(limit)).scalars()
        return [
            CriterionRecord(id=r.id, weight=r.weight, min_score=r.min_score, max_score=r.max_score)
            for r in rows
        ]

    def list_target_ids(self, target_type: str, limit: int) -> list[str]:
        if target_type == "group":
            stmt = select(ThesisGroup.id).order_by(ThesisGroup.created_at).limit(limit)
        elif target_type == "student":
            stmt = select(User.id).where(User.role == "student").order_by(User.created_at).limit(limit)
        else:
            return []
        return [str(v) for v in self.session.execute(stmt).scalars()]

    def _fetch_by_ids(self, model, ids: Iterable[str]) -> list[Any]:
        keys = _unique_keys(ids)
        result: list[Any] = []
        for chunk in _batched(keys, _ID_BATCH_SIZE):
            result.extend(self.session.execute(select(model).where(func.lower(model.id).in_(chunk))).scalars())
        return result

    def get_schedules(self, ids: Iterable[str]) -> dict[str, ScheduleRecord]:
        return {
            normalize_key(r.id): ScheduleRecord(id=r.id, group_id=r.group_id, scheduled_at=r.scheduled_at)
            for r in self._fetch_by_ids(DefenseSchedule, ids)
        }

    def get_groups(self, ids: Iterable[str]) -> dict[str, GroupRecord]:
        return {
            normalize_key(r.id): GroupRecord(id=r.id, title=r.title)
            for r in self._fetch_by_ids(ThesisGroup, ids)
        }

    def get_users(self, ids: Iterable[str]) -> dict[str, UserRecord]:
        return {
            normalize_key(r.id): UserRecord(id=r.id, name=r.name, email=r.email)
            for r in self._fetch_by_ids(User, ids)
        }
