"""
Shared fixtures for the ranking tests.
The in-memory store and fake views keep every test free of a real database;
the SQLite fixture covers the SQLAlchemy adapter.
"""
from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from thesis_eval_webapp.db import Base
from thesis_eval_webapp.score_store import (
    CriterionRecord,
    EvaluationRecord,
    GroupRecord,
    RankingView,
    ScheduleRecord,
    ScoreRecord,
    ScoreStore,
    UserRecord,
    normalize_key,
)


def ts(day: int, hour: int = 9) -> datetime:
    return datetime(2024, 5, day, hour, 0, tzinfo=timezone.utc)


class InMemoryScoreStore(ScoreStore):
    def __init__(
        self,
        *,
        evaluations=(),
        scores=(),
        criteria=(),
        schedules=(),
        groups=(),
        users=(),
        target_ids=None,
    ):
        self.evaluations = list(evaluations)
        self.scores = list(scores)
        self.criteria = list(criteria)
        self.schedules = list(schedules)
        self.groups = list(groups)
        self.users = list(users)
        self.target_ids = target_ids
        self.fail_on: set[str] = set()
        self.calls: list[str] = []

    def _check(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            raise RuntimeError(f"{name} is unavailable")

    def list_evaluations(self, status, limit):
        self._check("list_evaluations")
        return [e for e in self.evaluations if e.status == status][:limit]

    def list_scores(self, target_type, limit):
        self._check("list_scores")
        return [s for s in self.scores if s.target_type == target_type][:limit]

    def list_criteria(self, limit):
        self._check("list_criteria")
        return self.criteria[:limit]

    def list_target_ids(self, target_type, limit):
        self._check("list_target_ids")
        if self.target_ids is not None:
            return list(self.target_ids.get(target_type, []))[:limit]
        if target_type == "group":
            return [g.id for g in self.groups][:limit]
        return [u.id for u in self.users][:limit]

    def _by_ids(self, rows, ids):
        wanted = {normalize_key(i) for i in ids}
        return {normalize_key(r.id): r for r in rows if normalize_key(r.id) in wanted}

    def get_schedules(self, ids):
        self._check("get_schedules")
        return self._by_ids(self.schedules, ids)

    def get_groups(self, ids):
        self._check("get_groups")
        return self._by_ids(self.groups, ids)

    def get_users(self, ids):
        self._check("get_users")
        return self._by_ids(self.users, ids)


class FakeRankingView(RankingView):
    def __init__(self, rows=(), *, error: Exception | None = None):
        self.rows = [dict(r) for r in rows]
        self.error = error
        self.leaderboard_calls: list[int | None] = []
        self.by_id_calls: list[str] = []

    def leaderboard(self, limit=None):
        self.leaderboard_calls.append(limit)
        if self.error is not None:
            raise self.error
        rows = self.rows
        if limit is not None and limit > 0:
            rows = rows[:limit]
        return [dict(r) for r in rows]

    def by_id(self, target_id):
        self.by_id_calls.append(target_id)
        if self.error is not None:
            raise self.error
        for row in self.rows:
            if normalize_key(row["group_id"]) == normalize_key(target_id):
                return dict(row)
        return None


@pytest.fixture
def defense_data():
    """Two groups with one student each, scored by two panelists.

    Group A is scored 5/5 and 4/5 on a 1..5 criterion, group B 3/5 twice.
    Student s-1 (in group A) and s-2 (in group B) are scored on the same criterion.
    """
    criteria = [
        CriterionRecord(id="c-pres", weight=30, min_score=1, max_score=5),
        CriterionRecord(id="c-doc", weight=70, min_score=0, max_score=100),
    ]
    schedules = [
        ScheduleRecord(id="sch-a", group_id="g-a", scheduled_at=ts(3)),
        ScheduleRecord(id="sch-b", group_id="g-b", scheduled_at=ts(1)),
    ]
    evaluations = [
        EvaluationRecord(id="e-a1", schedule_id="sch-a", evaluator_id="p-1", status="submitted", created_at=ts(2)),
        EvaluationRecord(id="e-a2", schedule_id="sch-a", evaluator_id="p-2", status="locked", created_at=ts(2)),
        EvaluationRecord(id="e-b1", schedule_id="sch-b", evaluator_id="p-1", status="submitted", created_at=ts(1)),
        EvaluationRecord(id="e-b2", schedule_id="sch-b", evaluator_id="p-2", status="pending", created_at=ts(1)),
    ]
    scores = [
        ScoreRecord("e-a1", "c-pres", "group", "g-a", 5),
        ScoreRecord("e-a1", "c-doc", "group", "g-a", 90),
        ScoreRecord("e-a2", "c-pres", "group", "g-a", 4),
        ScoreRecord("e-a2", "c-doc", "group", "g-a", 80),
        ScoreRecord("e-b1", "c-pres", "group", "g-b", 3),
        ScoreRecord("e-b1", "c-doc", "group", "g-b", 60),
        ScoreRecord("e-b2", "c-pres", "group", "g-b", 5),
        ScoreRecord("e-a1", "c-pres", "student", "s-1", 5),
        ScoreRecord("e-b1", "c-pres", "student", "s-2", 2),
    ]
    groups = [GroupRecord(id="g-a", title="Alpha Team"), GroupRecord(id="g-b", title="Beta Team")]
    users = [
        UserRecord(id="s-1", name="Ana Cruz", email="ana@example.edu"),
        UserRecord(id="s-2", name="Ben Reyes", email="ben@example.edu"),
    ]
    return {
        "criteria": criteria,
        "schedules": schedules,
        "evaluations": evaluations,
        "scores": scores,
        "groups": groups,
        "users": users,
    }


@pytest.fixture
def store(defense_data):
    return InMemoryScoreStore(**defense_data)


@pytest.fixture
def sqlite_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)
    session = Session()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()
