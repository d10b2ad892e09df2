from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

try:
    from .config import MAX_SCAN_LIMIT
    from .score_store import (
        CriterionRecord,
        EvaluationRecord,
        ScheduleRecord,
        ScoreRecord,
        ScoreStore,
        normalize_key,
    )
except ImportError:
    from config import MAX_SCAN_LIMIT
    from score_store import (
        CriterionRecord,
        EvaluationRecord,
        ScheduleRecord,
        ScoreRecord,
        ScoreStore,
        normalize_key,
    )


logger = logging.getLogger(__name__)

SCORED_EVALUATION_STATUSES = ("submitted", "locked")

# Used when a score references a criterion the store does not know.
DEFAULT_CRITERION_WEIGHT = 1.0
DEFAULT_MIN_SCORE = 0.0
DEFAULT_MAX_SCORE = 100.0


@dataclass(frozen=True)
class TargetColumns:
    id_key: str
    name_key: str
    percentage_key: str


TARGET_COLUMNS = {
    "group": TargetColumns(id_key="group_id", name_key="group_title", percentage_key="group_percentage"),
    "student": TargetColumns(id_key="student_id", name_key="student_name", percentage_key="student_percentage"),
}


def parse_ranking_target(value: Any) -> str:
    normalized = str(value or "").strip().lower()
    if normalized in {"group", "groups"}:
        return "group"
    if normalized in {"student", "students"}:
        return "student"
    raise ValueError(f"Unknown ranking target: {value!r}. Expected 'group' or 'student'.")


def _to_float(value: Any, *, default: float = 0.0) -> float:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        result = float(value)
    elif isinstance(value, (int, float)):
        result = float(value)
    else:
        raw = str(value).strip()
        if not raw:
            return default
        try:
            result = float(raw)
        except ValueError:
            return default
    return result if math.isfinite(result) else default


def _to_optional_float(value: Any) -> float | None:
    result = _to_float(value, default=math.nan)
    return None if math.isnan(result) else result


def _to_timestamp(value: Any) -> float | None:
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(raw)
        except ValueError:
            return None
    else:
        return None
    # Naive values come from SQLite and are stored as UTC.
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.timestamp()


def _clamp01(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return max(0.0, min(1.0, value))


def criterion_contribution(score: float, criterion: CriterionRecord | None) -> tuple[float, float]:
    """Return the (weighted_score, weighted_max) pair one score adds to its target."""
    weight = _to_float(criterion.weight if criterion else None, default=DEFAULT_CRITERION_WEIGHT)
    if weight <= 0:
        return 0.0, 0.0

    min_score = _to_float(criterion.min_score if criterion else None, default=DEFAULT_MIN_SCORE)
    max_score = _to_float(criterion.max_score if criterion else None, default=DEFAULT_MAX_SCORE)

    normalized = 0.0
    if max_score > min_score:
        normalized = (score - min_score) / (max_score - min_score)
    elif max_score > 0:
        normalized = score / max_score

    return _clamp01(normalized) * weight, weight


def to_percentage(weighted_score: float, weighted_max: float) -> float | None:
    if not math.isfinite(weighted_score) or not math.isfinite(weighted_max) or weighted_max <= 0:
        return None
    return round(weighted_score / weighted_max * 100, 2)


@dataclass
class RankAccumulator:
    target_id: str
    weighted_score: float = 0.0
    weighted_max: float = 0.0
    evaluation_ids: set[str] = field(default_factory=set)
    latest_ts: float | None = None
    latest_at: Any = None
    mapped_group_id: str | None = None

    @property
    def percentage(self) -> float | None:
        return to_percentage(self.weighted_score, self.weighted_max)


def _warn_if_capped(entity: str, rows: list[Any], scan_limit: int) -> None:
    if len(rows) >= scan_limit:
        logger.warning("%s scan hit the cap of %d rows; rankings may be incomplete", entity, scan_limit)


def list_eligible_evaluations(store: ScoreStore, *, scan_limit: int = MAX_SCAN_LIMIT) -> list[EvaluationRecord]:
    dedup: dict[str, EvaluationRecord] = {}
    for status in SCORED_EVALUATION_STATUSES:
        rows = store.list_evaluations(status, scan_limit)
        _warn_if_capped(f"evaluations[{status}]", rows, scan_limit)
        for row in rows:
            dedup[normalize_key(row.id)] = row
    return list(dedup.values())


def _score_dedupe_key(row: ScoreRecord) -> tuple[str, str, str, str]:
    return (
        normalize_key(row.evaluation_id),
        normalize_key(row.criterion_id),
        normalize_key(row.target_type),
        normalize_key(row.target_id),
    )


def aggregate_scores(
    target_type: str,
    evaluations: Iterable[EvaluationRecord],
    scores: Iterable[ScoreRecord],
    criteria: Iterable[CriterionRecord],
    schedules: dict[str, ScheduleRecord],
    known_target_ids: Iterable[str] = (),
) -> list[RankAccumulator]:
    """
    Fold score rows into one accumulator per target, in first-seen target order.

    Targets from `known_target_ids` that received no accepted score row are
    appended with empty totals, so they rank with a None percentage.
    """
    eval_map = {normalize_key(e.id): e for e in evaluations}
    criterion_map = {normalize_key(c.id): c for c in criteria}

    seen: set[tuple[str, str, str, str]] = set()
    acc_map: dict[str, RankAccumulator] = {}
    orphaned = duplicates = invalid = 0

    for row in scores:
        evaluation = eval_map.get(normalize_key(row.evaluation_id))
        if evaluation is None:
            orphaned += 1
            continue

        dedupe_key = _score_dedupe_key(row)
        if dedupe_key in seen:
            duplicates += 1
            continue
        seen.add(dedupe_key)

        score_value = _to_optional_float(row.score)
        if score_value is None:
            invalid += 1
            continue

        weighted_score, weighted_max = criterion_contribution(
            score_value, criterion_map.get(normalize_key(row.criterion_id))
        )

        acc_key = normalize_key(row.target_id)
        current = acc_map.get(acc_key)
        if current is None:
            current = RankAccumulator(
                target_id=row.target_id,
                mapped_group_id=row.target_id if target_type == "group" else None,
            )
            acc_map[acc_key] = current

        current.weighted_score += weighted_score
        current.weighted_max += weighted_max
        current.evaluation_ids.add(normalize_key(evaluation.id))

        schedule = schedules.get(normalize_key(evaluation.schedule_id))
        scheduled_at = schedule.scheduled_at if schedule else None
        schedule_group_id = schedule.group_id if schedule else None

        candidate_at = scheduled_at
        candidate_ts = _to_timestamp(scheduled_at)
        if candidate_ts is None:
            candidate_at = evaluation.created_at
            candidate_ts = _to_timestamp(evaluation.created_at)

        if candidate_ts is not None and (current.latest_ts is None or candidate_ts > current.latest_ts):
            current.latest_ts = candidate_ts
            current.latest_at = candidate_at
            if target_type == "student" and schedule_group_id:
                current.mapped_group_id = schedule_group_id
        elif target_type == "student" and not current.mapped_group_id and schedule_group_id:
            current.mapped_group_id = schedule_group_id

    if orphaned or duplicates or invalid:
        logger.debug(
            "ranking aggregate target=%s skipped orphaned=%d duplicates=%d invalid=%d",
            target_type,
            orphaned,
            duplicates,
            invalid,
        )

    for target_id in known_target_ids:
        acc_key = normalize_key(target_id)
        if acc_key and acc_key not in acc_map:
            acc_map[acc_key] = RankAccumulator(
                target_id=target_id,
                mapped_group_id=target_id if target_type == "group" else None,
            )
    return list(acc_map.values())


def collect_rank_accumulators(
    store: ScoreStore,
    target_type: str,
    *,
    scan_limit: int = MAX_SCAN_LIMIT,
) -> list[RankAccumulator]:
    evaluations = list_eligible_evaluations(store, scan_limit=scan_limit)
    scores = store.list_scores(target_type, scan_limit)
    _warn_if_capped(f"evaluation_scores[{target_type}]", scores, scan_limit)
    criteria = store.list_criteria(scan_limit)
    _warn_if_capped("rubric_criteria", criteria, scan_limit)
    target_ids = store.list_target_ids(target_type, scan_limit)
    _warn_if_capped(f"targets[{target_type}]", target_ids, scan_limit)

    schedules: dict[str, ScheduleRecord] = {}
    if evaluations and scores:
        schedules = store.get_schedules(e.schedule_id for e in evaluations if e.schedule_id)
    else:
        scores = []
    return aggregate_scores(target_type, evaluations, scores, criteria, schedules, target_ids)


def _ranking_sort_key(row: dict[str, Any], columns: TargetColumns) -> tuple:
    percentage = _to_optional_float(row.get(columns.percentage_key))
    ts = _to_timestamp(row.get("latest_defense_at"))
    raw_id = str(row.get(columns.id_key) or "")
    name = row.get(columns.name_key) or raw_id
    return (
        percentage is None,
        -percentage if percentage is not None else 0.0,
        ts is None,
        -ts if ts is not None else 0.0,
        str(name).casefold(),
        raw_id.casefold(),
        raw_id,
    )


def sort_and_rank_rows(
    rows: list[dict[str, Any]],
    target_type: str,
    *,
    limit: int | None = None,
) -> list[dict[str, Any]]:
    columns = TARGET_COLUMNS[target_type]
    rows.sort(key=lambda x: _ranking_sort_key(x, columns))
    for idx, row in enumerate(rows, start=1):
        row["rank"] = idx
    if limit is not None and limit > 0:
        return rows[:limit]
    return rows


def _safe_lookup(fetch, ids: list[str], entity: str) -> dict[str, Any]:
    if not ids:
        return {}
    try:
        return fetch(ids)
    except Exception:
        logger.warning("Could not load %s names for ranking rows; leaving them empty", entity, exc_info=True)
        return {}


def _build_group_rows(store: ScoreStore, core: list[RankAccumulator]) -> list[dict[str, Any]]:
    groups = _safe_lookup(store.get_groups, [row.target_id for row in core], "group")
    rows = []
    for acc in core:
        group = groups.get(normalize_key(acc.target_id))
        rows.append(
            {
                "group_id": acc.target_id,
                "group_title": group.title if group else None,
                "group_percentage": acc.percentage,
                "submitted_evaluations": len(acc.evaluation_ids),
                "latest_defense_at": acc.latest_at,
                "rank": 0,
            }
        )
    return rows


def _build_student_rows(store: ScoreStore, core: list[RankAccumulator]) -> list[dict[str, Any]]:
    users = _safe_lookup(store.get_users, [row.target_id for row in core], "student")
    groups = _safe_lookup(store.get_groups, [row.mapped_group_id for row in core if row.mapped_group_id], "group")
    rows = []
    for acc in core:
        user = users.get(normalize_key(acc.target_id))
        group = groups.get(normalize_key(acc.mapped_group_id)) if acc.mapped_group_id else None
        rows.append(
            {
                "student_id": acc.target_id,
                "student_name": user.name if user else None,
                "student_email": user.email if user else None,
                "group_id": acc.mapped_group_id,
                "group_title": group.title if group else None,
                "student_percentage": acc.percentage,
                "submitted_evaluations": len(acc.evaluation_ids),
                "latest_defense_at": acc.latest_at,
                "rank": 0,
            }
        )
    return rows


def compute_rankings(
    store: ScoreStore,
    target_type: str,
    limit: int | None = None,
    *,
    scan_limit: int = MAX_SCAN_LIMIT,
) -> list[dict[str, Any]]:
    """Rank every scored target of one type straight from the raw tables."""
    if target_type not in TARGET_COLUMNS:
        raise ValueError(f"Unknown ranking target: {target_type!r}")

    core = collect_rank_accumulators(store, target_type, scan_limit=scan_limit)
    if target_type == "group":
        rows = _build_group_rows(store, core)
    else:
        rows = _build_student_rows(store, core)
    return sort_and_rank_rows(rows, target_type, limit=limit)
