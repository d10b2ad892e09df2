from __future__ import annotations

import io
from datetime import datetime
from typing import Any

import pandas as pd
from fastapi import APIRouter, Depends, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session

try:
    from .config import DEFAULT_RANKING_LIMIT, MAX_RANKING_LIMIT, POSTGRES_CONFIGURED, RANKING_VIEW_ENABLED
    from .db import get_db
    from .ranking_engine import TARGET_COLUMNS, parse_ranking_target
    from .ranking_service import RankingService
    from .ranking_view_repo import PgGroupRankingView
    from .score_store import RankingView, SqlScoreStore
except ImportError:
    from config import DEFAULT_RANKING_LIMIT, MAX_RANKING_LIMIT, POSTGRES_CONFIGURED, RANKING_VIEW_ENABLED
    from db import get_db
    from ranking_engine import TARGET_COLUMNS, parse_ranking_target
    from ranking_service import RankingService
    from ranking_view_repo import PgGroupRankingView
    from score_store import RankingView, SqlScoreStore

router = APIRouter()


EXPORT_COLUMNS = {
    "group": [
        "rank",
        "group_id",
        "group_title",
        "group_percentage",
        "submitted_evaluations",
        "latest_defense_at",
    ],
    "student": [
        "rank",
        "student_id",
        "student_name",
        "student_email",
        "group_id",
        "group_title",
        "student_percentage",
        "submitted_evaluations",
        "latest_defense_at",
    ],
}


def get_ranking_service(db: Session = Depends(get_db)) -> RankingService:
    views: dict[str, RankingView] = {}
    if RANKING_VIEW_ENABLED and POSTGRES_CONFIGURED:
        views["group"] = PgGroupRankingView()
    return RankingService(SqlScoreStore(db), views)


def _parse_optional_int(value: str | None) -> int | None:
    raw = (value or "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _parse_bounded_int(value: str | None, *, default: int, min_value: int, max_value: int | None = None) -> int:
    parsed = _parse_optional_int(value)
    if parsed is None:
        parsed = default
    if parsed < min_value:
        parsed = min_value
    if max_value is not None and parsed > max_value:
        parsed = max_value
    return parsed


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse({"detail": message}, status_code=400)


def _leaderboard_response(service: RankingService, target: str, limit: str | None) -> JSONResponse:
    safe_limit = _parse_bounded_int(limit, default=DEFAULT_RANKING_LIMIT, min_value=1, max_value=MAX_RANKING_LIMIT)
    source, items = service.get_rankings_with_source(target, safe_limit)
    return JSONResponse(jsonable_encoder({"target": target, "source": source.value, "items": items}))


def _item_response(service: RankingService, target: str, target_id: str) -> JSONResponse:
    if not target_id.strip():
        return _bad_request(f"{target}_id is required.")
    item = service.get_ranking_by_key(target, target_id)
    if item is None:
        label = "Group" if target == "group" else "Student"
        return JSONResponse({"detail": f"{label} ranking not found."}, status_code=404)
    return JSONResponse(jsonable_encoder({"target": target, "item": item}))


@router.get("/health")
def health():
    return JSONResponse({"status": "ok"})


@router.get("/api/rankings")
def rankings(
    target: str = Query(default="group"),
    limit: str | None = Query(default=None),
    service: RankingService = Depends(get_ranking_service),
):
    try:
        target_value = parse_ranking_target(target)
    except ValueError as exc:
        return _bad_request(str(exc))
    return _leaderboard_response(service, target_value, limit)


@router.get("/api/rankings/export")
def rankings_export(
    target: str = Query(default="group"),
    service: RankingService = Depends(get_ranking_service),
):
    try:
        target_value = parse_ranking_target(target)
    except ValueError as exc:
        return _bad_request(str(exc))

    items = service.get_rankings(target_value)
    columns = EXPORT_COLUMNS[target_value]
    export_rows: list[dict[str, Any]] = []
    for r in items:
        row = {c: r.get(c) for c in columns}
        latest = row.get("latest_defense_at")
        if isinstance(latest, datetime) and latest.tzinfo is not None:
            # openpyxl cannot write tz-aware datetimes.
            row["latest_defense_at"] = latest.replace(tzinfo=None)
        pct_key = TARGET_COLUMNS[target_value].percentage_key
        row[pct_key] = float(row[pct_key]) if row.get(pct_key) is not None else None
        export_rows.append(row)

    df = pd.DataFrame(export_rows, columns=columns)

    out = io.BytesIO()
    with pd.ExcelWriter(out, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name=f"{target_value}_rankings")
    out.seek(0)

    headers = {"Content-Disposition": f"attachment; filename={target_value}_rankings_export.xlsx"}
    return StreamingResponse(
        out,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers=headers,
    )


@router.get("/api/rankings/groups")
def group_rankings(
    limit: str | None = Query(default=None),
    service: RankingService = Depends(get_ranking_service),
):
    return _leaderboard_response(service, "group", limit)


@router.get("/api/rankings/groups/{group_id}")
def group_ranking(group_id: str, service: RankingService = Depends(get_ranking_service)):
    return _item_response(service, "group", group_id)


@router.get("/api/rankings/students")
def student_rankings(
    limit: str | None = Query(default=None),
    service: RankingService = Depends(get_ranking_service),
):
    return _leaderboard_response(service, "student", limit)


@router.get("/api/rankings/students/{student_id}")
def student_ranking(student_id: str, service: RankingService = Depends(get_ranking_service)):
    return _item_response(service, "student", student_id)
