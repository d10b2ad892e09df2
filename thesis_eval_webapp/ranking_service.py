"""
Leaderboard entry points.

A precomputed view is authoritative whenever it answers with data. An
empty answer or any error from the view switches the call to computing the
ranking from the raw tables. One call never mixes the two sources.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Mapping
from typing import Any

try:
    from .config import MAX_SCAN_LIMIT
    from .ranking_engine import TARGET_COLUMNS, compute_rankings, parse_ranking_target
    from .score_store import RankingView, ScoreStore, normalize_key
except ImportError:
    from config import MAX_SCAN_LIMIT
    from ranking_engine import TARGET_COLUMNS, compute_rankings, parse_ranking_target
    from score_store import RankingView, ScoreStore, normalize_key


logger = logging.getLogger(__name__)


class RankingSource(enum.Enum):
    USE_VIEW = "view"
    COMPUTE_FALLBACK = "computed"


class RankingService:
    def __init__(
        self,
        store: ScoreStore,
        views: Mapping[str, RankingView] | None = None,
        *,
        scan_limit: int = MAX_SCAN_LIMIT,
    ) -> None:
        self.store = store
        self.views = dict(views or {})
        self.scan_limit = scan_limit

    def _compute(self, target_type: str, limit: int | None = None) -> list[dict[str, Any]]:
        return compute_rankings(self.store, target_type, limit, scan_limit=self.scan_limit)

    def _read_view_leaderboard(self, target_type: str, limit: int | None) -> list[dict[str, Any]] | None:
        view = self.views.get(target_type)
        if view is None:
            return None
        try:
            items = view.leaderboard(limit)
        except Exception:
            logger.warning("Ranking view for %s failed; computing from raw tables", target_type, exc_info=True)
            return None
        if not items:
            logger.info("Ranking view for %s is empty; computing from raw tables", target_type)
            return None
        return list(items)

    def get_rankings_with_source(
        self,
        target_type: str,
        limit: int | None = None,
    ) -> tuple[RankingSource, list[dict[str, Any]]]:
        target = parse_ranking_target(target_type)
        items = self._read_view_leaderboard(target, limit)
        if items is not None:
            source = RankingSource.USE_VIEW
        else:
            source = RankingSource.COMPUTE_FALLBACK
            items = self._compute(target, limit)
        logger.debug("rankings target=%s source=%s rows=%d", target, source.value, len(items))
        return source, items

    def get_rankings(self, target_type: str, limit: int | None = None) -> list[dict[str, Any]]:
        _, items = self.get_rankings_with_source(target_type, limit)
        return items

    def get_ranking_by_key(self, target_type: str, target_id: str) -> dict[str, Any] | None:
        target = parse_ranking_target(target_type)
        view = self.views.get(target)
        if view is not None:
            try:
                item = view.by_id(target_id)
            except Exception:
                logger.warning("Ranking view lookup for %s %s failed", target, target_id, exc_info=True)
                item = None
            if item:
                return item

        wanted = normalize_key(target_id)
        id_key = TARGET_COLUMNS[target].id_key
        for row in self._compute(target):
            if normalize_key(row.get(id_key)) == wanted:
                return row
        return None
