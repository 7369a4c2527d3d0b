from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session, sessionmaker

from shop_cf.config import Settings
from shop_cf.core.constants import (
    ALLOWED_ACTION_KINDS,
    HYBRID,
    ITEM_BASED,
    NOVELTY_POPULAR_TOP,
    OUTCOMES,
    POPULAR_ITEM_SCORE,
    RECOMMENDATION_KINDS,
    STRATEGIES,
    USER_BASED,
)
from shop_cf.core.errors import InvalidInputError, StoreUnavailableError
from shop_cf.core.time import as_utc, utcnow
from shop_cf.records import ImpressionStats, KindStats, Neighbor, RecommendationEvaluation, ScoredItem
from shop_cf.repositories import (
    ImpressionRepository,
    InteractionRepository,
    ItemSimilarityRepository,
)
from shop_cf.services.cache import SimilarityCache, build_cache
from shop_cf.services.feedback import FeedbackHandler, RecomputeWorker, SimilarityRecomputer
from shop_cf.services.hybrid import merge_hybrid
from shop_cf.services.neighbors import NeighborFinder
from shop_cf.services.persistence import PersistenceWriter
from shop_cf.services.scoring import score_item_based, score_user_based
from shop_cf.services.similarity import SimilarityCalculator

logger = logging.getLogger(__name__)


def _require_id(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise InvalidInputError(f"{name} must be a positive integer", {name: value})
    return value


def _window(since: Optional[datetime], until: Optional[datetime]):
    since = as_utc(since) if since is not None else None
    until = as_utc(until) if until is not None else None
    if since is not None and until is not None and since > until:
        raise InvalidInputError("since must not be after until", {"since": since.isoformat(), "until": until.isoformat()})
    return since, until


def _percent(part: int, whole: int) -> float:
    return part / whole * 100.0 if whole else 0.0


def _normalize_choice(name: str, value: str, allowed) -> str:
    v = str(value).strip().lower()
    if v not in allowed:
        raise InvalidInputError(f"unsupported {name}: {value}", {name: value, "allowed": sorted(allowed)})
    return v


class RecommendationEngine:
    """
    Entry point for the business layer:
    - record_interaction: append an event, invalidate + schedule recompute
    - get_recommendations: user-based / item-based / hybrid lists, cached
    - get_similar_users / get_similar_items / get_popular_items
    - record_impression_outcome / get_impression_stats / evaluate
    - pairwise_similarity: diagnostic query
    """

    def __init__(
        self,
        *,
        interactions: InteractionRepository,
        item_similarities: ItemSimilarityRepository,
        impressions: ImpressionRepository,
        writer: PersistenceWriter,
        cache: SimilarityCache,
        calculator: SimilarityCalculator,
        neighbor_finder: NeighborFinder,
        feedback: FeedbackHandler,
        similarity_threshold: float = 0.1,
        recent_interactions: int = 20,
        similar_item_rows: int = 50,
        user_weight: float = 0.6,
        item_weight: float = 0.4,
        default_limit: int = 10,
        max_limit: int = 100,
    ):
        self.interactions = interactions
        self.item_similarities = item_similarities
        self.impressions = impressions
        self.writer = writer
        self.cache = cache
        self.calculator = calculator
        self.neighbor_finder = neighbor_finder
        self.feedback = feedback
        self.similarity_threshold = similarity_threshold
        self.recent_interactions = recent_interactions
        self.similar_item_rows = similar_item_rows
        self.user_weight = user_weight
        self.item_weight = item_weight
        self.default_limit = default_limit
        self.max_limit = max_limit

    def _limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.default_limit
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1 or limit > self.max_limit:
            raise InvalidInputError(f"limit must be in [1, {self.max_limit}]", {"limit": limit})
        return limit

    # -- feedback ---------------------------------------------------------

    def record_interaction(
        self,
        user_id: int,
        item_id: int,
        action_kind: str,
        occurred_at: Optional[datetime] = None,
    ) -> int:
        _require_id("user_id", user_id)
        _require_id("item_id", item_id)
        kind = _normalize_choice("action_kind", action_kind, ALLOWED_ACTION_KINDS)
        when = as_utc(occurred_at) if occurred_at is not None else utcnow()

        inserted_id = self.interactions.add(user_id=user_id, item_id=item_id, action_kind=kind, occurred_at=when)
        logger.info(
            "Recorded interaction",
            extra={"user_id": user_id, "item_id": item_id, "action_kind": kind, "inserted_id": inserted_id},
        )
        self.feedback.on_interaction(user_id, item_id, kind)
        return inserted_id

    # -- recommendation lists ----------------------------------------------

    def get_recommendations(
        self,
        user_id: int,
        strategy: str = HYBRID,
        limit: Optional[int] = None,
        *,
        record_impressions: bool = True,
    ) -> List[ScoredItem]:
        _require_id("user_id", user_id)
        strategy = _normalize_choice("strategy", strategy, set(STRATEGIES))
        limit = self._limit(limit)

        # read before computing: an invalidation during the computation bumps it
        generation = self.cache.recommendations_generation(user_id)
        items = None
        if generation is not None:
            items = self.cache.get_recommendations(user_id, strategy, limit, generation=generation)
        if items is None:
            try:
                items = self._compute(user_id, strategy, limit)
            except StoreUnavailableError:
                logger.warning(
                    "Recommendation computation degraded to empty list",
                    extra={"user_id": user_id, "strategy": strategy},
                    exc_info=True,
                )
                return []
            if generation is not None:
                self.cache.set_recommendations(user_id, strategy, limit, items, generation=generation)
        else:
            logger.debug("Recommendation cache hit", extra={"user_id": user_id, "strategy": strategy})

        if record_impressions and items:
            try:
                self.writer.record_impressions(user_id, strategy, items)
            except StoreUnavailableError:
                logger.warning("Could not record impressions", extra={"user_id": user_id}, exc_info=True)
        return items

    def _compute(self, user_id: int, strategy: str, limit: int) -> List[ScoredItem]:
        if strategy == USER_BASED:
            return self._user_based(user_id)[:limit]
        if strategy == ITEM_BASED:
            return self._item_based(user_id)[:limit]
        return merge_hybrid(
            self._user_based(user_id)[: limit * 2],
            self._item_based(user_id)[: limit * 2],
            limit=limit,
            user_weight=self.user_weight,
            item_weight=self.item_weight,
        )

    def _user_based(self, user_id: int) -> List[ScoredItem]:
        own = self.interactions.for_user(user_id)
        if not own:
            return []
        neighbors = self.neighbor_finder.find(user_id, {i.item_id for i in own})
        if not neighbors:
            return []
        neighbor_events = self.interactions.for_users(n.user_id for n in neighbors)
        return score_user_based(own, neighbors, neighbor_events)

    def _item_based(self, user_id: int) -> List[ScoredItem]:
        recent = self.interactions.for_user(user_id, limit=self.recent_interactions)
        if not recent:
            return []
        rows = self.item_similarities.rows_touching(
            {i.item_id for i in recent},
            threshold=self.similarity_threshold,
            limit=self.similar_item_rows,
        )
        if not rows:
            return []
        purchased = self.interactions.purchased_items(user_id)
        return score_item_based(recent, rows, exclude=purchased)

    def get_similar_users(self, user_id: int, limit: Optional[int] = None) -> List[Neighbor]:
        _require_id("user_id", user_id)
        limit = self._limit(limit)
        try:
            items = self.interactions.items_for_user(user_id)
            return self.neighbor_finder.find(user_id, items, limit=limit)
        except StoreUnavailableError:
            logger.warning("Similar users degraded to empty list", extra={"user_id": user_id}, exc_info=True)
            return []

    def get_similar_items(self, item_id: int, limit: Optional[int] = None) -> List[ScoredItem]:
        _require_id("item_id", item_id)
        limit = self._limit(limit)
        try:
            rows = self.item_similarities.rows_touching([item_id], threshold=self.similarity_threshold, limit=limit)
        except StoreUnavailableError:
            logger.warning("Similar items degraded to empty list", extra={"item_id": item_id}, exc_info=True)
            return []

        result: List[ScoredItem] = []
        for row in rows:
            other = row.id_b if row.id_a == item_id else row.id_a
            result.append(
                ScoredItem(item_id=other, score=row.score, reason=f"{row.score * 100:.1f}% similar to item {item_id}")
            )
        return result

    def get_popular_items(self, limit: Optional[int] = None) -> List[ScoredItem]:
        limit = self._limit(limit)
        try:
            counts = self.interactions.purchase_counts(limit=limit)
        except StoreUnavailableError:
            logger.warning("Popular items degraded to empty list", exc_info=True)
            return []
        return [
            ScoredItem(item_id=item_id, score=POPULAR_ITEM_SCORE, reason=f"Popular item, purchased {cnt} times")
            for item_id, cnt in counts
        ]

    # -- impressions -------------------------------------------------------

    def record_impression_outcome(self, user_id: int, item_id: int, recommendation_kind: str, outcome: str) -> bool:
        _require_id("user_id", user_id)
        _require_id("item_id", item_id)
        kind = _normalize_choice("recommendation_kind", recommendation_kind, RECOMMENDATION_KINDS)
        outcome = _normalize_choice("outcome", outcome, OUTCOMES)
        return self.writer.set_impression_outcome(user_id, item_id, kind, outcome)

    def get_impression_stats(
        self,
        user_id: int,
        *,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> ImpressionStats:
        _require_id("user_id", user_id)
        since, until = _window(since, until)
        stats = ImpressionStats(user_id=user_id)
        for row in self.impressions.for_user(user_id, since=since, until=until):
            stats.total += 1
            per_kind = stats.by_kind.setdefault(row.recommendation_kind, KindStats())
            for bucket in (stats.overall, per_kind):
                if row.shown:
                    bucket.shown += 1
                if row.clicked:
                    bucket.clicked += 1
                if row.purchased:
                    bucket.purchased += 1
        return stats

    def evaluate(
        self,
        user_id: int,
        *,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> RecommendationEvaluation:
        """
        Score what `user_id` was shown. Accuracy is clicks plus purchases per
        shown impression. Novelty is the share of shown impressions outside
        the best sellers among the shown items themselves. Serendipity is the
        share of shown impressions for items the user never interacted with.
        """
        _require_id("user_id", user_id)
        since, until = _window(since, until)
        rows = self.impressions.for_user(user_id, since=since, until=until)
        shown = [r for r in rows if r.shown]
        clicked = sum(1 for r in rows if r.clicked)
        purchased = sum(1 for r in rows if r.purchased)

        novel = unexpected = 0
        if shown:
            shown_ids = {r.item_id for r in shown}
            best_sellers = {
                item_id
                for item_id, _ in self.interactions.purchase_counts(limit=NOVELTY_POPULAR_TOP, item_ids=shown_ids)
            }
            history = set(self.interactions.items_for_user(user_id))
            novel = sum(1 for r in shown if r.item_id not in best_sellers)
            unexpected = sum(1 for r in shown if r.item_id not in history)

        return RecommendationEvaluation(
            user_id=user_id,
            shown=len(shown),
            accuracy=_percent(clicked + purchased, len(shown)),
            click_rate=_percent(clicked, len(shown)),
            purchase_rate=_percent(purchased, len(shown)),
            novelty=_percent(novel, len(shown)),
            serendipity=_percent(unexpected, len(shown)),
        )

    # -- diagnostics -------------------------------------------------------

    def pairwise_similarity(self, id_a: int, id_b: int, entity_kind: str) -> float:
        _require_id("id_a", id_a)
        _require_id("id_b", id_b)
        return self.calculator.similarity(id_a, id_b, entity_kind)

    def close(self) -> None:
        self.feedback.worker.shutdown(wait=True)


def build_engine(
    settings: Settings,
    session_factory: sessionmaker[Session],
    *,
    cache: Optional[SimilarityCache] = None,
    worker: Optional[RecomputeWorker] = None,
) -> RecommendationEngine:
    """Composition root: wires repositories, cache, worker and services from settings."""
    if cache is None:
        cache = build_cache(
            settings.REDIS_URL,
            ttl_seconds=settings.CACHE_TTL_SECONDS,
            socket_timeout=settings.CACHE_SOCKET_TIMEOUT,
            max_entries=settings.CACHE_MAX_ENTRIES,
        )
    if worker is None:
        worker = RecomputeWorker(
            max_workers=settings.RECOMPUTE_WORKERS,
            max_retries=settings.RECOMPUTE_MAX_RETRIES,
            backoff_seconds=settings.RECOMPUTE_BACKOFF,
        )

    interactions = InteractionRepository(session_factory)
    writer = PersistenceWriter(session_factory)
    recomputer = SimilarityRecomputer(
        interactions,
        writer,
        cache,
        min_user_activity=settings.MIN_USER_ACTIVITY,
        min_item_activity=settings.MIN_ITEM_ACTIVITY,
    )
    return RecommendationEngine(
        interactions=interactions,
        item_similarities=ItemSimilarityRepository(session_factory),
        impressions=ImpressionRepository(session_factory),
        writer=writer,
        cache=cache,
        calculator=SimilarityCalculator(interactions, cache),
        neighbor_finder=NeighborFinder(
            interactions,
            threshold=settings.SIMILARITY_THRESHOLD,
            limit=settings.NEIGHBOR_LIMIT,
            min_activity=settings.MIN_USER_ACTIVITY,
        ),
        feedback=FeedbackHandler(cache, recomputer, worker),
        similarity_threshold=settings.SIMILARITY_THRESHOLD,
        recent_interactions=settings.RECENT_INTERACTIONS,
        similar_item_rows=settings.SIMILAR_ITEM_ROWS,
        user_weight=settings.USER_BASED_WEIGHT,
        item_weight=settings.ITEM_BASED_WEIGHT,
        default_limit=settings.DEFAULT_LIMIT,
        max_limit=settings.MAX_LIMIT,
    )
