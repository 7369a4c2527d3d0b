"""Cache invalidation and background similarity recomputation after feedback.

A feedback event never waits for recomputation: the task is handed to
RecomputeWorker and the caller returns. Task failures are retried while the
store is unavailable, then logged and dropped.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from typing import Any, Callable, Optional

from shop_cf.core.constants import ENTITY_ITEM, ENTITY_USER, FEEDBACK_ACTION_KINDS
from shop_cf.core.errors import StoreUnavailableError
from shop_cf.records import SimilarityRecord
from shop_cf.repositories import InteractionRepository
from shop_cf.services.cache import SimilarityCache
from shop_cf.services.matrix import jaccard_against, overlap_cosine_against
from shop_cf.services.persistence import PersistenceWriter
from shop_cf.services.similarity import canonical_pair

logger = logging.getLogger(__name__)


class RecomputeWorker:
    def __init__(
        self,
        *,
        max_workers: int = 2,
        max_retries: int = 3,
        backoff_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="shop-cf-recompute")
        self._pending: set[Future] = set()
        self._lock = threading.Lock()
        self.max_retries = max(1, max_retries)
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    def submit(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Optional[Future]:
        try:
            fut = self._executor.submit(self._run, name, fn, args, kwargs)
        except RuntimeError:
            # executor already shut down
            logger.error("Recompute task rejected", extra={"task": name})
            return None
        with self._lock:
            self._pending.add(fut)
        fut.add_done_callback(self._forget)
        return fut

    def _forget(self, fut: Future) -> None:
        with self._lock:
            self._pending.discard(fut)

    def _run(self, name: str, fn: Callable[..., Any], args: tuple, kwargs: dict) -> bool:
        for attempt in range(1, self.max_retries + 1):
            try:
                fn(*args, **kwargs)
                return True
            except StoreUnavailableError as e:
                if attempt == self.max_retries:
                    logger.error(
                        "Recompute task failed after retries",
                        extra={"task": name, "attempts": attempt, "error": e.message},
                        exc_info=True,
                    )
                    return False
                logger.warning(
                    "Recompute task failed, retrying",
                    extra={"task": name, "attempt": attempt, "error": e.message},
                )
                self._sleep(self.backoff_seconds * attempt)
            except Exception:
                logger.error("Recompute task crashed", extra={"task": name}, exc_info=True)
                return False
        return False

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for submitted tasks. True when nothing is left running."""
        with self._lock:
            pending = list(self._pending)
        _, not_done = wait_futures(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class SimilarityRecomputer:
    """Recomputes one entity against every active entity of the same kind."""

    def __init__(
        self,
        interactions: InteractionRepository,
        writer: PersistenceWriter,
        cache: SimilarityCache,
        *,
        min_user_activity: int = 5,
        min_item_activity: int = 3,
    ):
        self.interactions = interactions
        self.writer = writer
        self.cache = cache
        self.min_user_activity = min_user_activity
        self.min_item_activity = min_item_activity

    def recompute_user(self, user_id: int) -> int:
        target = self.interactions.items_for_user(user_id)
        candidates = self.interactions.active_user_item_sets(self.min_user_activity)
        candidates.pop(user_id, None)

        scores = jaccard_against(target, candidates)
        records = [SimilarityRecord(*canonical_pair(user_id, other), score=score) for other, score in scores.items()]
        written = self.writer.upsert_user_similarities(records)
        for r in records:
            self.cache.set_similarity(ENTITY_USER, r.id_a, r.id_b, r.score)

        logger.info("Recomputed user similarities", extra={"user_id": user_id, "pairs": written})
        return written

    def recompute_item(self, item_id: int) -> int:
        target = self.interactions.users_for_item(item_id)
        candidates = self.interactions.active_item_user_sets(self.min_item_activity)
        candidates.pop(item_id, None)

        scores = overlap_cosine_against(target, candidates)
        records = [SimilarityRecord(*canonical_pair(item_id, other), score=score) for other, score in scores.items()]
        written = self.writer.upsert_item_similarities(records, similarity_kind="collaborative")
        for r in records:
            self.cache.set_similarity(ENTITY_ITEM, r.id_a, r.id_b, r.score)

        logger.info("Recomputed item similarities", extra={"item_id": item_id, "pairs": written})
        return written

    def recompute_for_event(self, user_id: int, item_id: int) -> None:
        self.recompute_user(user_id)
        self.recompute_item(item_id)


class FeedbackHandler:
    def __init__(self, cache: SimilarityCache, recomputer: SimilarityRecomputer, worker: RecomputeWorker):
        self.cache = cache
        self.recomputer = recomputer
        self.worker = worker

    def on_interaction(self, user_id: int, item_id: int, action_kind: str) -> Optional[Future]:
        """
        view/add_to_cart/purchase: drop the user's cached lists, then schedule
        recomputation. Other kinds are recorded without side effects.
        """
        if action_kind not in FEEDBACK_ACTION_KINDS:
            return None

        dropped = self.cache.invalidate_user(user_id)
        logger.debug("Invalidated cached recommendations", extra={"user_id": user_id, "keys": dropped})

        return self.worker.submit(
            f"recompute:{user_id}:{item_id}",
            self.recomputer.recompute_for_event,
            user_id,
            item_id,
        )
