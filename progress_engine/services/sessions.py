"""One ProgressOrchestrator per signed-in learner.

The registry owns the collaborators every session shares (remote store,
course catalog, the per-(user, course) lock table) and hands each user
their own orchestrator with their own cache namespace:

  REDIS_URL set       RedisCacheStore under cache:{user_id}:
  otherwise           InMemoryCacheStore, lives as long as the session

  PROGRESS_STORE_URL set   HttpProgressStore + HttpCourseCatalog sharing
                           one httpx.AsyncClient
  otherwise                InMemoryProgressStore + InMemoryCourseCatalog

At most ``max_sessions`` orchestrators are kept.  Opening one more signs
out the least recently used session that has nothing in flight; its
next request simply starts a fresh session and reloads.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Callable

import httpx

from progress_engine.core.config import SETTINGS, ThresholdConfig
from progress_engine.core.metrics import SESSIONS_EVICTED
from progress_engine.db.redis import redis_client
from progress_engine.repos.course_catalog import (
    CourseCatalog,
    HttpCourseCatalog,
    InMemoryCourseCatalog,
)
from progress_engine.repos.progress_store import (
    HttpProgressStore,
    InMemoryProgressStore,
    ProgressStore,
)
from progress_engine.services.cache import CacheStore, InMemoryCacheStore, RedisCacheStore
from progress_engine.services.cache_sync import clear_cache
from progress_engine.services.keyed_lock import KeyedLock
from progress_engine.services.orchestrator import ProgressOrchestrator

logger = logging.getLogger(__name__)


class SessionRegistry:
    def __init__(
        self,
        *,
        store: ProgressStore,
        catalog: CourseCatalog,
        cache_factory: Callable[[str], CacheStore],
        thresholds: ThresholdConfig | None = None,
        completion_threshold: int = 80,
        max_sessions: int = 1000,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self._cache_factory = cache_factory
        self._thresholds = thresholds or ThresholdConfig()
        self._completion_threshold = completion_threshold
        self._client = client
        self._max_sessions = max_sessions
        self._locks = KeyedLock()
        self._sessions: OrderedDict[str, ProgressOrchestrator] = OrderedDict()

    def get(self, user_id: str) -> ProgressOrchestrator:
        session = self._sessions.get(user_id)
        if session is not None:
            self._sessions.move_to_end(user_id)
            return session

        session = ProgressOrchestrator(
            user_id=user_id,
            store=self.store,
            catalog=self.catalog,
            cache=self._cache_factory(user_id),
            thresholds=self._thresholds,
            completion_threshold=self._completion_threshold,
            locks=self._locks,
        )
        self._sessions[user_id] = session
        logger.debug("Session opened", extra={"user_id": user_id})
        self._evict()
        return session

    def _evict(self) -> None:
        excess = len(self._sessions) - self._max_sessions
        if excess <= 0:
            return
        # Oldest first; the session just opened is last and never a candidate
        for user_id, session in list(self._sessions.items())[:-1]:
            if excess == 0:
                break
            if session.is_busy:
                continue
            del self._sessions[user_id]
            session.sign_out()
            SESSIONS_EVICTED.inc()
            logger.info("Idle session evicted", extra={"user_id": user_id})
            excess -= 1

    def sign_out(self, user_id: str) -> bool:
        """End the user's session.  Returns False if none was open.

        The cache namespace is cleared either way, so a mirror left over
        from an earlier process does not outlive the logout.
        """
        session = self._sessions.pop(user_id, None)
        if session is not None:
            session.sign_out()
            return True
        clear_cache(self._cache_factory(user_id))
        return False

    def reset(self) -> None:
        self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            logger.info("Progress store client closed")


def _cache_for(user_id: str) -> CacheStore:
    if redis_client is not None:
        return RedisCacheStore(redis_client, user_id)
    return InMemoryCacheStore()


def build_registry() -> SessionRegistry:
    if SETTINGS.progress_store_url:
        client = httpx.AsyncClient(
            base_url=SETTINGS.progress_store_url,
            timeout=SETTINGS.progress_store_timeout,
        )
        logger.info("Using remote progress store at %s", SETTINGS.progress_store_url)
        return SessionRegistry(
            store=HttpProgressStore(client),
            catalog=HttpCourseCatalog(client),
            cache_factory=_cache_for,
            thresholds=SETTINGS.thresholds,
            completion_threshold=SETTINGS.completion_threshold,
            max_sessions=SETTINGS.max_sessions,
            client=client,
        )

    logger.info("No PROGRESS_STORE_URL configured; using in-memory progress store")
    return SessionRegistry(
        store=InMemoryProgressStore(),
        catalog=InMemoryCourseCatalog(),
        cache_factory=_cache_for,
        thresholds=SETTINGS.thresholds,
        completion_threshold=SETTINGS.completion_threshold,
        max_sessions=SETTINGS.max_sessions,
    )


session_registry = build_registry()
