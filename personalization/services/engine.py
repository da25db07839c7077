import logging
import random
from datetime import datetime
from typing import Any, Callable, Dict, List, Sequence

from personalization.core.cache import TTLCache
from personalization.core.config import Settings, settings as default_settings
from personalization.core.keys import KeySpace, validate_user_id
from personalization.recs.config import PolicyConfig
from personalization.recs.types import TasteProfile
from personalization.schemas.recs import RecommendationOut, RecommendationsOut
from personalization.services.anti_repetition import AntiRepetitionCache
from personalization.services.audit import AuditSink, get_audit_sink
from personalization.services.blocklist import BlocklistManager
from personalization.services.diversifier import CandidateIn, RecommendationDiversifier
from personalization.services.exploration import ExplorationController
from personalization.services.interactions import RECORD_TASK, ContextIn, InteractionRecorder, TagsIn
from personalization.services.queue import TaskQueue, get_task_queue
from personalization.services.scoring import MatchScorer
from personalization.services.taste_profile import TasteProfileStore, utcnow
from personalization.store import get_store
from personalization.store.base import KeyValueStore
from personalization.store.retrying import RetryingStore

logger = logging.getLogger("personalization.engine")


class PersonalizationEngine:
    """Entry point wiring the per-user state services to one shared store."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        config: PolicyConfig | None = None,
        keys: KeySpace | None = None,
        queue: TaskQueue | None = None,
        audit: AuditSink | None = None,
        profile_cache: TTLCache[TasteProfile] | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utcnow,
        timeout_s: float = 1.5,
        retry_attempts: int = 3,
        retry_min_s: float = 0.05,
        retry_max_s: float = 1.0,
        dedup_ttl_s: int = 86400,
    ) -> None:
        self.store = store
        self.config = config or PolicyConfig()
        self.keys = keys or KeySpace()
        self.io = io = RetryingStore(store, attempts=retry_attempts, min_s=retry_min_s, max_s=retry_max_s)
        common = dict(keys=self.keys, config=self.config, clock=clock)
        self.taste = TasteProfileStore(io, cache=profile_cache, **common)
        self.blocklists = BlocklistManager(io, **common)
        self.repetition = AntiRepetitionCache(io, **common)
        self.exploration = ExplorationController(io, **common)
        self.scorer = MatchScorer(self.config)
        self.diversifier = RecommendationDiversifier(
            self.taste,
            self.blocklists,
            self.repetition,
            self.exploration,
            self.scorer,
            config=self.config,
            rng=rng,
            timeout_s=timeout_s,
            clock=clock,
        )
        self.queue = queue
        self.recorder = InteractionRecorder(
            io,
            self.taste,
            self.blocklists,
            self.exploration,
            keys=self.keys,
            audit=audit,
            queue=queue,
            dedup_ttl_s=dedup_ttl_s,
        )
        if queue is not None:
            queue.register(RECORD_TASK, self.recorder.record_payload)

    async def ping(self) -> bool:
        return await self.store.ping()

    async def aclose(self) -> None:
        close = getattr(self.store, "close", None)
        if close is not None:
            await close()

    async def select_recommendations(self, user_id: str, candidates: Sequence[CandidateIn]) -> List[RecommendationOut]:
        return await self.diversifier.select_recommendations(user_id, candidates)

    async def recommend(self, user_id: str, candidates: Sequence[CandidateIn]) -> RecommendationsOut:
        return await self.diversifier.select(user_id, candidates)

    async def record_interaction(self, user_id: str, outfit_tags: TagsIn, action, context: ContextIn = None) -> bool:
        return await self.recorder.record_interaction(user_id, outfit_tags, action, context)

    async def submit_interaction(self, user_id: str, outfit_tags: TagsIn, action, context: ContextIn = None) -> None:
        await self.recorder.submit(user_id, outfit_tags, action, context)

    async def record_ignored_session(self, user_id: str, outfits: Sequence[TagsIn]):
        return await self.recorder.record_ignored_session(user_id, outfits)

    async def style_insights(self, user_id: str) -> Dict[str, Any]:
        insights = await self.taste.style_insights(user_id)
        state = await self.exploration.state(user_id)
        insights["exploration_percentage"] = state.exploration_percentage
        insights["exploration_success_rate"] = state.success_rate
        return insights

    async def cleanup_user_state(self, user_id: str) -> Dict[str, int]:
        uid = validate_user_id(user_id)
        shown = await self.repetition.prune(uid)
        blocks = await self.blocklists.cleanup_expired(uid)
        return {"shown_pruned": shown, "blocks_pruned": blocks}

    async def known_users(self) -> List[str]:
        users = set()
        for kind in ("shown", "block"):
            for key in await self.io.scan_keys(self.keys.pattern(kind, "*")):
                users.add(self.keys.user_from_key(key))
        return sorted(users)

    async def cleanup_expired_state(self) -> Dict[str, int]:
        totals = {"users": 0, "shown_pruned": 0, "blocks_pruned": 0}
        for uid in await self.known_users():
            counts = await self.cleanup_user_state(uid)
            totals["users"] += 1
            totals["shown_pruned"] += counts["shown_pruned"]
            totals["blocks_pruned"] += counts["blocks_pruned"]
        logger.info("engine: cleanup users=%s shown=%s blocks=%s", *totals.values())
        return totals


def build_engine(settings: Settings | None = None, **overrides) -> PersonalizationEngine:
    s = settings or default_settings
    kwargs: Dict[str, Any] = dict(
        config=PolicyConfig.from_settings(s),
        keys=KeySpace(s.STORE_KEY_PREFIX),
        queue=get_task_queue(s),
        audit=get_audit_sink(s),
        profile_cache=TTLCache(s.PROFILE_CACHE_TTL_S, s.PROFILE_CACHE_MAX),
        timeout_s=s.REQUEST_TIMEOUT_MS / 1000.0,
        retry_attempts=s.STORE_RETRY_ATTEMPTS,
        retry_min_s=s.STORE_RETRY_MIN_S,
        retry_max_s=s.STORE_RETRY_MAX_S,
        dedup_ttl_s=s.DEDUP_TTL_S,
    )
    kwargs.update(overrides)
    store = kwargs.pop("store", None) or get_store(s)
    logger.info(
        "engine: built store=%s tasks=%s audit=%s",
        s.STORE_BACKEND,
        s.TASK_BACKEND,
        s.AUDIT_BACKEND,
    )
    return PersonalizationEngine(store, **kwargs)
