import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from personalization.core.errors import StorageUnavailable
from personalization.core.keys import KeySpace, validate_user_id
from personalization.recs.types import Action, BlockCategory
from personalization.schemas.outfits import InteractionContext, OutfitTags
from personalization.services.audit import AuditSink, InteractionEvent, LogAuditSink
from personalization.services.blocklist import BlocklistManager
from personalization.services.exploration import EXPLORATION_SLOT, ExplorationController
from personalization.services.queue import TaskQueue
from personalization.services.taste_profile import TasteProfileStore
from personalization.store.base import KeyValueStore

logger = logging.getLogger("personalization.interactions")

RECORD_TASK = "record_interaction"

TagsIn = Union[OutfitTags, Mapping[str, Any]]
ContextIn = Union[InteractionContext, Mapping[str, Any], None]


def _tags(value: TagsIn) -> OutfitTags:
    return value if isinstance(value, OutfitTags) else OutfitTags.model_validate(value)


def _context(value: ContextIn) -> InteractionContext:
    if value is None:
        return InteractionContext()
    return value if isinstance(value, InteractionContext) else InteractionContext.model_validate(value)


class InteractionRecorder:
    """Turns one user interaction into taste, blocklist and exploration updates."""

    def __init__(
        self,
        store: KeyValueStore,
        taste: TasteProfileStore,
        blocklists: BlocklistManager,
        exploration: ExplorationController,
        *,
        keys: KeySpace | None = None,
        audit: AuditSink | None = None,
        queue: TaskQueue | None = None,
        dedup_ttl_s: int = 86400,
    ) -> None:
        self.store = store
        self.taste = taste
        self.blocklists = blocklists
        self.exploration = exploration
        self.keys = keys or KeySpace()
        self.audit = audit or LogAuditSink()
        self.queue = queue
        self.dedup_ttl_s = dedup_ttl_s

    async def _apply(self, uid: str, tags: OutfitTags, action: Action, ctx: InteractionContext) -> Dict[str, Any]:
        result: Dict[str, Any] = {"promoted": [], "exploration_percentage": None}
        if action is Action.DISLIKE:
            for category, values in tags.block_tags().items():
                for value in values:
                    if await self.blocklists.record_dislike(uid, category, value):
                        result["promoted"].append(f"{category.value}:{value}")
        else:
            await self.taste.apply_delta(uid, tags, action)
        if ctx.position == EXPLORATION_SLOT:
            result["exploration_percentage"] = await self.exploration.apply_feedback(uid, action)
        return result

    async def _claim(self, uid: str, dedup_key: str) -> bool:
        return await self.store.set_nx(self.keys.user("dedup", uid, dedup_key), "1", self.dedup_ttl_s)

    async def _release(self, uid: str, dedup_key: str) -> None:
        try:
            await self.store.delete(self.keys.user("dedup", uid, dedup_key))
        except StorageUnavailable as e:
            logger.warning("interactions: could not release dedup key user=%s key=%s err=%s", uid, dedup_key, e)

    async def record_interaction(
        self,
        user_id: str,
        outfit_tags: TagsIn,
        action: Union[Action, str],
        context: ContextIn = None,
    ) -> bool:
        """Apply an interaction; False when the store stayed unavailable or it was a duplicate.

        ``InvalidUserId`` is raised before any state is touched.
        """
        uid = validate_user_id(user_id)
        tags = _tags(outfit_tags)
        action = Action(action)
        ctx = _context(context)

        claimed = False
        try:
            if ctx.dedup_key:
                if not await self._claim(uid, ctx.dedup_key):
                    logger.info("interactions: duplicate skipped user=%s key=%s", uid, ctx.dedup_key)
                    return False
                claimed = True
            result = await self._apply(uid, tags, action, ctx)
        except StorageUnavailable as e:
            # store calls retry individually; reaching here means the outage outlasted them
            logger.warning("interactions: dropped user=%s action=%s err=%s", uid, action.value, e)
            if claimed:
                await self._release(uid, ctx.dedup_key)
            await self._write_audit(uid, tags, action, ctx, applied=False, error=e.code)
            return False

        await self._write_audit(
            uid,
            tags,
            action,
            ctx,
            promoted=result["promoted"],
            exploration_percentage=result["exploration_percentage"],
        )
        return True

    async def record_payload(self, payload: Mapping[str, Any]) -> bool:
        return await self.record_interaction(
            payload["user_id"], payload["outfit_tags"], payload["action"], payload.get("context")
        )

    async def submit(
        self,
        user_id: str,
        outfit_tags: TagsIn,
        action: Union[Action, str],
        context: ContextIn = None,
    ) -> None:
        """Queue the interaction; the caller's response never waits on it."""
        uid = validate_user_id(user_id)
        payload = {
            "user_id": uid,
            "outfit_tags": _tags(outfit_tags).model_dump(),
            "action": Action(action).value,
            "context": _context(context).model_dump(exclude_none=True),
        }
        if self.queue is None:
            await self.record_payload(payload)
            return
        await self.queue.submit(RECORD_TASK, payload)

    async def record_ignored_session(
        self, user_id: str, outfits: Sequence[TagsIn]
    ) -> List[tuple[BlockCategory, str]]:
        uid = validate_user_id(user_id)
        return await self.blocklists.analyze_ignored_session(uid, [_tags(o) for o in outfits])

    async def _write_audit(
        self,
        uid: str,
        tags: OutfitTags,
        action: Action,
        ctx: InteractionContext,
        *,
        applied: bool = True,
        promoted: Optional[List[str]] = None,
        exploration_percentage: Optional[float] = None,
        error: Optional[str] = None,
    ) -> None:
        event = InteractionEvent(
            user_id=uid,
            action=action.value,
            applied=applied,
            position=ctx.position,
            session_id=ctx.session_id,
            platform=ctx.platform,
            tags=tags.model_dump(exclude_none=True),
            promoted=promoted or [],
            exploration_percentage=exploration_percentage,
            error=error,
        )
        try:
            await self.audit.write(event)
        except Exception:
            logger.exception("interactions: audit write failed user=%s action=%s", uid, action.value)
