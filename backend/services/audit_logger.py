# backend/services/audit_logger.py
import asyncio
import logging
from typing import Dict, Optional

from services.request_context import RequestContext
from storage.models import (
    AuditEvent,
    ChangeDetails,
    ContentType,
    EventType,
    EventUser,
    RelatedContent,
    SeverityLevel,
)
from storage.partition_store import JsonPartitionStore

logger = logging.getLogger(__name__)


class AuditLogger:
    """Writes admin/content audit events straight to the day's file.

    Unlike server events there is no queue: each call does its own
    read-modify-write, serialised by a lock so concurrent calls in this
    process do not overwrite each other.
    """

    def __init__(self, store: JsonPartitionStore):
        self.store = store
        self._lock = asyncio.Lock()

    async def log_event(self, event: AuditEvent) -> bool:
        """Persist one audit event. Returns False instead of raising on failure."""
        try:
            key = event.partition_key
            async with self._lock:
                events = await self.store.read_partition(key)
                events.append(event.to_record())
                await self.store.write_partition(key, events)
        except Exception as e:
            logger.error(f"❌ Failed to log audit event: {e}")
            return False

        user = event.user.display_name if event.user else "system"
        logger.info(f"[AUDIT] {event.event_type.value}: {event.title} ({user})")
        return True

    async def _log(
        self,
        event_type: EventType,
        title: str,
        user: Optional[EventUser],
        client: Optional[RequestContext],
        **fields,
    ) -> bool:
        client = client or RequestContext()
        return await self.log_event(AuditEvent(
            event_type=event_type,
            title=title,
            user=user,
            severity=SeverityLevel.INFO,
            **client_fields(client),
            **fields,
        ))

    async def log_user_login(self, user: EventUser, client: Optional[RequestContext] = None) -> bool:
        return await self._log(
            EventType.USER_LOGIN,
            f"User logged in: {user.name or user.email}",
            user,
            client,
            description="User successfully authenticated via GitHub",
            tags=["authentication", "login"],
        )

    async def log_user_logout(self, user: EventUser, client: Optional[RequestContext] = None) -> bool:
        return await self._log(
            EventType.USER_LOGOUT,
            f"User logged out: {user.name or user.email}",
            user,
            client,
            description="User signed out",
            tags=["authentication", "logout"],
        )

    async def log_post_created(
        self,
        post_id: str,
        post_title: str,
        user: EventUser,
        client: Optional[RequestContext] = None,
    ) -> bool:
        return await self._log(
            EventType.POST_CREATED,
            f"New blog post created: {post_title}",
            user,
            client,
            description=f'Blog post "{post_title}" was created',
            related_content=_blog_post(post_id, post_title),
            tags=["blog", "content", "create"],
        )

    async def log_post_updated(
        self,
        post_id: str,
        post_title: str,
        user: EventUser,
        changes: Optional[ChangeDetails] = None,
        client: Optional[RequestContext] = None,
    ) -> bool:
        return await self._log(
            EventType.POST_UPDATED,
            f"Blog post updated: {post_title}",
            user,
            client,
            description=f'Blog post "{post_title}" was modified',
            related_content=_blog_post(post_id, post_title),
            changes=changes,
            tags=["blog", "content", "update"],
        )

    async def log_mind_idea_created(
        self,
        idea_id: str,
        idea_title: str,
        user: EventUser,
        client: Optional[RequestContext] = None,
    ) -> bool:
        return await self._log(
            EventType.MIND_IDEA_CREATED,
            f"New mind idea created: {idea_title}",
            user,
            client,
            description=f'Mind idea "{idea_title}" was created',
            related_content=_mind_idea(idea_id, idea_title),
            tags=["mind", "content", "create"],
        )

    async def log_mind_thought_added(
        self,
        idea_id: str,
        idea_title: str,
        thought_id: str,
        user: EventUser,
        client: Optional[RequestContext] = None,
    ) -> bool:
        return await self._log(
            EventType.MIND_THOUGHT_ADDED,
            f"New thought added to: {idea_title}",
            user,
            client,
            description=f'A new thought was added to mind idea "{idea_title}"',
            related_content=_mind_idea(idea_id, idea_title),
            metadata={"thoughtId": thought_id},
            tags=["mind", "thought", "create"],
        )

    async def log_comment_added(
        self,
        post_id: str,
        post_title: str,
        comment_id: str,
        user: EventUser,
        client: Optional[RequestContext] = None,
    ) -> bool:
        return await self._log(
            EventType.COMMENT_ADDED,
            f"New comment on: {post_title}",
            user,
            client,
            description=f'A comment was added to "{post_title}"',
            related_content=_blog_post(post_id, post_title),
            metadata={"commentId": comment_id},
            tags=["comment", "engagement", "create"],
        )


def _blog_post(post_id: str, title: str) -> RelatedContent:
    return RelatedContent(type=ContentType.BLOG, id=post_id, title=title, url=f"/blog/{post_id}")


def _mind_idea(idea_id: str, title: str) -> RelatedContent:
    return RelatedContent(type=ContentType.MIND, id=idea_id, title=title, url=f"/mind/{idea_id}")


def client_fields(client: RequestContext) -> Dict[str, Optional[str]]:
    return {
        "ip_address": client.ip_address,
        "user_agent": client.user_agent,
        "session_id": client.session_id,
    }
