"""Knowledge base CRUD and the per-conversation query history."""

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vox.api.deps import get_user_resource_or_404
from vox.db.models import KnowledgeBase, KnowledgeBaseType
from vox.schemas.knowledge_bases import KnowledgeBaseCreate, KnowledgeBaseUpdate

logger = logging.getLogger(__name__)

# Oldest entries are dropped beyond this
QUERY_HISTORY_LIMIT = 100


class KnowledgeBaseService:
    """User-scoped knowledge base access."""

    async def list_knowledge_bases(
        self,
        db: AsyncSession,
        user_id: UUID,
        *,
        kb_type: int | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[KnowledgeBase], int]:
        query = select(KnowledgeBase).where(KnowledgeBase.user_id == user_id)
        if kb_type is not None:
            query = query.where(KnowledgeBase.type == kb_type)
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(KnowledgeBase.name.ilike(pattern), KnowledgeBase.description.ilike(pattern))
            )

        total = await db.scalar(select(func.count()).select_from(query.subquery()))
        result = await db.execute(
            query.order_by(KnowledgeBase.created_at.desc(), KnowledgeBase.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars()), total or 0

    async def get_knowledge_base(self, db: AsyncSession, user_id: UUID, kb_id: UUID) -> KnowledgeBase:
        return await get_user_resource_or_404(db, KnowledgeBase, kb_id, user_id, label="Knowledge base")

    async def create_knowledge_base(
        self, db: AsyncSession, user_id: UUID, data: KnowledgeBaseCreate
    ) -> KnowledgeBase:
        kb = KnowledgeBase(user_id=user_id, **data.model_dump())
        db.add(kb)
        await db.commit()
        await db.refresh(kb)
        logger.info("Created knowledge base %s (%s) for user %s", kb.id, kb.type, user_id)
        return kb

    async def update_knowledge_base(
        self, db: AsyncSession, user_id: UUID, kb_id: UUID, data: KnowledgeBaseUpdate
    ) -> KnowledgeBase:
        kb = await self.get_knowledge_base(db, user_id, kb_id)
        for key, value in data.model_dump(exclude_unset=True).items():
            if key == "data" and value is not None:
                value = {**(kb.data or {}), **value}
            setattr(kb, key, value)
        await db.commit()
        await db.refresh(kb)
        return kb

    async def delete_knowledge_base(self, db: AsyncSession, user_id: UUID, kb_id: UUID) -> None:
        kb = await self.get_knowledge_base(db, user_id, kb_id)
        await db.delete(kb)
        await db.commit()

    async def count(self, db: AsyncSession, user_id: UUID) -> int:
        total = await db.scalar(
            select(func.count()).select_from(KnowledgeBase).where(KnowledgeBase.user_id == user_id)
        )
        return total or 0

    # =========================================================================
    # CONVERSATION KNOWLEDGE BASES
    # =========================================================================

    async def get_conversation_kb(
        self, db: AsyncSession, user_id: UUID, conversation_id: str
    ) -> KnowledgeBase | None:
        """The knowledge base trained from a conversation, if any."""
        result = await db.execute(
            select(KnowledgeBase)
            .where(
                KnowledgeBase.user_id == user_id,
                KnowledgeBase.type == KnowledgeBaseType.CONVERSATION,
                KnowledgeBase.provider_type_sub_id == conversation_id,
            )
            .order_by(KnowledgeBase.created_at)
        )
        return result.scalars().first()

    async def save_training(
        self,
        db: AsyncSession,
        user_id: UUID,
        conversation_id: str,
        *,
        name: str,
        description: str,
        training: dict[str, Any],
    ) -> bool:
        """
        Create or refresh the conversation knowledge base after training.

        Existing query history survives a retrain. Returns False if the write
        fails; training already succeeded upstream by then.
        """
        try:
            kb = await self.get_conversation_kb(db, user_id, conversation_id)
            if kb is None:
                db.add(
                    KnowledgeBase(
                        user_id=user_id,
                        name=name,
                        description=description,
                        type=KnowledgeBaseType.CONVERSATION,
                        provider_type_sub_id=conversation_id,
                        data={"query_history": [], **training},
                    )
                )
            else:
                history = (kb.data or {}).get("query_history") or []
                kb.name = name
                kb.description = description
                kb.data = {**(kb.data or {}), **training, "query_history": history}
            await db.commit()
            return True
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("Failed to save training results for conversation %s", conversation_id)
            return False

    async def store_summary(
        self, db: AsyncSession, kb: KnowledgeBase, summary: str, ai_config: dict[str, Any]
    ) -> bool:
        try:
            kb.data = {**(kb.data or {}), "summary": summary, "last_ai_config": ai_config}
            await db.commit()
            return True
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("Failed to store summary on knowledge base %s", kb.id)
            return False

    # =========================================================================
    # QUERY HISTORY
    # =========================================================================

    async def record_query(
        self,
        db: AsyncSession,
        user_id: UUID,
        conversation_id: str,
        *,
        query: str,
        response: str,
        message_count: int,
        total_results: int,
        ai_config: dict[str, Any],
    ) -> bool:
        """
        Append a query/answer pair to the conversation knowledge base.

        Only updates an existing conversation knowledge base. Returns False
        when there is none or the write fails; the caller's answer stands
        either way.
        """
        try:
            kb = await self.get_conversation_kb(db, user_id, conversation_id)
            if kb is None:
                return False

            now = datetime.now(timezone.utc).isoformat()
            data = dict(kb.data or {})
            history = list(data.get("query_history") or [])
            history.append(
                {
                    "id": str(uuid4()),
                    "query": query,
                    "response": response,
                    "timestamp": now,
                    "user_id": str(user_id),
                    "metadata": {
                        "message_count": message_count,
                        "total_results": total_results,
                        "ai_config": ai_config,
                    },
                }
            )
            data["query_history"] = history[-QUERY_HISTORY_LIMIT:]
            data["last_queried_at"] = now
            data["last_ai_config"] = ai_config
            kb.data = data
            await db.commit()
            return True
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("Failed to store query history for conversation %s", conversation_id)
            return False


# Singleton instance
knowledge_base_service = KnowledgeBaseService()
