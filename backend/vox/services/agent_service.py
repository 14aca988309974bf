"""AI agent management with the one-active-agent-per-type rule."""

import logging
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from vox.api.deps import get_user_resource_or_404
from vox.db.models import AgentType, AIAgent, KnowledgeBase
from vox.errors import ConflictError, NotFoundError
from vox.schemas.agents import AgentCreate, AgentUpdate
from vox.services.settings_store import parse_uuid

logger = logging.getLogger(__name__)


class AgentService:
    """
    CRUD for AI agents.

    Non-generic agents are exclusive per (user, type): creating or activating
    one deactivates its active siblings in the same transaction, and a partial
    unique index backs the rule in the database.
    """

    async def list_agents(
        self,
        db: AsyncSession,
        user_id: UUID,
        *,
        agent_type: int | None = None,
        search: str | None = None,
        is_active: bool | None = None,
        active_only: bool = False,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[AIAgent], int]:
        """One page of agents plus the total matching count."""
        query = select(AIAgent).where(AIAgent.user_id == user_id)
        if agent_type is not None:
            query = query.where(AIAgent.type == agent_type)
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(AIAgent.name.ilike(pattern), AIAgent.description.ilike(pattern)))
        if active_only:
            query = query.where(AIAgent.is_active.is_(True))
        elif is_active is not None:
            query = query.where(AIAgent.is_active.is_(is_active))

        total = await db.scalar(select(func.count()).select_from(query.subquery()))
        result = await db.execute(
            query.order_by(AIAgent.created_at.desc(), AIAgent.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars()), total or 0

    async def get_agent(self, db: AsyncSession, user_id: UUID, agent_id: UUID) -> AIAgent:
        return await get_user_resource_or_404(db, AIAgent, agent_id, user_id, label="Agent")

    async def create_agent(self, db: AsyncSession, user_id: UUID, data: AgentCreate) -> AIAgent:
        await self._ensure_knowledge_bases_owned(db, user_id, data.knowledge_base_ids)
        if data.is_active:
            await self._deactivate_siblings(db, user_id, data.type)

        agent = AIAgent(
            user_id=user_id,  # From auth, NEVER from request
            **data.model_dump(),
        )
        db.add(agent)
        await self._commit(db)
        await db.refresh(agent)
        logger.info("Created agent %s (type %d) for user %s", agent.id, agent.type, user_id)
        return agent

    async def update_agent(
        self, db: AsyncSession, user_id: UUID, agent_id: UUID, data: AgentUpdate
    ) -> AIAgent:
        agent = await self.get_agent(db, user_id, agent_id)
        changes = data.model_dump(exclude_unset=True)
        if changes.get("knowledge_base_ids") is not None:
            await self._ensure_knowledge_bases_owned(db, user_id, changes["knowledge_base_ids"])

        becomes_active = changes.get("is_active", agent.is_active)
        new_type = changes.get("type", agent.type)
        if becomes_active and (not agent.is_active or new_type != agent.type):
            await self._deactivate_siblings(db, user_id, new_type, exclude_id=agent.id)

        for key, value in changes.items():
            if value is None and key in ("configuration", "knowledge_base_ids", "data"):
                continue
            setattr(agent, key, value)
        await self._commit(db)
        await db.refresh(agent)
        return agent

    async def activate_agent(self, db: AsyncSession, user_id: UUID, agent_id: UUID) -> AIAgent:
        """Make ``agent_id`` the active agent of its type."""
        agent = await self.get_agent(db, user_id, agent_id)
        await self._deactivate_siblings(db, user_id, agent.type, exclude_id=agent.id)
        agent.is_active = True
        await self._commit(db)
        await db.refresh(agent)
        logger.info("Activated agent %s for user %s", agent.id, user_id)
        return agent

    async def delete_agent(self, db: AsyncSession, user_id: UUID, agent_id: UUID) -> None:
        agent = await self.get_agent(db, user_id, agent_id)
        await db.delete(agent)
        await db.commit()

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _deactivate_siblings(
        self, db: AsyncSession, user_id: UUID, agent_type: int, exclude_id: UUID | None = None
    ) -> int:
        """Deactivate other active agents of the same non-generic type. Not committed."""
        if agent_type == AgentType.GENERIC:
            return 0
        stmt = (
            update(AIAgent)
            .where(
                AIAgent.user_id == user_id,
                AIAgent.type == agent_type,
                AIAgent.is_active.is_(True),
            )
            .values(is_active=False)
        )
        if exclude_id is not None:
            stmt = stmt.where(AIAgent.id != exclude_id)
        result = await db.execute(stmt)
        if result.rowcount:
            logger.info("Deactivated %d sibling agent(s) of type %d for user %s", result.rowcount, agent_type, user_id)
        return result.rowcount

    async def _ensure_knowledge_bases_owned(
        self, db: AsyncSession, user_id: UUID, kb_ids: list[str]
    ) -> None:
        if not kb_ids:
            return
        wanted = {parse_uuid(kb_id, "knowledge base id") for kb_id in kb_ids}
        result = await db.execute(
            select(KnowledgeBase.id).where(KnowledgeBase.user_id == user_id, KnowledgeBase.id.in_(wanted))
        )
        missing = wanted - set(result.scalars())
        if missing:
            raise NotFoundError("Knowledge base not found", detail=", ".join(sorted(str(m) for m in missing)))

    async def _commit(self, db: AsyncSession) -> None:
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            raise ConflictError(
                "Another active agent of this type was saved concurrently", detail=str(e.orig)
            ) from e


# Singleton instance
agent_service = AgentService()
