"""AI agent CRUD routes."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from vox.api.deps import CurrentUser, DbSession
from vox.db.models import AgentType
from vox.schemas.agents import AgentCreate, AgentList, AgentRead, AgentUpdate
from vox.schemas.base import Envelope
from vox.services import agent_service

router = APIRouter(prefix="/api/ai/agents", tags=["agents"])


@router.get("", response_model=Envelope[AgentList])
async def list_agents(
    current_user: CurrentUser,
    db: DbSession,
    type: AgentType | None = None,
    search: str | None = None,
    is_active: bool | None = None,
    active_only: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
) -> Envelope[AgentList]:
    """List the current user's agents with optional filters."""
    agents, total = await agent_service.list_agents(
        db,
        current_user.id,
        agent_type=type,
        search=search,
        is_active=is_active,
        active_only=active_only,
        page=page,
        limit=limit,
    )
    return Envelope(
        data=AgentList(
            agents=[AgentRead.model_validate(a) for a in agents],
            total=total,
            page=page,
            limit=limit,
        )
    )


@router.post("", response_model=Envelope[AgentRead], status_code=status.HTTP_201_CREATED)
async def create_agent(
    data: AgentCreate,
    current_user: CurrentUser,
    db: DbSession,
) -> Envelope[AgentRead]:
    """Create an agent. An active non-generic agent replaces the active one of its type."""
    agent = await agent_service.create_agent(db, current_user.id, data)
    return Envelope(data=AgentRead.model_validate(agent))


@router.get("/{agent_id}", response_model=Envelope[AgentRead])
async def get_agent(
    agent_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
) -> Envelope[AgentRead]:
    agent = await agent_service.get_agent(db, current_user.id, agent_id)
    return Envelope(data=AgentRead.model_validate(agent))


@router.patch("/{agent_id}", response_model=Envelope[AgentRead])
async def update_agent(
    agent_id: UUID,
    data: AgentUpdate,
    current_user: CurrentUser,
    db: DbSession,
) -> Envelope[AgentRead]:
    """Update an agent."""
    agent = await agent_service.update_agent(db, current_user.id, agent_id, data)
    return Envelope(data=AgentRead.model_validate(agent))


@router.post("/{agent_id}/activate", response_model=Envelope[AgentRead])
async def activate_agent(
    agent_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
) -> Envelope[AgentRead]:
    """Make this agent the active one of its type."""
    agent = await agent_service.activate_agent(db, current_user.id, agent_id)
    return Envelope(data=AgentRead.model_validate(agent))


@router.delete("/{agent_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_agent(
    agent_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
) -> None:
    """Delete an agent."""
    await agent_service.delete_agent(db, current_user.id, agent_id)
