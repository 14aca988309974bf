"""Knowledge base CRUD routes."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from vox.api.deps import CurrentUser, DbSession
from vox.db.models import KnowledgeBaseType
from vox.schemas.base import Envelope
from vox.schemas.knowledge_bases import (
    KnowledgeBaseCreate,
    KnowledgeBaseList,
    KnowledgeBaseRead,
    KnowledgeBaseUpdate,
)
from vox.services import knowledge_base_service

router = APIRouter(prefix="/api/ai/knowledgebase", tags=["knowledge-bases"])


@router.get("", response_model=Envelope[KnowledgeBaseList])
async def list_knowledge_bases(
    current_user: CurrentUser,
    db: DbSession,
    type: KnowledgeBaseType | None = None,
    search: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
) -> Envelope[KnowledgeBaseList]:
    """List the current user's knowledge bases."""
    items, total = await knowledge_base_service.list_knowledge_bases(
        db, current_user.id, kb_type=type, search=search, page=page, limit=limit
    )
    return Envelope(
        data=KnowledgeBaseList(
            knowledge_bases=[KnowledgeBaseRead.model_validate(kb) for kb in items],
            total=total,
            page=page,
            limit=limit,
        )
    )


@router.post("", response_model=Envelope[KnowledgeBaseRead], status_code=status.HTTP_201_CREATED)
async def create_knowledge_base(
    data: KnowledgeBaseCreate,
    current_user: CurrentUser,
    db: DbSession,
) -> Envelope[KnowledgeBaseRead]:
    kb = await knowledge_base_service.create_knowledge_base(db, current_user.id, data)
    return Envelope(data=KnowledgeBaseRead.model_validate(kb))


@router.get("/{kb_id}", response_model=Envelope[KnowledgeBaseRead])
async def get_knowledge_base(
    kb_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
) -> Envelope[KnowledgeBaseRead]:
    kb = await knowledge_base_service.get_knowledge_base(db, current_user.id, kb_id)
    return Envelope(data=KnowledgeBaseRead.model_validate(kb))


@router.patch("/{kb_id}", response_model=Envelope[KnowledgeBaseRead])
async def update_knowledge_base(
    kb_id: UUID,
    data: KnowledgeBaseUpdate,
    current_user: CurrentUser,
    db: DbSession,
) -> Envelope[KnowledgeBaseRead]:
    """Update a knowledge base. ``data`` keys are merged into the stored blob."""
    kb = await knowledge_base_service.update_knowledge_base(db, current_user.id, kb_id, data)
    return Envelope(data=KnowledgeBaseRead.model_validate(kb))


@router.delete("/{kb_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_knowledge_base(
    kb_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
) -> None:
    await knowledge_base_service.delete_knowledge_base(db, current_user.id, kb_id)
