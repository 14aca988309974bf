"""Dashboard summary and inference health routes."""

import asyncio
import logging
from uuid import UUID

from fastapi import APIRouter
from sqlalchemy import func, select

from vox.api.deps import CurrentUser
from vox.config import get_settings
from vox.db.models import AIAgent, AutopilotConversationTracking, KnowledgeBase
from vox.db.session import AsyncSessionLocal
from vox.errors import UpstreamError
from vox.schemas.base import Envelope
from vox.schemas.dashboard import DashboardStats, InferenceHealth
from vox.services import inference

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(tags=["dashboard"])


async def _count(label: str, query) -> int:
    # Own session per branch so the counts can run concurrently
    async with AsyncSessionLocal() as db:
        total = await db.scalar(query)
    logger.debug("Dashboard count %s = %s", label, total)
    return total or 0


@router.get("/api/dashboard/stats", response_model=Envelope[DashboardStats])
async def dashboard_stats(current_user: CurrentUser) -> Envelope[DashboardStats]:
    """Headline counts for the dashboard. A count that fails is reported as 0."""
    user_id: UUID = current_user.id
    queries = {
        "total_agents": select(func.count()).select_from(AIAgent).where(AIAgent.user_id == user_id),
        "active_agents": select(func.count())
        .select_from(AIAgent)
        .where(AIAgent.user_id == user_id, AIAgent.is_active.is_(True)),
        "knowledge_bases": select(func.count())
        .select_from(KnowledgeBase)
        .where(KnowledgeBase.user_id == user_id),
        "autopilot_conversations": select(func.count())
        .select_from(AutopilotConversationTracking)
        .where(
            AutopilotConversationTracking.user_id == user_id,
            AutopilotConversationTracking.autopilot_enabled.is_(True),
        ),
    }
    results = await asyncio.gather(
        *(_count(label, query) for label, query in queries.items()),
        return_exceptions=True,
    )

    counts: dict[str, int] = {}
    for label, result in zip(queries, results):
        if isinstance(result, Exception):
            logger.error("Dashboard count %s failed: %s", label, result)
            counts[label] = 0
        else:
            counts[label] = result
    return Envelope(data=DashboardStats(**counts))


@router.get("/api/ai/health", response_model=Envelope[InferenceHealth])
async def inference_health(current_user: CurrentUser) -> Envelope[InferenceHealth]:
    """Whether the inference backend answers. Never fails; reports ``unreachable`` instead."""
    try:
        data = await inference.get("/health", current_user.id)
        detail = data if isinstance(data, dict) else str(data)
        status = "reachable"
    except UpstreamError as e:
        logger.warning("Inference backend health check failed: %s", e.message)
        detail = e.message
        status = "unreachable"
    return Envelope(data=InferenceHealth(status=status, backend_url=settings.fastapi_url, detail=detail))
