"""
Conversation AI routes.

Each endpoint resolves the agent for its feature (conversation override,
then global settings, then the first active agent), merges the agent's AI
configuration with the request overrides and forwards to the inference
backend.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from fastapi import APIRouter
from sqlalchemy.ext.asyncio import AsyncSession

from vox.api.deps import CurrentUser, DbSession
from vox.db.models import AIAgent
from vox.errors import NotFoundError, UpstreamError
from vox.schemas.conversation_ai import (
    AIOverrides,
    ConversationMessage,
    QueryRequest,
    ResponseSuggestionsRequest,
    SuggestionsRequest,
    SummaryRequest,
    TrainRequest,
)
from vox.services import inference, knowledge_base_service
from vox.services.agent_selection import NO_AGENT_MESSAGE, Feature
from vox.services.ai_config import (
    AUTOPILOT_STYLES,
    AIConfig,
    agent_ai_config,
    conversation_starter_prompt,
    validate_ai_config,
)
from vox.services.settings_store import SelectionContext, load_selection_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ai/conversation", tags=["conversation-ai"])

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant."
DEFAULT_AGENT_NAME = "Default Assistant"
MAX_RESPONSE_SUGGESTIONS = 6


# =============================================================================
# HELPERS
# =============================================================================


async def _resolve_agent(
    db: AsyncSession, user_id: UUID, conversation_id: str, feature: Feature
) -> tuple[SelectionContext, AIAgent]:
    """Load the selection inputs and pick the agent, or 404 when the user has none active."""
    context = await load_selection_context(db, user_id, conversation_id)
    agent = context.select(feature)
    if agent is None:
        raise NotFoundError(NO_AGENT_MESSAGE)
    return context, agent


def _ai_config(agent: AIAgent, overrides: AIOverrides) -> AIConfig:
    return validate_ai_config(
        overrides.model,
        overrides.temperature,
        overrides.humanlike_behavior,
        overrides.max_tokens,
        base=agent_ai_config(agent.configuration),
    )


def _knowledge_base_ids(context: SelectionContext, agent: AIAgent, conversation_id: str) -> list[str]:
    """Agent and conversation knowledge bases, deduplicated, without the conversation's own."""
    ids: list[str] = []
    for kb_id in [*(agent.knowledge_base_ids or []), *context.extra_knowledge_base_ids(conversation_id)]:
        if kb_id != conversation_id and kb_id not in ids:
            ids.append(kb_id)
    return ids


def _valid_messages(messages: list[ConversationMessage]) -> list[ConversationMessage]:
    return [m for m in messages if m.body and m.body.strip()]


def _customer_context(customer_info: dict[str, Any], context: str) -> str:
    name = customer_info.get("name") or " ".join(
        part for part in (customer_info.get("firstName"), customer_info.get("lastName")) if part
    )
    if not name or name in context:
        return context
    lines = [f"CUSTOMER: {name}"]
    if customer_info.get("email"):
        lines.append(f"EMAIL: {customer_info['email']}")
    return "\n".join(lines) + (f"\n\n{context}" if context else "")


def _agent_fields(agent: AIAgent, config: AIConfig) -> dict[str, Any]:
    return {
        "temperature": config.temperature,
        "model": config.model,
        "humanlikeBehavior": config.humanlike_behavior,
        "aiAgentId": str(agent.id),
        "systemPrompt": agent.system_prompt or DEFAULT_SYSTEM_PROMPT,
        "agentName": agent.name or DEFAULT_AGENT_NAME,
    }


# =============================================================================
# ROUTES
# =============================================================================


@router.post("/query")
async def query_conversation(
    body: QueryRequest,
    current_user: CurrentUser,
    db: DbSession,
) -> dict[str, Any]:
    """Answer a free-form question about a conversation, using the query agent."""
    context, agent = await _resolve_agent(db, current_user.id, body.conversation_id, "query")
    config = _ai_config(agent, body)

    payload = {
        "userId": str(current_user.id),
        "conversationId": body.conversation_id,
        "query": body.query,
        "knowledgebaseId": body.conversation_id,
        "additionalKnowledgebaseIds": _knowledge_base_ids(context, agent, body.conversation_id),
        **_agent_fields(agent, config),
    }
    started = time.monotonic()
    data = await inference.post("/ai/conversation/query", payload, current_user.id)
    if not isinstance(data, dict) or not data.get("answer"):
        raise UpstreamError("Invalid response format from server - missing answer field")
    if not isinstance(data.get("messages"), list):
        data["messages"] = []
    logger.info(
        "Query answered for conversation %s in %.0fms (agent %s)",
        body.conversation_id, (time.monotonic() - started) * 1000, agent.id,
    )

    await knowledge_base_service.record_query(
        db,
        current_user.id,
        body.conversation_id,
        query=body.query,
        response=data["answer"],
        message_count=len(data["messages"]),
        total_results=len(data.get("suggestions") or []),
        ai_config=config.as_payload(),
    )
    return {"success": True, "data": data}


@router.post("/suggestions")
async def conversation_suggestions(
    body: SuggestionsRequest,
    current_user: CurrentUser,
    db: DbSession,
) -> dict[str, Any]:
    """Suggest messages for a conversation; new conversations get starters styled by global settings."""
    context, agent = await _resolve_agent(db, current_user.id, body.conversation_id, "suggestions")
    config = _ai_config(agent, body)

    valid_messages = _valid_messages(body.recent_messages)
    is_new = not body.recent_messages
    global_settings = context.global_settings
    behavior = global_settings.new_conversation_behavior if global_settings.conversation_starters_enabled else "greeting"

    query, prompt_context = body.query, body.context or ""
    if is_new or not query:
        starter_query, starter_context = conversation_starter_prompt(
            behavior,
            starters_enabled=global_settings.conversation_starters_enabled,
            is_new=is_new,
        )
        query = query or starter_query
        prompt_context = f"{prompt_context}\n\n{starter_context}".strip()

    payload = {
        "userId": str(current_user.id),
        "conversationId": body.conversation_id,
        "query": query,
        "context": _customer_context(body.customer_info, prompt_context),
        "knowledgebaseId": body.knowledgebase_id or body.conversation_id,
        "additionalKnowledgebaseIds": _knowledge_base_ids(context, agent, body.conversation_id),
        "limit": body.limit,
        **_agent_fields(agent, config),
        "conversationMetadata": {
            "isNew": is_new,
            "hasMinimalContext": False,
            "validMessageCount": len(valid_messages),
            "conversationBehavior": behavior,
            "enhancedPrompting": True,
        },
    }
    data = await inference.post("/ai/conversation/suggestions/enhanced", payload, current_user.id)
    if not isinstance(data, dict) or not isinstance(data.get("suggestions"), list):
        raise UpstreamError("Invalid response format from server")
    return {"success": True, "data": data}


@router.post("/response-suggestions")
async def response_suggestions(
    body: ResponseSuggestionsRequest,
    current_user: CurrentUser,
    db: DbSession,
) -> dict[str, Any]:
    """
    Draft replies to the customer's last message.

    With ``autopilot`` set the autopilot agent answers and new conversations
    get the configured opening style.
    """
    feature: Feature = "autopilot" if body.autopilot else "response"
    context, agent = await _resolve_agent(db, current_user.id, body.conversation_id, feature)
    config = _ai_config(agent, body)
    if body.ai_agent_id and body.ai_agent_id != str(agent.id):
        logger.info("Ignoring client agent %s, selected %s for %s", body.ai_agent_id, agent.id, feature)

    limit = 3 if body.limit is None else max(1, min(MAX_RESPONSE_SUGGESTIONS, body.limit))
    valid_messages = _valid_messages(body.recent_messages)
    is_new = not body.recent_messages
    global_settings = context.global_settings
    behavior = global_settings.new_conversation_behavior

    prompt_context = _customer_context(body.customer_info, body.context or "")
    enhanced = body.autopilot and is_new
    if enhanced and global_settings.conversation_starters_enabled:
        _, starter_context = conversation_starter_prompt(behavior, starters_enabled=True, is_new=True)
        prompt_context = "\n\n".join(
            part for part in (prompt_context, starter_context, AUTOPILOT_STYLES.get(behavior, AUTOPILOT_STYLES["greeting"])) if part
        )

    payload = {
        "userId": str(current_user.id),
        "conversationId": body.conversation_id,
        "knowledgebaseId": body.knowledgebase_id or body.conversation_id,
        "additionalKnowledgebaseIds": _knowledge_base_ids(context, agent, body.conversation_id),
        "context": prompt_context,
        "lastCustomerMessage": body.last_customer_message,
        "autopilot": body.autopilot,
        "limit": limit,
        **_agent_fields(agent, config),
        "conversationMetadata": {
            "isNew": is_new,
            "hasMinimalContext": False,
            "validMessageCount": len(valid_messages),
            "conversationBehavior": behavior,
            "enhancedPrompting": enhanced,
            "autopilotMode": body.autopilot,
        },
    }
    data = await inference.post("/ai/conversation/response-suggestions/enhanced", payload, current_user.id)
    if not isinstance(data, dict) or not (data.get("response_suggestion") or data.get("autopilot_response")):
        raise UpstreamError("Invalid response format from server - missing response fields")
    return {"success": True, "data": data}


@router.post("/summary")
async def conversation_summary(
    body: SummaryRequest,
    current_user: CurrentUser,
    db: DbSession,
) -> dict[str, Any]:
    """Summarize a trained conversation, regenerating it upstream when asked or missing."""
    kb = await knowledge_base_service.get_conversation_kb(db, current_user.id, body.conversation_id)
    if kb is None:
        return {
            "success": False,
            "summary": "",
            "is_trained": False,
            "error_code": "CONVERSATION_NOT_TRAINED",
            "recommendations": ["Train the conversation first to generate a summary"],
        }

    config = validate_ai_config(body.model, body.temperature, body.humanlike_behavior, body.max_tokens)
    stored = dict(kb.data or {})
    summary = stored.get("summary")
    if body.regenerate or not summary:
        payload = {
            "userId": str(current_user.id),
            "conversationId": body.conversation_id,
            "messages": [m.model_dump(by_alias=True) for m in body.messages],
            "knowledgebaseId": body.knowledgebase_id or body.conversation_id,
            "locationId": body.location_id,
            "temperature": config.temperature,
            "model": config.model,
            "humanlikeBehavior": config.humanlike_behavior,
        }
        data = await inference.post("/ai/conversation/summary", payload, current_user.id)
        if isinstance(data, dict) and data.get("summary"):
            summary = data["summary"]
            await knowledge_base_service.store_summary(db, kb, summary, config.as_payload())

    message_count = stored.get("message_count") or 0
    if not summary:
        summary = (
            f"Conversation {body.conversation_id} contains {message_count} messages. "
            "Summary generation is in progress."
        )
    return {
        "success": True,
        "summary": summary,
        "is_trained": True,
        "metadata": {
            "conversationId": body.conversation_id,
            "messageCount": message_count,
            "lastMessageId": stored.get("last_message_id"),
            "queryHistory": stored.get("query_history") or [],
        },
    }


@router.post("/train")
async def train_conversation(
    body: TrainRequest,
    current_user: CurrentUser,
    db: DbSession,
) -> dict[str, Any]:
    """Train the inference backend on a conversation and record the result as a knowledge base."""
    knowledgebase_id = body.knowledgebase_id or body.conversation_id
    messages = [
        {**m.model_dump(by_alias=True), "userId": str(current_user.id), "knowledgebaseId": knowledgebase_id}
        for m in _valid_messages(body.messages)
    ]
    contact = body.contact_info
    payload = {
        "userId": str(current_user.id),
        "conversationId": body.conversation_id,
        "messages": messages,
        "messageCount": len(messages),
        "locationId": body.location_id,
        "lastMessageId": body.last_message_id,
        "knowledgebaseId": knowledgebase_id,
        "generateSummary": True,
        "metadata": {
            "conversationId": body.conversation_id,
            "locationId": body.location_id,
            "contactInfo": contact,
            "conversationType": body.conversation_metadata.get("conversationType", "TYPE_SMS"),
            "hasMessages": bool(messages),
        },
    }
    data = await inference.post("/ai/conversation/train", payload, current_user.id)
    if not isinstance(data, dict):
        raise UpstreamError("Invalid response format from server")

    details = data.get("data") if isinstance(data.get("data"), dict) else {}
    contact_name = contact.get("name") or "customer"
    training = {
        "message_count": len(messages),
        "last_message_id": body.last_message_id,
        "date_range": details.get("dateRange"),
        "trained_at": datetime.now(timezone.utc).isoformat(),
        "vector_count": details.get("vectorCount", len(messages)),
        "contact_info": contact,
    }
    if data.get("summary"):
        training["summary"] = data["summary"]
    saved = await knowledge_base_service.save_training(
        db,
        current_user.id,
        body.conversation_id,
        name=f"Conversation with {contact_name}",
        description=f"Conversation {body.conversation_id} with {contact_name}, {len(messages)} messages",
        training=training,
    )
    return {"success": True, "data": data, "knowledge_base_saved": saved}
