"""Autopilot config manager, tracking sync and the /api/autopilot routes."""

import asyncio
from datetime import date, timedelta
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from vox.db.models import (
    AgentType,
    AutopilotAnalytics,
    AutopilotConfig,
    AutopilotConversationTracking,
    ConversationMetaData,
)
from vox.schemas.autopilot import DEFAULT_FALLBACK_MESSAGE, AutopilotConfigSave, TrackingUpsert
from vox.services import autopilot_manager as manager
from vox.services.autopilot_manager import reset_daily_counters
from vox.services.autopilot_manager import settings as autopilot_settings


def save_input(**fields) -> AutopilotConfigSave:
    return AutopilotConfigSave.model_validate(fields)


async def count(session_factory, model) -> int:
    async with session_factory() as s:
        return await s.scalar(select(func.count()).select_from(model))


# =============================================================================
# SAVE / UPSERT
# =============================================================================


async def test_new_config_takes_defaults(db, user_id):
    result = await manager.save_config(db, user_id, save_input(conversationId="conv-1", isEnabled=True))

    config = result.config
    assert config.conversation_id == "conv-1"
    assert config.is_enabled is True
    assert config.reply_delay_minutes == 5
    assert config.max_replies_per_conversation == 3
    assert config.max_replies_per_day == 10
    assert config.message_type == "SMS"
    assert config.fallback_message == DEFAULT_FALLBACK_MESSAGE
    assert config.operating_hours["start"] == "09:00"
    assert config.metadata["version"] == "1.0"


async def test_saving_twice_keeps_one_row_and_last_write_wins(db, user_id, session_factory):
    await manager.save_config(db, user_id, save_input(conversationId="conv-1", replyDelayMinutes=2))
    result = await manager.save_config(db, user_id, save_input(conversationId="conv-1", replyDelayMinutes=9))

    assert result.config.reply_delay_minutes == 9
    assert await count(session_factory, AutopilotConfig) == 1


async def test_concurrent_first_saves_both_succeed_on_one_row(user_id, session_factory):
    async def save(enabled: bool) -> bool:
        async with session_factory() as session:
            result = await manager.save_config(
                session, user_id, save_input(conversationId="c1", isEnabled=enabled)
            )
            return result.config.is_enabled

    results = await asyncio.gather(save(True), save(False))

    assert sorted(results) == [False, True]
    assert await count(session_factory, AutopilotConfig) == 1
    async with session_factory() as s:
        stored = await s.scalar(select(AutopilotConfig))
    assert stored.conversation_id == "c1"
    assert stored.is_enabled in results


async def test_save_updates_row_inserted_by_another_writer(db, user_id, session_factory, monkeypatch):
    await manager.save_config(
        db, user_id, save_input(conversationId="conv-1", isEnabled=True, replyDelayMinutes=2)
    )
    real_find = manager._find_config
    lookups = []

    async def stale_find(session, owner, conversation_id):
        lookups.append(conversation_id)
        if len(lookups) == 1:
            return None
        return await real_find(session, owner, conversation_id)

    monkeypatch.setattr(manager, "_find_config", stale_find)

    result = await manager.save_config(db, user_id, save_input(conversationId="conv-1", isEnabled=False))

    assert lookups == ["conv-1", "conv-1"]
    assert result.config.is_enabled is False
    assert result.config.reply_delay_minutes == 2
    assert await count(session_factory, AutopilotConfig) == 1


async def test_invalid_message_type_coerces_to_sms(db, user_id):
    result = await manager.save_config(db, user_id, save_input(conversationId="conv-1", messageType="Pigeon"))
    assert result.config.message_type == "SMS"

    result = await manager.save_config(db, user_id, save_input(conversationId="conv-1", messageType="Email"))
    assert result.config.message_type == "Email"


async def test_toggle_preserves_rate_limits(db, user_id):
    await manager.save_config(
        db,
        user_id,
        save_input(
            conversationId="conv-1",
            isEnabled=True,
            maxRepliesPerDay=42,
            maxRepliesPerConversation=7,
            customPrompt="Be brief",
        ),
    )
    await manager.save_config(db, user_id, save_input(conversationId="conv-1", isEnabled=False))
    result = await manager.save_config(db, user_id, save_input(conversationId="conv-1", isEnabled=True))

    assert result.config.is_enabled is True
    assert result.config.max_replies_per_day == 42
    assert result.config.max_replies_per_conversation == 7
    assert result.config.custom_prompt == "Be brief"


async def test_model_and_temperature_come_from_active_agent(db, user_id, make_agent):
    agent = await make_agent(
        user_id, "Closer", type=AgentType.AUTOPILOT, configuration={"model": "gpt-4o", "temperature": 0.2}
    )

    result = await manager.save_config(
        db,
        user_id,
        save_input(conversationId="conv-1", aiModel="gpt-3.5-turbo", aiTemperature=0.9),
    )

    assert result.config.ai_agent_id == str(agent.id)
    assert result.config.ai_model == "gpt-4o"
    assert result.config.ai_temperature == 0.2


async def test_explicit_agent_id_overrides_only_the_id(db, user_id, make_agent):
    await make_agent(user_id, "Default", configuration={"model": "gpt-4o"})

    result = await manager.save_config(db, user_id, save_input(conversationId="conv-1", aiAgentId="chosen"))

    assert result.config.ai_agent_id == "chosen"
    assert result.config.ai_model == "gpt-4o"


async def test_defaults_without_agents(db, user_id):
    result = await manager.save_config(db, user_id, save_input(conversationId="conv-1"))

    assert result.config.ai_agent_id is None
    assert result.config.ai_model == autopilot_settings.default_ai_model
    assert result.config.ai_temperature == autopilot_settings.default_ai_temperature


async def test_global_config_is_fallback_for_conversations(db, user_id):
    await manager.save_config(db, user_id, save_input(isEnabled=True, replyDelayMinutes=11))

    found = await manager.get_config(db, user_id, "conv-without-config")
    assert found is not None
    assert found.conversation_id is None
    assert found.reply_delay_minutes == 11

    await manager.save_config(db, user_id, save_input(conversationId="conv-2", replyDelayMinutes=1))
    found = await manager.get_config(db, user_id, "conv-2")
    assert found.reply_delay_minutes == 1


async def test_get_config_without_any_rows(db, user_id):
    assert await manager.get_config(db, user_id, "conv-1") is None


async def test_enabled_flag_mirrored_into_conversation_meta(db, user_id, session_factory):
    db.add(
        ConversationMetaData(
            user_id=user_id,
            conv_id="conv-1",
            data={"ai_settings": {"knowledgeBaseIds": ["kb-1"], "autopilot": {"enabled": False}}},
        )
    )
    await db.commit()

    await manager.save_config(db, user_id, save_input(conversationId="conv-1", isEnabled=True))

    async with session_factory() as s:
        meta = await s.scalar(select(ConversationMetaData).where(ConversationMetaData.conv_id == "conv-1"))
    assert meta.data["ai_settings"]["autopilot"]["enabled"] is True
    assert meta.data["ai_settings"]["knowledgeBaseIds"] == ["kb-1"]


# =============================================================================
# TRACKING + ANALYTICS
# =============================================================================


async def test_tracking_row_created_and_updated(db, user_id, session_factory):
    result = await manager.save_config(
        db, user_id, save_input(conversationId="conv-1", locationId="loc-1", isEnabled=True)
    )
    assert result.tracking_synced is True

    await manager.save_config(db, user_id, save_input(conversationId="conv-1", locationId="loc-1", isEnabled=False))

    async with session_factory() as s:
        rows = list(await s.scalars(select(AutopilotConversationTracking)))
    assert len(rows) == 1
    assert rows[0].autopilot_enabled is False
    assert rows[0].conversation_status == "open"
    assert "last_sync" in rows[0].data


async def test_tracking_not_synced_without_location(db, user_id, session_factory):
    result = await manager.save_config(db, user_id, save_input(conversationId="conv-1", isEnabled=True))

    assert result.tracking_synced is None
    assert await count(session_factory, AutopilotConversationTracking) == 0


async def test_tracking_sync_retries_then_soft_fails(db, user_id, monkeypatch, session_factory):
    calls = []

    async def failing_sync(*args, **kwargs):
        calls.append(args)
        raise OperationalError("UPDATE autopilot_conversation_tracking", {}, Exception("database is locked"))

    monkeypatch.setattr(manager, "_sync_tracking_once", failing_sync)
    monkeypatch.setattr(autopilot_settings, "tracking_sync_backoff_seconds", 0)

    result = await manager.save_config(
        db, user_id, save_input(conversationId="conv-1", locationId="loc-1", isEnabled=True)
    )

    assert len(calls) == autopilot_settings.tracking_sync_attempts
    assert result.tracking_synced is False
    assert result.config.is_enabled is True
    assert await count(session_factory, AutopilotConfig) == 1


async def test_tracking_sync_recovers_on_retry(db, user_id, monkeypatch):
    real_sync = manager._sync_tracking_once
    calls = []

    async def flaky_sync(*args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            raise OperationalError("INSERT", {}, Exception("transient"))
        await real_sync(*args, **kwargs)

    monkeypatch.setattr(manager, "_sync_tracking_once", flaky_sync)
    monkeypatch.setattr(autopilot_settings, "tracking_sync_backoff_seconds", 0)

    result = await manager.save_config(
        db, user_id, save_input(conversationId="conv-1", locationId="loc-1", isEnabled=True)
    )

    assert len(calls) == 2
    assert result.tracking_synced is True


async def test_enabling_initializes_daily_analytics_once(db, user_id, session_factory):
    first = await manager.save_config(
        db, user_id, save_input(conversationId="conv-1", locationId="loc-1", isEnabled=True)
    )
    second = await manager.save_config(
        db, user_id, save_input(conversationId="conv-2", locationId="loc-1", isEnabled=True)
    )

    assert first.analytics_initialized is True
    assert second.analytics_initialized is True
    assert await count(session_factory, AutopilotAnalytics) == 1


async def test_ensure_daily_analytics_is_idempotent_without_location(db, user_id, session_factory):
    assert await manager.ensure_daily_analytics(db, user_id, None) is True
    assert await manager.ensure_daily_analytics(db, user_id, None) is True

    assert await count(session_factory, AutopilotAnalytics) == 1


async def test_disabled_save_does_not_touch_analytics(db, user_id, session_factory):
    result = await manager.save_config(db, user_id, save_input(conversationId="conv-1", isEnabled=False))

    assert result.analytics_initialized is False
    assert await count(session_factory, AutopilotAnalytics) == 0


# =============================================================================
# DELETE
# =============================================================================


async def test_delete_disables_tracking(db, user_id, session_factory):
    await manager.save_config(db, user_id, save_input(conversationId="conv-1", locationId="loc-1", isEnabled=True))

    assert await manager.delete_config(db, user_id, "conv-1") is True
    assert await manager.delete_config(db, user_id, "conv-1") is False

    async with session_factory() as s:
        tracking = await s.scalar(select(AutopilotConversationTracking))
    assert tracking.autopilot_enabled is False
    assert await count(session_factory, AutopilotConfig) == 0


# =============================================================================
# DAILY COUNTERS
# =============================================================================


def test_reset_daily_counters():
    today = date(2026, 3, 2)
    tracking = AutopilotConversationTracking(ai_replies_today=4, last_reply_date=today - timedelta(days=1))

    assert reset_daily_counters(tracking, today) is True
    assert tracking.ai_replies_today == 0
    assert tracking.last_reply_date == today

    tracking.ai_replies_today = 2
    assert reset_daily_counters(tracking, today) is False
    assert tracking.ai_replies_today == 2


async def test_upsert_tracking_preserves_counters(db, user_id, session_factory):
    created = await manager.upsert_tracking(
        db, user_id, TrackingUpsert(conversation_id="conv-1", location_id="loc-1", contact_name="Ada")
    )
    assert created.contact_name == "Ada"
    assert created.autopilot_enabled is True
    assert created.data["source"] == "manual_toggle"

    created.ai_replies_count = 5
    await db.commit()

    updated = await manager.upsert_tracking(
        db, user_id, TrackingUpsert(conversation_id="conv-1", location_id="loc-1", contact_phone="+15550100")
    )
    assert updated.ai_replies_count == 5
    assert updated.contact_name == "Ada"
    assert updated.contact_phone == "+15550100"


# =============================================================================
# ROUTES
# =============================================================================


async def test_config_routes_round_trip(client, auth_headers):
    response = await client.get("/api/autopilot/config", params={"conversationId": "conv-1"}, headers=auth_headers)
    assert response.status_code == 200
    assert response.json() == {"success": True, "data": {"config": None}}

    response = await client.post(
        "/api/autopilot/config",
        json={"conversationId": "conv-1", "locationId": "loc-1", "isEnabled": True, "messageType": "Fax"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["config"]["message_type"] == "SMS"
    assert body["data"]["tracking_synced"] is True

    response = await client.get("/api/autopilot/config", params={"conversationId": "conv-1"}, headers=auth_headers)
    assert response.json()["data"]["config"]["is_enabled"] is True

    response = await client.delete("/api/autopilot/config", params={"conversationId": "conv-1"}, headers=auth_headers)
    assert response.status_code == 200

    response = await client.delete("/api/autopilot/config", params={"conversationId": "conv-1"}, headers=auth_headers)
    assert response.status_code == 404
    assert response.json()["error_kind"] == "not_found"


async def test_tracking_routes(client, auth_headers):
    response = await client.post(
        "/api/autopilot/tracking",
        json={"conversationId": "conv-1", "locationId": "loc-1", "contactName": "Ada"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["data"]["contact_name"] == "Ada"

    response = await client.get("/api/autopilot/tracking", headers=auth_headers)
    assert [row["conversation_id"] for row in response.json()["data"]] == ["conv-1"]


async def test_tracking_requires_location(client, auth_headers):
    response = await client.post("/api/autopilot/tracking", json={"conversationId": "conv-1"}, headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["error"].startswith("locationId")


async def test_configs_are_user_scoped(client, auth_headers, auth_for):
    await client.post("/api/autopilot/config", json={"conversationId": "conv-1"}, headers=auth_headers)

    other = auth_for(uuid4())
    response = await client.get("/api/autopilot/config", params={"conversationId": "conv-1"}, headers=other)
    assert response.json()["data"]["config"] is None
