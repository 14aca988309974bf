"""
Autopilot configuration manager.

Persists autopilot settings for a conversation (or the user's global fallback)
and keeps the denormalized autopilot state in step:

- conversation_meta_data.data.ai_settings.autopilot.enabled  (same transaction)
- autopilot_conversation_tracking                             (retried, best effort)
- autopilot_analytics daily row                               (best effort)

Only the config write itself can fail a request.

It also applies the reply rules stored on a config (rate caps, operating hours,
keywords), counts sent replies against those caps and lists configured
conversations for the dashboard.
"""

import asyncio
import logging
from datetime import date, datetime, timezone, tzinfo
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import case, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vox.config import get_settings
from vox.db.models import (
    AIAgent,
    AutopilotAnalytics,
    AutopilotConfig,
    AutopilotConversationTracking,
)
from vox.errors import NotFoundError, PersistenceError
from vox.schemas.autopilot import (
    DEFAULT_FALLBACK_MESSAGE,
    DEFAULT_MESSAGE_TYPE,
    VALID_MESSAGE_TYPES,
    AutopilotConfigRead,
    AutopilotConfigResult,
    AutopilotConfigSave,
    AutopilotConversation,
    AutopilotConversationList,
    AutopilotConversationStats,
    ReplyDecision,
    TrackingUpsert,
    default_operating_hours,
)
from vox.services.agent_selection import resolve_active_agent
from vox.services.settings_store import (
    deep_merge,
    get_conversation_meta,
    get_global_settings,
    list_active_agents,
)

logger = logging.getLogger(__name__)
settings = get_settings()

CONFIG_VERSION = "1.0"

# Request fields copied onto an existing row only when the caller sent them
_PARTIAL_FIELDS = (
    "location_id",
    "is_enabled",
    "reply_delay_minutes",
    "max_replies_per_conversation",
    "max_replies_per_day",
    "ai_max_tokens",
    "fallback_message",
    "custom_prompt",
    "cancel_on_user_reply",
    "require_human_keywords",
    "exclude_keywords",
    "prefer_conversation_type",
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _today() -> date:
    return _now().date()


def coerce_message_type(value: str | None) -> str:
    """Known message types pass through; anything else becomes SMS."""
    if value in VALID_MESSAGE_TYPES:
        return value
    if value is not None:
        logger.warning("Unknown autopilot message type %r, using %s", value, DEFAULT_MESSAGE_TYPE)
    return DEFAULT_MESSAGE_TYPE


def reset_daily_counters(tracking: AutopilotConversationTracking, today: date) -> bool:
    """Zero ``ai_replies_today`` when the last reply was on another day. Returns True if reset."""
    if tracking.last_reply_date == today:
        return False
    tracking.ai_replies_today = 0
    tracking.last_reply_date = today
    return True


# Reasons reported when autopilot must not answer, in the order the rules run
NOT_ENABLED = "Autopilot not enabled"
ALREADY_ANSWERED = "Message already answered"
DAILY_LIMIT_REACHED = "Daily reply limit reached"
CONVERSATION_LIMIT_REACHED = "Conversation reply limit reached"
OUTSIDE_OPERATING_HOURS = "Outside operating hours"
EXCLUDED_KEYWORD = "Message contains exclude keyword"
NEEDS_HUMAN = "Message requires human intervention"


def _clock_minutes(value: Any, default: int) -> int:
    try:
        hours, minutes = str(value).split(":")
        return int(hours) * 60 + int(minutes)
    except ValueError:
        return default


def _zone(name: str | None) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown operating hours timezone %r, using UTC", name)
        return timezone.utc


def within_operating_hours(hours: dict[str, Any] | None, now: datetime) -> bool:
    """
    True when the window is disabled or ``now`` falls inside it.

    ``days`` are ISO weekdays in the window's timezone; 0 is accepted for
    Sunday. A window whose end is before its start runs past midnight.
    """
    if not hours or not hours.get("enabled"):
        return True
    local = now.astimezone(_zone(hours.get("timezone")))
    days = {7 if day == 0 else day for day in hours.get("days") or [1, 2, 3, 4, 5]}
    if local.isoweekday() not in days:
        return False

    start = _clock_minutes(hours.get("start"), 9 * 60)
    end = _clock_minutes(hours.get("end"), 17 * 60)
    current = local.hour * 60 + local.minute
    if start <= end:
        return start <= current < end
    return current >= start or current < end


def _mentions_any(text: str, keywords: list[str] | None) -> bool:
    lowered = text.lower()
    return any(keyword and keyword.lower() in lowered for keyword in keywords or [])


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_utc(value: datetime) -> datetime:
    """SQLite hands back naive timestamps; they are stored as UTC."""
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class AutopilotManager:
    """Reads and writes autopilot configs plus their tracking and analytics rows."""

    # =========================================================================
    # CONFIG
    # =========================================================================

    async def _find_config(
        self, db: AsyncSession, user_id: UUID, conversation_id: str | None
    ) -> AutopilotConfig | None:
        query = select(AutopilotConfig).where(AutopilotConfig.user_id == user_id)
        if conversation_id:
            query = query.where(AutopilotConfig.conversation_id == conversation_id)
        else:
            query = query.where(AutopilotConfig.conversation_id.is_(None))
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def get_config(
        self, db: AsyncSession, user_id: UUID, conversation_id: str | None = None
    ) -> AutopilotConfig | None:
        """The conversation's config if it has one, else the user's global config, else None."""
        if conversation_id:
            config = await self._find_config(db, user_id, conversation_id)
            if config is not None:
                return config
        return await self._find_config(db, user_id, None)

    async def _resolve_ai_settings(
        self, db: AsyncSession, user_id: UUID, override_agent_id: str | None
    ) -> tuple[str | None, str, float]:
        """
        (agent id, model, temperature) for a config write.

        Model and temperature always come from the active agent, never from the
        request. An explicit agent id from the caller only replaces the id.
        """
        model = settings.default_ai_model
        temperature = settings.default_ai_temperature

        global_settings = await get_global_settings(db, user_id)
        agent = resolve_active_agent(await list_active_agents(db, user_id), global_settings.default_agent_id)
        if agent is None:
            logger.info("No active agent for user %s, autopilot uses default AI settings", user_id)
            return override_agent_id, model, temperature

        configuration = agent.configuration or {}
        model = configuration.get("model") or model
        if configuration.get("temperature") is not None:
            temperature = float(configuration["temperature"])
        return override_agent_id or str(agent.id), model, temperature

    def _new_config(self, user_id: UUID, data: AutopilotConfigSave) -> AutopilotConfig:
        return AutopilotConfig(
            user_id=user_id,
            conversation_id=data.conversation_id,
            location_id=data.location_id,
            is_enabled=bool(data.is_enabled),
            reply_delay_minutes=5 if data.reply_delay_minutes is None else data.reply_delay_minutes,
            max_replies_per_conversation=(
                3 if data.max_replies_per_conversation is None else data.max_replies_per_conversation
            ),
            max_replies_per_day=10 if data.max_replies_per_day is None else data.max_replies_per_day,
            operating_hours=(
                data.operating_hours.model_dump() if data.operating_hours else default_operating_hours()
            ),
            ai_max_tokens=data.ai_max_tokens or 500,
            fallback_message=data.fallback_message or DEFAULT_FALLBACK_MESSAGE,
            custom_prompt=data.custom_prompt,
            cancel_on_user_reply=True if data.cancel_on_user_reply is None else data.cancel_on_user_reply,
            require_human_keywords=data.require_human_keywords or [],
            exclude_keywords=data.exclude_keywords or [],
            message_type=coerce_message_type(data.message_type),
            prefer_conversation_type=(
                True if data.prefer_conversation_type is None else data.prefer_conversation_type
            ),
            meta={
                "conversationMetadata": data.conversation_metadata,
                "contactMetadata": data.contact_metadata,
                "setupDate": _now().isoformat(),
                "version": CONFIG_VERSION,
            },
        )

    def _apply_partial(self, config: AutopilotConfig, data: AutopilotConfigSave) -> None:
        sent = data.model_fields_set
        for name in _PARTIAL_FIELDS:
            value = getattr(data, name)
            if name in sent and value is not None:
                setattr(config, name, value)
        if "operating_hours" in sent and data.operating_hours is not None:
            config.operating_hours = data.operating_hours.model_dump()
        if "message_type" in sent:
            config.message_type = coerce_message_type(data.message_type)

        meta_updates: dict[str, Any] = {"updatedAt": _now().isoformat(), "version": CONFIG_VERSION}
        if "conversation_metadata" in sent:
            meta_updates["conversationMetadata"] = data.conversation_metadata
        if "contact_metadata" in sent:
            meta_updates["contactMetadata"] = data.contact_metadata
        config.meta = {**(config.meta or {}), **meta_updates}

    async def _mirror_enabled(
        self, db: AsyncSession, user_id: UUID, conversation_id: str, enabled: bool
    ) -> None:
        """Copy the enabled flag into the conversation's ai_settings. Not committed."""
        meta = await get_conversation_meta(db, user_id, conversation_id)
        if meta is None:
            return
        meta.data = deep_merge(meta.data or {}, {"ai_settings": {"autopilot": {"enabled": enabled}}})

    async def _write_config(
        self,
        db: AsyncSession,
        user_id: UUID,
        data: AutopilotConfigSave,
        ai_settings: tuple[str | None, str, float],
    ) -> AutopilotConfig:
        config = await self._find_config(db, user_id, data.conversation_id)
        if config is None:
            config = self._new_config(user_id, data)
            db.add(config)
        else:
            self._apply_partial(config, data)
        config.ai_agent_id, config.ai_model, config.ai_temperature = ai_settings

        if data.conversation_id:
            await self._mirror_enabled(db, user_id, data.conversation_id, config.is_enabled)
        await db.commit()
        return config

    async def save_config(
        self, db: AsyncSession, user_id: UUID, data: AutopilotConfigSave
    ) -> AutopilotConfigResult:
        """
        Upsert the config keyed by (user_id, conversation_id).

        A new row takes defaults for omitted fields; an existing row only
        changes the fields present in the request. Repeated saves with the same
        key update one row, and the last write wins. When a concurrent save
        inserts the row first, this save is applied to that row as an update.

        Raises PersistenceError if the config itself cannot be written.
        """
        ai_settings = await self._resolve_ai_settings(db, user_id, data.ai_agent_id)

        try:
            try:
                config = await self._write_config(db, user_id, data, ai_settings)
            except IntegrityError:
                await db.rollback()
                logger.info(
                    "Autopilot config for conversation %s was created concurrently, updating it",
                    data.conversation_id,
                )
                config = await self._write_config(db, user_id, data, ai_settings)
            await db.refresh(config)
        except SQLAlchemyError as e:
            await db.rollback()
            raise PersistenceError("Failed to save autopilot config", detail=str(e)) from e

        saved = AutopilotConfigRead.model_validate(config)
        logger.info(
            "Saved autopilot config %s (conversation=%s, enabled=%s, agent=%s, model=%s)",
            saved.id, saved.conversation_id, saved.is_enabled, saved.ai_agent_id, saved.ai_model,
        )

        tracking_synced = None
        if saved.conversation_id and saved.location_id:
            tracking_synced = await self.sync_tracking(
                db, user_id, saved.conversation_id, saved.location_id, saved.is_enabled
            )

        analytics_initialized = False
        if saved.is_enabled and saved.conversation_id:
            analytics_initialized = await self.ensure_daily_analytics(db, user_id, saved.location_id)

        return AutopilotConfigResult(
            config=saved,
            tracking_synced=tracking_synced,
            analytics_initialized=analytics_initialized,
        )

    async def delete_config(
        self, db: AsyncSession, user_id: UUID, conversation_id: str | None = None
    ) -> bool:
        """
        Delete the conversation's config (or the global one) and mark autopilot
        disabled in metadata and tracking. Returns False when nothing was stored.
        """
        try:
            config = await self._find_config(db, user_id, conversation_id)
            if config is None:
                return False
            await db.delete(config)
            if conversation_id:
                await self._mirror_enabled(db, user_id, conversation_id, False)
                await db.execute(
                    update(AutopilotConversationTracking)
                    .where(
                        AutopilotConversationTracking.user_id == user_id,
                        AutopilotConversationTracking.conversation_id == conversation_id,
                    )
                    .values(autopilot_enabled=False, updated_at=_now())
                )
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise PersistenceError("Failed to delete autopilot config", detail=str(e)) from e

        logger.info("Deleted autopilot config for user %s (conversation=%s)", user_id, conversation_id)
        return True

    # =========================================================================
    # SECONDARY SYNCS (soft failures)
    # =========================================================================

    async def _sync_tracking_once(
        self, db: AsyncSession, user_id: UUID, conversation_id: str, location_id: str, enabled: bool
    ) -> None:
        result = await db.execute(
            select(AutopilotConversationTracking).where(
                AutopilotConversationTracking.user_id == user_id,
                AutopilotConversationTracking.conversation_id == conversation_id,
            )
        )
        tracking = result.scalar_one_or_none()
        if tracking is None:
            db.add(
                AutopilotConversationTracking(
                    user_id=user_id,
                    conversation_id=conversation_id,
                    location_id=location_id,
                    autopilot_enabled=enabled,
                    conversation_status="open",
                    ai_replies_count=0,
                    ai_replies_today=0,
                    last_reply_date=_today(),
                    data={"initialized_at": _now().isoformat(), "version": CONFIG_VERSION},
                )
            )
        else:
            tracking.autopilot_enabled = enabled
            tracking.data = {**(tracking.data or {}), "last_sync": _now().isoformat()}
        await db.commit()

    async def sync_tracking(
        self, db: AsyncSession, user_id: UUID, conversation_id: str, location_id: str, enabled: bool
    ) -> bool:
        """
        Bring the tracking row in line with the config.

        Retries with linear backoff (base x attempt). Each attempt is its own
        transaction. Returns False after the last failed attempt; never raises
        for database errors.
        """
        attempts = settings.tracking_sync_attempts
        for attempt in range(1, attempts + 1):
            try:
                await self._sync_tracking_once(db, user_id, conversation_id, location_id, enabled)
                return True
            except SQLAlchemyError:
                await db.rollback()
                if attempt == attempts:
                    logger.exception(
                        "Tracking sync failed after %d attempts for conversation %s",
                        attempts, conversation_id,
                    )
                    return False
                delay = settings.tracking_sync_backoff_seconds * attempt
                logger.warning(
                    "Tracking sync failed (attempt %d/%d), retrying in %.1fs",
                    attempt, attempts, delay,
                )
                await asyncio.sleep(delay)
        return False

    async def ensure_daily_analytics(
        self, db: AsyncSession, user_id: UUID, location_id: str | None
    ) -> bool:
        """Make sure today's analytics row exists. Idempotent; False only on a database error."""
        today = _today()
        query = select(AutopilotAnalytics.id).where(
            AutopilotAnalytics.user_id == user_id,
            AutopilotAnalytics.date == today,
        )
        if location_id:
            query = query.where(AutopilotAnalytics.location_id == location_id)
        else:
            query = query.where(AutopilotAnalytics.location_id.is_(None))

        try:
            if (await db.execute(query.limit(1))).first() is not None:
                return True
            db.add(
                AutopilotAnalytics(
                    user_id=user_id,
                    date=today,
                    location_id=location_id,
                    metrics={"initialized_at": _now().isoformat()},
                )
            )
            await db.commit()
            logger.info("Initialized autopilot analytics for user %s on %s", user_id, today)
            return True
        except IntegrityError:
            # Created concurrently; the unique constraint kept it to one row
            await db.rollback()
            return True
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("Failed to initialize autopilot analytics for user %s", user_id)
            return False

    # =========================================================================
    # TRACKING ROWS
    # =========================================================================

    async def list_tracking(
        self, db: AsyncSession, user_id: UUID, conversation_id: str | None = None
    ) -> list[AutopilotConversationTracking]:
        query = select(AutopilotConversationTracking).where(AutopilotConversationTracking.user_id == user_id)
        if conversation_id:
            query = query.where(AutopilotConversationTracking.conversation_id == conversation_id)
        result = await db.execute(query.order_by(AutopilotConversationTracking.created_at.desc()))
        return list(result.scalars())

    async def upsert_tracking(
        self, db: AsyncSession, user_id: UUID, data: TrackingUpsert
    ) -> AutopilotConversationTracking:
        """Create or update a tracking row's contact details. Reply counters are preserved."""
        result = await db.execute(
            select(AutopilotConversationTracking).where(
                AutopilotConversationTracking.user_id == user_id,
                AutopilotConversationTracking.conversation_id == data.conversation_id,
            )
        )
        tracking = result.scalar_one_or_none()
        today = _today()

        if tracking is None:
            tracking = AutopilotConversationTracking(
                user_id=user_id,
                conversation_id=data.conversation_id,
                location_id=data.location_id,
                contact_name=data.contact_name or "Unknown Contact",
                contact_phone=data.contact_phone or "",
                contact_email=data.contact_email or "",
                conversation_status=data.conversation_status or "open",
                conversation_type=data.conversation_type or "SMS",
                autopilot_enabled=data.autopilot_enabled is not False,
                ai_replies_count=0,
                ai_replies_today=0,
                last_reply_date=today,
                data={
                    "setupDate": data.last_seen or _now().isoformat(),
                    "initialContactName": data.contact_name,
                    "conversationName": data.conversation_name or f"Conversation {data.conversation_id[:8]}",
                    "source": "manual_toggle",
                },
            )
            db.add(tracking)
        else:
            tracking.location_id = data.location_id
            for name in ("contact_name", "contact_phone", "contact_email", "conversation_status",
                         "conversation_type", "autopilot_enabled"):
                value = getattr(data, name)
                if value is not None:
                    setattr(tracking, name, value)
            if data.conversation_name:
                tracking.data = {**(tracking.data or {}), "conversationName": data.conversation_name}
            reset_daily_counters(tracking, today)

        await db.commit()
        await db.refresh(tracking)
        return tracking


    # =========================================================================
    # REPLY RULES
    # =========================================================================

    async def _find_tracking(
        self, db: AsyncSession, user_id: UUID, conversation_id: str
    ) -> AutopilotConversationTracking | None:
        result = await db.execute(
            select(AutopilotConversationTracking)
            .where(
                AutopilotConversationTracking.user_id == user_id,
                AutopilotConversationTracking.conversation_id == conversation_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _bump_analytics(
        self, db: AsyncSession, user_id: UUID, location_id: str | None, column: str
    ) -> None:
        """Add one to a counter on today's analytics row. Failures are logged, never raised."""
        if not await self.ensure_daily_analytics(db, user_id, location_id):
            return
        counter = getattr(AutopilotAnalytics, column)
        statement = update(AutopilotAnalytics).where(
            AutopilotAnalytics.user_id == user_id,
            AutopilotAnalytics.date == _today(),
        )
        if location_id:
            statement = statement.where(AutopilotAnalytics.location_id == location_id)
        else:
            statement = statement.where(AutopilotAnalytics.location_id.is_(None))
        try:
            await db.execute(
                statement.values({column: counter + 1}).execution_options(synchronize_session=False)
            )
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("Failed to update autopilot analytics %s for user %s", column, user_id)

    async def check_reply_eligibility(
        self,
        db: AsyncSession,
        user_id: UUID,
        conversation_id: str,
        message: str = "",
        message_id: str | None = None,
        now: datetime | None = None,
    ) -> ReplyDecision:
        """
        Decide whether autopilot may answer ``message`` in the conversation now.

        Rules run in order and the first failing one is reported: the config
        (conversation, else global) must be enabled, the message must not have
        been answered already, the daily and per-conversation caps must have
        room, ``now`` must be inside operating hours, and the message must not
        contain an exclude or require-human keyword. A cap refusal counts as a
        cancelled response in today's analytics.
        """
        now = now or _now()
        config = await self.get_config(db, user_id, conversation_id)
        if config is None or not config.is_enabled:
            return ReplyDecision(eligible=False, reason=NOT_ENABLED)

        def refuse(reason: str) -> ReplyDecision:
            logger.info("Autopilot will not reply in conversation %s: %s", conversation_id, reason)
            return ReplyDecision(eligible=False, reason=reason, config_id=config.id)

        tracking = await self._find_tracking(db, user_id, conversation_id)
        if message_id and tracking is not None and tracking.last_seen_message_id == message_id:
            return refuse(ALREADY_ANSWERED)

        replies_today = 0
        replies_total = 0
        if tracking is not None:
            replies_total = tracking.ai_replies_count
            if tracking.last_reply_date == now.date():
                replies_today = tracking.ai_replies_today

        for reached, reason in (
            (replies_today >= config.max_replies_per_day, DAILY_LIMIT_REACHED),
            (replies_total >= config.max_replies_per_conversation, CONVERSATION_LIMIT_REACHED),
        ):
            if reached:
                await self._bump_analytics(db, user_id, config.location_id, "total_responses_cancelled")
                return refuse(reason)

        if not within_operating_hours(config.operating_hours, now):
            return refuse(OUTSIDE_OPERATING_HOURS)
        if _mentions_any(message, config.exclude_keywords):
            return refuse(EXCLUDED_KEYWORD)
        if _mentions_any(message, config.require_human_keywords):
            return refuse(NEEDS_HUMAN)

        return ReplyDecision(
            eligible=True,
            config_id=config.id,
            reply_delay_minutes=config.reply_delay_minutes,
            message_type=config.message_type,
            fallback_message=config.fallback_message,
        )

    async def record_reply(
        self,
        db: AsyncSession,
        user_id: UUID,
        conversation_id: str,
        message_id: str | None = None,
        now: datetime | None = None,
    ) -> AutopilotConversationTracking:
        """
        Count one sent AI reply against the conversation's caps.

        The counters are incremented in a single UPDATE so concurrent replies
        are all counted; ``ai_replies_today`` restarts at 1 on a new day. With
        ``message_id`` the call is idempotent per trigger message. A missing
        tracking row is created from the config's location.

        Raises NotFoundError when there is neither a tracking row nor a config
        with a location to create one from.
        """
        now = now or _now()
        today = now.date()
        tracking_table = AutopilotConversationTracking
        conditions = [
            tracking_table.user_id == user_id,
            tracking_table.conversation_id == conversation_id,
        ]
        values: dict[str, Any] = {
            "ai_replies_count": tracking_table.ai_replies_count + 1,
            "ai_replies_today": case(
                (tracking_table.last_reply_date == today, tracking_table.ai_replies_today + 1),
                else_=1,
            ),
            "last_reply_date": today,
            "last_ai_message_at": now,
            "updated_at": now,
        }
        if message_id:
            conditions.append(
                or_(tracking_table.last_seen_message_id.is_(None), tracking_table.last_seen_message_id != message_id)
            )
            values["last_seen_message_id"] = message_id

        inserted = False
        try:
            result = await db.execute(
                update(tracking_table)
                .where(*conditions)
                .values(values)
                .execution_options(synchronize_session=False)
            )
            counted = result.rowcount > 0
            if not counted and await self._find_tracking(db, user_id, conversation_id) is None:
                config = await self.get_config(db, user_id, conversation_id)
                if config is None or not config.location_id:
                    raise NotFoundError("Autopilot tracking not found", detail=conversation_id)
                db.add(
                    AutopilotConversationTracking(
                        user_id=user_id,
                        conversation_id=conversation_id,
                        location_id=config.location_id,
                        autopilot_enabled=config.is_enabled,
                        conversation_status="open",
                        ai_replies_count=1,
                        ai_replies_today=1,
                        last_reply_date=today,
                        last_ai_message_at=now,
                        last_seen_message_id=message_id,
                        data={"created_from_reply": True, "version": CONFIG_VERSION},
                    )
                )
                counted = inserted = True
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            if not inserted:
                raise PersistenceError("Failed to record autopilot reply", detail=str(e)) from e
            # Another reply created the row first; count this one against it
            return await self.record_reply(db, user_id, conversation_id, message_id, now)
        except SQLAlchemyError as e:
            await db.rollback()
            raise PersistenceError("Failed to record autopilot reply", detail=str(e)) from e

        tracking = await self._find_tracking(db, user_id, conversation_id)
        if counted:
            logger.info(
                "Recorded autopilot reply in conversation %s (%d today, %d total)",
                conversation_id, tracking.ai_replies_today, tracking.ai_replies_count,
            )
            await self._bump_analytics(db, user_id, tracking.location_id, "total_ai_responses_sent")
        else:
            logger.info("Reply to message %s in conversation %s was already recorded", message_id, conversation_id)
        return tracking

    # =========================================================================
    # CONVERSATION OVERVIEW
    # =========================================================================

    async def _agent_names(self, db: AsyncSession, user_id: UUID, agent_ids: set[str]) -> dict[str, str]:
        wanted = set()
        for agent_id in agent_ids:
            try:
                wanted.add(UUID(agent_id))
            except ValueError:
                continue
        if not wanted:
            return {}
        result = await db.execute(
            select(AIAgent.id, AIAgent.name).where(AIAgent.user_id == user_id, AIAgent.id.in_(wanted))
        )
        return {str(agent_id): name for agent_id, name in result.all()}

    async def list_conversations(self, db: AsyncSession, user_id: UUID) -> AutopilotConversationList:
        """
        Every conversation with its own autopilot config, joined with its
        tracking row. Most recent activity first.
        """
        configs = list(
            await db.scalars(
                select(AutopilotConfig).where(
                    AutopilotConfig.user_id == user_id,
                    AutopilotConfig.conversation_id.is_not(None),
                )
            )
        )
        tracking_by_conversation = {t.conversation_id: t for t in await self.list_tracking(db, user_id)}
        agent_names = await self._agent_names(
            db, user_id, {config.ai_agent_id for config in configs if config.ai_agent_id}
        )
        today = _today()

        conversations = []
        for config in configs:
            conversation_id = config.conversation_id
            tracking = tracking_by_conversation.get(conversation_id)
            meta = _as_dict(config.meta)
            contact_info = _as_dict(meta.get("contactInfo"))
            contact_meta = _as_dict(meta.get("contactMetadata"))
            conversation_meta = _as_dict(meta.get("conversationMetadata"))
            short_name = f"Conversation {conversation_id[:8]}"

            contact_name = (
                contact_info.get("name")
                or contact_meta.get("fullName")
                or contact_meta.get("firstName")
                or (tracking.contact_name if tracking else None)
                or short_name
            )
            named_contact = contact_name != "Unknown Contact" and not contact_name.startswith("Conversation ")
            conversation_name = (
                (_as_dict(tracking.data).get("conversationName") if tracking else None)
                or conversation_meta.get("conversationName")
                or (f"{contact_name} Conversation" if named_contact else short_name)
            )

            if config.ai_agent_id:
                agent_name = agent_names.get(config.ai_agent_id) or f"Agent {config.ai_agent_id[:8]}"
            else:
                agent_name = "Agent Default"

            responses_today = 0
            if tracking is not None and tracking.last_reply_date == today:
                responses_today = tracking.ai_replies_today

            conversations.append(
                AutopilotConversation(
                    conversation_id=conversation_id,
                    location_id=config.location_id,
                    is_active=config.is_enabled,
                    responses_today=responses_today,
                    total_responses=tracking.ai_replies_count if tracking else 0,
                    agent_name=agent_name,
                    contact_name=contact_name,
                    contact_phone=(
                        contact_info.get("phone") or contact_meta.get("phone")
                        or (tracking.contact_phone if tracking else None) or ""
                    ),
                    contact_email=(
                        contact_info.get("email") or contact_meta.get("email")
                        or (tracking.contact_email if tracking else None) or ""
                    ),
                    conversation_name=conversation_name,
                    conversation_status=(
                        (tracking.conversation_status if tracking else None)
                        or conversation_meta.get("status")
                        or "open"
                    ),
                    last_activity=(
                        (tracking.last_human_message_at or tracking.last_ai_message_at if tracking else None)
                        or config.updated_at
                    ),
                    created_at=config.created_at,
                    updated_at=config.updated_at,
                    settings={
                        "reply_delay_minutes": config.reply_delay_minutes,
                        "max_replies_per_conversation": config.max_replies_per_conversation,
                        "max_replies_per_day": config.max_replies_per_day,
                        "message_type": config.message_type,
                        "agent_id": config.ai_agent_id,
                    },
                )
            )

        conversations.sort(key=lambda c: _as_utc(c.last_activity), reverse=True)
        active = sum(1 for c in conversations if c.is_active)
        return AutopilotConversationList(
            conversations=conversations,
            stats=AutopilotConversationStats(
                total=len(conversations),
                active=active,
                inactive=len(conversations) - active,
                responses_today=sum(c.responses_today for c in conversations),
            ),
        )


# Singleton instance
autopilot_manager = AutopilotManager()
