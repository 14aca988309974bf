"""Agent selection policy: tier order, activity filtering and fallback behaviour."""

from types import SimpleNamespace

import pytest

from vox.schemas.settings import ConversationAISettings, GlobalSettings
from vox.services.agent_selection import (
    FEATURES,
    SelectionTier,
    describe_selection,
    resolve_active_agent,
    select_agent_for_feature,
    selection_tier,
)

ACTIVE = ["oldest", "middle", "newest"]


def conversation(**agents) -> ConversationAISettings:
    default = agents.pop("default", None)
    return ConversationAISettings.model_validate({"agents": agents, "defaultAgent": default})


@pytest.mark.parametrize("feature", FEATURES)
def test_conversation_override_wins(feature):
    global_settings = GlobalSettings(default_agent_id="middle", **{f"{feature}_agent_id": "newest"})
    conv = conversation(**{feature: "oldest"})

    assert select_agent_for_feature(feature, global_settings, conv, ACTIVE) == "oldest"
    assert selection_tier(feature, global_settings, conv, ACTIVE) is SelectionTier.CONVERSATION


def test_conversation_default_used_when_feature_not_overridden():
    conv = conversation(query="newest", default="middle")

    assert select_agent_for_feature("suggestions", GlobalSettings(), conv, ACTIVE) == "middle"


def test_inactive_conversation_override_falls_through_to_global():
    global_settings = GlobalSettings(query_agent_id="newest")
    conv = conversation(query="deleted-agent", default="also-gone")

    assert select_agent_for_feature("query", global_settings, conv, ACTIVE) == "newest"
    assert selection_tier("query", global_settings, conv, ACTIVE) is SelectionTier.GLOBAL


def test_global_feature_agent_preferred_over_global_default():
    global_settings = GlobalSettings(default_agent_id="oldest", autopilot_agent_id="newest")

    assert select_agent_for_feature("autopilot", global_settings, None, ACTIVE) == "newest"
    assert select_agent_for_feature("response", global_settings, None, ACTIVE) == "oldest"


def test_inactive_global_default_falls_back_to_first_active():
    global_settings = GlobalSettings(default_agent_id="deactivated")

    assert select_agent_for_feature("query", global_settings, None, ACTIVE) == "oldest"
    assert selection_tier("query", global_settings, None, ACTIVE) is SelectionTier.FALLBACK


def test_require_default_skips_fallback():
    assert select_agent_for_feature("query", GlobalSettings(), None, ACTIVE, require_default=True) is None
    assert (
        select_agent_for_feature(
            "query", GlobalSettings(default_agent_id="middle"), None, ACTIVE, require_default=True
        )
        == "middle"
    )


def test_no_active_agents_yields_none():
    global_settings = GlobalSettings(default_agent_id="oldest")
    conv = conversation(query="oldest")

    assert select_agent_for_feature("query", global_settings, conv, []) is None
    assert selection_tier("query", global_settings, conv, []) is SelectionTier.NONE
    assert "no agent available" in describe_selection("query", global_settings, conv, [])


def test_missing_settings_use_fallback():
    assert select_agent_for_feature("suggestions", None, None, ACTIVE) == "oldest"


def test_unknown_feature_rejected():
    with pytest.raises(ValueError):
        select_agent_for_feature("translate", GlobalSettings(), None, ACTIVE)


def test_describe_selection_names_tier():
    message = describe_selection("query", GlobalSettings(default_agent_id="middle"), None, ACTIVE)

    assert message == "query: agent middle from global settings"


def test_resolve_active_agent():
    agents = [SimpleNamespace(id="a"), SimpleNamespace(id="b")]

    assert resolve_active_agent(agents, "b").id == "b"
    assert resolve_active_agent(agents, "missing").id == "a"
    assert resolve_active_agent(agents).id == "a"
    assert resolve_active_agent([], "a") is None
