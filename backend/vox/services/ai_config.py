"""AI model configuration: supported models, validation and prompt presets."""

from dataclasses import asdict, dataclass
from typing import Any, Literal

from vox.config import get_settings

settings = get_settings()

# Context window per supported model; max_tokens is clamped to it
MODEL_MAX_TOKENS: dict[str, int] = {
    "gpt-4o": 128000,
    "gpt-4o-mini": 128000,
    "gpt-4-turbo-2024-04-09": 128000,
    "gpt-4": 8192,
    "gpt-3.5-turbo": 16385,
}


@dataclass
class AIConfig:
    model: str
    temperature: float
    humanlike_behavior: bool = True
    max_tokens: int = 1000

    def as_payload(self) -> dict[str, Any]:
        """camelCase keys as the inference backend expects them."""
        data = asdict(self)
        return {
            "model": data["model"],
            "temperature": data["temperature"],
            "humanlikeBehavior": data["humanlike_behavior"],
            "maxTokens": data["max_tokens"],
        }


def default_ai_config() -> AIConfig:
    return AIConfig(model=settings.default_ai_model, temperature=settings.default_ai_temperature)


def is_supported_model(model: str | None) -> bool:
    return model in MODEL_MAX_TOKENS


def validate_ai_config(
    model: str | None = None,
    temperature: float | None = None,
    humanlike_behavior: bool | None = None,
    max_tokens: int | None = None,
    *,
    base: AIConfig | None = None,
) -> AIConfig:
    """
    Merge request overrides onto ``base`` (defaults when omitted).

    Unsupported models and temperatures outside [0, 1] are ignored rather than
    rejected; max_tokens is clamped to the chosen model's limit.
    """
    config = AIConfig(**asdict(base)) if base else default_ai_config()

    if model and is_supported_model(model):
        config.model = model
    if temperature is not None and 0 <= temperature <= 1:
        config.temperature = temperature
    if humanlike_behavior is not None:
        config.humanlike_behavior = humanlike_behavior
    if max_tokens is not None and max_tokens > 0:
        config.max_tokens = max_tokens
    config.max_tokens = min(config.max_tokens, MODEL_MAX_TOKENS.get(config.model, config.max_tokens))
    return config


def agent_ai_config(configuration: dict[str, Any] | None) -> AIConfig:
    """An agent's stored configuration merged over the defaults."""
    configuration = configuration or {}
    return validate_ai_config(
        model=configuration.get("model"),
        temperature=configuration.get("temperature"),
        humanlike_behavior=configuration.get("humanlikeBehavior"),
        max_tokens=configuration.get("maxTokens"),
    )


# =============================================================================
# CONVERSATION STARTERS
# =============================================================================

Behavior = Literal["greeting", "question", "professional"]

_STARTERS: dict[str, tuple[str, str]] = {
    "question": (
        "Generate engaging discovery questions to start the conversation",
        "This is a new conversation. Generate engaging opening questions that help "
        "understand the customer's specific needs and situation, show genuine interest "
        "in helping them, and build rapport while gathering important information.",
    ),
    "professional": (
        "Generate professional business introduction messages",
        "This is a new conversation. Generate formal, professional opening messages that "
        "introduce your services clearly, establish credibility, and include clear next steps.",
    ),
    "greeting": (
        "Generate warm, welcoming conversation starters",
        "This is a new conversation. Generate warm, friendly opening messages that make "
        "the customer feel valued and encourage open communication.",
    ),
}

AUTOPILOT_STYLES: dict[str, str] = {
    "question": "AUTOPILOT CONVERSATION STYLE: Focus on engaging discovery questions that help "
    "understand the customer's specific needs and situation. Start with needs assessment.",
    "professional": "AUTOPILOT CONVERSATION STYLE: Use a formal, professional business tone. "
    "Introduce your services clearly and establish credibility from the first message.",
    "greeting": "AUTOPILOT CONVERSATION STYLE: Use a warm, friendly greeting that makes the "
    "customer feel welcome while maintaining business professionalism.",
}


def conversation_starter_prompt(
    behavior: str, *, starters_enabled: bool, is_new: bool, has_minimal_context: bool = False
) -> tuple[str, str]:
    """(query, context) for suggestion requests, shaped by the user's new-conversation behavior."""
    if not is_new and not has_minimal_context:
        return (
            "Generate contextual response suggestions",
            "Generate helpful and relevant suggestions based on the conversation context.",
        )
    if not starters_enabled:
        return (
            "Generate suggestions for this conversation",
            "Provide helpful response suggestions for the conversation.",
        )
    if is_new:
        return _STARTERS.get(behavior, _STARTERS["greeting"])
    return (
        "Generate professional conversation starters and opening messages",
        "This conversation has minimal context. Generate suggestions that build on the "
        "available history, ask thoughtful follow-up questions, and move the conversation forward.",
    )
