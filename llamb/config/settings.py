"""
LLM Settings Module

Global defaults for requests sent through the LLMManager.
Loaded from environment variables with sensible fallback defaults.

Architecture:
- Global defaults (this module) → MessageOptions left unset by the caller → Provider request
"""

import os
from dataclasses import dataclass, replace


@dataclass
class LLMSettings:
    """
    Defaults applied to every request unless the caller overrides them.
    """

    # Stream responses when the connection supports it
    streaming_enabled: bool = True

    # Whether thinking/reasoning blocks render (format_block_for_display default)
    show_thinking_blocks: bool = True

    # Default completion budget (tokens), clamped per connection context window
    max_tokens: int = 4000

    # Default sampling temperature
    temperature: float = 0.7

    # Timeout used for connections created without one (seconds)
    default_timeout: float = 30.0

    # Splice page context into the prompt by default
    include_context: bool = True

    def validate(self) -> None:
        """Validate configuration values."""
        if self.max_tokens < 1:
            raise ValueError("max_tokens must be at least 1")
        if not 0.0 <= self.temperature <= 2.0:
            raise ValueError("temperature must be between 0.0 and 2.0")
        if self.default_timeout <= 0:
            raise ValueError("default_timeout must be positive")


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ['true', '1', 'yes']


def load_llm_settings() -> LLMSettings:
    """
    Load LLM settings from environment variables.

    Environment Variables:
        LLAMB_STREAMING_ENABLED: Stream responses (default: true)
        LLAMB_SHOW_THINKING_BLOCKS: Render thinking/reasoning blocks (default: true)
        LLAMB_MAX_TOKENS: Default max tokens (default: 4000)
        LLAMB_TEMPERATURE: Default temperature (default: 0.7)
        LLAMB_DEFAULT_TIMEOUT: Default request timeout in seconds (default: 30)
        LLAMB_INCLUDE_CONTEXT: Include page context by default (default: true)

    Returns:
        LLMSettings with values loaded from environment or defaults
    """
    settings = LLMSettings(
        streaming_enabled=_env_flag('LLAMB_STREAMING_ENABLED', 'true'),
        show_thinking_blocks=_env_flag('LLAMB_SHOW_THINKING_BLOCKS', 'true'),
        max_tokens=int(os.getenv('LLAMB_MAX_TOKENS', '4000')),
        temperature=float(os.getenv('LLAMB_TEMPERATURE', '0.7')),
        default_timeout=float(os.getenv('LLAMB_DEFAULT_TIMEOUT', '30')),
        include_context=_env_flag('LLAMB_INCLUDE_CONTEXT', 'true'),
    )

    settings.validate()
    return settings


# Cached environment defaults
_llm_settings: LLMSettings | None = None

# Runtime overrides (in-memory, reset on restart)
_runtime_overrides: LLMSettings | None = None


def get_llm_settings() -> LLMSettings:
    """
    Get the current LLM settings.

    Priority:
    1. Runtime overrides (set via update_llm_settings)
    2. Environment variables (loaded on first call)
    """
    global _llm_settings

    if _runtime_overrides is not None:
        return _runtime_overrides

    if _llm_settings is None:
        _llm_settings = load_llm_settings()
    return _llm_settings


def update_llm_settings(**overrides) -> LLMSettings:
    """
    Update LLM settings at runtime.

    Args:
        **overrides: LLMSettings field values to change

    Returns:
        Updated LLMSettings

    Raises:
        ValueError: Unknown field or validation failure
    """
    global _runtime_overrides

    unknown = set(overrides) - set(LLMSettings.__dataclass_fields__)
    if unknown:
        raise ValueError(f"Unknown LLM settings: {sorted(unknown)}")

    new_settings = replace(
        get_llm_settings(),
        **{key: value for key, value in overrides.items() if value is not None},
    )
    new_settings.validate()

    _runtime_overrides = new_settings
    return new_settings


def reset_llm_settings() -> LLMSettings:
    """
    Drop runtime overrides and re-read environment defaults.
    """
    global _llm_settings, _runtime_overrides
    _runtime_overrides = None
    _llm_settings = None
    return get_llm_settings()
