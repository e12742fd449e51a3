"""
LlamB configuration: logging setup and global LLM defaults.
"""

from llamb.config.logging_config import configure_logging, get_logger
from llamb.config.settings import (
    LLMSettings,
    get_llm_settings,
    load_llm_settings,
    reset_llm_settings,
    update_llm_settings,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "LLMSettings",
    "get_llm_settings",
    "load_llm_settings",
    "reset_llm_settings",
    "update_llm_settings",
]
