"""
Tiered Logging Configuration for LlamB

Provides a flexible logging system with 5 levels:
- TRACE (5): Ultra-verbose debugging (raw SSE lines, every parser pass)
- DEBUG (10): Detailed debugging (request URLs, block extraction)
- INFO (20): Standard operational messages (requests started/completed)
- WARN (30): Warnings (skipped SSE lines, fallbacks, listener errors)
- ERROR (40): Errors (HTTP failures, timeouts)

Environment Variables:
- LOG_LEVEL: Global log level (TRACE, DEBUG, INFO, WARN, ERROR) [default: INFO]
- LOG_LEVEL_PROVIDERS: Override for provider adapters (OpenAI, Anthropic, ...)
- LOG_LEVEL_PARSER: Override for the stream parser
- LOG_LEVEL_MANAGER: Override for the request orchestrator
- LOG_LEVEL_STORE: Override for the connection store

Example Usage:
    from llamb.config.logging_config import get_logger

    logger = get_logger(__name__)
    logger.trace("🔍 Raw SSE line: %s", line)
    logger.debug("🧩 Extracted thinking block")
    logger.info("✅ Stream complete")
    logger.warning("⚠️ Skipping malformed SSE line")
    logger.error("❌ Request failed: %s", error)
"""

import logging
import os


# Define custom TRACE level (more verbose than DEBUG)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")


def trace(self, message, *args, **kwargs):
    """Log a message with severity 'TRACE'."""
    if self.isEnabledFor(TRACE):
        self._log(TRACE, message, args, **kwargs)


# Add trace method to Logger class
logging.Logger.trace = trace


# Module name mapping: Python module path → Logical area name
MODULE_NAME_MAP = {
    "llamb.llm.base": "llamb.providers",
    "llamb.llm.openai": "llamb.providers",
    "llamb.llm.openai_compatible": "llamb.providers",
    "llamb.llm.anthropic": "llamb.providers",
    "llamb.llm.factory": "llamb.providers",
    "llamb.services.stream_parser": "llamb.parser",
    "llamb.services.llm_manager": "llamb.manager",
    "llamb.services.connection_store": "llamb.store",
}

AREA_OVERRIDES = ["PROVIDERS", "PARSER", "MANAGER", "STORE"]


def get_log_level(module_name: str, default: str = "INFO") -> int:
    """
    Get the log level for a module, checking both area-specific and global env vars.

    Priority:
    1. Area-specific env var (LOG_LEVEL_PARSER, LOG_LEVEL_MANAGER, etc.)
    2. Global LOG_LEVEL env var
    3. Default level (INFO)

    Args:
        module_name: Python module name (e.g., "llamb.services.stream_parser")
        default: Default log level if no env vars set

    Returns:
        Numeric log level (5=TRACE, 10=DEBUG, 20=INFO, 30=WARN, 40=ERROR)
    """
    logical_name = MODULE_NAME_MAP.get(module_name)

    if logical_name:
        area = logical_name.split(".")[-1].upper()
        area_level = os.getenv(f"LOG_LEVEL_{area}")
        if area_level:
            return _parse_log_level(area_level)

    global_level = os.getenv("LOG_LEVEL")
    if global_level:
        return _parse_log_level(global_level)

    return _parse_log_level(default)


def _parse_log_level(level_str: str) -> int:
    """
    Parse log level string to numeric value.

    Args:
        level_str: Log level name (TRACE, DEBUG, INFO, WARN, ERROR)

    Returns:
        Numeric log level (INFO for unknown names)
    """
    level_map = {
        "TRACE": TRACE,
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARN": logging.WARNING,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
    }
    return level_map.get(level_str.upper(), logging.INFO)


def configure_logging(default_level: str = "INFO") -> None:
    """
    Configure logging system with tiered levels and per-area control.

    Call once at application startup.

    Args:
        default_level: Default log level if LOG_LEVEL env var not set
    """
    global_level = os.getenv("LOG_LEVEL", default_level)
    numeric_level = _parse_log_level(global_level)

    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.info(f"🚀 Logging system initialized (global level: {global_level})")

    area_overrides = []
    for area in AREA_OVERRIDES:
        override = os.getenv(f"LOG_LEVEL_{area}")
        if override:
            area_overrides.append(f"{area}={override}")

    if area_overrides:
        root_logger.info(f"📋 Area overrides: {', '.join(area_overrides)}")


def get_logger(module_name: str) -> logging.Logger:
    """
    Get a logger for a module with appropriate log level.

    Args:
        module_name: Python module name (use __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(module_name)
    logger.setLevel(get_log_level(module_name))
    return logger
