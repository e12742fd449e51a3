"""
LlamB Core

Provider abstraction and streaming-response parsing for the LlamB browser assistant.
Sends prompts plus page context to pluggable LLM backends and turns their streamed
output into visible text plus thinking/reasoning side-channel blocks.
"""

__version__ = "1.0.0"
