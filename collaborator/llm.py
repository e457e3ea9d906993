"""Claude chat model builders and response helpers."""

from __future__ import annotations

from typing import Any

from langchain_anthropic import ChatAnthropic

from collaborator.config import ANTHROPIC_API_KEY, FAST_MODEL_NAME, MODEL_NAME


def build_routing_llm() -> ChatAnthropic:
    """Model that makes the routing decision (tools are bound by the oracle)."""
    return ChatAnthropic(
        model=MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.0,  # Deterministic routing
        max_tokens=1024,
    )


def build_fast_llm() -> ChatAnthropic:
    """Cheaper model for summaries."""
    return ChatAnthropic(
        model=FAST_MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.2,
        max_tokens=1024,
    )


def content_text(content: Any) -> str:
    """Flatten message content (a string or a list of content blocks) to text."""
    if isinstance(content, str):
        return content.strip()
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts).strip()
