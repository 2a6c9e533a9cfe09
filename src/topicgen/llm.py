"""Generative text client and structured-output parsing.

Two backends:
1. Anthropic Messages API (default -- uses ANTHROPIC_API_KEY)
2. Subprocess ``claude -p`` (when TOPICGEN_USE_CLI=1)

Every call carries a timeout; expiry surfaces as :class:`LLMError`.
"""

from __future__ import annotations

import json
import logging
import os
import re
import subprocess
from dataclasses import dataclass
from typing import Any, Protocol

import anthropic

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Base error for LLM calls."""


class TextGenerator(Protocol):
    """Anything that turns instructions plus a prompt into text."""

    def complete(self, system_prompt: str, user_prompt: str, *, label: str = "") -> str: ...


# ---------------------------------------------------------------------------
# Model name mapping
# ---------------------------------------------------------------------------

_MODEL_MAP: dict[str, str] = {
    "sonnet": "claude-sonnet-4-5",
    "haiku": "claude-haiku-4-5",
    "opus": "claude-opus-4-1",
}

_DEFAULT_MODEL = "claude-sonnet-4-5"


def _resolve_model(model: str | None) -> str:
    """Resolve a short model name to an API model ID."""
    if model is None:
        return _DEFAULT_MODEL
    return _MODEL_MAP.get(model, model)


# ---------------------------------------------------------------------------
# Internal: Anthropic API
# ---------------------------------------------------------------------------


def _call_anthropic_api(
    system_prompt: str,
    user_prompt: str,
    *,
    model: str | None = None,
    timeout: int = 120,
    max_tokens: int = 4096,
    label: str = "generation",
) -> str:
    api_key = os.environ.get("ANTHROPIC_API_KEY", "").strip()
    if not api_key:
        raise LLMError("ANTHROPIC_API_KEY not set")

    client = anthropic.Anthropic(api_key=api_key, timeout=timeout)
    resolved_model = _resolve_model(model)

    logger.debug("Calling Anthropic API model=%s (%s)", resolved_model, label)

    kwargs: dict[str, Any] = {
        "model": resolved_model,
        "max_tokens": max_tokens,
        "messages": [{"role": "user", "content": user_prompt}],
    }
    if system_prompt.strip():
        kwargs["system"] = system_prompt

    response = client.messages.create(**kwargs)

    text_parts = [block.text for block in response.content if block.type == "text"]
    result = "".join(text_parts).strip()
    if not result:
        raise LLMError(f"Anthropic API returned empty response (label={label})")
    return result


# ---------------------------------------------------------------------------
# Internal: subprocess
# ---------------------------------------------------------------------------


def _call_subprocess(
    system_prompt: str,
    user_prompt: str,
    *,
    model: str | None = None,
    timeout: int = 120,
    label: str = "generation",
) -> str:
    """Call Claude via ``claude -p``."""
    cmd = ["claude", "-p"]
    if model:
        cmd.extend(["--model", model])

    full_prompt = f"{system_prompt}\n\n{user_prompt}"

    # Drop CLAUDECODE so the child does not think it is nested
    env = {k: v for k, v in os.environ.items() if k != "CLAUDECODE"}

    logger.debug("Calling Claude CLI subprocess (%s)", label)

    try:
        result = subprocess.run(
            cmd,
            input=full_prompt,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
        )
    except FileNotFoundError as exc:
        raise LLMError(f"Claude CLI not found on PATH (label={label})") from exc
    except subprocess.TimeoutExpired as exc:
        raise LLMError(f"Claude CLI timed out after {timeout}s (label={label})") from exc

    if result.returncode != 0:
        raise LLMError(
            f"Claude CLI failed (exit {result.returncode}, label={label}): {result.stderr[:500]}"
        )

    return result.stdout.strip()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def call_claude(
    system_prompt: str,
    user_prompt: str,
    *,
    model: str | None = None,
    timeout: int = 120,
    max_tokens: int = 4096,
    label: str = "generation",
) -> str:
    """Call Claude and return the response text.

    Args:
        system_prompt: System instructions.
        user_prompt: User/content prompt.
        model: Optional model override (e.g. "sonnet", "haiku").
        timeout: Deadline in seconds for the whole call.
        max_tokens: Response token cap (API backend only).
        label: Label for logging.

    Returns:
        The response text (stripped).

    Raises:
        LLMError: On any failure, including timeouts.
    """
    if os.environ.get("TOPICGEN_USE_CLI", "").strip() == "1":
        return _call_subprocess(
            system_prompt, user_prompt, model=model, timeout=timeout, label=label
        )

    try:
        return _call_anthropic_api(
            system_prompt,
            user_prompt,
            model=model,
            timeout=timeout,
            max_tokens=max_tokens,
            label=label,
        )
    except LLMError:
        raise
    except anthropic.APITimeoutError as exc:
        raise LLMError(f"Anthropic API timed out after {timeout}s (label={label})") from exc
    except Exception as exc:
        raise LLMError(f"Anthropic API failed (label={label}): {exc}") from exc


class ClaudeGenerator:
    """:class:`TextGenerator` backed by :func:`call_claude`."""

    def __init__(
        self,
        model: str | None = None,
        timeout: int = 120,
        max_tokens: int = 4096,
    ) -> None:
        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens

    def complete(self, system_prompt: str, user_prompt: str, *, label: str = "") -> str:
        return call_claude(
            system_prompt,
            user_prompt,
            model=self.model,
            timeout=self.timeout,
            max_tokens=self.max_tokens,
            label=label or "generation",
        )


# ---------------------------------------------------------------------------
# JSON output helpers
# ---------------------------------------------------------------------------

_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)


def strip_json_fences(text: str) -> str:
    """Strip markdown code fences and surrounding chatter from JSON output."""
    text = text.strip()
    match = _JSON_FENCE_RE.search(text)
    if match:
        return match.group(1).strip()

    # Earliest opening delimiter decides whether we look for an object or array
    candidates: list[tuple[int, str]] = []
    for start_char, end_char in (("{", "}"), ("[", "]")):
        pos = text.find(start_char)
        if pos != -1:
            candidates.append((pos, end_char))
    candidates.sort()

    for start, end_char in candidates:
        end = text.rfind(end_char)
        if end > start:
            return text[start : end + 1]

    return text


@dataclass(frozen=True)
class ParsedOk:
    data: Any


@dataclass(frozen=True)
class ParseError:
    raw_text: str
    reason: str


ParseResult = ParsedOk | ParseError


def parse_json_response(text: str, *, expect: type = dict) -> ParseResult:
    """Parse model output into JSON, tolerating fences.

    Returns :class:`ParseError` instead of raising so callers decide how a
    malformed response maps onto their own error type.
    """
    cleaned = strip_json_fences(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        return ParseError(raw_text=text, reason=f"invalid JSON: {exc}")
    if not isinstance(data, expect):
        return ParseError(
            raw_text=text,
            reason=f"expected {expect.__name__}, got {type(data).__name__}",
        )
    return ParsedOk(data=data)
