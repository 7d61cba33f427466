from __future__ import annotations

import json
import os
from typing import Any

import httpx


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _clean_text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def provider_error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error = body.get("error")
        nested = error.get("message") if isinstance(error, dict) else error
        for candidate in (nested, body.get("message")):
            if _clean_text(candidate):
                return _clean_text(candidate)
    return _clean_text(response.text) or f"HTTP {response.status_code}"


_JSON_DECODER = json.JSONDecoder()


def extract_json_object(raw_text: str) -> dict[str, Any] | None:
    """Return the first JSON object embedded in a completion.

    Models sometimes wrap the verdict in prose or code fences, so decoding is
    attempted from every opening brace until one yields an object.
    """
    text = (raw_text or "").strip()
    start = text.find("{")
    while start != -1:
        try:
            value, _ = _JSON_DECODER.raw_decode(text, start)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, dict):
            return value
        start = text.find("{", start + 1)
    return None


def _joined_text(content: Any) -> str:
    if isinstance(content, str):
        return content.strip()
    if not isinstance(content, list):
        return ""
    parts = [
        _clean_text(block.get("text"))
        for block in content
        if isinstance(block, dict) and block.get("type", "text") == "text"
    ]
    return "\n".join(part for part in parts if part)


def completion_text(provider_name: str, body: Any) -> str:
    """Assistant text from a provider response body, or "" for any unexpected shape."""
    if not isinstance(body, dict):
        return ""
    if provider_name == "anthropic":
        return _joined_text(body.get("content"))
    choices = body.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message")
    if not isinstance(message, dict):
        return ""
    return _joined_text(message.get("content"))


def provider_candidates() -> list[dict[str, Any]]:
    provider_preference = _env("MEDALERT_SCORER_PROVIDER", "auto").lower()
    candidates: list[dict[str, Any]] = []

    anthropic_api_key = _env("ANTHROPIC_API_KEY")
    if anthropic_api_key:
        candidates.append(
            {
                "provider": "anthropic",
                "base_url": _env("ANTHROPIC_API_BASE_URL", "https://api.anthropic.com/v1").rstrip("/"),
                "api_key": anthropic_api_key,
                "model": _env("ANTHROPIC_MODEL", "claude-3-5-sonnet-latest"),
            }
        )

    openrouter_api_key = _env("OPENROUTER_API_KEY")
    if openrouter_api_key:
        candidates.append(
            {
                "provider": "openrouter",
                "base_url": _env("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1").rstrip("/"),
                "api_key": openrouter_api_key,
                "model": _env("OPENROUTER_MODEL", "openai/gpt-4o-mini"),
            }
        )

    openai_api_key = _env("OPENAI_API_KEY")
    if openai_api_key:
        candidates.append(
            {
                "provider": "openai",
                "base_url": _env("OPENAI_API_BASE_URL", "https://api.openai.com/v1").rstrip("/"),
                "api_key": openai_api_key,
                "model": _env("MEDALERT_SCORER_MODEL", "gpt-4o-mini"),
            }
        )

    if provider_preference in {"", "auto"}:
        return candidates

    aliases = {
        "claude": "anthropic",
        "anthropic": "anthropic",
        "openrouter": "openrouter",
        "openai": "openai",
    }
    canonical = aliases.get(provider_preference)
    if not canonical:
        return candidates
    preferred = [candidate for candidate in candidates if candidate["provider"] == canonical]
    others = [candidate for candidate in candidates if candidate["provider"] != canonical]
    return preferred + others


async def openai_compatible_complete(
    client: httpx.AsyncClient,
    *,
    provider: dict[str, Any],
    system_prompt: str,
    user_prompt: str,
) -> str | None:
    payload = {
        "model": provider["model"],
        "temperature": 0.1,
        "response_format": {"type": "json_object"},
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
    }
    headers: dict[str, str] = {
        "Authorization": f"Bearer {provider['api_key']}",
        "Content-Type": "application/json",
    }
    if provider["provider"] == "openrouter":
        site_url = _env("OPENROUTER_SITE_URL")
        app_name = _env("OPENROUTER_APP_NAME", "MedAlert")
        if site_url:
            headers["HTTP-Referer"] = site_url
        if app_name:
            headers["X-Title"] = app_name
    response = await client.post(f"{provider['base_url']}/chat/completions", headers=headers, json=payload)
    if response.status_code >= 400:
        raise RuntimeError(provider_error_message(response))
    text = completion_text(provider["provider"], response.json())
    return text or None


async def anthropic_complete(
    client: httpx.AsyncClient,
    *,
    provider: dict[str, Any],
    system_prompt: str,
    user_prompt: str,
) -> str | None:
    payload = {
        "model": provider["model"],
        "max_tokens": 700,
        "temperature": 0.1,
        "system": system_prompt,
        "messages": [{"role": "user", "content": user_prompt}],
    }
    headers = {
        "x-api-key": str(provider["api_key"]),
        "anthropic-version": _env("ANTHROPIC_API_VERSION", "2023-06-01"),
        "Content-Type": "application/json",
    }
    response = await client.post(f"{provider['base_url']}/messages", headers=headers, json=payload)
    if response.status_code >= 400:
        raise RuntimeError(provider_error_message(response))
    text = completion_text("anthropic", response.json())
    return text or None
