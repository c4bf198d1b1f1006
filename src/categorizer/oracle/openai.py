"""
OpenAI-compatible classifier over ``httpx``.

Each word costs two chat completions:

    1. language detection + English translation   temperature 0.1, JSON answer
       {"language": "...", "englishTranslation": "..."}
    2. categorisation of the translation          temperature 0.3, plain text

Prompt templates use ``{languages}`` and ``{categories}`` placeholders,
filled with the reference lists joined by ``", "``. Answers wrapped in a
markdown code fence are unwrapped before parsing.

Any transport, HTTP or parse failure is raised as :class:`OracleError`; the
engine turns it into a failed result for that word only.
"""

from __future__ import annotations

import json
from typing import Any, Sequence

import httpx

from categorizer.core.errors import ConfigError, OracleError
from categorizer.core.logging import get_logger
from categorizer.core.matching import strip_code_fences
from categorizer.oracle.protocol import Classification

log = get_logger(__name__)

LANGUAGE_TEMPERATURE = 0.1
CATEGORY_TEMPERATURE = 0.3

DEFAULT_LANGUAGE_PROMPT = """You are a language detection and translation expert. Given a word and a list of languages, determine:
1. The primary language of the word using the priority order provided (languages are listed in priority order)
2. If the word is not in English, provide an English translation
3. If the word exists in multiple languages from the list, choose the one with the highest priority (first in the list)

Languages to consider (in priority order): {languages}

Respond with JSON format:
{
  "language": "detected_language",
  "englishTranslation": "english_translation_or_same_word_if_already_english"
}"""

DEFAULT_CATEGORY_PROMPT = """You are a categorization expert. Given a word and a list of categories, determine which category the word best fits into. Be fuzzy in your matching - if the word kind of belongs to a category, that's fine. If it doesn't fit any category well, return an empty string.

Available categories: {categories}

Respond with just the category name or an empty string if no good match."""


def fill_prompt(template: str, placeholder: str, values: Sequence[str]) -> str:
    """Substitute ``{placeholder}`` without touching other braces (JSON examples)."""
    return template.replace("{" + placeholder + "}", ", ".join(values))


def parse_language_answer(content: str, word: str) -> tuple[str, str]:
    """Parse step-1 output into ``(language, translation)``."""
    text = strip_code_fences(content) or "{}"
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise OracleError(f"language answer is not JSON: {text[:80]!r}", cause=exc) from exc
    if not isinstance(payload, dict):
        raise OracleError(f"language answer is not an object: {text[:80]!r}")
    language = str(payload.get("language") or "Unknown").strip()
    translation = str(payload.get("englishTranslation") or word).strip()
    return language, translation


class OpenAIClassifier:
    """Two-step chat-completion classifier.

    Args:
        api_key: Bearer token; required
        base_url: API root, e.g. ``https://api.openai.com/v1``
        timeout: Per-request timeout in seconds
        client: Pre-built ``httpx.AsyncClient`` (tests inject a mock transport)
    """

    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key and client is None:
            raise ConfigError("OpenAI API key is not configured (CATEGORIZER_OPENAI_API_KEY)")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}"},
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> OpenAIClassifier:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def _complete(self, model: str, system: str, user: str, temperature: float) -> str:
        body: dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": temperature,
        }
        try:
            response = await self._client.post("/chat/completions", json=body)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            kind = "rate limit" if status == 429 else "api error"
            raise OracleError(
                f"{kind}: HTTP {status}",
                retry_after=_retry_after(exc.response),
                cause=exc,
            ) from exc
        except httpx.TimeoutException as exc:
            raise OracleError("timeout calling oracle", cause=exc) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise OracleError(f"api error: {exc}", cause=exc) from exc

        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as exc:
            raise OracleError("api error: malformed completion payload", cause=exc) from exc

    async def classify(
        self,
        word: str,
        languages: Sequence[str],
        categories: Sequence[str],
        *,
        model: str,
        language_prompt: str | None = None,
        category_prompt: str | None = None,
    ) -> Classification:
        language_system = fill_prompt(language_prompt or DEFAULT_LANGUAGE_PROMPT, "languages", languages)
        content = await self._complete(model, language_system, f'Word: "{word}"', LANGUAGE_TEMPERATURE)
        language, translation = parse_language_answer(content, word)

        category_system = fill_prompt(category_prompt or DEFAULT_CATEGORY_PROMPT, "categories", categories)
        content = await self._complete(model, category_system, f'Word: "{translation}"', CATEGORY_TEMPERATURE)
        category = strip_code_fences(content)

        log.debug("oracle.classified", word=word, language=language, category=category, model=model)
        return Classification(language=language, translation=translation, category=category)


def _retry_after(response: httpx.Response) -> int | None:
    value = response.headers.get("retry-after")
    if value and value.isdigit():
        return int(value)
    return None
