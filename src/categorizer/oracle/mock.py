"""Deterministic in-process classifier for tests and dry runs."""

from __future__ import annotations

import asyncio
from typing import Callable, Mapping, Sequence

from categorizer.core.errors import OracleError
from categorizer.oracle.protocol import Classification


class StaticClassifier:
    """Classify from a fixed table, or with a default answer.

    Args:
        answers: word → Classification overrides
        language: Default language for words not in ``answers``
        category: Default category; ``None`` picks the first known category
        fail_on: Words that raise :class:`OracleError`
        delay: Seconds to sleep per call, to simulate oracle latency
        on_call: Hook called with each word before answering
    """

    def __init__(
        self,
        answers: Mapping[str, Classification] | None = None,
        *,
        language: str = "English",
        category: str | None = None,
        fail_on: Sequence[str] = (),
        delay: float = 0.0,
        on_call: Callable[[str], None] | None = None,
    ) -> None:
        self.answers = dict(answers or {})
        self.language = language
        self.category = category
        self.fail_on = set(fail_on)
        self.delay = delay
        self.on_call = on_call
        self.calls: list[str] = []

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
        self.calls.append(word)
        if self.on_call is not None:
            self.on_call(word)
        if self.delay:
            await asyncio.sleep(self.delay)
        if word in self.fail_on:
            raise OracleError(f"oracle rejected {word!r}").with_context(word=word, model=model)
        if word in self.answers:
            return self.answers[word]
        category = self.category if self.category is not None else (categories[0] if categories else "")
        return Classification(language=self.language, translation=word, category=category)
