"""The oracle boundary the engine depends on."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence, runtime_checkable


@dataclass(frozen=True)
class Classification:
    """Raw oracle answer, before matching against reference data."""

    language: str
    translation: str
    category: str


@runtime_checkable
class Classifier(Protocol):
    """Anything that can classify one word.

    Implementations may raise; the engine records the failure against the
    word and carries on with the rest of the chunk.
    """

    async def classify(
        self,
        word: str,
        languages: Sequence[str],
        categories: Sequence[str],
        *,
        model: str,
        language_prompt: str | None = None,
        category_prompt: str | None = None,
    ) -> Classification: ...
