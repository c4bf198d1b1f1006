"""Chunk planning over a session's frozen word ordering.

Chunks are fixed slices of ``resume_data`` (the last may be shorter), so
chunk ``k`` always holds the same words no matter how often the job is
resumed. A resume starts at the chunk containing the resume index and
skips, inside it, words before the index and words already in the ledger.

Example:
    >>> [c.index for c in plan_chunks([1, 2, 3, 4, 5], 2, start_index=3)]
    [1, 2]
    >>> plan_chunks([1, 2, 3, 4, 5], 2, start_index=3)[0].pending
    [4]
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import AbstractSet, Sequence


@dataclass(frozen=True)
class ChunkPlan:
    index: int
    word_ids: list[int]
    pending: list[int] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return len(self.pending) < len(self.word_ids)


def chunk_slices(word_ids: Sequence[int], chunk_size: int) -> list[list[int]]:
    size = max(1, chunk_size)
    return [list(word_ids[i : i + size]) for i in range(0, len(word_ids), size)]


def resume_index(word_ids: Sequence[int], last_processed_word_id: int | None) -> int:
    """Index after the cursor; 0 when there is no cursor or it is not in the ordering."""
    if last_processed_word_id is None:
        return 0
    try:
        return list(word_ids).index(last_processed_word_id) + 1
    except ValueError:
        return 0


def plan_chunks(
    word_ids: Sequence[int],
    chunk_size: int,
    *,
    start_index: int = 0,
    done: AbstractSet[int] = frozenset(),
) -> list[ChunkPlan]:
    """Chunks from the one containing ``start_index`` onward, with their pending words."""
    size = max(1, chunk_size)
    plans = []
    for index, ids in enumerate(chunk_slices(word_ids, size)):
        if (index + 1) * size <= start_index:
            continue
        offset = index * size
        pending = [
            word_id
            for position, word_id in enumerate(ids, start=offset)
            if position >= start_index and word_id not in done
        ]
        plans.append(ChunkPlan(index=index, word_ids=ids, pending=pending))
    return plans
