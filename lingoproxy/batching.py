"""Deduplication and request-size batching of translatable strings."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Union

from .structures import Segment

DEFAULT_MAX_ITEMS = 128
DEFAULT_MAX_CHARS = 30000

Item = Union[Segment, str]


def _value(item: Item) -> str:
    return item.value if isinstance(item, Segment) else item


def byte_length(text: str) -> int:
    return len(text.encode("utf-8"))


@dataclass
class DedupeResult:
    """Unique values in first-seen order and where each one occurred."""

    unique: List[str] = field(default_factory=list)
    index_map: Dict[str, List[int]] = field(default_factory=dict)


def deduplicate(items: Sequence[Item]) -> DedupeResult:
    result = DedupeResult()
    for index, item in enumerate(items):
        value = _value(item)
        positions = result.index_map.get(value)
        if positions is None:
            positions = result.index_map[value] = []
            result.unique.append(value)
        positions.append(index)
    return result


class BatchBuilder:
    """Packs strings into chunks bounded by item count and UTF-8 size.

    A string larger than the size limit is sent alone; strings are never split.
    """

    def __init__(self, max_chars: int = DEFAULT_MAX_CHARS, max_items: int = DEFAULT_MAX_ITEMS) -> None:
        self.max_chars = max(1, max_chars)
        self.max_items = max(1, max_items)

    def build(self, strings: Sequence[str]) -> List[List[str]]:
        chunks: List[List[str]] = []
        current: List[str] = []
        running_total = 0

        for text in strings:
            size = byte_length(text)
            if current and (
                len(current) >= self.max_items or running_total + size > self.max_chars
            ):
                chunks.append(current)
                current = []
                running_total = 0
            current.append(text)
            running_total += size

        if current:
            chunks.append(current)
        return chunks


def chunk_strings(
    strings: Sequence[str],
    max_chars: int = DEFAULT_MAX_CHARS,
    max_items: int = DEFAULT_MAX_ITEMS,
) -> List[List[str]]:
    return BatchBuilder(max_chars=max_chars, max_items=max_items).build(strings)


@dataclass
class PreparedBatches:
    chunks: List[List[str]]
    dedupe: DedupeResult

    @property
    def total_unique(self) -> int:
        return len(self.dedupe.unique)


def preprocess(
    items: Sequence[Item],
    *,
    max_chars: int = DEFAULT_MAX_CHARS,
    max_items: int = DEFAULT_MAX_ITEMS,
) -> PreparedBatches:
    """Deduplicate ``items`` and chunk the unique values."""

    dedupe = deduplicate(items)
    return PreparedBatches(
        chunks=chunk_strings(dedupe.unique, max_chars=max_chars, max_items=max_items),
        dedupe=dedupe,
    )


def reconstruct(
    items: Sequence[Item],
    dedupe: DedupeResult,
    translated_unique: Sequence[str],
) -> List[str]:
    """Expand unique translations back to one entry per input item.

    Falls back to the source value when a translation is absent or empty.
    """

    mapping = dict(zip(dedupe.unique, translated_unique))
    translations: List[str] = []
    for item in items:
        value = _value(item)
        translated = mapping.get(value)
        translations.append(translated if translated else value)
    return translations
