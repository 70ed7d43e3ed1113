"""Translation cache interface and an in-memory implementation."""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .structures import UsageRecord


def hash_text(text: str) -> str:
    """Stable segment key: first 16 hex characters of the SHA-256 digest."""

    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class SegmentRow:
    hash: str
    source: str
    translated: str


@dataclass(frozen=True)
class PathRow:
    original: str
    translated: str


class TranslationStore(ABC):
    """Durable cache of segment and pathname translations plus usage."""

    @abstractmethod
    async def get_segments(self, site_id: int, lang: str, hashes: Sequence[str]) -> Dict[str, str]:
        """Return cached translations keyed by hash; misses are absent."""

    @abstractmethod
    async def batch_upsert_segments(self, site_id: int, lang: str, rows: Sequence[SegmentRow]) -> None:
        ...

    @abstractmethod
    async def get_pathnames(self, site_id: int, lang: str, paths: Sequence[str]) -> Dict[str, str]:
        ...

    @abstractmethod
    async def original_pathname(self, site_id: int, lang: str, translated: str) -> Optional[str]:
        """Reverse lookup of an incoming translated pathname."""

    @abstractmethod
    async def batch_upsert_pathnames(self, site_id: int, lang: str, rows: Sequence[PathRow]) -> None:
        ...

    @abstractmethod
    async def record_usage(self, record: UsageRecord) -> None:
        ...


class MemoryTranslationStore(TranslationStore):
    """Process-local store used by the CLI and the tests."""

    def __init__(self) -> None:
        self.segments: Dict[Tuple[int, str, str], SegmentRow] = {}
        self.pathnames: Dict[Tuple[int, str, str], str] = {}
        self.usage: List[UsageRecord] = []
        self.segment_upserts = 0
        self.pathname_upserts = 0

    async def get_segments(self, site_id: int, lang: str, hashes: Sequence[str]) -> Dict[str, str]:
        found: Dict[str, str] = {}
        for hash_value in hashes:
            row = self.segments.get((site_id, lang, hash_value))
            if row is not None:
                found[hash_value] = row.translated
        return found

    async def batch_upsert_segments(self, site_id: int, lang: str, rows: Sequence[SegmentRow]) -> None:
        self.segment_upserts += 1
        for row in rows:
            self.segments[(site_id, lang, row.hash)] = row

    async def get_pathnames(self, site_id: int, lang: str, paths: Sequence[str]) -> Dict[str, str]:
        found: Dict[str, str] = {}
        for path in paths:
            translated = self.pathnames.get((site_id, lang, path))
            if translated is not None:
                found[path] = translated
        return found

    async def original_pathname(self, site_id: int, lang: str, translated: str) -> Optional[str]:
        for (row_site, row_lang, original), value in self.pathnames.items():
            if row_site == site_id and row_lang == lang and value == translated:
                return original
        return None

    async def batch_upsert_pathnames(self, site_id: int, lang: str, rows: Sequence[PathRow]) -> None:
        self.pathname_upserts += 1
        for row in rows:
            self.pathnames[(site_id, lang, row.original)] = row.translated

    async def record_usage(self, record: UsageRecord) -> None:
        self.usage.append(record)
