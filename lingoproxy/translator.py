"""Translation orchestration for immediate and background work."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, List, Optional, Sequence, Set

from .batching import chunk_strings, deduplicate, reconstruct
from .errors import CacheWriteError, TranslationError
from .inflight import InFlightStore
from .pathnames import PathnameCandidate, to_ascii_pathname
from .placeholders import apply_skip_words, restore_skip_words
from .providers import ProviderResult, TranslationProvider
from .store import PathRow, SegmentRow, TranslationStore
from .structures import ProxyOptions, TokenUsage, TranslationItem, UsageRecord

logger = logging.getLogger(__name__)

SEGMENT_FEATURE = "segment_translation"
PATH_FEATURE = "path_translation"


@dataclass
class TranslationOutcome:
    """Translations aligned with the input values, plus bookkeeping."""

    translations: List[str]
    unique_count: int = 0
    batch_count: int = 0
    usage: TokenUsage = field(default_factory=TokenUsage)
    api_calls: int = 0


@dataclass(frozen=True)
class SegmentUnit:
    """A cache miss to translate in the background."""

    hash: str
    text: str


class TranslationOrchestrator:
    """Coordinates skip-word protection, batching, provider calls and caching."""

    def __init__(
        self,
        provider: TranslationProvider,
        *,
        options: ProxyOptions,
        store: TranslationStore | None = None,
        inflight: InFlightStore | None = None,
    ) -> None:
        self.provider = provider
        self.options = options
        self.store = store
        self.inflight = inflight if inflight is not None else InFlightStore()
        self._tasks: Set[asyncio.Task] = set()

    # --- Immediate mode ---------------------------------------------------

    async def translate_immediate(
        self,
        values: Sequence[str],
        *,
        item_type: str = "segment",
    ) -> TranslationOutcome:
        """Translate ``values`` now and return translations in input order.

        Chunks run concurrently; one failed chunk fails the whole call.
        """

        if not values:
            return TranslationOutcome(translations=[])

        dedupe = deduplicate(values)
        protected = [apply_skip_words(text, self.options.skip_words) for text in dedupe.unique]
        # Chunk sizes count the protected text sent to the provider.
        chunks = chunk_strings(
            [text for text, _ in protected],
            max_chars=self.options.max_chars,
            max_items=self.options.max_items,
        )

        try:
            results = await asyncio.gather(
                *(
                    self._call_provider([TranslationItem(text=text, type=item_type) for text in chunk])
                    for chunk in chunks
                )
            )
        except TranslationError as exc:
            raise TranslationError(
                f"Failed to translate {len(dedupe.unique)} unique {item_type}s "
                f"in {len(chunks)} chunks: {exc}"
            ) from exc

        translated_unique: List[str] = []
        usage = TokenUsage()
        api_calls = 0
        for result in results:
            translated_unique.extend(result.translations)
            usage = usage + result.usage
            api_calls += result.api_calls
        if len(translated_unique) != len(dedupe.unique):
            raise TranslationError(
                f"Translator returned {len(translated_unique)} strings for "
                f"{len(dedupe.unique)} inputs."
            )

        restored = [
            restore_skip_words(text, skips)
            for text, (_, skips) in zip(translated_unique, protected)
        ]
        return TranslationOutcome(
            translations=reconstruct(values, dedupe, restored),
            unique_count=len(dedupe.unique),
            batch_count=len(chunks),
            usage=usage,
            api_calls=api_calls,
        )

    async def _call_provider(self, items: List[TranslationItem]) -> ProviderResult:
        try:
            result = await asyncio.wait_for(
                self.provider.translate(
                    items,
                    source_language=self.options.source_lang,
                    target_language=self.options.target_lang,
                    style=self.options.style,
                ),
                timeout=self.options.translation_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise TranslationError(
                f"Translation timed out after {self.options.translation_timeout:g}s"
            ) from exc
        if len(result.translations) != len(items):
            raise TranslationError(
                f"Translator returned {len(result.translations)} strings for {len(items)} inputs."
            )
        return result

    # --- Background mode --------------------------------------------------

    def schedule_segments(self, units: Sequence[SegmentUnit]) -> List[str]:
        """Start background translation of segment cache misses.

        Returns the in-flight keys claimed; units already in flight are skipped.
        """

        claimed = self._claim([(unit.hash, unit) for unit in units])
        if claimed:
            self._spawn(self._run_units(claimed, "segment"))
        return [key for key, _ in claimed]

    def schedule_pathnames(self, candidates: Sequence[PathnameCandidate]) -> List[str]:
        claimed = self._claim([(candidate.normalized, candidate) for candidate in candidates])
        if claimed:
            self._spawn(self._run_units(claimed, "pathname"))
        return [key for key, _ in claimed]

    def _claim(self, entries):
        claimed = []
        for ident, unit in entries:
            key = InFlightStore.build(self.options.site_id, self.options.target_lang, ident)
            if self.inflight.claim(key):
                claimed.append((key, unit))
        return claimed

    def _spawn(self, coroutine: Awaitable[None]) -> None:
        task = asyncio.get_running_loop().create_task(coroutine)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for every scheduled background batch to settle."""

        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def _run_units(self, claimed, item_type: str) -> None:
        results = await asyncio.gather(
            *(self._run_unit(key, unit, item_type) for key, unit in claimed),
            return_exceptions=True,
        )
        usage = TokenUsage()
        api_calls = 0
        successes = 0
        for (key, _), result in zip(claimed, results):
            if isinstance(result, BaseException):
                logger.error("Background %s %s failed: %s", item_type, key, result)
                continue
            if result is None:
                continue
            successes += 1
            usage = usage + result.usage
            api_calls += result.api_calls
        if successes:
            feature = PATH_FEATURE if item_type == "pathname" else SEGMENT_FEATURE
            await self.record_usage(feature, usage, api_calls)
        logger.info(
            "Background %s batch settled: %d of %d translated", item_type, successes, len(claimed)
        )

    async def _run_unit(self, key: str, unit, item_type: str) -> Optional[ProviderResult]:
        source = unit.normalized if item_type == "pathname" else unit.text
        try:
            text, skips = apply_skip_words(source, self.options.skip_words)
            try:
                result = await self._call_provider([TranslationItem(text=text, type=item_type)])
            except TranslationError as exc:
                logger.error("Background %s %s failed: %s", item_type, key, exc)
                return None
            translated = restore_skip_words(result.translations[0], skips)
            if item_type == "pathname":
                translated = to_ascii_pathname(translated)
                await self.save_pathnames([PathRow(original=source, translated=translated)])
            else:
                await self.save_segments([SegmentRow(hash=unit.hash, source=source, translated=translated)])
            return result
        finally:
            self.inflight.delete(key)

    # --- Bookkeeping ------------------------------------------------------

    async def save_segments(self, rows: Sequence[SegmentRow]) -> None:
        if self.store is None or not rows:
            return
        await self._write(
            self.store.batch_upsert_segments(self.options.site_id, self.options.target_lang, rows),
            f"{len(rows)} segment translations",
        )

    async def save_pathnames(self, rows: Sequence[PathRow]) -> None:
        if self.store is None or not rows:
            return
        await self._write(
            self.store.batch_upsert_pathnames(self.options.site_id, self.options.target_lang, rows),
            f"{len(rows)} pathname translations",
        )

    async def record_usage(self, feature: str, usage: TokenUsage, api_calls: int) -> None:
        if self.store is None or (api_calls == 0 and usage == TokenUsage()):
            return
        record = UsageRecord(
            site_id=self.options.site_id,
            feature=feature,
            usage=usage,
            api_calls=api_calls,
        )
        await self._write(self.store.record_usage(record), f"{feature} usage")

    async def _write(self, operation: Awaitable[None], what: str) -> None:
        try:
            await operation
        except CacheWriteError as exc:
            logger.error("Could not store %s: %s", what, exc)
        except Exception as exc:
            logger.error("Could not store %s: %s: %s", what, type(exc).__name__, exc)
