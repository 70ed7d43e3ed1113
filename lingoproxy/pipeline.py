"""Page pipeline: from origin HTML to the translated page a visitor receives."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .assets import (
    build_recovery_dictionary,
    inject_deferred_assets,
    inject_recovery_assets,
    is_spa,
    mark_skip_selectors,
)
from .dom import DocumentAdapter, parse_document
from .errors import ErrorCategory, PlaceholderViolation, TranslationError
from .pathnames import (
    PathnameCandidate,
    denormalize_pathname,
    normalize_pathname,
    parse_skip_rules,
    prepare_pathnames,
    rewrite_links,
    should_skip_path,
    to_ascii_pathname,
)
from .placeholders import PatternizedText, apply_patterns, restore_patterns, validate
from .policy import ErrorPolicy
from .store import PathRow, SegmentRow, TranslationStore, hash_text
from .structures import PendingSegment, ProxyOptions, RenderStats, Segment, TranslationDictionary
from .translator import PATH_FEATURE, SEGMENT_FEATURE, SegmentUnit, TranslationOrchestrator
from .walker import WalkRules, apply_translations, extract_link_pathnames, extract_segments

logger = logging.getLogger(__name__)


@dataclass
class RenderResult:
    """Rendered page plus what the client scripts were given."""

    html: str
    stats: RenderStats
    pending: List[PendingSegment] = field(default_factory=list)
    dictionary: Optional[TranslationDictionary] = None
    pathname_map: Dict[str, str] = field(default_factory=dict)
    document: Optional[DocumentAdapter] = None


@dataclass
class _Normalized:
    segments: List[Segment]
    patterns: List[PatternizedText]
    hashes: List[str]

    @property
    def values(self) -> List[str]:
        return [patternized.normalized for patternized in self.patterns]


class PagePipeline:
    """Runs extraction, caching, translation and injection for one site."""

    def __init__(
        self,
        orchestrator: TranslationOrchestrator,
        store: TranslationStore,
        *,
        options: ProxyOptions | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.store = store
        self.options = options or orchestrator.options
        self.rules = WalkRules(skip_selectors=tuple(self.options.skip_selectors))
        self.skip_rules = parse_skip_rules(self.options.skip_paths)

    async def resolve_incoming_pathname(self, pathname: str) -> str:
        """Map a translated pathname from the visitor back to the origin's."""

        patternized = normalize_pathname(pathname, self.options.patterns)
        original = await self.store.original_pathname(
            self.options.site_id, self.options.target_lang, patternized.normalized
        )
        if original is None:
            return pathname
        return denormalize_pathname(original, patternized.replacements)

    async def render(
        self,
        html: str,
        *,
        pathname: str = "/",
        proxy_host: str = "",
        status_code: int = 200,
    ) -> RenderResult:
        """Translate ``html``.

        Raises ``TranslationError`` when immediate translation fails, and
        ``PlaceholderViolation`` or ``ExtractionMismatch`` in strict mode; the
        caller then serves the original page.
        """

        options = self.options
        started = time.perf_counter()
        policy = ErrorPolicy(strict=options.strict)
        stats = RenderStats()

        document = parse_document(html)
        segments = extract_segments(document, self.rules)
        stats.extracted = len(segments)
        normalized = self._normalize(segments)

        raw = await self._cached_translations(normalized, policy)
        misses = [index for index, value in enumerate(raw) if value is None]
        stats.cached = len(segments) - len(misses)
        deferred = options.deferred and bool(misses)

        if deferred:
            units: Dict[str, SegmentUnit] = {}
            for index in misses:
                units.setdefault(normalized.hashes[index], SegmentUnit(normalized.hashes[index], normalized.values[index]))
            self.orchestrator.schedule_segments(list(units.values()))
            stats.unique = len(units)
        elif misses:
            await self._translate_now(normalized, misses, raw, stats)

        translations = [
            self._finalize(normalized.segments[index], normalized.patterns[index], raw[index], policy)
            for index in range(len(segments))
        ]
        applied = apply_translations(
            document,
            translations,
            segments,
            rules=self.rules,
            hashes=normalized.hashes if deferred else None,
            policy=policy,
        )
        self._set_lang(document)

        pathname_map: Dict[str, str] = {}
        if options.translate_paths and status_code < 400 and options.origin_host:
            pathname_map = await self._pathnames(document, pathname, stats, policy, background=deferred)
        if proxy_host and options.origin_host:
            rewrite_links(
                document,
                origin_host=options.origin_host,
                proxy_host=proxy_host,
                pathname_map=pathname_map,
                translate_paths=options.translate_paths,
            )

        dictionary = None
        if applied.applied and is_spa(document):
            candidate = build_recovery_dictionary(segments, translations, lang=options.target_lang, paths=pathname_map)
            if candidate.has_entries():
                mark_skip_selectors(document, options.skip_selectors)
                inject_recovery_assets(document, candidate)
                dictionary = candidate

        pending = inject_deferred_assets(document, applied.pending) if applied.pending else []
        stats.pending = len(applied.pending)
        stats.error_messages = policy.messages
        stats.elapsed_ms = int((time.perf_counter() - started) * 1000)
        self._log_summary(pathname, stats, deferred, policy)
        return RenderResult(
            html=document.serialize(),
            stats=stats,
            pending=pending,
            dictionary=dictionary,
            pathname_map=pathname_map,
            document=document,
        )

    # --- Segments ---------------------------------------------------------

    def _normalize(self, segments: Sequence[Segment]) -> _Normalized:
        patterns = [apply_patterns(segment.value, self.options.patterns) for segment in segments]
        return _Normalized(
            segments=list(segments),
            patterns=patterns,
            hashes=[hash_text(patternized.normalized) for patternized in patterns],
        )

    async def _cached_translations(self, normalized: _Normalized, policy: ErrorPolicy) -> List[Optional[str]]:
        if not normalized.hashes:
            return []
        try:
            cached = await self.store.get_segments(
                self.options.site_id,
                self.options.target_lang,
                list(dict.fromkeys(normalized.hashes)),
            )
        except Exception as exc:
            policy.handle_error(ErrorCategory.OTHER, f"Segment cache lookup failed: {exc}")
            cached = {}
        return [cached.get(hash_value) for hash_value in normalized.hashes]

    async def _translate_now(
        self,
        normalized: _Normalized,
        misses: List[int],
        raw: List[Optional[str]],
        stats: RenderStats,
    ) -> None:
        values = [normalized.values[index] for index in misses]
        outcome = await self.orchestrator.translate_immediate(values)
        rows: Dict[str, SegmentRow] = {}
        for index, translated in zip(misses, outcome.translations):
            raw[index] = translated
            hash_value = normalized.hashes[index]
            rows.setdefault(hash_value, SegmentRow(hash=hash_value, source=normalized.values[index], translated=translated))
        await self.orchestrator.save_segments(list(rows.values()))
        await self.orchestrator.record_usage(SEGMENT_FEATURE, outcome.usage, outcome.api_calls)
        stats.translated = len(misses)
        stats.unique = outcome.unique_count
        stats.batches = outcome.batch_count
        stats.usage = stats.usage + outcome.usage

    def _finalize(
        self,
        segment: Segment,
        patternized: PatternizedText,
        translated: Optional[str],
        policy: ErrorPolicy,
    ) -> Optional[str]:
        if translated is None:
            return None
        result = validate(patternized.normalized, translated)
        if not result.valid:
            policy.handle_violation(
                PlaceholderViolation(
                    f"Keeping source text for {segment.kind.value} segment {segment.value[:40]!r}: "
                    + "; ".join(result.errors),
                    result,
                )
            )
            return segment.value
        return restore_patterns(translated, patternized.replacements, patternized.is_upper_case)

    def _set_lang(self, document: DocumentAdapter) -> None:
        root = document.root()
        if root is not None and document.is_element(root):
            document.set_attr(root, "lang", self.options.target_lang)

    # --- Pathnames --------------------------------------------------------

    async def _pathnames(
        self,
        document: DocumentAdapter,
        current: str,
        stats: RenderStats,
        policy: ErrorPolicy,
        *,
        background: bool,
    ) -> Dict[str, str]:
        options = self.options
        pathnames = dict.fromkeys(extract_link_pathnames(document, options.origin_host))
        if not should_skip_path(current, self.skip_rules):
            pathnames.setdefault(current, None)
        stats.total_paths = len(pathnames)
        if not pathnames:
            return {}

        lookup = [
            normalize_pathname(path, options.patterns).normalized
            for path in pathnames
            if not should_skip_path(path, self.skip_rules)
        ]
        try:
            cached = await self.store.get_pathnames(options.site_id, options.target_lang, list(dict.fromkeys(lookup)))
        except Exception as exc:
            policy.handle_error(ErrorCategory.OTHER, f"Pathname cache lookup failed: {exc}")
            cached = {}
        resolved, missing = prepare_pathnames(list(pathnames), cached, self.skip_rules, options.patterns)
        stats.new_paths = len(missing)
        for candidate in missing:
            resolved[candidate.original] = candidate.original
        if not missing:
            return resolved

        if background:
            self.orchestrator.schedule_pathnames(self._unique_candidates(missing))
            return resolved

        unique = self._unique_candidates(missing)
        try:
            outcome = await self.orchestrator.translate_immediate(
                [candidate.normalized for candidate in unique], item_type="pathname"
            )
        except TranslationError as exc:
            policy.handle_error(ErrorCategory.TRANSLATION, f"Pathname translation failed: {exc}")
            return resolved

        translated_by_normalized: Dict[str, str] = {}
        rows: List[PathRow] = []
        for candidate, translated in zip(unique, outcome.translations):
            ascii_path = to_ascii_pathname(translated)
            translated_by_normalized[candidate.normalized] = ascii_path
            rows.append(PathRow(original=candidate.normalized, translated=ascii_path))
        for candidate in missing:
            ascii_path = translated_by_normalized.get(candidate.normalized)
            if ascii_path:
                resolved[candidate.original] = denormalize_pathname(ascii_path, candidate.replacements)
        await self.orchestrator.save_pathnames(rows)
        await self.orchestrator.record_usage(PATH_FEATURE, outcome.usage, outcome.api_calls)
        stats.usage = stats.usage + outcome.usage
        return resolved

    @staticmethod
    def _unique_candidates(candidates: Sequence[PathnameCandidate]) -> List[PathnameCandidate]:
        unique: Dict[str, PathnameCandidate] = {}
        for candidate in candidates:
            unique.setdefault(candidate.normalized, candidate)
        return list(unique.values())

    def _log_summary(self, pathname: str, stats: RenderStats, deferred: bool, policy: ErrorPolicy) -> None:
        new_segments = stats.pending if deferred else stats.translated
        errors = policy.tracker.summary()
        logger.info(
            "▶ [%s] %s%s (%dms)%s | seg: %d (+%d) | paths: %d (+%d)%s",
            self.options.target_lang,
            self.options.origin_host,
            pathname,
            stats.elapsed_ms,
            " [DEFERRED]" if deferred else "",
            stats.extracted,
            new_segments,
            stats.total_paths,
            stats.new_paths,
            f" | errors: {errors}" if errors else "",
        )
