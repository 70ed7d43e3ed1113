"""Lookup of finished background translations for polling clients."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Sequence

from .placeholders import (
    apply_patterns,
    html_to_placeholders,
    normalize_whitespace,
    placeholders_to_html,
    restore_patterns,
)
from .store import TranslationStore
from .structures import ProxyOptions, Whitespace

logger = logging.getLogger(__name__)


def _valid_segments(segments: Any) -> List[Mapping[str, Any]]:
    if not isinstance(segments, list):
        return []
    return [
        segment
        for segment in segments
        if isinstance(segment, Mapping)
        and isinstance(segment.get("hash"), str)
        and isinstance(segment.get("content", ""), str)
    ]


def restore_for_client(kind: str, content: str, translation: str, patterns: Sequence[str]) -> str:
    """Rebuild what the page should show from a cached, normalised translation.

    ``content`` is the source the client holds: inner html for ``html``
    segments, plain text otherwise.
    """

    replacements = ()
    text = content
    if kind == "html":
        text, replacements = html_to_placeholders(content)
    patternized = apply_patterns(text, patterns)
    restored = restore_patterns(translation, patternized.replacements, patternized.is_upper_case)
    if kind == "html":
        # Blocks keep the whitespace around their inner html, as on the server.
        restored = Whitespace.of(normalize_whitespace(content)).wrap(placeholders_to_html(restored, replacements))
    return restored


async def lookup_translations(
    store: TranslationStore,
    options: ProxyOptions,
    body: Any,
) -> Dict[str, str]:
    """Answer a deferred poll: ``{hash: translation}`` for ready hashes only."""

    segments = _valid_segments(body.get("segments") if isinstance(body, Mapping) else None)
    if not segments:
        return {}

    hashes = list(dict.fromkeys(segment["hash"] for segment in segments))
    found = await store.get_segments(options.site_id, options.target_lang, hashes)
    logger.info("Lookup of %d hashes found %d translations", len(hashes), len(found))

    result: Dict[str, str] = {}
    for segment in segments:
        hash_value = segment["hash"]
        translation = found.get(hash_value)
        if translation is None or hash_value in result:
            continue
        try:
            result[hash_value] = restore_for_client(
                str(segment.get("kind", "text")),
                segment.get("content", ""),
                translation,
                options.patterns,
            )
        except Exception as exc:
            logger.error("Could not restore translation %s: %s", hash_value, exc)
            result[hash_value] = translation
    return result
