"""Client payloads and scripts injected into rendered pages."""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from bs4 import BeautifulSoup

from .dom import DocumentAdapter, InvalidSelectorError
from .placeholders import placeholders_to_html
from .structures import PendingSegment, Segment, SegmentKind, TranslationDictionary
from .walker import (
    BLOCK_TAGS,
    COMMENT_PREFIX,
    DEFAULT_SKIP_SELECTORS,
    PENDING_ATTR,
    PENDING_ATTR_PREFIX,
    SKELETON_CLASS,
    SKIP_ATTR,
    TRANSLATE_ATTRS,
)

logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).parent / "static"

ASSET_PREFIX = "/__lingoproxy"
LOOKUP_PATH = f"{ASSET_PREFIX}/translate-lookup"
RECOVERY_SCRIPT_PATH = f"{ASSET_PREFIX}/recovery.js"
DEFERRED_SCRIPT_PATH = f"{ASSET_PREFIX}/deferred.js"

RECOVERY_GLOBAL = "__LINGOPROXY_RECOVERY__"
DEFERRED_GLOBAL = "__LINGOPROXY_DEFERRED__"
READY_CLASS = "lingoproxy-ready"
MARKER_ATTR = "data-lingoproxy"

OBSERVE_WINDOW_MS = 2000
INITIAL_DELAY_MS = 1000
POLL_INTERVAL_MS = 1000
MAX_POLLS = 10

FLICKER_GUARD_CSS = f"body:not(.{READY_CLASS}){{opacity:0}}"
SKELETON_CSS = (
    f".{SKELETON_CLASS}{{position:relative;color:transparent!important}}"
    f".{SKELETON_CLASS} *{{color:transparent!important}}"
    f".{SKELETON_CLASS}::after{{content:'';position:absolute;inset:0;"
    "background:linear-gradient(90deg,rgba(128,128,128,0.2) 25%,"
    "rgba(128,128,128,0.1) 50%,rgba(128,128,128,0.2) 75%);"
    "background-size:200% 100%;animation:lingoproxy-shimmer 1.5s infinite;"
    "border-radius:4px;pointer-events:none}"
    "@keyframes lingoproxy-shimmer{0%{background-position:200% 0}"
    "100%{background-position:-200% 0}}"
)

_SCRIPT_CONSTANTS: Dict[str, Dict[str, Any]] = {
    "recovery.js": {
        "__GLOBAL__": RECOVERY_GLOBAL,
        "__SKIP_ATTR__": SKIP_ATTR,
        "__PENDING_ATTR__": PENDING_ATTR,
        "__PENDING_ATTR_PREFIX__": PENDING_ATTR_PREFIX,
        "__READY_CLASS__": READY_CLASS,
        "__OBSERVE_MS__": OBSERVE_WINDOW_MS,
        "__TRANSLATE_ATTRS__": list(TRANSLATE_ATTRS),
        "__BLOCK_TAGS__": sorted(BLOCK_TAGS - {"pre"}),
    },
    "deferred.js": {
        "__GLOBAL__": DEFERRED_GLOBAL,
        "__LOOKUP_URL__": LOOKUP_PATH,
        "__PENDING_ATTR__": PENDING_ATTR,
        "__PENDING_ATTR_PREFIX__": PENDING_ATTR_PREFIX,
        "__SKELETON_CLASS__": SKELETON_CLASS,
        "__COMMENT_PREFIX__": COMMENT_PREFIX,
        "__INITIAL_DELAY__": INITIAL_DELAY_MS,
        "__POLL_INTERVAL__": POLL_INTERVAL_MS,
        "__MAX_POLLS__": MAX_POLLS,
    },
}


@lru_cache(maxsize=None)
def render_script(name: str) -> str:
    """Return ``static/<name>`` with its constants filled in.

    Raises ``KeyError`` for scripts that are not shipped.
    """

    constants = _SCRIPT_CONSTANTS[name]
    source = (STATIC_DIR / name).read_text(encoding="utf-8")
    # Longest names first so __PENDING_ATTR_PREFIX__ is not eaten by __PENDING_ATTR__.
    for key in sorted(constants, key=len, reverse=True):
        source = source.replace(key, json.dumps(constants[key]))
    return source


def _script_json(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":")).replace("</", "<\\/")


# ---------------------------------------------------------------------------
# SPA detection


_SPA_SELECTORS = (
    "script#__NEXT_DATA__",
    'script[src*="/_next/"]',
    "#__nuxt",
    "#___gatsby",
    "[data-reactroot]",
    "[data-v-app]",
)


def detect_spa_framework(document: DocumentAdapter) -> Optional[str]:
    """Name the client framework that will hydrate this page, if any."""

    names = ("next", "next", "nuxt", "gatsby", "react", "vue")
    for name, selector in zip(names, _SPA_SELECTORS):
        if document.select_one(selector) is not None:
            return name
    for script in document.select("script"):
        if "window.__NUXT__" in document.text(script):
            return "nuxt"
    for element in document.iter_elements():
        if any(attr.startswith("data-v-") for attr in document.attr_names(element)):
            return "vue"
    return None


def is_spa(document: DocumentAdapter) -> bool:
    return detect_spa_framework(document) is not None


# ---------------------------------------------------------------------------
# Recovery


def _block_text(markup: str) -> str:
    return BeautifulSoup(markup, "html.parser").get_text().strip()


def build_recovery_dictionary(
    segments: Sequence[Segment],
    translations: Sequence[Optional[str]],
    *,
    lang: str,
    paths: Mapping[str, str] | None = None,
) -> TranslationDictionary:
    """Map trimmed source strings to what the server rendered for them.

    ``translations`` are final strings aligned with ``segments``; html block
    entries still carry their tag tokens and are turned back into markup here.
    """

    dictionary = TranslationDictionary(lang=lang)
    for segment, translation in zip(segments, translations):
        if translation is None or translation == segment.value:
            continue
        if segment.kind in (SegmentKind.TITLE, SegmentKind.TEXT):
            dictionary.text[segment.value] = translation
        elif segment.kind in (SegmentKind.ATTRIBUTE, SegmentKind.META_DESCRIPTION):
            dictionary.attrs[segment.value] = translation
        elif segment.kind == SegmentKind.HTML_BLOCK and segment.html is not None:
            key = _block_text(segment.html.original_html)
            if key:
                dictionary.html[key] = placeholders_to_html(translation, segment.html.replacements)
    for original, translated in (paths or {}).items():
        if translated != original:
            dictionary.paths[original] = translated
    return dictionary


def mark_skip_selectors(document: DocumentAdapter, selectors: Sequence[str]) -> int:
    """Flag elements matched by configured skip selectors for the recovery script."""

    marked = 0
    for selector in selectors:
        if selector in DEFAULT_SKIP_SELECTORS:
            continue
        try:
            elements = document.select(selector)
        except InvalidSelectorError as exc:
            logger.warning("Ignoring skip selector: %s", exc)
            continue
        for element in elements:
            document.set_attr(element, SKIP_ATTR, "")
            marked += 1
    return marked


def _prepend_style(document: DocumentAdapter, head: Any, css: str, marker: str) -> None:
    style = document.create_element("style", {MARKER_ATTR: marker}, css)
    children = document.children(head)
    if children:
        document.insert_before(children[0], style)
    else:
        document.append(head, style)


def _append_scripts(document: DocumentAdapter, body: Any, src: str, marker: str, inline: str) -> None:
    document.append(body, document.create_element("script", {"defer": "", "src": src, MARKER_ATTR: marker}))
    document.append(body, document.create_element("script", {MARKER_ATTR: f"{marker}-data"}, inline))


def inject_recovery_assets(document: DocumentAdapter, dictionary: TranslationDictionary) -> bool:
    head, body = document.head(), document.body()
    if head is None or body is None:
        logger.warning("Not injecting recovery assets: document has no <head> or <body>")
        return False
    _prepend_style(document, head, FLICKER_GUARD_CSS, "flicker-guard")
    _append_scripts(
        document,
        body,
        RECOVERY_SCRIPT_PATH,
        "recovery",
        f"window.{RECOVERY_GLOBAL}={_script_json(dictionary.to_payload())}",
    )
    return True


# ---------------------------------------------------------------------------
# Deferred


def dedupe_pending(pending: Sequence[PendingSegment]) -> List[PendingSegment]:
    """Keep the first descriptor per ``(hash, kind, attr)``."""

    seen: Dict[tuple, PendingSegment] = {}
    for segment in pending:
        seen.setdefault((segment.hash, segment.kind, segment.attr), segment)
    return list(seen.values())


def inject_deferred_assets(document: DocumentAdapter, pending: Sequence[PendingSegment]) -> List[PendingSegment]:
    """Embed the pending descriptors and the polling script.

    Returns the descriptors actually embedded.
    """

    unique = dedupe_pending(pending)
    if not unique:
        return []
    head, body = document.head(), document.body()
    if head is None or body is None:
        logger.warning("Not injecting deferred assets: document has no <head> or <body>")
        return []
    _prepend_style(document, head, SKELETON_CSS, "skeleton")
    _append_scripts(
        document,
        body,
        DEFERRED_SCRIPT_PATH,
        "deferred",
        f"window.{DEFERRED_GLOBAL}={_script_json([segment.to_payload() for segment in unique])}",
    )
    return unique
