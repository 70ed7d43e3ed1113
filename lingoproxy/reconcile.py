"""Server-side models of the two client reconciliation loops.

``static/recovery.js`` and ``static/deferred.js`` are what browsers run.
The classes here follow the same states and DOM rules against a
``DocumentAdapter`` so the behaviour can be exercised without a browser,
and so ``translate-file --settle`` can produce the page a visitor ends up
seeing.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Mapping, Optional, Sequence
from urllib.parse import urlsplit

from .assets import INITIAL_DELAY_MS, MAX_POLLS, OBSERVE_WINDOW_MS, POLL_INTERVAL_MS, READY_CLASS
from .dom import DocumentAdapter, Node
from .structures import PendingSegment, TranslationDictionary, Whitespace
from .walker import (
    BLOCK_TAGS,
    COMMENT_PREFIX,
    PENDING_ATTR,
    PENDING_ATTR_PREFIX,
    SKELETON_CLASS,
    SKIP_ATTR,
    SKIP_TAGS,
    TRANSLATE_ATTRS,
)

logger = logging.getLogger(__name__)

Lookup = Callable[[List[Dict[str, str]]], Awaitable[Mapping[str, str]]]
Scheduler = Callable[[float, Callable[[], None]], Any]


def _walk(document: DocumentAdapter, node: Node) -> Iterator[Node]:
    for child in document.children(node):
        yield child
        yield from _walk(document, child)


def _next_sibling(document: DocumentAdapter, node: Node) -> Optional[Node]:
    parent = document.parent(node)
    if parent is None:
        return None
    siblings = document.children(parent)
    for position, sibling in enumerate(siblings):
        if sibling is node:
            return siblings[position + 1] if position + 1 < len(siblings) else None
    return None


# ---------------------------------------------------------------------------
# Recovery


@dataclass
class Mutation:
    """One observed DOM change: added nodes or a character-data edit."""

    kind: str
    target: Node
    added: Sequence[Node] = ()


class RecoveryReconciler:
    """idle -> applying -> observing -> done.

    ``scheduler(delay_seconds, callback)`` arms the end of the observation
    window; without one the caller ends it with :meth:`finish`.
    """

    def __init__(
        self,
        document: DocumentAdapter,
        dictionary: TranslationDictionary,
        *,
        origin_host: str = "",
        scheduler: Scheduler | None = None,
        window_ms: int = OBSERVE_WINDOW_MS,
    ) -> None:
        self.document = document
        self.dictionary = dictionary
        self.origin_host = origin_host
        self.scheduler = scheduler
        self.window_ms = window_ms
        self.state = "idle"
        self.applied = 0

    def start(self) -> None:
        body = self.document.body()
        if body is None:
            self.finish()
            return
        self.state = "applying"
        self._apply_title()
        self._apply_all(body)
        self._apply_paths(body)
        self.state = "observing"
        if self.scheduler is not None:
            self.scheduler(self.window_ms / 1000.0, self.finish)

    def notify(self, mutations: Sequence[Mutation]) -> None:
        """Re-apply translations to nodes a client framework re-rendered."""

        if self.state != "observing":
            return
        added_elements = False
        for mutation in mutations:
            if mutation.kind == "characterData":
                parent = self.document.parent(mutation.target)
                if parent is not None and not self._skipped(parent):
                    self._apply_text_node(mutation.target)
                continue
            for node in mutation.added:
                if self.document.is_element(node):
                    added_elements = True
                    self._apply_all(node)
                elif self.document.is_text(node):
                    parent = self.document.parent(node)
                    if parent is not None and not self._skipped(parent):
                        self._apply_text_node(node)
        body = self.document.body()
        if added_elements and body is not None:
            self._apply_paths(body)

    def finish(self) -> None:
        self.state = "done"
        body = self.document.body()
        if body is not None:
            self.document.add_class(body, READY_CLASS)

    # --- Matching ---------------------------------------------------------

    def _skipped(self, element: Node) -> bool:
        document = self.document
        current: Optional[Node] = element
        while current is not None:
            if document.get_attr(current, SKIP_ATTR) is not None or document.get_attr(current, PENDING_ATTR) is not None:
                return True
            current = document.parent(current)
        return False

    def _apply_title(self) -> None:
        title = self.document.select_one("title")
        if title is None or self.document.get_attr(title, PENDING_ATTR) is not None:
            return
        translated = self.dictionary.text.get(self.document.text(title).strip())
        if translated is not None:
            self.document.set_text(title, translated)
            self.applied += 1

    def _apply_all(self, root: Node) -> None:
        processed = self._apply_html(root)
        self._apply_text(root, processed)
        self._apply_attrs(root)

    def _apply_html(self, root: Node) -> List[Node]:
        document = self.document
        processed: List[Node] = []
        if not self.dictionary.html:
            return processed
        candidates = [root] if document.tag_name(root) in BLOCK_TAGS else []
        candidates.extend(element for element in document.iter_elements(root) if document.tag_name(element) in BLOCK_TAGS)
        for element in candidates:
            if document.tag_name(element) == "pre" or self._skipped(element):
                continue
            translated = self.dictionary.html.get(document.text(element).strip())
            if translated is not None:
                document.set_inner_html(element, translated)
                processed.append(element)
                self.applied += 1
        return processed

    def _apply_text(self, root: Node, processed: Sequence[Node]) -> None:
        document = self.document
        covered = {id(element) for element in processed}
        for element in processed:
            covered.update(id(node) for node in _walk(document, element))
        for node in list(_walk(document, root)):
            if not document.is_text(node) or id(node) in covered:
                continue
            parent = document.parent(node)
            if parent is None or document.tag_name(parent) in SKIP_TAGS or self._skipped(parent):
                continue
            self._apply_text_node(node)

    def _apply_text_node(self, node: Node) -> None:
        raw = self.document.text(node)
        trimmed = raw.strip()
        if not trimmed:
            return
        translated = self.dictionary.text.get(trimmed)
        if translated is None or translated == trimmed:
            return
        self.document.set_text(node, Whitespace.of(raw).wrap(translated))
        self.applied += 1

    def _apply_attrs(self, root: Node) -> None:
        document = self.document
        elements = [root] if document.is_element(root) else []
        elements.extend(document.iter_elements(root))
        for element in elements:
            if self._skipped(element):
                continue
            for name in TRANSLATE_ATTRS:
                value = document.get_attr(element, name)
                if value is None or document.get_attr(element, PENDING_ATTR_PREFIX + name) is not None:
                    continue
                translated = self.dictionary.attrs.get(value.strip())
                if translated is not None:
                    document.set_attr(element, name, translated)
                    self.applied += 1

    def _apply_paths(self, root: Node) -> None:
        document = self.document
        for selector, attr in (("a[href]", "href"), ("form[action]", "action")):
            for element in document.select(selector, root):
                value = document.get_attr(element, attr) or ""
                parts = urlsplit(value)
                if parts.netloc and parts.hostname != self.origin_host.split(":", 1)[0]:
                    continue
                translated = self.dictionary.paths.get(parts.path)
                if translated is None or translated == parts.path:
                    continue
                rewritten = translated
                if parts.query:
                    rewritten += "?" + parts.query
                if parts.fragment:
                    rewritten += "#" + parts.fragment
                document.set_attr(element, attr, rewritten)


# ---------------------------------------------------------------------------
# Deferred


@dataclass
class PollReport:
    """What a finished deferred loop did."""

    applied: Dict[str, str] = field(default_factory=dict)
    fallback: List[str] = field(default_factory=list)
    polls: int = 0
    errors: int = 0


class DeferredPoller:
    """delayed -> polling(attempt) -> settled.

    ``lookup`` receives the pending descriptors and returns the hashes that
    are ready. Any exception from it counts as a transient poll failure.
    """

    def __init__(
        self,
        document: DocumentAdapter,
        pending: Sequence[PendingSegment],
        lookup: Lookup,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        initial_delay: float = INITIAL_DELAY_MS / 1000.0,
        interval: float = POLL_INTERVAL_MS / 1000.0,
        max_polls: int = MAX_POLLS,
    ) -> None:
        self.document = document
        self.pending = list(pending)
        self.lookup = lookup
        self.sleep = sleep
        self.initial_delay = initial_delay
        self.interval = interval
        self.max_polls = max_polls
        self.state = "delayed"
        self.attempt = 0

    async def run(self) -> PollReport:
        report = PollReport()
        if not self.pending:
            self.state = "settled"
            return report
        await self.sleep(self.initial_delay)
        pending = list(self.pending)
        while pending and self.attempt < self.max_polls:
            self.state = "polling"
            report.polls += 1
            try:
                translations = await self.lookup([segment.to_payload() for segment in pending])
            except Exception as exc:
                logger.warning("Deferred poll %d failed: %s", self.attempt + 1, exc)
                report.errors += 1
            else:
                still: List[PendingSegment] = []
                for segment in pending:
                    translation = translations.get(segment.hash)
                    if translation is None:
                        still.append(segment)
                    elif self.apply(segment, translation):
                        report.applied[segment.hash] = translation
                    else:
                        self.show_original(segment)
                        report.fallback.append(segment.hash)
                pending = still
            self.pending = pending
            self.attempt += 1
            if pending and self.attempt < self.max_polls:
                await self.sleep(self.interval)
        for segment in pending:
            self.show_original(segment)
            report.fallback.append(segment.hash)
        self.cleanup()
        self.pending = []
        self.state = "settled"
        return report

    # --- DOM updates ------------------------------------------------------

    def _marked(self, hash_value: str, suffix: str = "") -> List[Node]:
        return self.document.select(f'[{PENDING_ATTR}="{hash_value}"]{suffix}')

    def _clear(self, element: Node) -> None:
        self.document.remove_class(element, SKELETON_CLASS)
        self.document.remove_attr(element, PENDING_ATTR)

    def _comments(self, hash_value: str) -> List[Node]:
        body = self.document.body()
        if body is None:
            return []
        marker = f"{COMMENT_PREFIX}{hash_value}"
        return [
            node
            for node in _walk(self.document, body)
            if self.document.is_comment(node) and self.document.text(node) == marker
        ]

    def apply(self, segment: PendingSegment, translation: str) -> bool:
        """Write ``translation`` wherever ``segment.hash`` is marked."""

        document = self.document
        found = False
        if segment.kind == "html":
            for element in self._marked(segment.hash):
                document.set_inner_html(element, translation)
                self._clear(element)
                found = True
        elif segment.kind == "text":
            for comment in self._comments(segment.hash):
                node = _next_sibling(document, comment)
                if node is None or not document.is_text(node):
                    continue
                parent = document.parent(node)
                document.set_text(node, Whitespace.of(document.text(node)).wrap(translation))
                if parent is not None and document.has_class(parent, SKELETON_CLASS):
                    self._clear(parent)
                document.remove(comment)
                found = True
            for element in self._marked(segment.hash, ":not(title)"):
                self._clear(element)
                found = True
            title = document.select_one(f'title[{PENDING_ATTR}="{segment.hash}"]')
            if title is not None:
                document.set_text(title, translation)
                document.remove_attr(title, PENDING_ATTR)
                found = True
        elif segment.kind == "attr" and segment.attr:
            marker = PENDING_ATTR_PREFIX + segment.attr
            for element in document.select(f'[{marker}="{segment.hash}"]'):
                document.set_attr(element, segment.attr, translation)
                document.remove_attr(element, marker)
                found = True
        return found

    def show_original(self, segment: PendingSegment) -> None:
        document = self.document
        if segment.kind == "html":
            for element in self._marked(segment.hash):
                self._clear(element)
        elif segment.kind == "text":
            for comment in self._comments(segment.hash):
                parent = document.parent(comment)
                if parent is not None and document.has_class(parent, SKELETON_CLASS):
                    self._clear(parent)
                document.remove(comment)
            for element in self._marked(segment.hash):
                self._clear(element)
        elif segment.kind == "attr" and segment.attr:
            marker = PENDING_ATTR_PREFIX + segment.attr
            for element in document.select(f'[{marker}="{segment.hash}"]'):
                document.remove_attr(element, marker)

    def cleanup(self) -> None:
        for element in self.document.select(f".{SKELETON_CLASS}"):
            self._clear(element)
