"""Segment walker: one traversal shared by extraction and application."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional, Sequence, Tuple
from urllib.parse import urlsplit

from .dom import DocumentAdapter, InvalidSelectorError, Node
from .errors import ErrorCategory, ExtractionMismatch, PlaceholderViolation
from .placeholders import (
    html_to_placeholders,
    normalize_whitespace,
    placeholders_to_html,
    validate,
)
from .policy import ErrorPolicy
from .structures import HtmlBlockMeta, PendingSegment, Segment, SegmentKind, Whitespace

logger = logging.getLogger(__name__)

BLOCK_TAGS = frozenset(
    {
        "p", "h1", "h2", "h3", "h4", "h5", "h6", "li", "td", "th", "dd", "dt",
        "figcaption", "caption", "label", "legend", "summary", "pre",
    }
)
INLINE_TAGS = frozenset(
    {
        "b", "strong", "em", "i", "a", "span", "br", "img", "wbr", "sub", "sup",
        "small", "mark", "u", "s", "del", "ins", "abbr", "time", "code", "kbd",
        "q", "cite",
    }
)
SKIP_TAGS = frozenset({"script", "style", "noscript", "textarea", "code"})
TRANSLATE_ATTRS = ("title", "placeholder", "aria-label", "alt")
# Covered by the title phase when the text phase starts at the root.
HEAD_ONLY_TAGS = frozenset({"head", "title"})

PENDING_ATTR = "data-lingoproxy-pending"
PENDING_ATTR_PREFIX = "data-lingoproxy-pending-"
SKIP_ATTR = "data-lingoproxy-skip"
SKELETON_CLASS = "lingoproxy-skeleton"
COMMENT_PREFIX = "lingoproxy:"

DEFAULT_SKIP_SELECTORS = (".notranslate", "[translate=no]", f"[{SKIP_ATTR}]")


@dataclass(frozen=True)
class WalkRules:
    """Exclusions applied by the traversal."""

    skip_selectors: Tuple[str, ...] = ()
    group_blocks: bool = True

    @property
    def selectors(self) -> Tuple[str, ...]:
        return DEFAULT_SKIP_SELECTORS + tuple(self.skip_selectors)


@dataclass
class Slot:
    """A visited position: its segment plus callbacks bound to the DOM node."""

    segment: Segment
    write: Callable[[str], None]
    mark: Callable[[str], PendingSegment]


@dataclass
class ApplyResult:
    applied: int = 0
    pending: List[PendingSegment] = field(default_factory=list)


class _Walk:
    """State for one pass over a document."""

    def __init__(
        self,
        document: DocumentAdapter,
        rules: WalkRules,
        policy: ErrorPolicy,
    ) -> None:
        self.document = document
        self.rules = rules
        self.policy = policy
        self.selectors = self._usable_selectors()
        self.grouped: set[int] = set()
        self.block_writes: List[Callable[[], None]] = []

    def _usable_selectors(self) -> List[str]:
        usable: List[str] = []
        for selector in self.rules.selectors:
            try:
                self.document.select(selector)
            except InvalidSelectorError as exc:
                logger.warning("Ignoring skip selector: %s", exc)
                continue
            usable.append(selector)
        return usable

    # --- Skip rules -------------------------------------------------------

    def element_skipped(self, element: Node) -> bool:
        if not self.document.is_element(element):
            return False
        if self.document.tag_name(element) in SKIP_TAGS:
            return True
        return any(self.document.matches(element, selector) for selector in self.selectors)

    def inside_skipped(self, node: Node) -> bool:
        return any(self.element_skipped(element) for element in self.document.ancestors(node))

    # --- Phases -----------------------------------------------------------

    def slots(self) -> Iterator[Slot]:
        root = self.document.root()
        if root is None:
            return
        yield from self._title()
        yield from self._meta_description()
        if self.rules.group_blocks:
            yield from self._blocks()
        # Without a <body> tag the page content sits directly under the root.
        body = self.document.body()
        if body is None:
            body = root
        if not self.inside_skipped(body):
            yield from self._text_nodes(body)
        if not self.element_skipped(root):
            yield from self._attributes(root, include_self=True)

    def _title(self) -> Iterator[Slot]:
        document = self.document
        title = document.select_one("title")
        if title is None or self.inside_skipped(title):
            return
        raw = document.text(title)
        if not raw.strip():
            return
        whitespace = Whitespace.of(raw)
        segment = Segment(kind=SegmentKind.TITLE, value=raw.strip(), whitespace=whitespace)

        def write(translation: str) -> None:
            document.set_text(title, whitespace.wrap(translation))

        def mark(hash_value: str) -> PendingSegment:
            document.set_attr(title, PENDING_ATTR, hash_value)
            return PendingSegment(hash=hash_value, kind="text", content=segment.value)

        yield Slot(segment, write, mark)

    def _meta_description(self) -> Iterator[Slot]:
        meta = self.document.select_one('meta[name="description"]')
        if meta is None or self.inside_skipped(meta):
            return
        slot = self._attribute_slot(meta, "content", SegmentKind.META_DESCRIPTION)
        if slot is not None:
            yield slot

    def _blocks(self) -> Iterator[Slot]:
        blocks = list(self._find_blocks(self.document.root(), skipped=False))
        for element in blocks:
            slot = self._block_slot(element)
            if slot is not None:
                self.grouped.add(id(element))
                yield slot

    def _find_blocks(self, element: Node, *, skipped: bool) -> Iterator[Node]:
        document = self.document
        skipped = skipped or self.element_skipped(element)
        if skipped:
            return
        if document.tag_name(element) in BLOCK_TAGS and self._groupable(element):
            yield element
            return
        for child in document.children(element):
            if document.is_element(child):
                yield from self._find_blocks(child, skipped=skipped)

    def _groupable(self, element: Node) -> bool:
        """True when the block holds text plus at least one inline element, and nothing else."""

        found_inline = False
        pending = [element]
        while pending:
            current = pending.pop()
            for child in self.document.children(current):
                if not self.document.is_element(child):
                    continue
                name = self.document.tag_name(child)
                if name not in INLINE_TAGS or name in SKIP_TAGS:
                    return False
                if any(self.document.matches(child, selector) for selector in self.selectors):
                    return False
                found_inline = True
                pending.append(child)
        return found_inline and bool(self.document.text(element).strip())

    def _block_slot(self, element: Node) -> Optional[Slot]:
        document = self.document
        preserve = document.tag_name(element) == "pre"
        original_html = document.inner_html(element)
        value, replacements = html_to_placeholders(original_html, preserve_whitespace=preserve)
        if not value:
            return None
        normalized = original_html if preserve else normalize_whitespace(original_html)
        whitespace = Whitespace.of(normalized)
        meta = HtmlBlockMeta(element=element, original_html=original_html, replacements=tuple(replacements))
        segment = Segment(kind=SegmentKind.HTML_BLOCK, value=value, whitespace=whitespace, html=meta)
        policy = self.policy

        def write(translation: str) -> None:
            result = validate(segment.value, translation)
            if not result.valid:
                policy.handle_violation(
                    PlaceholderViolation(
                        f"Keeping source markup for <{document.tag_name(element)}> block: "
                        + "; ".join(result.errors),
                        result,
                    )
                )
                return
            self.block_writes.append(lambda: self._rewrite_block(element, meta, whitespace, translation, preserve))

        def mark(hash_value: str) -> PendingSegment:
            document.add_class(element, SKELETON_CLASS)
            document.set_attr(element, PENDING_ATTR, hash_value)
            return PendingSegment(
                hash=hash_value,
                kind="html",
                content=original_html,
                show_skeleton=True,
            )

        return Slot(segment, write, mark)

    def _rewrite_block(
        self,
        element: Node,
        meta: HtmlBlockMeta,
        whitespace: Whitespace,
        translation: str,
        preserve: bool,
    ) -> None:
        # Inline tags are re-read so attribute writes made during the walk are kept.
        _, current = html_to_placeholders(self.document.inner_html(element), preserve_whitespace=preserve)
        replacements = current if len(current) == len(meta.replacements) else meta.replacements
        restored = placeholders_to_html(translation, replacements)
        self.document.set_inner_html(element, whitespace.wrap(restored))

    def finish(self) -> None:
        """Run block rewrites queued by slot writes.

        Blocks are rewritten last so that later phases, attributes of inline
        elements in particular, visit the nodes in source order.
        """

        writes, self.block_writes = self.block_writes, []
        for rewrite in writes:
            rewrite()

    def _text_nodes(self, node: Node) -> Iterator[Slot]:
        document = self.document
        for child in document.children(node):
            if document.is_text(child):
                slot = self._text_slot(child)
                if slot is not None:
                    yield slot
            elif document.is_element(child):
                if id(child) in self.grouped or self.element_skipped(child):
                    continue
                if document.tag_name(child) in HEAD_ONLY_TAGS:
                    continue
                yield from self._text_nodes(child)

    def _text_slot(self, node: Node) -> Optional[Slot]:
        document = self.document
        raw = document.text(node)
        if not raw.strip():
            return None
        whitespace = Whitespace.of(raw)
        segment = Segment(kind=SegmentKind.TEXT, value=raw.strip(), whitespace=whitespace)

        def write(translation: str) -> None:
            document.set_text(node, whitespace.wrap(translation))

        def mark(hash_value: str) -> PendingSegment:
            parent = document.parent(node)
            sole = parent is not None and self._sole_content(parent, node)
            if sole:
                document.add_class(parent, SKELETON_CLASS)
                document.set_attr(parent, PENDING_ATTR, hash_value)
            if parent is not None:
                document.insert_before(node, document.create_comment(f"{COMMENT_PREFIX}{hash_value}"))
            return PendingSegment(
                hash=hash_value,
                kind="text",
                content=segment.value,
                show_skeleton=sole,
            )

        return Slot(segment, write, mark)

    def _sole_content(self, parent: Node, node: Node) -> bool:
        count = 0
        for child in self.document.children(parent):
            if child is node or self.document.is_element(child):
                count += 1
            elif self.document.is_text(child) and self.document.text(child).strip():
                count += 1
        return count == 1

    def _attributes(self, element: Node, *, include_self: bool = False) -> Iterator[Slot]:
        document = self.document
        if include_self:
            yield from self._element_attributes(element)
        for child in document.children(element):
            if not document.is_element(child) or self.element_skipped(child):
                continue
            yield from self._element_attributes(child)
            yield from self._attributes(child)

    def _element_attributes(self, element: Node) -> Iterator[Slot]:
        for name in self.document.attr_names(element):
            if name not in TRANSLATE_ATTRS:
                continue
            slot = self._attribute_slot(element, name, SegmentKind.ATTRIBUTE)
            if slot is not None:
                yield slot

    def _attribute_slot(self, element: Node, name: str, kind: SegmentKind) -> Optional[Slot]:
        document = self.document
        raw = document.get_attr(element, name)
        if not raw or not raw.strip():
            return None
        whitespace = Whitespace.of(raw)
        segment = Segment(kind=kind, value=raw.strip(), attr_name=name, whitespace=whitespace)

        def write(translation: str) -> None:
            document.set_attr(element, name, whitespace.wrap(translation))

        def mark(hash_value: str) -> PendingSegment:
            document.set_attr(element, PENDING_ATTR_PREFIX + name, hash_value)
            return PendingSegment(hash=hash_value, kind="attr", content=segment.value, attr=name)

        return Slot(segment, write, mark)


def iter_slots(
    document: DocumentAdapter,
    rules: WalkRules | None = None,
    *,
    policy: ErrorPolicy | None = None,
) -> Iterator[Slot]:
    """Yield every translatable position of ``document`` in traversal order.

    Order: title, meta description, grouped inline-html blocks, remaining
    body text nodes (depth-first), then translatable attributes of every
    element, inline elements of grouped blocks included. Block rewrites are
    queued until the walk finishes, so attribute positions come out in source
    order whether or not earlier slots were written.
    """

    walk = _Walk(document, rules or WalkRules(), policy or ErrorPolicy())
    return walk.slots()


def extract_segments(document: DocumentAdapter, rules: WalkRules | None = None) -> List[Segment]:
    return [slot.segment for slot in iter_slots(document, rules)]


def apply_translations(
    document: DocumentAdapter,
    translations: Sequence[Optional[str]],
    segments: Sequence[Segment],
    *,
    rules: WalkRules | None = None,
    hashes: Sequence[str] | None = None,
    policy: ErrorPolicy | None = None,
) -> ApplyResult:
    """Write ``translations[i]`` onto the position ``segments[i]`` came from.

    ``None`` entries are cache misses: with ``hashes`` they are marked as
    pending for the browser, otherwise the source text stays in place.
    Divergence between the document and ``segments`` is an extraction
    mismatch; in lenient mode the remaining positions keep their source text.
    """

    policy = policy or ErrorPolicy()
    result = ApplyResult()
    if len(translations) != len(segments):
        policy.handle_error(
            ErrorCategory.EXTRACTION,
            f"Got {len(translations)} translations for {len(segments)} segments.",
            exc=ExtractionMismatch(
                f"Got {len(translations)} translations for {len(segments)} segments."
            ),
        )
        return result

    walk = _Walk(document, rules or WalkRules(), policy)
    try:
        _consume(walk, translations, segments, hashes, result)
    finally:
        walk.finish()
    return result


def _consume(
    walk: _Walk,
    translations: Sequence[Optional[str]],
    segments: Sequence[Segment],
    hashes: Sequence[str] | None,
    result: ApplyResult,
) -> None:
    policy = walk.policy
    index = 0
    for slot in walk.slots():
        if index >= len(segments):
            message = f"Document has more translatable positions than the {len(segments)} extracted."
            policy.handle_error(ErrorCategory.EXTRACTION, message, exc=ExtractionMismatch(message, index=index))
            return
        expected = segments[index]
        if slot.segment.kind != expected.kind or slot.segment.value != expected.value:
            message = (
                f"Segment {index} diverged: expected {expected.kind.value} "
                f"{expected.value[:40]!r}, found {slot.segment.kind.value} {slot.segment.value[:40]!r}."
            )
            policy.handle_error(ErrorCategory.EXTRACTION, message, exc=ExtractionMismatch(message, index=index))
            return

        translation = translations[index]
        if translation is None:
            if hashes is not None:
                result.pending.append(slot.mark(hashes[index]))
        else:
            slot.write(translation)
            result.applied += 1
        index += 1

    if index < len(segments):
        message = f"Only {index} of {len(segments)} segments were found while applying."
        policy.handle_error(ErrorCategory.EXTRACTION, message, exc=ExtractionMismatch(message, index=index))


def link_pathname(href: str, origin_host: str) -> Optional[str]:
    """Return the same-origin pathname of a link target, if any."""

    href = href.strip()
    if "://" in href:
        try:
            parts = urlsplit(href)
        except ValueError:
            return None
        if parts.hostname != origin_host.split(":", 1)[0]:
            return None
        return parts.path or "/"
    if href.startswith("/") and not href.startswith("//"):
        path = href.split("#", 1)[0].split("?", 1)[0]
        if path and path != "/":
            return path
    return None


def extract_link_pathnames(document: DocumentAdapter, origin_host: str) -> List[str]:
    """Unique same-origin pathnames of ``a[href]`` and ``form[action]`` in document order."""

    seen: dict[str, None] = {}
    for selector, attr in (("a[href]", "href"), ("form[action]", "action")):
        for element in document.select(selector):
            value = document.get_attr(element, attr)
            if not value:
                continue
            pathname = link_pathname(value, origin_host)
            if pathname:
                seen.setdefault(pathname, None)
    return list(seen)
