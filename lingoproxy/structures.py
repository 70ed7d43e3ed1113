"""Core data structures for the lingoproxy pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class SegmentKind(str, Enum):
    """Where a segment lives in the document."""

    TITLE = "title"
    META_DESCRIPTION = "meta-description"
    HTML_BLOCK = "html-block"
    TEXT = "text"
    ATTRIBUTE = "attribute"
    PATHNAME = "pathname"


@dataclass(frozen=True)
class Whitespace:
    """Leading and trailing whitespace stripped before translation."""

    leading: str = ""
    trailing: str = ""

    @classmethod
    def of(cls, raw: str) -> "Whitespace":
        stripped = raw.strip()
        if not stripped:
            return cls(leading=raw, trailing="")
        start = raw.find(stripped)
        return cls(leading=raw[:start], trailing=raw[start + len(stripped):])

    def wrap(self, text: str) -> str:
        return f"{self.leading}{text}{self.trailing}"


@dataclass(frozen=True)
class TagReplacement:
    """One inline tag (or tag pair) hidden behind a placeholder."""

    placeholder: str
    open_tag: str
    tag_name: str
    close_placeholder: Optional[str] = None
    close_tag: Optional[str] = None

    @property
    def paired(self) -> bool:
        return self.close_placeholder is not None


@dataclass(frozen=True)
class SkipReplacement:
    """A protected brand term and the token standing in for it."""

    original: str
    placeholder: str


@dataclass(frozen=True)
class PatternReplacement:
    """Ordered values replaced by numbered pattern tokens (N or P)."""

    pattern: str
    values: Tuple[str, ...]

    @property
    def kind(self) -> str:
        return "N" if self.pattern == "numeric" else "P"


@dataclass(frozen=True, eq=False)
class HtmlBlockMeta:
    """Owning element and tag replacements of a grouped html block."""

    element: Any
    original_html: str
    replacements: Tuple[TagReplacement, ...]


@dataclass(frozen=True)
class Segment:
    """One translatable unit with a stable position in document order."""

    kind: SegmentKind
    value: str
    attr_name: Optional[str] = None
    whitespace: Whitespace = field(default_factory=Whitespace)
    html: Optional[HtmlBlockMeta] = None

    def with_value(self, value: str) -> "Segment":
        return replace(self, value=value)

    @classmethod
    def pathname(cls, value: str) -> "Segment":
        return cls(kind=SegmentKind.PATHNAME, value=value)


@dataclass
class PendingSegment:
    """A cache miss the browser must poll for."""

    hash: str
    kind: str
    content: str
    attr: Optional[str] = None
    show_skeleton: bool = False

    def to_payload(self) -> Dict[str, str]:
        payload = {"hash": self.hash, "kind": self.kind, "content": self.content}
        if self.attr:
            payload["attr"] = self.attr
        return payload


@dataclass
class TranslationDictionary:
    """Recovery payload keyed by trimmed source strings."""

    lang: str
    text: Dict[str, str] = field(default_factory=dict)
    html: Dict[str, str] = field(default_factory=dict)
    attrs: Dict[str, str] = field(default_factory=dict)
    paths: Dict[str, str] = field(default_factory=dict)

    def has_entries(self) -> bool:
        return bool(self.text or self.html or self.attrs)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "html": self.html,
            "attrs": self.attrs,
            "paths": self.paths,
            "lang": self.lang,
        }


@dataclass
class TokenUsage:
    """Token and cost counters reported by the translator."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost: float = 0.0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            cost=self.cost + other.cost,
        )


@dataclass
class UsageRecord:
    """Aggregated usage written once per request or background batch."""

    site_id: int
    feature: str
    usage: TokenUsage
    api_calls: int


@dataclass(frozen=True)
class TranslationItem:
    """A single string sent to the translator."""

    text: str
    type: str = "segment"


@dataclass(frozen=True)
class ProxyOptions:
    """Runtime options for one proxied site."""

    site_id: int = 1
    origin: str = ""
    source_lang: str = "en"
    target_lang: str = "es"
    style: str = "balanced"
    skip_words: Tuple[str, ...] = ()
    skip_selectors: Tuple[str, ...] = ()
    skip_paths: Tuple[str, ...] = ()
    patterns: Tuple[str, ...] = ("pii", "numeric")
    translate_paths: bool = True
    deferred: bool = True
    strict: bool = False
    max_items: int = 128
    max_chars: int = 30000
    translation_timeout: float = 10.0
    fetch_timeout: float = 5.0

    @property
    def origin_host(self) -> str:
        host = self.origin.split("://", 1)[-1]
        return host.split("/", 1)[0]


@dataclass
class RenderStats:
    """Report returned after rendering a page."""

    extracted: int = 0
    cached: int = 0
    translated: int = 0
    pending: int = 0
    unique: int = 0
    batches: int = 0
    total_paths: int = 0
    new_paths: int = 0
    elapsed_ms: int = 0
    usage: TokenUsage = field(default_factory=TokenUsage)
    error_messages: List[str] = field(default_factory=list)
