"""Placeholder codec: reversible tokens for inline markup, brand terms and patterns."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Sequence, Tuple

from .errors import PlaceholderViolation
from .structures import PatternReplacement, SkipReplacement, TagReplacement

TOKEN_PATTERN = re.compile(r"\[(/?)([A-Z]+)(\d+)\]")

PAIRED_KINDS = frozenset({"HB", "HE", "HA", "HS", "HG"})
STANDALONE_KINDS = frozenset({"HV", "N", "P", "S"})

HTML_TAG_KINDS: Dict[str, str] = {
    "b": "HB",
    "strong": "HB",
    "em": "HE",
    "i": "HE",
    "a": "HA",
    "span": "HS",
    "br": "HV",
    "hr": "HV",
    "img": "HV",
    "wbr": "HV",
}
for _generic in (
    "u", "sub", "sup", "mark", "small", "s", "del", "ins",
    "abbr", "q", "cite", "code", "kbd", "time",
):
    HTML_TAG_KINDS[_generic] = "HG"

VOID_TAGS = frozenset({"br", "hr", "img", "wbr"})

HTML_TAG_PATTERN = re.compile(r"<(/?)(\w+)([^>]*)>")
NUMERIC_ENTITY_PATTERN = re.compile(r"&#(\d+);")
NUMERIC_PATTERN = re.compile(r"[0-9.,]*\d[0-9.,]*")
EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

# Applied in this order; restored in reverse.
PATTERN_ORDER = ("pii", "numeric")
_PATTERN_REGEX = {"pii": EMAIL_PATTERN, "numeric": NUMERIC_PATTERN}
_PATTERN_KIND = {"pii": "P", "numeric": "N"}


class TokenRole(str, Enum):
    OPEN = "open"
    CLOSE = "close"
    STANDALONE = "standalone"


@dataclass(frozen=True)
class Token:
    """A recognised placeholder token and where it sits in its string."""

    role: TokenRole
    kind: str
    index: int
    start: int
    end: int

    @property
    def ident(self) -> str:
        return f"{self.kind}{self.index}"

    @property
    def text(self) -> str:
        if self.role == TokenRole.CLOSE:
            return f"[/{self.ident}]"
        return f"[{self.ident}]"


def tokenize(text: str) -> List[Token]:
    """Return the placeholder tokens in ``text`` in order of appearance.

    Bracketed text that does not follow the grammar (``[required]``, ``[A]``)
    or that names an unknown kind is ordinary content.
    """

    tokens: List[Token] = []
    for match in TOKEN_PATTERN.finditer(text):
        slash, kind, number = match.groups()
        if slash:
            if kind not in PAIRED_KINDS:
                continue
            role = TokenRole.CLOSE
        elif kind in PAIRED_KINDS:
            role = TokenRole.OPEN
        elif kind in STANDALONE_KINDS:
            role = TokenRole.STANDALONE
        else:
            continue
        tokens.append(Token(role, kind, int(number), match.start(), match.end()))
    return tokens


def split_on_tokens(text: str) -> Iterator[Tuple[bool, str]]:
    """Yield ``(is_token, chunk)`` pieces covering ``text`` exactly."""

    cursor = 0
    for token in tokenize(text):
        if token.start > cursor:
            yield False, text[cursor:token.start]
        yield True, text[token.start:token.end]
        cursor = token.end
    if cursor < len(text):
        yield False, text[cursor:]


def strip_tokens(text: str) -> str:
    return "".join(chunk for is_token, chunk in split_on_tokens(text) if not is_token)


# ---------------------------------------------------------------------------
# Inline html


def normalize_whitespace(text: str) -> str:
    collapsed = re.sub(r"[\r\n\t]+", " ", text)
    return re.sub(r"\s+", " ", collapsed)


@dataclass
class _TagMatch:
    full: str
    closing: bool
    name: str
    start: int
    placeholder: str | None = None


def html_to_placeholders(
    inner_html: str,
    *,
    preserve_whitespace: bool = False,
) -> Tuple[str, List[TagReplacement]]:
    """Replace known inline tags in ``inner_html`` with placeholder tokens.

    Unknown tags and tags without a partner are left untouched. An element
    with nothing between its tags (icon fonts) becomes one ``HV`` token.
    """

    result = inner_html if preserve_whitespace else normalize_whitespace(inner_html)
    result = NUMERIC_ENTITY_PATTERN.sub(lambda m: chr(int(m.group(1))), result)

    tags = [
        _TagMatch(
            full=match.group(0),
            closing=match.group(1) == "/",
            name=match.group(2).lower(),
            start=match.start(),
        )
        for match in HTML_TAG_PATTERN.finditer(result)
    ]

    counters: Dict[str, int] = {}
    stack: List[Tuple[_TagMatch, str]] = []
    placed: List[Tuple[int, TagReplacement]] = []

    def next_placeholder(kind: str) -> str:
        counters[kind] = counters.get(kind, 0) + 1
        return f"[{kind}{counters[kind]}]"

    for tag in tags:
        kind = HTML_TAG_KINDS.get(tag.name)
        if kind is None:
            continue
        if tag.name in VOID_TAGS:
            if tag.closing:
                continue
            tag.placeholder = next_placeholder(kind)
            placed.append(
                (tag.start, TagReplacement(placeholder=tag.placeholder, open_tag=tag.full, tag_name=tag.name))
            )
        elif not tag.closing:
            stack.append((tag, next_placeholder(kind)))
        else:
            for position in range(len(stack) - 1, -1, -1):
                opener, placeholder = stack[position]
                if opener.name != tag.name:
                    continue
                del stack[position]
                content_start = opener.start + len(opener.full)
                if result[content_start:tag.start] == "":
                    counters[kind] -= 1
                    void_placeholder = next_placeholder("HV")
                    opener.placeholder = void_placeholder
                    tag.placeholder = ""
                    placed.append(
                        (
                            opener.start,
                            TagReplacement(
                                placeholder=void_placeholder,
                                open_tag=opener.full + tag.full,
                                tag_name=opener.name,
                            ),
                        )
                    )
                else:
                    close_placeholder = placeholder.replace("[", "[/", 1)
                    opener.placeholder = placeholder
                    tag.placeholder = close_placeholder
                    placed.append(
                        (
                            opener.start,
                            TagReplacement(
                                placeholder=placeholder,
                                open_tag=opener.full,
                                tag_name=opener.name,
                                close_placeholder=close_placeholder,
                                close_tag=tag.full,
                            ),
                        )
                    )
                break

    for tag in sorted(tags, key=lambda item: item.start, reverse=True):
        if tag.placeholder is None:
            continue
        result = result[:tag.start] + tag.placeholder + result[tag.start + len(tag.full):]

    replacements = [replacement for _, replacement in sorted(placed, key=lambda item: item[0])]
    return result.strip(), replacements


def placeholders_to_html(text: str, replacements: Sequence[TagReplacement]) -> str:
    """Swap placeholder tokens back for their original markup."""

    result = text
    for replacement in replacements:
        result = result.replace(replacement.placeholder, replacement.open_tag, 1)
        if replacement.close_placeholder and replacement.close_tag is not None:
            result = result.replace(replacement.close_placeholder, replacement.close_tag, 1)
    return result


# ---------------------------------------------------------------------------
# Skip words


def apply_skip_words(
    text: str,
    skip_words: Sequence[str],
) -> Tuple[str, List[SkipReplacement]]:
    """Hide brand terms behind ``[S{n}]`` tokens, matching whole words case-insensitively."""

    if not skip_words:
        return text, []

    replacements: List[SkipReplacement] = []
    modified = text
    counter = 1
    for word in skip_words:
        if not word:
            continue
        pattern = re.compile(rf"\b{re.escape(word)}\b", re.IGNORECASE)
        spans = [(m.start(), m.end()) for m in pattern.finditer(modified)]
        batch: List[SkipReplacement] = []
        # Numbered left to right, substituted right to left.
        for start, end in spans:
            batch.append(SkipReplacement(original=modified[start:end], placeholder=f"[S{counter}]"))
            counter += 1
        for (start, end), replacement in reversed(list(zip(spans, batch))):
            modified = modified[:start] + replacement.placeholder + modified[end:]
        replacements.extend(batch)
    return modified, replacements


def restore_skip_words(text: str, replacements: Sequence[SkipReplacement]) -> str:
    restored = text
    for replacement in replacements:
        restored = restored.replace(replacement.placeholder, replacement.original)
    return restored


# ---------------------------------------------------------------------------
# Numeric and e-mail patterns


@dataclass
class PatternizedText:
    """Result of replacing pattern values with numbered tokens."""

    original: str
    normalized: str
    replacements: List[PatternReplacement] = field(default_factory=list)
    is_upper_case: bool = False


def is_all_upper_case(text: str) -> bool:
    letters = re.sub(r"[^a-zA-Z]", "", strip_tokens(text))
    return bool(letters) and letters == letters.upper()


def apply_patterns(text: str, patterns: Sequence[str] = PATTERN_ORDER) -> PatternizedText:
    """Replace e-mail addresses and numbers with ``[P{n}]`` / ``[N{n}]`` tokens.

    Digits inside existing placeholder tokens are left alone.
    """

    upper = is_all_upper_case(text)
    replacements: List[PatternReplacement] = []
    normalized = text
    for name in PATTERN_ORDER:
        if name not in patterns:
            continue
        regex = _PATTERN_REGEX[name]
        kind = _PATTERN_KIND[name]
        values: List[str] = []

        def substitute(match: re.Match[str]) -> str:
            values.append(match.group(0))
            return f"[{kind}{len(values)}]"

        pieces = [
            chunk if is_token else regex.sub(substitute, chunk)
            for is_token, chunk in split_on_tokens(normalized)
        ]
        normalized = "".join(pieces)
        if values:
            replacements.append(PatternReplacement(pattern=name, values=tuple(values)))
    return PatternizedText(
        original=text,
        normalized=normalized,
        replacements=replacements,
        is_upper_case=upper,
    )


def restore_patterns(
    text: str,
    replacements: Sequence[PatternReplacement],
    is_upper_case: bool = False,
) -> str:
    result = text
    for replacement in reversed(list(replacements)):
        for position, value in enumerate(replacement.values, start=1):
            result = result.replace(f"[{replacement.kind}{position}]", value)
    return result.upper() if is_upper_case else result


# ---------------------------------------------------------------------------
# Codec entry points


@dataclass
class ProtectedText:
    text: str
    tags: List[TagReplacement] = field(default_factory=list)
    skips: List[SkipReplacement] = field(default_factory=list)


def protect(
    text: str,
    skip_words: Sequence[str] = (),
    *,
    html: bool = False,
    preserve_whitespace: bool = False,
) -> ProtectedText:
    """Protect inline markup (when ``html``) and then brand terms."""

    tags: List[TagReplacement] = []
    if html:
        text, tags = html_to_placeholders(text, preserve_whitespace=preserve_whitespace)
    text, skips = apply_skip_words(text, skip_words)
    return ProtectedText(text=text, tags=tags, skips=skips)


def restore(
    translated: str,
    tags: Sequence[TagReplacement] = (),
    skips: Sequence[SkipReplacement] = (),
) -> str:
    """Undo :func:`protect` in the exact reverse order."""

    return placeholders_to_html(restore_skip_words(translated, skips), tags)


# ---------------------------------------------------------------------------
# Validation


@dataclass
class ValidationResult:
    missing: List[str] = field(default_factory=list)
    extra: List[str] = field(default_factory=list)
    unmatched_open: List[str] = field(default_factory=list)
    unmatched_close: List[str] = field(default_factory=list)
    nesting_errors: List[str] = field(default_factory=list)

    @property
    def errors(self) -> List[str]:
        messages: List[str] = []
        if self.missing:
            messages.append("Missing: " + ", ".join(self.missing))
        if self.extra:
            messages.append("Unexpected: " + ", ".join(self.extra))
        if self.unmatched_open:
            messages.append("Unclosed tags: " + ", ".join(self.unmatched_open))
        if self.unmatched_close:
            messages.append("Extra closing tags: " + ", ".join(self.unmatched_close))
        messages.extend(self.nesting_errors)
        return messages

    @property
    def valid(self) -> bool:
        return not self.errors


def _token_set(text: str) -> List[str]:
    seen: Dict[str, None] = {}
    for token in tokenize(text):
        seen.setdefault(token.text, None)
    return list(seen)


def validate(original: str, translated: str) -> ValidationResult:
    """Compare the tokens of ``translated`` against ``original``."""

    original_tokens = _token_set(original)
    translated_tokens = _token_set(translated)
    result = ValidationResult(
        missing=[token for token in original_tokens if token not in translated_tokens],
        extra=[token for token in translated_tokens if token not in original_tokens],
    )

    open_counts: Dict[str, int] = {}
    stack: List[str] = []
    for token in tokenize(translated):
        if token.role == TokenRole.OPEN:
            open_counts[token.ident] = open_counts.get(token.ident, 0) + 1
            stack.append(token.ident)
        elif token.role == TokenRole.CLOSE:
            if open_counts.get(token.ident, 0) > 0:
                open_counts[token.ident] -= 1
            else:
                result.unmatched_close.append(token.text)
            if not stack:
                continue
            expected = stack[-1]
            if token.ident != expected:
                result.nesting_errors.append(
                    f"Invalid nesting: [/{token.ident}] closes before [/{expected}]"
                )
            for position in range(len(stack) - 1, -1, -1):
                if stack[position] == token.ident:
                    del stack[position]
                    break

    for ident, count in open_counts.items():
        result.unmatched_open.extend([f"[{ident}]"] * count)
    return result


def ensure_valid(original: str, translated: str) -> ValidationResult:
    """Validate and raise :class:`PlaceholderViolation` on any error."""

    result = validate(original, translated)
    if not result.valid:
        raise PlaceholderViolation(
            "Placeholder validation failed: " + "; ".join(result.errors),
            result,
        )
    return result
