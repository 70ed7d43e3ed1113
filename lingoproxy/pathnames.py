"""URL pathname normalisation, skip rules, ASCII sanitising and link rewriting."""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Pattern, Sequence, Union
from urllib.parse import urlsplit, urlunsplit

from .dom import DocumentAdapter
from .placeholders import PatternizedText, apply_patterns, restore_patterns
from .structures import PatternReplacement

SkipRule = Union[str, Pattern[str]]

PATH_TOKEN_PATTERN = re.compile(r"\[[A-Z]+\d+\]")
UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9\-._~/]")

_SPECIAL_LETTERS = {
    "ß": "ss",
    "æ": "ae",
    "Æ": "AE",
    "œ": "oe",
    "Œ": "OE",
    "ø": "o",
    "Ø": "O",
    "ł": "l",
    "Ł": "L",
    "đ": "d",
    "Đ": "D",
    "þ": "th",
    "ı": "i",
}

RESOURCE_EXTENSIONS = (
    ".css", ".js", ".json", ".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp",
    ".ico", ".mp4", ".webm", ".ogg", ".mp3", ".wav", ".woff", ".woff2", ".ttf",
    ".eot", ".pdf", ".zip", ".xml",
)

# (selector, attribute, is navigation)
REWRITE_TARGETS = (
    ("a[href]", "href", True),
    ("form[action]", "action", True),
    ("link[href]", "href", False),
    ("script[src]", "src", False),
    ("img[src]", "src", False),
    ("video[src]", "src", False),
    ("video[poster]", "poster", False),
    ("source[src]", "src", False),
)


def parse_skip_rules(values: Sequence[str]) -> List[SkipRule]:
    """Turn configured strings into skip rules; ``re:`` prefixes mark regular expressions."""

    rules: List[SkipRule] = []
    for value in values:
        if value.startswith("re:"):
            rules.append(re.compile(value[3:]))
        elif value:
            rules.append(value)
    return rules


def should_skip_path(pathname: str, rules: Sequence[SkipRule] = ()) -> bool:
    """The root path is never translated; strings match as substrings."""

    if pathname == "/":
        return True
    for rule in rules:
        if isinstance(rule, str):
            if rule in pathname:
                return True
        elif rule.search(pathname):
            return True
    return False


def normalize_pathname(pathname: str, patterns: Sequence[str] = ("pii", "numeric")) -> PatternizedText:
    return apply_patterns(pathname, patterns)


def denormalize_pathname(translated: str, replacements: Sequence[PatternReplacement]) -> str:
    return restore_patterns(translated, replacements)


def _ascii_fragment(text: str) -> str:
    text = "".join(_SPECIAL_LETTERS.get(char, char) for char in text)
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return UNSAFE_PATH_CHARS.sub("", stripped)


def to_ascii_pathname(pathname: str) -> str:
    """Make a translated pathname URL-safe ASCII, leaving ``[N1]``-style tokens intact."""

    pieces: List[str] = []
    cursor = 0
    for match in PATH_TOKEN_PATTERN.finditer(pathname):
        pieces.append(_ascii_fragment(pathname[cursor:match.start()]))
        pieces.append(match.group(0))
        cursor = match.end()
    pieces.append(_ascii_fragment(pathname[cursor:]))
    return "".join(pieces)


@dataclass
class PathnameCandidate:
    """A pathname that needs translating, with what its normalisation replaced."""

    original: str
    normalized: str
    replacements: List[PatternReplacement] = field(default_factory=list)


def prepare_pathnames(
    pathnames: Sequence[str],
    cached: Mapping[str, str],
    rules: Sequence[SkipRule] = (),
    patterns: Sequence[str] = ("pii", "numeric"),
) -> tuple[Dict[str, str], List[PathnameCandidate]]:
    """Split pathnames into resolved ones and ones still to translate.

    ``cached`` maps normalised originals to normalised translations.
    """

    resolved: Dict[str, str] = {}
    missing: List[PathnameCandidate] = []
    for pathname in pathnames:
        if should_skip_path(pathname, rules):
            resolved[pathname] = pathname
            continue
        patternized = normalize_pathname(pathname, patterns)
        translated = cached.get(patternized.normalized)
        if translated:
            resolved[pathname] = denormalize_pathname(translated, patternized.replacements)
            continue
        missing.append(
            PathnameCandidate(
                original=pathname,
                normalized=patternized.normalized,
                replacements=list(patternized.replacements),
            )
        )
    return resolved, missing


def has_resource_extension(url: str) -> bool:
    lowered = url.lower()
    return any(extension in lowered for extension in RESOURCE_EXTENSIONS)


def _split_relative(value: str) -> tuple[str, str]:
    end = len(value)
    for marker in ("?", "#"):
        position = value.find(marker)
        if position != -1:
            end = min(end, position)
    return value[:end], value[end:]


def _rewrite_value(
    value: str,
    *,
    origin_host: str,
    proxy_host: str,
    navigation: bool,
    translate_paths: bool,
    pathname_map: Mapping[str, str],
) -> Optional[str]:
    if "://" not in value:
        if not (navigation and translate_paths) or has_resource_extension(value):
            return None
        pathname, rest = _split_relative(value)
        translated = pathname_map.get(pathname)
        if translated and translated != pathname:
            return translated + rest
        return None

    try:
        parts = urlsplit(value)
    except ValueError:
        return None
    if parts.hostname != origin_host.split(":", 1)[0]:
        return None
    path = parts.path
    if navigation and translate_paths and not has_resource_extension(value):
        path = pathname_map.get(path, path)
    scheme = "http" if proxy_host.startswith("localhost") else parts.scheme
    return urlunsplit((scheme, proxy_host, path, parts.query, parts.fragment))


def _rewrite_srcset(srcset: str, origin_host: str, proxy_host: str) -> Optional[str]:
    rewritten = False
    entries: List[str] = []
    for entry in srcset.split(","):
        trimmed = entry.strip()
        url, _, descriptor = trimmed.partition(" ")
        if "://" in url:
            replaced = _rewrite_value(
                url,
                origin_host=origin_host,
                proxy_host=proxy_host,
                navigation=False,
                translate_paths=False,
                pathname_map={},
            )
            if replaced is not None:
                url = replaced
                rewritten = True
        entries.append(f"{url} {descriptor.strip()}".strip())
    return ", ".join(entries) if rewritten else None


def rewrite_links(
    document: DocumentAdapter,
    *,
    origin_host: str,
    proxy_host: str,
    pathname_map: Mapping[str, str] | None = None,
    translate_paths: bool = True,
) -> int:
    """Point origin URLs at the proxy host, translating navigation pathnames.

    Returns the number of attributes rewritten.
    """

    pathname_map = pathname_map or {}
    count = 0
    for selector, attr, navigation in REWRITE_TARGETS:
        for element in document.select(selector):
            value = document.get_attr(element, attr)
            if not value:
                continue
            replaced = _rewrite_value(
                value,
                origin_host=origin_host,
                proxy_host=proxy_host,
                navigation=navigation,
                translate_paths=translate_paths,
                pathname_map=pathname_map,
            )
            if replaced is not None and replaced != value:
                document.set_attr(element, attr, replaced)
                count += 1
    for element in document.select("img[srcset], source[srcset]"):
        srcset = _rewrite_srcset(document.get_attr(element, "srcset") or "", origin_host, proxy_host)
        if srcset is not None:
            document.set_attr(element, "srcset", srcset)
            count += 1
    return count
