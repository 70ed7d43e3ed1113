"""Shared fakes for the lingoproxy tests."""

from typing import Callable, Dict, List, Optional, Sequence

import pytest

from lingoproxy.errors import TranslationError
from lingoproxy.providers import ProviderResult, TranslationProvider
from lingoproxy.structures import TokenUsage, TranslationItem


class PrefixProvider(TranslationProvider):
    """Prefixes segments with ``ES `` and pathnames with ``/es``.

    Tokens are copied through untouched, like a well-behaved model.
    """

    name = "prefix"

    def __init__(
        self,
        *,
        fail_on: Sequence[str] = (),
        transform: Optional[Callable[[str], str]] = None,
    ) -> None:
        self.calls: List[List[TranslationItem]] = []
        self.fail_on = set(fail_on)
        self.transform = transform

    @property
    def texts(self) -> List[str]:
        return [item.text for call in self.calls for item in call]

    async def translate(
        self,
        items: Sequence[TranslationItem],
        *,
        source_language: str | None,
        target_language: str,
        style: str = "balanced",
    ) -> ProviderResult:
        self.calls.append(list(items))
        translations = []
        for item in items:
            if item.text in self.fail_on:
                raise TranslationError(f"upstream rejected {item.text!r}")
            if self.transform is not None:
                translations.append(self.transform(item.text))
            elif item.type == "pathname":
                translations.append("/es" + item.text)
            else:
                translations.append("ES " + item.text)
        return ProviderResult(
            translations=translations,
            usage=TokenUsage(prompt_tokens=10 * len(items), completion_tokens=5 * len(items)),
            api_calls=1,
        )


class FailingProvider(TranslationProvider):
    name = "failing"

    async def translate(self, items, *, source_language, target_language, style="balanced"):
        raise TranslationError("provider unavailable")


class MappingProvider(TranslationProvider):
    """Looks translations up in a fixed table; unknown strings come back unchanged."""

    name = "mapping"

    def __init__(self, table: Dict[str, str]) -> None:
        self.table = table
        self.calls: List[List[str]] = []

    async def translate(self, items, *, source_language, target_language, style="balanced"):
        texts = [item.text for item in items]
        self.calls.append(texts)
        return ProviderResult(translations=[self.table.get(text, text) for text in texts], api_calls=1)


@pytest.fixture
def prefix_provider() -> PrefixProvider:
    return PrefixProvider()


async def no_wait(_seconds: float) -> None:
    return None
